import subprocess
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .logger_setup import logger
from .models import CommandResult

OutputCallback = Callable[[str], None]


def run_command(command: List[str], cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None,
                on_output: Optional[OutputCallback] = None) -> CommandResult:
    """Runs a command to completion, streaming its output line by line.

    Both stdout and stderr are forwarded to on_output as they arrive and are
    also captured separately, so callers can report stderr verbatim.
    """
    logger.debug(f"Running command: {' '.join(command)} (cwd: {cwd})")
    try:
        process = subprocess.Popen(
            command,
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding='utf-8',
            errors='replace',
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.error(f"Command execution error: {e}. Ensure the program is in PATH.")
        return CommandResult(success=False, stderr=str(e))

    stdout_chunks: List[str] = []
    stderr_chunks: List[str] = []
    output_lock = threading.Lock()

    def emit(chunk: str, sink: List[str]):
        with output_lock:
            sink.append(chunk)
            if on_output is not None:
                on_output(chunk)

    def pump_stderr():
        for line in process.stderr:
            emit(line, stderr_chunks)

    stderr_thread = threading.Thread(target=pump_stderr, daemon=True)
    stderr_thread.start()
    for line in process.stdout:
        emit(line, stdout_chunks)
    stderr_thread.join()
    return_code = process.wait()

    if return_code != 0:
        logger.debug(f"Command {command[0]} failed with exit code {return_code}")
    return CommandResult(
        success=return_code == 0,
        stdout="".join(stdout_chunks),
        stderr="".join(stderr_chunks),
        return_code=return_code,
    )
