import logging
import os
from pathlib import Path
from typing import Optional, Tuple

import coloredlogs

DEFAULT_DATA_DIR = Path(os.environ.get("FWFORGE_DATA_DIR", Path.home() / ".fwforge"))
LOGS_DIR = DEFAULT_DATA_DIR / "build_logs"


def setup_global_logger():
    logger = logging.getLogger("fwforge")
    level = os.environ.get("FWFORGE_LOG_LEVEL", "DEBUG").upper()
    logger.setLevel(level)

    # coloredlogs installs its own console handler on the 'fwforge' logger.
    coloredlogs.install(level=level, logger=logger, fmt='%(asctime)s %(name)s %(levelname)s %(message)s')
    return logger


def get_build_logger(build_id: str, logs_dir: Optional[Path] = None) -> Tuple[logging.Logger, str]:
    """Creates a file logger that keeps the streamed output of one build."""
    build_log_dir = logs_dir or LOGS_DIR
    build_log_dir.mkdir(parents=True, exist_ok=True)
    log_file_path = build_log_dir / f"{build_id}.log"

    build_logger = logging.getLogger(f"fwforge.build.{build_id}")
    build_logger.setLevel(logging.DEBUG)
    # Build output goes to the file only, not to the console handler on the parent
    build_logger.propagate = False

    fh = logging.FileHandler(log_file_path, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    build_logger.addHandler(fh)

    return build_logger, str(log_file_path)


def close_build_logger(build_logger: logging.Logger):
    for handler in list(build_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            build_logger.removeHandler(handler)


# Initialize global logger
logger = setup_global_logger()
