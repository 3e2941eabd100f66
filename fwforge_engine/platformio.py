import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from .logger_setup import logger
from .models import CommandResult, UserDefinesCompatibility
from .process import OutputCallback, run_command

USER_DEFINES_FILE_NAME = "user_defines.txt"
# Matches "-DKEY", "-DKEY=..." and commented-out "#-DKEY" lines
USER_DEFINE_LINE = re.compile(r"^\s*#?\s*-D(\w+)")


class FirmwareToolchain(ABC):
    """What the firmware service needs from a compiler toolchain."""

    @abstractmethod
    def check_python(self) -> CommandResult: ...

    @abstractmethod
    def check_core(self) -> CommandResult: ...

    @abstractmethod
    def install(self, on_output: Optional[OutputCallback] = None) -> CommandResult: ...

    @abstractmethod
    def check_user_defines_compatibility(self, firmware_path: str, keys: List[str]) -> UserDefinesCompatibility: ...

    @abstractmethod
    def build(self, target: str, user_defines: str, firmware_path: str,
              on_output: Optional[OutputCallback] = None) -> CommandResult: ...

    @abstractmethod
    def get_firmware_bin_path(self, target: str, firmware_path: str) -> str: ...

    @abstractmethod
    def flash(self, target: str, firmware_path: str, upload_port: Optional[str] = None,
              on_output: Optional[OutputCallback] = None) -> CommandResult: ...


class Platformio:
    def __init__(self, env: Optional[Dict[str, str]] = None, python_executable: str = "python3"):
        self.env = env
        self.python_executable = python_executable

    def check_python(self) -> CommandResult:
        return run_command([self.python_executable, "--version"], env=self.env)

    def check_core(self) -> CommandResult:
        return run_command([self.python_executable, "-m", "platformio", "--version"], env=self.env)

    def install(self, on_output: Optional[OutputCallback] = None) -> CommandResult:
        logger.info("Installing platformio...")
        return run_command(
            [self.python_executable, "-m", "pip", "install", "--upgrade", "platformio"],
            env=self.env,
            on_output=on_output,
        )

    def run(self, args: List[str], cwd: Path, on_output: Optional[OutputCallback] = None) -> CommandResult:
        return run_command([self.python_executable, "-m", "platformio", *args], cwd=cwd,
                           env=self.env, on_output=on_output)


class FirmwareBuilder(FirmwareToolchain):
    """PlatformIO-backed toolchain for firmware trees that ship a user_defines.txt."""

    def __init__(self, platformio: Platformio):
        self.platformio = platformio

    def check_python(self) -> CommandResult:
        return self.platformio.check_python()

    def check_core(self) -> CommandResult:
        return self.platformio.check_core()

    def install(self, on_output: Optional[OutputCallback] = None) -> CommandResult:
        return self.platformio.install(on_output)

    def check_user_defines_compatibility(self, firmware_path: str, keys: List[str]) -> UserDefinesCompatibility:
        user_defines_file = Path(firmware_path) / USER_DEFINES_FILE_NAME
        if not user_defines_file.is_file():
            logger.warning(f"{user_defines_file} not found; cannot verify user defines")
            return UserDefinesCompatibility(compatible=len(keys) == 0, incompatible_keys=list(keys))

        known_keys = set()
        with open(user_defines_file, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                match = USER_DEFINE_LINE.match(line)
                if match:
                    known_keys.add(match.group(1))

        incompatible_keys = [key for key in keys if key not in known_keys]
        return UserDefinesCompatibility(compatible=not incompatible_keys, incompatible_keys=incompatible_keys)

    def build(self, target: str, user_defines: str, firmware_path: str,
              on_output: Optional[OutputCallback] = None) -> CommandResult:
        source_dir = Path(firmware_path)
        user_defines_file = source_dir / USER_DEFINES_FILE_NAME
        try:
            with open(user_defines_file, "w", encoding="utf-8") as f:
                f.write(user_defines)
        except OSError as e:
            return CommandResult(success=False, stderr=f"failed to write {user_defines_file}: {e}")
        return self.platformio.run(["run", "--environment", target], cwd=source_dir, on_output=on_output)

    def get_firmware_bin_path(self, target: str, firmware_path: str) -> str:
        return str(Path(firmware_path) / ".pio" / "build" / target / "firmware.bin")

    def flash(self, target: str, firmware_path: str, upload_port: Optional[str] = None,
              on_output: Optional[OutputCallback] = None) -> CommandResult:
        args = ["run", "--target", "upload", "--environment", target]
        if upload_port:
            args.extend(["--upload-port", upload_port])
        return self.platformio.run(args, cwd=Path(firmware_path), on_output=on_output)
