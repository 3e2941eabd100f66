import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError
from .log_batcher import DEFAULT_BATCH_INTERVAL
from .logger_setup import DEFAULT_DATA_DIR, logger
from .models import GitRepository

CONFIG_FILE_NAME = "fwforge.yaml"

DEFAULT_GIT_REPOSITORY = GitRepository(
    url="https://github.com/ExpressLRS/ExpressLRS",
    owner="ExpressLRS",
    repository_name="ExpressLRS",
    raw_repo_url="https://raw.githubusercontent.com/ExpressLRS/ExpressLRS",
    src_folder="src",
)


@dataclass
class Config:
    data_path: Path = DEFAULT_DATA_DIR
    firmwares_path: Optional[Path] = None  # defaults to <data_path>/firmwares
    logs_path: Optional[Path] = None  # defaults to <data_path>/build_logs
    path_env: str = field(default_factory=lambda: os.environ.get("PATH", ""))
    python_executable: str = "python3"
    log_batch_interval: float = DEFAULT_BATCH_INTERVAL
    devices_file: Optional[Path] = None
    git_repository: GitRepository = DEFAULT_GIT_REPOSITORY
    github_api_url: str = "https://api.github.com"
    github_token: Optional[str] = None

    def __post_init__(self):
        self.data_path = Path(self.data_path)
        if self.firmwares_path is None:
            self.firmwares_path = self.data_path / "firmwares"
        if self.logs_path is None:
            self.logs_path = self.data_path / "build_logs"
        if self.log_batch_interval <= 0:
            raise ConfigError(f"log_batch_interval must be positive, got {self.log_batch_interval}")

    @property
    def env(self) -> Dict[str, str]:
        """Environment for toolchain subprocesses."""
        env = os.environ.copy()
        env["PATH"] = self.path_env
        return env

    @classmethod
    def load(cls, config_file: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        """Defaults, then the YAML file (if any), then FWFORGE_* environment variables."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        if config_file is None and Path(CONFIG_FILE_NAME).is_file():
            config_file = Path(CONFIG_FILE_NAME)
        if config_file is not None:
            values.update(cls._read_file(Path(config_file)))

        env_overrides = {
            "FWFORGE_DATA_DIR": "data_path",
            "FWFORGE_FIRMWARES_DIR": "firmwares_path",
            "FWFORGE_LOGS_DIR": "logs_path",
            "FWFORGE_PYTHON": "python_executable",
            "FWFORGE_LOG_BATCH_INTERVAL": "log_batch_interval",
            "FWFORGE_DEVICES_FILE": "devices_file",
            "FWFORGE_GITHUB_API_URL": "github_api_url",
            "GITHUB_TOKEN": "github_token",
        }
        for env_name, key in env_overrides.items():
            if environ.get(env_name):
                values[key] = environ[env_name]

        return cls._from_values(values)

    @staticmethod
    def _read_file(config_file: Path) -> Dict[str, Any]:
        if not config_file.is_file():
            raise ConfigError(f"Config file not found: {config_file}")
        try:
            with open(config_file, 'r', encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as ye:
            raise ConfigError(f"YAML syntax error in {config_file}: {ye}") from ye
        if not isinstance(data, dict):
            raise ConfigError(f"{config_file} must contain a mapping at the top level")
        logger.debug(f"Loaded configuration from {config_file}")
        return data

    @classmethod
    def _from_values(cls, values: Dict[str, Any]) -> 'Config':
        kwargs: Dict[str, Any] = {}
        for key in ("data_path", "firmwares_path", "logs_path", "devices_file"):
            if values.get(key):
                kwargs[key] = Path(values[key]).expanduser()
        for key in ("path_env", "python_executable", "github_api_url", "github_token"):
            if values.get(key):
                kwargs[key] = str(values[key])

        if "log_batch_interval" in values:
            try:
                kwargs["log_batch_interval"] = float(values["log_batch_interval"])
            except (TypeError, ValueError):
                raise ConfigError(
                    f"Invalid 'log_batch_interval' value '{values['log_batch_interval']}'. It must be a number."
                )

        repository_data = values.get("git_repository")
        if repository_data is not None:
            if not isinstance(repository_data, dict) or not repository_data.get("url"):
                raise ConfigError("'git_repository' must be a mapping with at least an 'url' field")
            kwargs["git_repository"] = GitRepository.from_dict(repository_data)

        return cls(**kwargs)
