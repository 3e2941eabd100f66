from typing import Optional


class FwforgeError(Exception):
    """Base class for errors raised by the fwforge engine."""


class ConfigError(FwforgeError):
    pass


class UnsupportedFirmwareSourceError(FwforgeError):
    """Raised when code meets a FirmwareSource variant it has no branch for."""

    def __init__(self, source):
        super().__init__(f"unsupported firmware source: {source}")
        self.source = source


class UnsupportedUserDefinesModeError(FwforgeError):
    def __init__(self, mode):
        super().__init__(f"unsupported user defines mode: {mode}")
        self.mode = mode


class GitExecutableNotFoundError(FwforgeError):
    def __init__(self, search_path: str):
        super().__init__(f"git executable not found in PATH: {search_path}")
        self.search_path = search_path


class FirmwareDownloadError(FwforgeError):
    def __init__(self, message: str, repository_url: str, ref: Optional[str] = None):
        super().__init__(message)
        self.repository_url = repository_url
        self.ref = ref


class DeviceCatalogError(FwforgeError):
    def __init__(self, message: str, device_name: Optional[str] = None):
        super().__init__(message)
        self.device_name = device_name


class MutexNotLockedError(FwforgeError):
    """Raised when unlock() is called on a guard nobody holds."""


class GithubApiError(FwforgeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
