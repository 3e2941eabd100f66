from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import UnsupportedFirmwareSourceError


class FirmwareSource(Enum):
    LOCAL = "Local"
    GIT_COMMIT = "GitCommit"
    GIT_BRANCH = "GitBranch"
    GIT_TAG = "GitTag"
    GIT_PULL_REQUEST = "GitPullRequest"


class BuildJobType(Enum):
    BUILD = "Build"
    BUILD_AND_FLASH = "BuildAndFlash"


class UserDefinesMode(Enum):
    MANUAL = "Manual"
    USER_INTERFACE = "UserInterface"


class UserDefineKind(Enum):
    BOOLEAN = "Boolean"
    TEXT = "Text"
    NUMBER = "Number"
    ENUM = "Enum"


class FlashingMethod(Enum):
    UART = "UART"
    BETAFLIGHT_PASSTHROUGH = "BetaflightPassthrough"
    WIFI = "WIFI"
    STLINK = "STLink"
    DFU = "DFU"
    STOCK_BL = "Stock_BL"
    EDGE_TX = "EdgeTxPassthrough"

    @property
    def requires_serial_port(self) -> bool:
        return self in (FlashingMethod.UART, FlashingMethod.BETAFLIGHT_PASSTHROUGH)

    @property
    def requires_network_device(self) -> bool:
        return self is FlashingMethod.WIFI


class DeviceType(Enum):
    EXPRESSLRS = "ExpressLRS"
    BACKPACK = "Backpack"


class BuildFirmwareErrorType(Enum):
    GENERIC_ERROR = "GenericError"
    PYTHON_DEPENDENCY_ERROR = "PythonDependencyError"
    PLATFORMIO_DEPENDENCY_ERROR = "PlatformioDependencyError"
    GIT_DEPENDENCY_ERROR = "GitDependencyError"
    BUILD_ERROR = "BuildError"
    FLASH_ERROR = "FlashError"


class BuildProgressNotificationType(Enum):
    INFO = "Info"
    ERROR = "Error"


class BuildFirmwareStep(Enum):
    # Declaration order is emission order
    VERIFYING_BUILD_SYSTEM = "VERIFYING_BUILD_SYSTEM"
    DOWNLOADING_FIRMWARE = "DOWNLOADING_FIRMWARE"
    BUILDING_USER_DEFINES = "BUILDING_USER_DEFINES"
    BUILDING_FIRMWARE = "BUILDING_FIRMWARE"
    FLASHING_FIRMWARE = "FLASHING_FIRMWARE"


@dataclass
class PullRequest:
    id: int
    number: int
    title: str
    head_commit_hash: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "head_commit_hash": self.head_commit_hash,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PullRequest':
        return cls(
            id=data.get('id', 0),
            number=data['number'],
            title=data.get('title', ""),
            head_commit_hash=data.get('head_commit_hash', ""),
        )


@dataclass
class FirmwareVersionData:
    source: FirmwareSource
    git_tag: str = ""
    git_branch: str = ""
    git_commit: str = ""
    local_path: str = ""
    git_pull_request: Optional[PullRequest] = None

    def validate(self) -> List[ValueError]:
        """Returns the problems with the selected variant's fields, empty when valid."""
        errors: List[ValueError] = []
        if self.source is FirmwareSource.LOCAL:
            if not self.local_path:
                errors.append(ValueError("Local path is empty"))
        elif self.source is FirmwareSource.GIT_COMMIT:
            if not self.git_commit:
                errors.append(ValueError("Git commit hash is empty"))
        elif self.source is FirmwareSource.GIT_BRANCH:
            if not self.git_branch:
                errors.append(ValueError("Git branch is not selected"))
        elif self.source is FirmwareSource.GIT_TAG:
            if not self.git_tag:
                errors.append(ValueError("Firmware release is not selected"))
        elif self.source is FirmwareSource.GIT_PULL_REQUEST:
            if not (self.git_pull_request and self.git_pull_request.head_commit_hash):
                errors.append(ValueError("Firmware Pull Request is not selected"))
        else:
            raise UnsupportedFirmwareSourceError(self.source)
        return errors

    def checkout_ref(self) -> str:
        """The git ref named by the field that matches the selected source."""
        if self.source is FirmwareSource.GIT_COMMIT:
            return self.git_commit
        if self.source is FirmwareSource.GIT_BRANCH:
            return self.git_branch
        if self.source is FirmwareSource.GIT_TAG:
            return self.git_tag
        if self.source is FirmwareSource.GIT_PULL_REQUEST and self.git_pull_request:
            return self.git_pull_request.head_commit_hash
        raise UnsupportedFirmwareSourceError(self.source)

    def to_dict(self) -> dict:
        return {
            "source": self.source.value,
            "git_tag": self.git_tag,
            "git_branch": self.git_branch,
            "git_commit": self.git_commit,
            "local_path": self.local_path,
            "git_pull_request": self.git_pull_request.to_dict() if self.git_pull_request else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'FirmwareVersionData':
        pull_request_data = data.get('git_pull_request')
        return cls(
            source=FirmwareSource(data['source']),
            git_tag=data.get('git_tag', ""),
            git_branch=data.get('git_branch', ""),
            git_commit=data.get('git_commit', ""),
            local_path=data.get('local_path', ""),
            git_pull_request=PullRequest.from_dict(pull_request_data) if pull_request_data else None,
        )


@dataclass(frozen=True)
class GitRepository:
    url: str
    owner: str
    repository_name: str
    raw_repo_url: str = ""
    src_folder: str = ""

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "owner": self.owner,
            "repository_name": self.repository_name,
            "raw_repo_url": self.raw_repo_url,
            "src_folder": self.src_folder,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'GitRepository':
        return cls(
            url=data['url'],
            owner=data.get('owner', ""),
            repository_name=data.get('repository_name', ""),
            raw_repo_url=data.get('raw_repo_url', ""),
            src_folder=data.get('src_folder', ""),
        )


@dataclass(frozen=True)
class DeviceTarget:
    name: str
    flashing_method: FlashingMethod


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    category: str
    device_type: DeviceType
    targets: List[DeviceTarget]
    user_defines: List[str]
    wiki_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "device_type": self.device_type.value,
            "targets": [{"name": t.name, "flashing_method": t.flashing_method.value} for t in self.targets],
            "user_defines": list(self.user_defines),
            "wiki_url": self.wiki_url,
        }


@dataclass
class UserDefine:
    key: str
    type: UserDefineKind = UserDefineKind.BOOLEAN
    value: Optional[str] = None
    enabled: bool = False
    enum_values: Optional[List[str]] = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "type": self.type.value,
            "value": self.value,
            "enabled": self.enabled,
            "enum_values": self.enum_values,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'UserDefine':
        return cls(
            key=data['key'],
            type=UserDefineKind(data.get('type', UserDefineKind.BOOLEAN.value)),
            value=data.get('value'),
            enabled=data.get('enabled', False),
            enum_values=data.get('enum_values'),
        )


@dataclass(frozen=True)
class BuildFlashFirmwareParams:
    type: BuildJobType
    firmware: FirmwareVersionData
    target: str
    git_repository: GitRepository
    user_defines_mode: UserDefinesMode = UserDefinesMode.USER_INTERFACE
    user_defines_txt: str = ""
    user_defines: List[UserDefine] = field(default_factory=list)
    serial_device: Optional[str] = None  # serial port or network address to upload to

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "firmware": self.firmware.to_dict(),
            "target": self.target,
            "git_repository": self.git_repository.to_dict(),
            "user_defines_mode": self.user_defines_mode.value,
            "user_defines_txt": self.user_defines_txt,
            "user_defines": [d.to_dict() for d in self.user_defines],
            "serial_device": self.serial_device,
        }


@dataclass(frozen=True)
class BuildFlashFirmwareResult:
    success: bool
    message: Optional[str] = None
    error_type: Optional[BuildFirmwareErrorType] = None
    firmware_bin_path: Optional[str] = None

    @classmethod
    def ok(cls, firmware_bin_path: Optional[str] = None) -> 'BuildFlashFirmwareResult':
        return cls(success=True, firmware_bin_path=firmware_bin_path)

    @classmethod
    def failure(cls, message: str, error_type: BuildFirmwareErrorType) -> 'BuildFlashFirmwareResult':
        return cls(success=False, message=message, error_type=error_type)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "error_type": self.error_type.value if self.error_type else None,
            "firmware_bin_path": self.firmware_bin_path,
        }


@dataclass(frozen=True)
class BuildProgressNotification:
    type: BuildProgressNotificationType
    step: BuildFirmwareStep
    message: Optional[str] = None


@dataclass(frozen=True)
class BuildLogUpdate:
    data: str


@dataclass
class CommandResult:
    success: bool
    stdout: str = ""
    stderr: str = ""
    return_code: Optional[int] = None


@dataclass
class UserDefinesCompatibility:
    compatible: bool
    incompatible_keys: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MulticastDnsInformation:
    name: str
    ip: str
    target: str = ""
    version: str = ""
    options: Dict[str, Any] = field(default_factory=dict, hash=False)
