"""Shared test fixtures."""

import threading
from pathlib import Path
from typing import List, Optional

import pytest

from fwforge_engine.firmware_downloader import GitCheckoutResult
from fwforge_engine.firmware_service import FirmwareService
from fwforge_engine.models import (
    BuildFlashFirmwareParams,
    BuildJobType,
    BuildLogUpdate,
    BuildProgressNotification,
    BuildProgressNotificationType,
    CommandResult,
    FirmwareSource,
    FirmwareVersionData,
    GitRepository,
    UserDefine,
    UserDefineKind,
    UserDefinesCompatibility,
    UserDefinesMode,
)
from fwforge_engine.platformio import FirmwareToolchain
from fwforge_engine.pubsub import PubSub, PubSubTopic

REPOSITORY = GitRepository(
    url="https://example.com/firmware.git",
    owner="example",
    repository_name="firmware",
    src_folder="src",
)


class FakeToolchain(FirmwareToolchain):
    """Scriptable toolchain; records every call it receives."""

    def __init__(self):
        self.python_result = CommandResult(success=True, stdout="Python 3.11.4\n")
        self.core_result = CommandResult(success=True, stdout="PlatformIO Core, version 6.1.11\n")
        self.install_result = CommandResult(success=True)
        self.install_output: List[str] = ["Collecting platformio\n", "Successfully installed platformio\n"]
        self.compatibility = UserDefinesCompatibility(compatible=True)
        self.build_result = CommandResult(success=True)
        self.build_output: List[str] = ["Compiling .pio/build/main.o\n", "Linking .pio/build/firmware.elf\n"]
        self.flash_result = CommandResult(success=True)
        self.flash_output: List[str] = ["Writing at 0x00000000... (100 %)\n"]
        self.calls: List[tuple] = []
        self.build_started = threading.Event()
        self.release_build: Optional[threading.Event] = None

    def check_python(self) -> CommandResult:
        self.calls.append(("check_python",))
        return self.python_result

    def check_core(self) -> CommandResult:
        self.calls.append(("check_core",))
        return self.core_result

    def install(self, on_output=None) -> CommandResult:
        self.calls.append(("install",))
        for chunk in self.install_output:
            on_output(chunk)
        return self.install_result

    def check_user_defines_compatibility(self, firmware_path, keys):
        self.calls.append(("check_user_defines_compatibility", firmware_path, list(keys)))
        return self.compatibility

    def build(self, target, user_defines, firmware_path, on_output=None) -> CommandResult:
        self.calls.append(("build", target, user_defines, firmware_path))
        for chunk in self.build_output:
            on_output(chunk)
        self.build_started.set()
        if self.release_build is not None:
            self.release_build.wait(timeout=10)
        return self.build_result

    def get_firmware_bin_path(self, target, firmware_path) -> str:
        return str(Path(firmware_path) / ".pio" / "build" / target / "firmware.bin")

    def flash(self, target, firmware_path, upload_port=None, on_output=None) -> CommandResult:
        self.calls.append(("flash", target, firmware_path, upload_port))
        for chunk in self.flash_output:
            on_output(chunk)
        return self.flash_result

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakeDownloaderFactory:
    """Stands in for GitFirmwareDownloader; records checkouts instead of touching git."""

    def __init__(self):
        self.created: List[tuple] = []
        self.checkouts: List[tuple] = []

    def __call__(self, base_directory, git_binary_location=None):
        self.created.append((base_directory, git_binary_location))
        return self

    def checkout_ref(self, repository_url, ref, src_folder=""):
        self.checkouts.append(("ref", repository_url, ref, src_folder))
        return GitCheckoutResult(path=Path("/cache/firmware") / src_folder, commit="0" * 40)

    def checkout_pull_request(self, repository_url, pull_request, src_folder=""):
        self.checkouts.append(("pull_request", repository_url, pull_request.number, src_folder))
        return GitCheckoutResult(path=Path("/cache/firmware") / src_folder, commit=pull_request.head_commit_hash)


class EventRecorder:
    def __init__(self, pubsub: PubSub):
        self.progress: List[BuildProgressNotification] = []
        self.logs: List[BuildLogUpdate] = []
        pubsub.subscribe(PubSubTopic.BUILD_PROGRESS_NOTIFICATION, self.progress.append)
        pubsub.subscribe(PubSubTopic.BUILD_LOGS_UPDATE, self.logs.append)

    def info_steps(self):
        return [n.step for n in self.progress if n.type is BuildProgressNotificationType.INFO]

    @property
    def log_text(self) -> str:
        return "".join(update.data for update in self.logs)


def make_params(job_type: BuildJobType = BuildJobType.BUILD, firmware: Optional[FirmwareVersionData] = None,
                **overrides) -> BuildFlashFirmwareParams:
    values = dict(
        type=job_type,
        firmware=firmware or FirmwareVersionData(source=FirmwareSource.GIT_TAG, git_tag="v1.0"),
        target="TARGET_A",
        git_repository=REPOSITORY,
        user_defines_mode=UserDefinesMode.USER_INTERFACE,
        user_defines=[UserDefine(key="K", type=UserDefineKind.NUMBER, value="5", enabled=True)],
    )
    values.update(overrides)
    return BuildFlashFirmwareParams(**values)


@pytest.fixture
def pubsub() -> PubSub:
    return PubSub()


@pytest.fixture
def recorder(pubsub: PubSub) -> EventRecorder:
    return EventRecorder(pubsub)


@pytest.fixture
def toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def downloader_factory() -> FakeDownloaderFactory:
    return FakeDownloaderFactory()


@pytest.fixture
def git_lookup(monkeypatch):
    lookups: List[str] = []

    def fake_find_git_executable(path_env=None):
        lookups.append(path_env)
        return Path("/usr/bin/git")

    monkeypatch.setattr("fwforge_engine.firmware_service.find_git_executable", fake_find_git_executable)
    return lookups


@pytest.fixture
def service(tmp_path, pubsub, toolchain, downloader_factory, git_lookup):
    firmware_service = FirmwareService(
        path_env="/usr/bin",
        firmwares_path=tmp_path / "firmwares",
        toolchain=toolchain,
        pubsub=pubsub,
        log_batch_interval=0.05,
        logs_path=tmp_path / "logs",
        downloader_factory=downloader_factory,
    )
    yield firmware_service
    firmware_service.shutdown()
