import threading
from pathlib import Path

from fwforge_engine.errors import GitExecutableNotFoundError
from fwforge_engine.firmware_service import BUSY_MESSAGE, PipelineState
from fwforge_engine.models import (
    BuildFirmwareErrorType,
    BuildFirmwareStep,
    BuildJobType,
    BuildProgressNotificationType,
    CommandResult,
    FirmwareSource,
    FirmwareVersionData,
    PullRequest,
    UserDefine,
    UserDefineKind,
    UserDefinesCompatibility,
    UserDefinesMode,
)

from conftest import make_params

BUILD_STEPS = [
    BuildFirmwareStep.VERIFYING_BUILD_SYSTEM,
    BuildFirmwareStep.DOWNLOADING_FIRMWARE,
    BuildFirmwareStep.BUILDING_USER_DEFINES,
    BuildFirmwareStep.BUILDING_FIRMWARE,
]


def test_build_from_tag_reports_binary_path(service, toolchain, recorder, downloader_factory) -> None:
    result = service.build_flash_firmware(make_params())

    assert result.success is True
    assert result.error_type is None
    assert result.firmware_bin_path
    assert result.firmware_bin_path.endswith("TARGET_A/firmware.bin")
    assert recorder.info_steps() == BUILD_STEPS
    assert downloader_factory.checkouts == [("ref", "https://example.com/firmware.git", "v1.0", "src")]
    assert ("build", "TARGET_A", "-DK=5", str(Path("/cache/firmware/src"))) in toolchain.calls
    assert "flash" not in toolchain.call_names()


def test_build_and_flash_emits_all_steps_in_order(service, toolchain, recorder) -> None:
    result = service.build_flash_firmware(
        make_params(BuildJobType.BUILD_AND_FLASH, serial_device="/dev/ttyUSB0")
    )

    assert result.success is True
    assert result.firmware_bin_path is None
    assert recorder.info_steps() == BUILD_STEPS + [BuildFirmwareStep.FLASHING_FIRMWARE]
    assert toolchain.calls[-1] == ("flash", "TARGET_A", str(Path("/cache/firmware/src")), "/dev/ttyUSB0")


def test_streamed_output_reaches_log_subscribers_in_order(service, toolchain, recorder) -> None:
    service.build_flash_firmware(make_params(BuildJobType.BUILD_AND_FLASH))

    assert recorder.log_text == "".join(toolchain.build_output + toolchain.flash_output)


def test_compile_failure_returns_stderr_verbatim(service, toolchain, recorder) -> None:
    toolchain.build_result = CommandResult(success=False, stdout="partial", stderr="undefined reference to `foo'")

    result = service.build_flash_firmware(make_params())

    assert result.success is False
    assert result.error_type is BuildFirmwareErrorType.BUILD_ERROR
    assert result.message == "undefined reference to `foo'"
    assert service.is_busy() is False
    assert recorder.progress[-1].type is BuildProgressNotificationType.ERROR
    assert recorder.progress[-1].step is BuildFirmwareStep.BUILDING_FIRMWARE


def test_flash_failure_is_flash_error(service, toolchain) -> None:
    toolchain.flash_result = CommandResult(success=False, stderr="A fatal error occurred: Failed to connect")

    result = service.build_flash_firmware(make_params(BuildJobType.BUILD_AND_FLASH))

    assert result.error_type is BuildFirmwareErrorType.FLASH_ERROR
    assert "Failed to connect" in result.message


def test_missing_python_is_python_dependency_error(service, toolchain) -> None:
    toolchain.python_result = CommandResult(success=False, stdout="", stderr="python3: command not found")

    result = service.build_flash_firmware(make_params())

    assert result.error_type is BuildFirmwareErrorType.PYTHON_DEPENDENCY_ERROR
    assert "python3: command not found" in result.message
    assert toolchain.call_names() == ["check_python"]


def test_missing_core_is_installed_with_streamed_output(service, toolchain, recorder) -> None:
    toolchain.core_result = CommandResult(success=False, stderr="No module named platformio")

    result = service.build_flash_firmware(make_params())

    assert result.success is True
    assert toolchain.call_names()[:3] == ["check_python", "check_core", "install"]
    assert "Trying to install it automatically" in recorder.log_text
    assert "Successfully installed platformio" in recorder.log_text


def test_failed_core_install_is_platformio_dependency_error(service, toolchain) -> None:
    toolchain.core_result = CommandResult(success=False)
    toolchain.install_result = CommandResult(success=False, stdout="", stderr="pip: permission denied")

    result = service.build_flash_firmware(make_params())

    assert result.error_type is BuildFirmwareErrorType.PLATFORMIO_DEPENDENCY_ERROR
    assert "pip: permission denied" in result.message
    assert "build" not in toolchain.call_names()


def test_missing_git_is_git_dependency_error(service, monkeypatch) -> None:
    def missing_git(path_env=None):
        raise GitExecutableNotFoundError("/nowhere")

    monkeypatch.setattr("fwforge_engine.firmware_service.find_git_executable", missing_git)

    result = service.build_flash_firmware(make_params())

    assert result.error_type is BuildFirmwareErrorType.GIT_DEPENDENCY_ERROR
    assert "/nowhere" in result.message


def test_local_source_skips_git_and_resolution(service, toolchain, git_lookup, downloader_factory, tmp_path) -> None:
    firmware = FirmwareVersionData(source=FirmwareSource.LOCAL, local_path=str(tmp_path / "fw"))

    result = service.build_flash_firmware(make_params(firmware=firmware))

    assert result.success is True
    assert git_lookup == []
    assert downloader_factory.created == []
    assert toolchain.calls[-1][0] == "build"
    assert toolchain.calls[-1][3] == str(tmp_path / "fw")


def test_git_commit_checks_out_the_commit_field(service, downloader_factory) -> None:
    firmware = FirmwareVersionData(source=FirmwareSource.GIT_COMMIT, git_commit="4f1d2c3", git_tag="v9.9.9")

    service.build_flash_firmware(make_params(firmware=firmware))

    assert downloader_factory.checkouts[0][2] == "4f1d2c3"


def test_branch_and_pull_request_sources(service, downloader_factory) -> None:
    branch = FirmwareVersionData(source=FirmwareSource.GIT_BRANCH, git_branch="master")
    pull_request = FirmwareVersionData(
        source=FirmwareSource.GIT_PULL_REQUEST,
        git_pull_request=PullRequest(id=1, number=42, title="Fix", head_commit_hash="abc123"),
    )

    assert service.build_flash_firmware(make_params(firmware=branch)).success
    assert service.build_flash_firmware(make_params(firmware=pull_request)).success

    assert downloader_factory.checkouts == [
        ("ref", "https://example.com/firmware.git", "master", "src"),
        ("pull_request", "https://example.com/firmware.git", 42, "src"),
    ]


def test_empty_branch_is_rejected_before_any_work(service, toolchain, recorder, git_lookup,
                                                  downloader_factory) -> None:
    firmware = FirmwareVersionData(source=FirmwareSource.GIT_BRANCH, git_branch="")

    result = service.build_flash_firmware(make_params(firmware=firmware))

    assert result.success is False
    assert result.error_type is BuildFirmwareErrorType.GENERIC_ERROR
    assert "Git branch is not selected" in result.message
    assert toolchain.calls == []
    assert git_lookup == []
    assert downloader_factory.created == []
    assert recorder.progress == []


def test_incompatible_defines_stop_before_compile(service, toolchain) -> None:
    toolchain.compatibility = UserDefinesCompatibility(compatible=False, incompatible_keys=["K"])

    result = service.build_flash_firmware(make_params())

    assert result.error_type is BuildFirmwareErrorType.BUILD_ERROR
    assert "K" in result.message
    assert "build" not in toolchain.call_names()


def test_only_enabled_defines_are_checked_and_materialized(service, toolchain) -> None:
    user_defines = [
        UserDefine(key="MY_BINDING_PHRASE", type=UserDefineKind.TEXT, value="bind me", enabled=True),
        UserDefine(key="UNLOCK_HIGHER_POWER", type=UserDefineKind.BOOLEAN, enabled=False),
        UserDefine(key="AUTO_WIFI_ON_INTERVAL", type=UserDefineKind.NUMBER, value="20", enabled=True),
    ]

    service.build_flash_firmware(make_params(user_defines=user_defines))

    compat_call = next(c for c in toolchain.calls if c[0] == "check_user_defines_compatibility")
    build_call = next(c for c in toolchain.calls if c[0] == "build")
    assert compat_call[2] == ["MY_BINDING_PHRASE", "AUTO_WIFI_ON_INTERVAL"]
    assert build_call[2] == '-DMY_BINDING_PHRASE="bind me"\n-DAUTO_WIFI_ON_INTERVAL=20'


def test_manual_defines_are_used_verbatim(service, toolchain) -> None:
    text = "-DMY_BINDING_PHRASE=\"x\"\n# anything goes here\n"

    service.build_flash_firmware(
        make_params(user_defines_mode=UserDefinesMode.MANUAL, user_defines_txt=text, user_defines=[])
    )

    assert "check_user_defines_compatibility" not in toolchain.call_names()
    assert next(c for c in toolchain.calls if c[0] == "build")[2] == text


def test_unexpected_exception_becomes_generic_error_and_releases_guard(service, toolchain, recorder) -> None:
    def explode():
        raise RuntimeError("toolchain exploded")

    toolchain.check_python = explode

    result = service.build_flash_firmware(make_params())

    assert result.success is False
    assert result.error_type is BuildFirmwareErrorType.GENERIC_ERROR
    assert "toolchain exploded" in result.message
    assert service.is_busy() is False
    assert service.state is PipelineState.IDLE
    assert recorder.progress[-1].type is BuildProgressNotificationType.ERROR
    assert recorder.progress[-1].step is BuildFirmwareStep.VERIFYING_BUILD_SYSTEM


def test_unknown_source_variant_is_generic_error(service) -> None:
    firmware = FirmwareVersionData(source="Carrier pigeon")

    result = service.build_flash_firmware(make_params(firmware=firmware))

    assert result.error_type is BuildFirmwareErrorType.GENERIC_ERROR
    assert "Carrier pigeon" in result.message
    assert service.is_busy() is False


def test_guard_is_released_after_every_outcome(service, toolchain) -> None:
    toolchain.build_result = CommandResult(success=False, stderr="boom")
    assert service.build_flash_firmware(make_params()).success is False

    toolchain.build_result = CommandResult(success=True)
    assert service.build_flash_firmware(make_params()).success is True
    assert service.build_flash_firmware(make_params()).success is True


def test_request_while_building_is_rejected_immediately(service, toolchain) -> None:
    toolchain.release_build = threading.Event()

    first = service.submit(make_params())
    assert toolchain.build_started.wait(timeout=5)

    second = service.build_flash_firmware(make_params())

    assert second.success is False
    assert second.error_type is BuildFirmwareErrorType.GENERIC_ERROR
    assert second.message == BUSY_MESSAGE

    toolchain.release_build.set()
    first_result = first.result(timeout=10)
    assert first_result.success is True
    assert service.is_busy() is False


def test_back_to_back_submissions_accept_only_the_first(service, toolchain) -> None:
    toolchain.release_build = threading.Event()

    first = service.submit(make_params())
    second = service.submit(make_params())

    assert second.done()
    assert second.result().error_type is BuildFirmwareErrorType.GENERIC_ERROR

    toolchain.release_build.set()
    assert first.result(timeout=10).success is True
    assert toolchain.call_names().count("build") == 1


def test_build_log_file_is_written(service, tmp_path) -> None:
    service.build_flash_firmware(make_params())

    log_files = list((tmp_path / "logs").glob("*.log"))
    assert len(log_files) == 1
    content = log_files[0].read_text(encoding="utf-8")
    assert "BUILDING_FIRMWARE" in content
    assert "Linking .pio/build/firmware.elf" in content


def test_unwritable_log_directory_does_not_block_the_build(service, recorder, tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    service.logs_path = blocker / "logs"

    result = service.build_flash_firmware(make_params())

    assert result.success is True
    assert result.firmware_bin_path.endswith("TARGET_A/firmware.bin")
    assert recorder.info_steps() == BUILD_STEPS
    assert "Linking .pio/build/firmware.elf" in recorder.log_text
    assert service.is_busy() is False
