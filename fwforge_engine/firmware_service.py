import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .errors import (
    GitExecutableNotFoundError,
    UnsupportedFirmwareSourceError,
    UnsupportedUserDefinesModeError,
)
from .firmware_downloader import GitFirmwareDownloader, find_git_executable
from .log_batcher import DEFAULT_BATCH_INTERVAL, EventsBatcher
from .logger_setup import close_build_logger, get_build_logger, logger
from .models import (
    BuildFirmwareErrorType,
    BuildFirmwareStep,
    BuildFlashFirmwareParams,
    BuildFlashFirmwareResult,
    BuildJobType,
    BuildLogUpdate,
    BuildProgressNotification,
    BuildProgressNotificationType,
    FirmwareSource,
    UserDefinesMode,
)
from .mutex import Mutex
from .platformio import FirmwareToolchain
from .pubsub import PubSub, PubSubTopic
from .user_defines import UserDefinesTxtFactory

BUSY_MESSAGE = "there is another build/flash request in progress..."


class PipelineState(Enum):
    IDLE = "IDLE"
    CHECKING_PREREQUISITES = "CHECKING_PREREQUISITES"
    RESOLVING_SOURCE = "RESOLVING_SOURCE"
    CHECKING_DEFINE_COMPATIBILITY = "CHECKING_DEFINE_COMPATIBILITY"
    MATERIALIZING_DEFINES = "MATERIALIZING_DEFINES"
    COMPILING = "COMPILING"
    FLASHING = "FLASHING"
    FAILED = "FAILED"


class FirmwareService:
    """Runs build/flash requests one at a time.

    A request that arrives while another one is running is rejected right
    away with a GENERIC_ERROR result. Every outcome, including unexpected
    exceptions, is returned as a BuildFlashFirmwareResult, and the guard is
    released before the result is handed back.
    """

    def __init__(self, path_env: str, firmwares_path: Path, toolchain: FirmwareToolchain, pubsub: PubSub,
                 log_batch_interval: float = DEFAULT_BATCH_INTERVAL, logs_path: Optional[Path] = None,
                 downloader_factory: Optional[Callable[..., GitFirmwareDownloader]] = None):
        self.path_env = path_env
        self.firmwares_path = Path(firmwares_path)
        self.toolchain = toolchain
        self.pubsub = pubsub
        self.logs_path = logs_path
        self.downloader_factory = downloader_factory or GitFirmwareDownloader
        self.user_defines_factory = UserDefinesTxtFactory()
        self.mutex = Mutex()
        self.state = PipelineState.IDLE
        self.logs_batcher = EventsBatcher(log_batch_interval)
        self.logs_batcher.on_batch(self._publish_logs)
        self.build_executor_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="firmware-build")
        self.logger = logger
        self._build_logger = None
        self._current_step: Optional[BuildFirmwareStep] = None

    def build_flash_firmware(self, params: BuildFlashFirmwareParams) -> BuildFlashFirmwareResult:
        """Runs the whole pipeline on the calling thread."""
        if not self.mutex.try_lock():
            return self._busy()
        return self._run_locked(params)

    def submit(self, params: BuildFlashFirmwareParams) -> 'Future[BuildFlashFirmwareResult]':
        """Runs the pipeline on the worker thread.

        The guard is taken here, on the caller's thread, so two back-to-back
        submissions can never both be accepted.
        """
        if not self.mutex.try_lock():
            future: Future = Future()
            future.set_result(self._busy())
            return future
        try:
            return self.build_executor_pool.submit(self._run_locked, params)
        except RuntimeError as e:
            self.mutex.unlock()
            self.logger.error(f"Could not schedule build: {e}")
            future = Future()
            future.set_result(BuildFlashFirmwareResult.failure(f"Error: {e}", BuildFirmwareErrorType.GENERIC_ERROR))
            return future

    def is_busy(self) -> bool:
        return self.mutex.is_locked()

    def shutdown(self, wait: bool = True):
        self.logger.info(f"Shutting down FirmwareService's thread pool (wait={wait})...")
        self.build_executor_pool.shutdown(wait=wait)

    def _busy(self) -> BuildFlashFirmwareResult:
        self.logger.error(BUSY_MESSAGE)
        return BuildFlashFirmwareResult.failure(BUSY_MESSAGE, BuildFirmwareErrorType.GENERIC_ERROR)

    def _run_locked(self, params: BuildFlashFirmwareParams) -> BuildFlashFirmwareResult:
        # Caller holds the mutex; it is released on every path out of here
        build_id = str(uuid.uuid4())
        self._current_step = None
        try:
            try:
                self._build_logger, log_file_path = get_build_logger(build_id, self.logs_path)
            except OSError as e:
                self.logger.warning(f"Could not create build log for {build_id}, continuing without it: {e}")
                self._build_logger, log_file_path = None, None
            self.logger.info(f"Starting build {build_id} for target '{params.target}' "
                             f"({params.type.value}). Log: {log_file_path}")
            self.logs_batcher.start()
            result = self._build_flash_firmware(params)
        except Exception as e:
            self.logger.error(f"Build {build_id} failed with unhandled exception: {e}", exc_info=True)
            result = self._fail(f"Error: {e}", BuildFirmwareErrorType.GENERIC_ERROR)
        finally:
            try:
                self.logs_batcher.stop()
                if self._build_logger is not None:
                    close_build_logger(self._build_logger)
            finally:
                self._build_logger = None
                self.state = PipelineState.IDLE
                self.mutex.unlock()

        if result.success:
            self.logger.info(f"Build {build_id} finished successfully.")
        return result

    def _build_flash_firmware(self, params: BuildFlashFirmwareParams) -> BuildFlashFirmwareResult:
        source_errors = params.firmware.validate()
        if source_errors:
            return self._fail(
                "Invalid firmware source: " + "; ".join(str(e) for e in source_errors),
                BuildFirmwareErrorType.GENERIC_ERROR,
            )
        if self._build_logger is not None:
            self._build_logger.info(f"Build request: {params.to_dict()}")

        self.state = PipelineState.CHECKING_PREREQUISITES
        self._update_progress(BuildProgressNotificationType.INFO, BuildFirmwareStep.VERIFYING_BUILD_SYSTEM)
        python_check = self.toolchain.check_python()
        if not python_check.success:
            return self._fail(
                f"Python dependency error: {python_check.stderr} {python_check.stdout}",
                BuildFirmwareErrorType.PYTHON_DEPENDENCY_ERROR,
            )

        core_check = self.toolchain.check_core()
        if not core_check.success:
            self.logger.warning(f"platformio dependency check failed: {core_check.stderr} {core_check.stdout}")
            self.logs_batcher.enqueue(
                "Failed to find Platformio on your computer. Trying to install it automatically...\n"
            )
            install_result = self.toolchain.install(self.logs_batcher.enqueue)
            self.logs_batcher.flush()
            if not install_result.success:
                return self._fail(
                    f"platformio error: {install_result.stderr} {install_result.stdout}",
                    BuildFirmwareErrorType.PLATFORMIO_DEPENDENCY_ERROR,
                )

        git_path: Optional[Path] = None
        if params.firmware.source is not FirmwareSource.LOCAL:
            try:
                git_path = find_git_executable(self.path_env)
            except GitExecutableNotFoundError as e:
                self.logger.error(f"failed to find git: {e}")
                return self._fail(str(e), BuildFirmwareErrorType.GIT_DEPENDENCY_ERROR)
            self.logger.debug(f"git path: {git_path}")

        self.state = PipelineState.RESOLVING_SOURCE
        self._update_progress(BuildProgressNotificationType.INFO, BuildFirmwareStep.DOWNLOADING_FIRMWARE)
        firmware_path = self._download_firmware(params, git_path)
        self.logger.info(f"firmware path: {firmware_path}")

        self._update_progress(BuildProgressNotificationType.INFO, BuildFirmwareStep.BUILDING_USER_DEFINES)
        if params.user_defines_mode is UserDefinesMode.USER_INTERFACE:
            self.state = PipelineState.CHECKING_DEFINE_COMPATIBILITY
            enabled_keys = [user_define.key for user_define in params.user_defines if user_define.enabled]
            compat_check = self.toolchain.check_user_defines_compatibility(firmware_path, enabled_keys)
            if not compat_check.compatible:
                return self._fail(
                    "Downloaded firmware is not compatible with the following user defines: "
                    f"{', '.join(compat_check.incompatible_keys)}",
                    BuildFirmwareErrorType.BUILD_ERROR,
                )
            self.state = PipelineState.MATERIALIZING_DEFINES
            user_defines = self.user_defines_factory.build(params.user_defines)
        elif params.user_defines_mode is UserDefinesMode.MANUAL:
            self.state = PipelineState.MATERIALIZING_DEFINES
            user_defines = params.user_defines_txt
        else:
            raise UnsupportedUserDefinesModeError(params.user_defines_mode)
        if self._build_logger is not None:
            self._build_logger.info(f"user_defines.txt:\n{user_defines}")

        self.state = PipelineState.COMPILING
        self._update_progress(BuildProgressNotificationType.INFO, BuildFirmwareStep.BUILDING_FIRMWARE)
        compile_result = self.toolchain.build(params.target, user_defines, firmware_path, self.logs_batcher.enqueue)
        self.logs_batcher.flush()
        if not compile_result.success:
            return self._fail(compile_result.stderr, BuildFirmwareErrorType.BUILD_ERROR)

        if params.type is BuildJobType.BUILD:
            firmware_bin_path = self.toolchain.get_firmware_bin_path(params.target, firmware_path)
            return BuildFlashFirmwareResult.ok(firmware_bin_path)

        self.state = PipelineState.FLASHING
        self._update_progress(BuildProgressNotificationType.INFO, BuildFirmwareStep.FLASHING_FIRMWARE)
        flash_result = self.toolchain.flash(params.target, firmware_path, params.serial_device,
                                            self.logs_batcher.enqueue)
        self.logs_batcher.flush()
        if not flash_result.success:
            return self._fail(flash_result.stderr, BuildFirmwareErrorType.FLASH_ERROR)

        return BuildFlashFirmwareResult.ok()

    def _download_firmware(self, params: BuildFlashFirmwareParams, git_path: Optional[Path]) -> str:
        firmware = params.firmware
        if firmware.source is FirmwareSource.LOCAL:
            # Used as is; a missing directory surfaces as a build failure
            return firmware.local_path

        repository = params.git_repository
        downloader = self.downloader_factory(self.firmwares_path, git_path)
        if firmware.source in (FirmwareSource.GIT_TAG, FirmwareSource.GIT_BRANCH, FirmwareSource.GIT_COMMIT):
            result = downloader.checkout_ref(repository.url, firmware.checkout_ref(), repository.src_folder)
        elif firmware.source is FirmwareSource.GIT_PULL_REQUEST:
            result = downloader.checkout_pull_request(repository.url, firmware.git_pull_request,
                                                      repository.src_folder)
        else:
            raise UnsupportedFirmwareSourceError(firmware.source)
        if self._build_logger is not None:
            self._build_logger.info(f"Checked out commit {result.commit} into {result.path}")
        return str(result.path)

    def _update_progress(self, notification_type: BuildProgressNotificationType, step: BuildFirmwareStep,
                         message: Optional[str] = None):
        self._current_step = step
        self.logger.info(f"build progress notification: {notification_type.value} {step.value}")
        if self._build_logger is not None:
            self._build_logger.info(f"--- {step.value} ---")
        self.pubsub.publish(
            PubSubTopic.BUILD_PROGRESS_NOTIFICATION,
            BuildProgressNotification(type=notification_type, step=step, message=message),
        )

    def _publish_logs(self, batch: List[str]):
        data = "".join(batch)
        if self._build_logger is not None:
            self._build_logger.info(data.rstrip("\n"))
        self.pubsub.publish(PubSubTopic.BUILD_LOGS_UPDATE, BuildLogUpdate(data=data))

    def _fail(self, message: str, error_type: BuildFirmwareErrorType) -> BuildFlashFirmwareResult:
        self.state = PipelineState.FAILED
        self.logger.error(f"{error_type.value}: {message}")
        if self._build_logger is not None:
            self._build_logger.error(f"{error_type.value}: {message}")
        self.logs_batcher.flush()
        # Failures before the first step are reported through the result only
        if self._current_step is not None:
            self.pubsub.publish(
                PubSubTopic.BUILD_PROGRESS_NOTIFICATION,
                BuildProgressNotification(type=BuildProgressNotificationType.ERROR, step=self._current_step,
                                          message=message),
            )
        return BuildFlashFirmwareResult.failure(message, error_type)
