import click
from pathlib import Path
from typing import List, Optional, Tuple

from fwforge_engine.config import Config
from fwforge_engine.device_catalog import DeviceService
from fwforge_engine.errors import ConfigError, DeviceCatalogError, GithubApiError
from fwforge_engine.firmware_service import FirmwareService
from fwforge_engine.github_client import GithubClient
from fwforge_engine.logger_setup import logger
from fwforge_engine.models import (
    BuildFlashFirmwareParams,
    BuildJobType,
    BuildLogUpdate,
    BuildProgressNotification,
    BuildProgressNotificationType,
    FirmwareSource,
    FirmwareVersionData,
    PullRequest,
    UserDefine,
    UserDefineKind,
    UserDefinesMode,
)
from fwforge_engine.platformio import FirmwareBuilder, Platformio
from fwforge_engine.pubsub import PubSub, PubSubTopic
from fwforge_engine.user_defines import UserDefinesValidator

DEFINE_KIND_PREFIXES = {
    "bool": UserDefineKind.BOOLEAN,
    "text": UserDefineKind.TEXT,
    "number": UserDefineKind.NUMBER,
}


def parse_define(raw: str) -> UserDefine:
    """Parses KEY, KEY=VALUE or TYPE:KEY=VALUE into an enabled user define."""
    kind: Optional[UserDefineKind] = None
    prefix, sep, rest = raw.partition(":")
    if sep and prefix.lower() in DEFINE_KIND_PREFIXES:
        kind = DEFINE_KIND_PREFIXES[prefix.lower()]
        raw = rest

    key, has_value, value = raw.partition("=")
    key = key.strip()
    if not key:
        raise click.BadParameter(f"Invalid define '{raw}'. Use KEY, KEY=VALUE or TYPE:KEY=VALUE.")
    if kind is None:
        if not has_value:
            kind = UserDefineKind.BOOLEAN
        else:
            try:
                float(value)
                kind = UserDefineKind.NUMBER
            except ValueError:
                kind = UserDefineKind.TEXT
    return UserDefine(key=key, type=kind, value=value if has_value else None, enabled=True)


def firmware_version_from_options(tag: Optional[str], branch: Optional[str], commit: Optional[str],
                                  pr: Optional[Tuple[int, str]], local: Optional[str]) -> FirmwareVersionData:
    selected = [name for name, value in (("--tag", tag), ("--branch", branch), ("--commit", commit),
                                         ("--pr", pr), ("--local", local)) if value is not None]
    if len(selected) != 1:
        raise click.UsageError("Select exactly one firmware source: --tag, --branch, --commit, --pr or --local.")
    if tag is not None:
        return FirmwareVersionData(source=FirmwareSource.GIT_TAG, git_tag=tag)
    if branch is not None:
        return FirmwareVersionData(source=FirmwareSource.GIT_BRANCH, git_branch=branch)
    if commit is not None:
        return FirmwareVersionData(source=FirmwareSource.GIT_COMMIT, git_commit=commit)
    if pr is not None:
        number, head_commit_hash = pr
        return FirmwareVersionData(
            source=FirmwareSource.GIT_PULL_REQUEST,
            git_pull_request=PullRequest(id=number, number=number, title="", head_commit_hash=head_commit_hash),
        )
    return FirmwareVersionData(source=FirmwareSource.LOCAL, local_path=local)


def create_firmware_service(config: Config, pubsub: PubSub) -> FirmwareService:
    platformio = Platformio(env=config.env, python_executable=config.python_executable)
    return FirmwareService(
        path_env=config.path_env,
        firmwares_path=config.firmwares_path,
        toolchain=FirmwareBuilder(platformio),
        pubsub=pubsub,
        log_batch_interval=config.log_batch_interval,
        logs_path=config.logs_path,
    )


def _print_progress(notification: BuildProgressNotification):
    step = notification.step.value
    if notification.type is BuildProgressNotificationType.ERROR:
        click.secho(f"[{step}] failed", fg="red", err=True)
    else:
        click.secho(f"[{step}]", fg="cyan")


def _print_logs(update: BuildLogUpdate):
    click.echo(update.data, nl=False)


@click.group()
@click.option("--config", "config_file", type=click.Path(dir_okay=False, path_type=Path),
              help="Path to a fwforge.yaml configuration file.")
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[Path]):
    """fwforge: build and flash firmware from git or a local checkout."""
    try:
        ctx.obj = Config.load(config_file)
    except ConfigError as e:
        raise click.ClickException(str(e))


@cli.command("list-devices")
@click.pass_obj
def list_devices(config: Config):
    """Lists devices from the device catalog."""
    try:
        devices = DeviceService(config.devices_file).get_devices()
    except DeviceCatalogError as e:
        raise click.ClickException(str(e))
    if not devices:
        click.echo("No devices configured.")
        return
    for device in devices:
        click.echo(f"- {device.name} ({device.category}, {device.device_type.value})")
        for target in device.targets:
            click.echo(f"    {target.name}  [{target.flashing_method.value}]")


@cli.command("list-refs")
@click.option("--kind", type=click.Choice(["tags", "branches", "pulls"]), default="tags", show_default=True)
@click.pass_obj
def list_refs(config: Config, kind: str):
    """Lists the releases, branches or open pull requests available to build."""
    client = GithubClient(config.github_api_url, config.github_token)
    repository = config.git_repository
    try:
        if kind == "tags":
            for tag in client.get_tags(repository):
                click.echo(tag)
        elif kind == "branches":
            for branch in client.get_branches(repository):
                click.echo(branch)
        else:
            for pull_request in client.get_pull_requests(repository):
                click.echo(f"#{pull_request.number} {pull_request.head_commit_hash[:10]} {pull_request.title}")
    except GithubApiError as e:
        raise click.ClickException(str(e))


def firmware_job_options(func):
    options = [
        click.option("--tag", help="Build a release tag."),
        click.option("--branch", help="Build the head of a branch."),
        click.option("--commit", help="Build a specific commit hash."),
        click.option("--pr", type=(int, str), metavar="NUMBER HEAD_SHA", help="Build a pull request head."),
        click.option("--local", type=click.Path(file_okay=False), help="Build a local firmware directory."),
        click.option("--target", required=True, help="Device target (PlatformIO environment)."),
        click.option("--define", "-D", "defines", multiple=True,
                     help="User define: KEY, KEY=VALUE or TYPE:KEY=VALUE (TYPE: bool, text, number)."),
        click.option("--defines-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
                     help="Use this user_defines.txt verbatim instead of --define."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def run_job(config: Config, job_type: BuildJobType, tag, branch, commit, pr, local, target: str,
            defines: Tuple[str, ...], defines_file: Optional[Path], port: Optional[str] = None) -> int:
    firmware = firmware_version_from_options(tag, branch, commit, pr, local)
    source_errors = firmware.validate()
    if source_errors:
        raise click.UsageError("; ".join(str(e) for e in source_errors))

    user_defines: List[UserDefine] = [parse_define(raw) for raw in defines]
    if defines_file is not None:
        mode = UserDefinesMode.MANUAL
        user_defines_txt = defines_file.read_text(encoding="utf-8")
    else:
        mode = UserDefinesMode.USER_INTERFACE
        user_defines_txt = ""
        define_errors = UserDefinesValidator().validate(user_defines)
        if define_errors:
            raise click.UsageError("; ".join(str(e) for e in define_errors))

    params = BuildFlashFirmwareParams(
        type=job_type,
        firmware=firmware,
        target=target,
        git_repository=config.git_repository,
        user_defines_mode=mode,
        user_defines_txt=user_defines_txt,
        user_defines=user_defines,
        serial_device=port,
    )

    pubsub = PubSub()
    pubsub.subscribe(PubSubTopic.BUILD_PROGRESS_NOTIFICATION, _print_progress)
    pubsub.subscribe(PubSubTopic.BUILD_LOGS_UPDATE, _print_logs)
    service = create_firmware_service(config, pubsub)
    try:
        result = service.build_flash_firmware(params)
    finally:
        service.shutdown()

    if not result.success:
        click.secho(f"\n{result.error_type.value}: {result.message}", fg="red", err=True)
        return 1
    if result.firmware_bin_path:
        click.secho(f"\nFirmware binary: {result.firmware_bin_path}", fg="green")
    else:
        click.secho("\nFirmware flashed successfully.", fg="green")
    return 0


@cli.command("build")
@firmware_job_options
@click.pass_obj
def build(config: Config, **options):
    """Builds firmware and prints the path of the binary."""
    exit_code = run_job(config, BuildJobType.BUILD, **options)
    if exit_code:
        raise SystemExit(exit_code)


@cli.command("flash")
@firmware_job_options
@click.option("--port", help="Serial port or network address of the device to flash.")
@click.pass_obj
def flash(config: Config, port: Optional[str], **options):
    """Builds firmware and flashes it to a device."""
    if not port:
        try:
            device_target = DeviceService(config.devices_file).find_target(options["target"])
        except DeviceCatalogError as e:
            logger.warning(f"Could not check flashing method for {options['target']}: {e}")
            device_target = None
        if device_target is not None and device_target.flashing_method.requires_serial_port:
            raise click.UsageError(f"Target {device_target.name} is flashed over a serial port; pass --port.")
        if device_target is not None and device_target.flashing_method.requires_network_device:
            raise click.UsageError(f"Target {device_target.name} is flashed over Wi-Fi; pass --port with its address.")
    exit_code = run_job(config, BuildJobType.BUILD_AND_FLASH, port=port, **options)
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    cli()
