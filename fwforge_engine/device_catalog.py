from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import DeviceCatalogError
from .logger_setup import logger
from .models import Device, DeviceTarget, DeviceType, FlashingMethod
from .user_defines import KNOWN_USER_DEFINE_KEYS

DEVICES_FILE_NAME = "devices.json"
DEFAULT_DEVICES_FILE = Path(__file__).resolve().parent / DEVICES_FILE_NAME


def _parse_enum(enum_cls, raw_value):
    for member in enum_cls:
        if raw_value in (member.value, member.name):
            return member
    return None


class DeviceService:
    """Device catalog, loaded once from a JSON or YAML file and read-only afterwards.

    A single invalid entry fails the whole load; a partially loaded catalog
    is never exposed.
    """

    def __init__(self, devices_file: Optional[Path] = None):
        if devices_file:
            self.devices_file = Path(devices_file)
        else:
            self.devices_file = DEFAULT_DEVICES_FILE
        self.devices: List[Device] = self.load_devices()

    def load_devices(self) -> List[Device]:
        logger.info(f"Loading devices from {self.devices_file}...")
        if not self.devices_file.is_file():
            raise DeviceCatalogError(f"Device configuration file not found: {self.devices_file}")

        try:
            with open(self.devices_file, 'r', encoding="utf-8") as f:
                # JSON is a subset of YAML, so one parser covers both formats
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as ye:
            raise DeviceCatalogError(f"Syntax error in device configuration {self.devices_file.name}: {ye}") from ye

        raw_devices = config.get('devices') if isinstance(config, dict) else None
        if not isinstance(raw_devices, list):
            raise DeviceCatalogError(f"{self.devices_file.name} must contain a 'devices' list")

        devices = [self._parse_device(value) for value in raw_devices]
        logger.info(f"Loaded {len(devices)} devices.")
        return devices

    def _parse_device(self, value: Dict[str, Any]) -> Device:
        name = value.get('name') if isinstance(value, dict) else None
        try:
            if not isinstance(value, dict):
                raise ValueError(f"device entries must be mappings, found {type(value).__name__}")
            if not name:
                raise ValueError("all devices must have a name property!")
            if not value.get('category'):
                raise ValueError("category property is required!")
            if not value.get('targets'):
                raise ValueError("devices must have a list of targets defined!")
            if not value.get('userDefines'):
                raise ValueError("devices must have a list of supported user defines!")

            targets = []
            for item in value['targets']:
                if not item.get('name'):
                    raise ValueError("target must have a name property")
                flashing_method = _parse_enum(FlashingMethod, item.get('flashingMethod'))
                if flashing_method is None:
                    raise ValueError(
                        f"error parsing target \"{item['name']}\": \"{item.get('flashingMethod')}\" "
                        "is not a valid flashing method"
                    )
                targets.append(DeviceTarget(name=item['name'], flashing_method=flashing_method))

            user_defines = []
            for key in value['userDefines']:
                if not isinstance(key, str) or key not in KNOWN_USER_DEFINE_KEYS:
                    raise ValueError(f"\"{key}\" is not a valid User Define")
                user_defines.append(key)

            device_type = _parse_enum(DeviceType, value.get('deviceType'))
            if device_type is None:
                raise ValueError(f"\"{value.get('deviceType')}\" is not a valid device type")

            return Device(
                id=name,
                name=name,
                category=value['category'],
                device_type=device_type,
                targets=targets,
                user_defines=user_defines,
                wiki_url=value.get('wikiUrl'),
            )
        except (ValueError, AttributeError, TypeError) as e:
            message = (f"Issue encountered while parsing device \"{name}\" in the device "
                       f"configuration file {self.devices_file.name}: {e}")
            logger.error(message)
            raise DeviceCatalogError(message, device_name=name) from e

    def get_devices(self) -> List[Device]:
        return list(self.devices)

    def find_device_by_target(self, target_name: str) -> Optional[Device]:
        for device in self.devices:
            if any(target.name == target_name for target in device.targets):
                return device
        return None

    def find_target(self, target_name: str) -> Optional[DeviceTarget]:
        device = self.find_device_by_target(target_name)
        if device is None:
            return None
        return next(target for target in device.targets if target.name == target_name)
