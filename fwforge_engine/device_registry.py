import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .logger_setup import logger
from .models import MulticastDnsInformation
from .pubsub import PubSub, PubSubTopic, Subscription


class MulticastDnsEventType(Enum):
    DEVICE_ADDED = "DeviceAdded"
    DEVICE_UPDATED = "DeviceUpdated"
    DEVICE_REMOVED = "DeviceRemoved"


@dataclass(frozen=True)
class MulticastDnsMonitorUpdate:
    type: MulticastDnsEventType
    data: MulticastDnsInformation


class DiscoveredDeviceRegistry:
    """Live view of network devices, keyed by name.

    The mapping is only changed through apply(), one event at a time, in the
    order events arrive. Readers always get copies.
    """

    def __init__(self, initial: Optional[List[MulticastDnsInformation]] = None):
        self._devices: Dict[str, MulticastDnsInformation] = {}
        self._new_devices: List[MulticastDnsInformation] = []
        self._lock = threading.Lock()
        self._subscription: Optional[Subscription] = None
        for item in initial or []:
            self._devices[item.name] = item

    def attach(self, pubsub: PubSub):
        self.detach()
        self._subscription = pubsub.subscribe(PubSubTopic.MULTICAST_DNS_MONITOR_UPDATES, self.apply)

    def detach(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def apply(self, update: MulticastDnsMonitorUpdate):
        with self._lock:
            name = update.data.name
            if update.type is MulticastDnsEventType.DEVICE_ADDED:
                self._devices[name] = update.data
                self._new_devices.append(update.data)
            elif update.type is MulticastDnsEventType.DEVICE_UPDATED:
                self._devices[name] = update.data
            elif update.type is MulticastDnsEventType.DEVICE_REMOVED:
                self._devices.pop(name, None)
            else:
                logger.warning(f"Ignoring unknown multicast DNS event type: {update.type}")

    def get(self, name: str) -> Optional[MulticastDnsInformation]:
        with self._lock:
            return self._devices.get(name)

    def snapshot(self) -> Dict[str, MulticastDnsInformation]:
        with self._lock:
            return dict(self._devices)

    def new_devices(self) -> List[MulticastDnsInformation]:
        """Devices announced as added since the registry was created, in arrival order."""
        with self._lock:
            return list(self._new_devices)
