import threading
from enum import Enum
from typing import Any, Callable, Dict, List

from .logger_setup import logger


class PubSubTopic(Enum):
    BUILD_PROGRESS_NOTIFICATION = "BUILD_PROGRESS_NOTIFICATION"
    BUILD_LOGS_UPDATE = "BUILD_LOGS_UPDATE"
    MULTICAST_DNS_MONITOR_UPDATES = "MULTICAST_DNS_MONITOR_UPDATES"


class Subscription:
    def __init__(self, pubsub: 'PubSub', topic: PubSubTopic, callback: Callable[[Any], None]):
        self.pubsub = pubsub
        self.topic = topic
        self.callback = callback

    def unsubscribe(self):
        self.pubsub.unsubscribe(self)


class PubSub:
    """In-process event bus.

    publish() delivers synchronously, on the publishing thread, to the
    subscribers registered at the time of the call. Nothing is buffered, so a
    subscriber never sees events published before it subscribed.
    """

    def __init__(self):
        self._subscribers: Dict[PubSubTopic, List[Subscription]] = {}
        self._lock = threading.Lock()
        self.logger = logger

    def subscribe(self, topic: PubSubTopic, callback: Callable[[Any], None]) -> Subscription:
        subscription = Subscription(self, topic, callback)
        with self._lock:
            self._subscribers.setdefault(topic, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscribers.get(subscription.topic, [])
            if subscription in subscribers:
                subscribers.remove(subscription)

    def publish(self, topic: PubSubTopic, payload: Any):
        with self._lock:
            # Snapshot so callbacks may (un)subscribe without deadlocking
            subscribers = list(self._subscribers.get(topic, []))

        for subscription in subscribers:
            try:
                subscription.callback(payload)
            except Exception as e:
                self.logger.error(f"Subscriber for {topic.value} raised: {e}", exc_info=True)

    def subscriber_count(self, topic: PubSubTopic) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))
