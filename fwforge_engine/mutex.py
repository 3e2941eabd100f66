import threading

from .errors import MutexNotLockedError


class Mutex:
    """Non-blocking single-holder guard.

    try_lock() never waits: a caller that loses the race is told so
    immediately and is expected to report "busy" rather than queue.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def try_lock(self) -> bool:
        return self._lock.acquire(blocking=False)

    def unlock(self):
        if not self._lock.locked():
            raise MutexNotLockedError("unlock() called on a mutex that is not locked")
        self._lock.release()

    def is_locked(self) -> bool:
        return self._lock.locked()
