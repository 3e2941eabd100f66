import threading

import pytest

from fwforge_engine.errors import MutexNotLockedError
from fwforge_engine.mutex import Mutex


def test_try_lock_succeeds_once() -> None:
    mutex = Mutex()

    assert mutex.try_lock() is True
    assert mutex.try_lock() is False
    assert mutex.is_locked() is True

    mutex.unlock()
    assert mutex.is_locked() is False
    assert mutex.try_lock() is True


def test_unlock_without_holder_raises() -> None:
    mutex = Mutex()

    with pytest.raises(MutexNotLockedError):
        mutex.unlock()


def test_only_one_thread_wins_the_race() -> None:
    mutex = Mutex()
    barrier = threading.Barrier(8)
    wins = []

    def contend():
        barrier.wait()
        if mutex.try_lock():
            wins.append(threading.current_thread().name)

    threads = [threading.Thread(target=contend) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(wins) == 1
