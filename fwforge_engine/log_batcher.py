import threading
from typing import Callable, List, Optional

from .logger_setup import logger

DEFAULT_BATCH_INTERVAL = 0.2  # seconds


class EventsBatcher:
    """Coalesces small output chunks into periodic batches.

    Chunks are kept whole and in enqueue order; each one ends up in exactly
    one batch. The timer thread only runs between start() and stop(); flush()
    can be called at any time.
    """

    def __init__(self, interval: float = DEFAULT_BATCH_INTERVAL):
        if interval <= 0:
            raise ValueError(f"batch interval must be positive, got {interval}")
        self.interval = interval
        self._buffer: List[str] = []
        self._handlers: List[Callable[[List[str]], None]] = []
        self._buffer_lock = threading.Lock()
        # Serializes flushes so batches are delivered in the order they were cut
        self._flush_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = logger

    def on_batch(self, handler: Callable[[List[str]], None]):
        self._handlers.append(handler)

    def enqueue(self, chunk: str):
        with self._buffer_lock:
            self._buffer.append(chunk)

    def flush(self):
        with self._flush_lock:
            with self._buffer_lock:
                if not self._buffer:
                    return
                batch, self._buffer = self._buffer, []
            for handler in self._handlers:
                try:
                    handler(batch)
                except Exception as e:
                    self.logger.error(f"Batch handler raised: {e}", exc_info=True)

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="events-batcher", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.flush()

    def _run(self):
        while not self._stop_event.wait(self.interval):
            self.flush()
