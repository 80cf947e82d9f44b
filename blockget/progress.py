# blockget/progress.py
"""
Throughput sampling for a running transfer.

Workers bump a shared ByteCounter; a background thread samples it once per
interval and reports the delta. Reads are eventually consistent and are only
used for display.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ByteCounter:
    """Thread-safe monotonically increasing byte count."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def add(self, amount: int) -> int:
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        return self._value


class ProgressMonitor:
    """Background thread that reports transferred bytes and speed every interval."""

    def __init__(self, counter: ByteCounter, total_size: int,
                 progress_callback: Optional[Callable[[int, int, float], None]] = None,
                 interval: float = 1.0):
        self.counter = counter
        self.total_size = total_size
        self.progress_callback = progress_callback
        self.interval = interval

        self.last_downloaded = counter.value
        self.last_time = time.monotonic()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._thread = threading.Thread(target=self._run, name="blockget-progress", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self):
        while not self._stop_event.wait(self.interval):
            self.sample()
            if self.counter.value >= self.total_size:
                return

    def sample(self) -> float:
        """Take one reading and notify the progress callback. Returns the instantaneous speed."""
        current_time = time.monotonic()
        downloaded = self.counter.value
        elapsed = current_time - self.last_time
        speed = (downloaded - self.last_downloaded) / elapsed if elapsed > 0 else 0.0

        self.last_downloaded = downloaded
        self.last_time = current_time

        try:
            if self.progress_callback:
                self.progress_callback(downloaded, self.total_size, speed)
        except Exception:
            # display hooks must not stop sampling
            logger.exception("Progress callback failed")
        return speed
