"""Appender used when no remote write endpoint is configured."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable

from .labels import Label

logger = logging.getLogger(__name__)


class AppenderStub:
    """Drops every sample, warning at most once per interval (seconds)."""

    def __init__(self, interval: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._interval = interval
        self._clock = clock
        self._lock = threading.Lock()
        self._last_warning: float | None = None
        self._pending = 0

    def add(self, labels: Iterable[Label], t: int, v: float) -> int:
        """Discard the sample."""
        with self._lock:
            self._pending += 1
            now = self._clock()
            if self._last_warning is None or now - self._last_warning > self._interval:
                logger.warning("No remote_write endpoint defined in promxy")
                self._last_warning = now
        return 0

    def add_fast(self, labels: Iterable[Label], ref: int, t: int, v: float) -> None:
        """Discard the sample; the reference is ignored."""
        self.add(labels, t, v)

    def commit(self) -> None:
        """End the current batch; its samples were already discarded."""
        with self._lock:
            self._pending = 0

    def rollback(self) -> None:
        """Abandon the current batch."""
        with self._lock:
            self._pending = 0