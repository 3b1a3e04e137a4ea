"""Exponentially weighted moving average of a per-second event rate."""

from __future__ import annotations

import threading


class EWMARate:
    """Tracks an exponentially weighted moving average of events per second.

    ``tick`` is expected to be called once every ``interval`` seconds.
    """

    def __init__(self, alpha: float, interval: float) -> None:
        self.alpha = alpha
        self.interval = interval
        self._new_events = 0
        self._last_rate = 0.0
        self._initialised = False
        self._lock = threading.Lock()

    def rate(self) -> float:
        """Return the current per-second rate."""
        with self._lock:
            return self._last_rate

    def tick(self) -> None:
        """Fold the events counted since the last tick into the average."""
        with self._lock:
            events, self._new_events = self._new_events, 0
            instant = events / self.interval
            if self._initialised:
                self._last_rate += self.alpha * (instant - self._last_rate)
            else:
                self._initialised = True
                self._last_rate = instant

    def incr(self, count: int) -> None:
        """Count ``count`` events."""
        with self._lock:
            self._new_events += count