"""
Minimum-interval gates for rate-limited side effects.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class Throttle:
    """
    Lets an action fire at most once per ``min_interval`` seconds.

    An empty history always fires. The check and the timestamp update happen
    under one lock, so two callers can never both win the same window.

    Example:
        alert_gate = Throttle(5.0)
        if alert_gate.try_fire():
            player.play()
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "throttle",
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be non-negative")
        self.min_interval = float(min_interval)
        self.name = name
        self._clock = clock
        self._last_fire: Optional[float] = None
        self._fire_count = 0
        self._lock = threading.Lock()

    @property
    def last_fire(self) -> Optional[float]:
        return self._last_fire

    @property
    def fire_count(self) -> int:
        return self._fire_count

    def try_fire(self, now: Optional[float] = None) -> bool:
        """Fire if the interval has elapsed; returns whether it fired."""
        if now is None:
            now = self._clock()
        with self._lock:
            if not self._is_open(now):
                return False
            self._last_fire = now
            self._fire_count += 1
            return True

    def _is_open(self, now: float) -> bool:
        return self._last_fire is None or now - self._last_fire >= self.min_interval

    def __repr__(self) -> str:
        return (
            f"Throttle(name={self.name!r}, min_interval={self.min_interval}, "
            f"last_fire={self._last_fire})"
        )
