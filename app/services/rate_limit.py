from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

LOGGER = logging.getLogger(__name__)

_PRUNE_THRESHOLD = 1024


@dataclass
class _Window:
    started_at: float
    window_seconds: int
    count: int = 0

    def expired(self, now: float) -> bool:
        return now >= self.started_at + self.window_seconds


class RateLimiter:
    """Fixed-window request counter kept in process memory.

    Every allowed call counts as one hit for each of its keys; once
    ``max_requests`` hits have landed in the current window further hits are
    rejected until the window rolls over. Rejected calls are not counted.
    """

    def __init__(self, time_func: Callable[[], float] = time.monotonic) -> None:
        self._time = time_func
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def allow_request(self, key: str, max_requests: int, window_seconds: int) -> bool:
        return self.first_blocked([key], max_requests, window_seconds) is None

    def first_blocked(
        self, keys: Sequence[str], max_requests: int, window_seconds: int
    ) -> Optional[str]:
        """Count one hit against every key, or none if any key is exhausted.

        Returns the first exhausted key, or ``None`` when the hit was recorded.
        """
        with self._lock:
            now = self._time()
            if len(self._windows) > _PRUNE_THRESHOLD:
                self._prune(now)
            windows = []
            for key in keys:
                window = self._windows.get(key)
                if window is None or window.expired(now):
                    window = _Window(started_at=now, window_seconds=window_seconds)
                    self._windows[key] = window
                if window.count >= max_requests:
                    LOGGER.info("Rate limit hit key=%s count=%s", key, window.count)
                    return key
                windows.append(window)
            for window in windows:
                window.count += 1
            return None

    def retry_after(self, key: str) -> int:
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return 0
            remaining = window.started_at + window.window_seconds - self._time()
            return max(0, math.ceil(remaining))

    def _prune(self, now: float) -> None:
        stale = [key for key, window in self._windows.items() if window.expired(now)]
        for key in stale:
            del self._windows[key]
