"""In-memory sliding-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: prune, check and record happen under one lock.
- Windows are never evicted wholesale; a key whose timestamps have all aged
  out is dropped the next time that key is checked.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult


class InMemorySlidingWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter counting requests over a trailing window per key.

    Unlike a fixed window, the boundary moves with time (``now - window``), so
    a burst at the end of one wall-clock minute cannot be followed by a second
    burst at the start of the next.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            limit: Maximum number of requests per trailing window.
            window_seconds: Length of the trailing window in seconds.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If limit or window_seconds are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._windows: dict[str, deque[float]] = {}

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._windows)

    def _prune(self, window: deque[float], now: float) -> None:
        # Timestamps are appended in order, so expired ones sit at the left
        cutoff = now - self._window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Admit ``cost`` requests for ``key`` if the trailing window allows it.

        Rejected requests are not recorded, so a client hammering the API while
        throttled does not extend its own penalty.

        Args:
            key: Unique identifier for rate limiting (e.g. client address).
            cost: Units to consume (default 1).

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty or cost is invalid.
        """
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is not None:
                self._prune(window, now)
                if not window:
                    del self._windows[key]
                    window = None

            used = len(window) if window is not None else 0

            if used + cost <= self._limit:
                if window is None:
                    window = deque()
                    self._windows[key] = window
                window.extend([now] * cost)
                return RateLimitResult(
                    allowed=True,
                    limit=self._limit,
                    remaining=self._limit - len(window),
                    reset_at=int(math.ceil(window[0] + self._window_seconds)),
                    retry_after_seconds=None,
                )

            oldest = window[0] if window else now
            reset_at = oldest + self._window_seconds
            return RateLimitResult(
                allowed=False,
                limit=self._limit,
                remaining=max(0, self._limit - used),
                reset_at=int(math.ceil(reset_at)),
                retry_after_seconds=max(1, int(math.ceil(reset_at - now))),
            )
