"""Sliding-window limiter keyed by caller identity."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque


class RateLimitExceeded(ValueError):
    """Raised when a caller used up its attempts for the current window."""

    def __init__(self, message: str, retry_after_seconds: float) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class SlidingWindowLimiter:
    def __init__(
        self,
        max_attempts: int,
        window_seconds: float,
        *,
        message: str = "too many requests, please try again later",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self._max_attempts = max_attempts
        self._window = timedelta(seconds=window_seconds)
        self._message = message
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._hits: dict[str, Deque[datetime]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def hit(self, key: str) -> None:
        async with self._lock:
            now = self._clock()
            hits = self._hits[key]
            while hits and hits[0] <= now - self._window:
                hits.popleft()
            if len(hits) >= self._max_attempts:
                retry_after = (hits[0] + self._window - now).total_seconds()
                raise RateLimitExceeded(self._message, max(retry_after, 0.0))
            hits.append(now)
