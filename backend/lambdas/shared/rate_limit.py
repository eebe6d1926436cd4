"""
In-memory per-client rate limiting for Lambda handlers.

Counters live for the lifetime of the execution environment in a
``cachetools.TTLCache``: an entry expires one window after it was created and
the least recently seen client is evicted once ``max_clients`` is reached.
"""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from cachetools import TTLCache


@dataclass
class RateLimitEntry:
    window_start: float
    count: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class SlidingWindowRateLimiter:
    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: float,
        max_clients: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_clients = max(1, max_clients)
        self._clock = clock
        self._entries: TTLCache = TTLCache(maxsize=self.max_clients, ttl=window_seconds, timer=clock)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def check(self, key: str) -> RateLimitDecision:
        """Count a request for ``key`` and report whether it is allowed."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None:
                # Inserted once per window so the TTL runs from the window start.
                entry = RateLimitEntry(window_start=now, count=0)
                self._entries[key] = entry

            if entry.count >= self.max_requests:
                remaining_window = self.window_seconds - (now - entry.window_start)
                retry_after = min(math.ceil(self.window_seconds), max(1, math.ceil(remaining_window)))
                return RateLimitDecision(allowed=False, limit=self.max_requests, remaining=0, retry_after=retry_after)

            entry.count += 1
            return RateLimitDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - entry.count,
                retry_after=0,
            )


__all__ = ["RateLimitDecision", "RateLimitEntry", "SlidingWindowRateLimiter"]
