"""
Sliding-window rate limiter for a single upstream API.

Tracks the timestamps of admitted requests over a trailing window and
computes how long the next caller must wait so that:
- no more than `quota` requests fall inside any window of `window` seconds
- consecutive requests are at least `min_interval` seconds apart (burst protection)

One instance per throttled upstream; it is passed to the HTTP client rather
than living in module state, so tests and separate upstreams stay isolated.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

WARN_UTILIZATION = 0.9


@dataclass
class RateWindow:
    """Admitted request timestamps, oldest first."""

    timestamps: Deque[float] = field(default_factory=deque)
    last_request_time: Optional[float] = None

    def purge(self, cutoff: float) -> None:
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def record(self, ts: float) -> None:
        self.timestamps.append(ts)
        self.last_request_time = ts

    def __len__(self) -> int:
        return len(self.timestamps)


class RateLimiter:
    def __init__(
        self,
        quota: int = 200,
        window: float = 3600.0,
        min_interval: float = 0.005,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if quota <= 0:
            raise ValueError("quota must be positive")
        self.quota = quota
        self.window = window
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._state = RateWindow()
        self._lock = asyncio.Lock()

    def _required_delay(self, now: float) -> float:
        """Seconds the next request must wait. Expects a purged window.

        A positive wait is never below one ulp of `now`, so a float clock
        always moves past the boundary it waits for.
        """
        state = self._state
        if len(state) >= self.quota:
            oldest = state.timestamps[0]
            return max(oldest + self.window - now, self.min_interval, math.ulp(now))

        if state.last_request_time is None:
            return 0.0
        since_last = now - state.last_request_time
        if since_last < self.min_interval:
            return max(self.min_interval - since_last, math.ulp(now))
        return 0.0

    async def admit(self) -> float:
        """Wait until a request may be issued, then record it.

        The check, the wait and the recording happen under one lock, so
        concurrent callers are admitted one at a time. The window is checked
        again after every sleep and the request is recorded only once it has
        room. Returns the total delay applied.
        """
        async with self._lock:
            waited = 0.0
            while True:
                now = self._clock()
                self._state.purge(now - self.window)
                delay = self._required_delay(now)
                if delay <= 0:
                    break
                logger.debug("Rate limiter delaying request by %.3fs", delay)
                await self._sleep(delay)
                waited += delay

            self._state.record(now)

            in_window = len(self._state)
            if in_window >= self.quota * WARN_UTILIZATION:
                logger.warning(
                    "Approaching rate limit: %s/%s requests in the last %ss",
                    in_window,
                    self.quota,
                    int(self.window),
                )
            return waited

    def in_window(self) -> int:
        """Admitted requests still inside the trailing window. Does not purge."""
        cutoff = self._clock() - self.window
        return sum(1 for ts in self._state.timestamps if ts > cutoff)
