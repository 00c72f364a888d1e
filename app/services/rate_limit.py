"""Minimum-interval pacing for outbound requests."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class MinimumIntervalLimiter:
    """Delay callers so consecutive requests are at least ``interval`` apart.

    Waiters are served one at a time, so concurrent callers are spaced out
    rather than released together once the first gap has elapsed.
    """

    def __init__(
        self,
        interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval < 0:
            raise ValueError("Rate limit interval must not be negative")
        self._interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last_request: float | None = None
        self._lock = asyncio.Lock()
        self.total_wait = 0.0
        self.total_requests = 0

    @property
    def interval(self) -> float:
        return self._interval

    async def acquire(self) -> None:
        """Wait until the next request may be sent and claim the slot."""

        async with self._lock:
            if self._last_request is not None:
                remaining = self._interval - (self._clock() - self._last_request)
                if remaining > 0:
                    logger.debug("Rate limit: delaying request by %.3fs", remaining)
                    self.total_wait += remaining
                    await self._sleep(remaining)
            self._last_request = self._clock()
            self.total_requests += 1
