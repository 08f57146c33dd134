from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .config import RateLimitSettings
from .models import SourceType

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class RateLimiter:
    """Leaky bucket with a capacity of one call per ``interval`` seconds.

    ``clock`` and ``sleep`` are injectable so tests can drive time by hand.
    Concurrent waiters are served one at a time, in arrival order.
    """

    def __init__(
        self,
        interval: float,
        *,
        name: str = "",
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def delay_needed(self) -> float:
        if self._last is None:
            return 0.0
        elapsed = self._clock() - self._last
        return max(0.0, self.interval - elapsed)

    async def acquire(self) -> float:
        """Wait until the next call is allowed and return how long we waited."""
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        async with self._lock:
            wait = self.delay_needed()
            if wait > 0:
                logger.debug("Rate limiting %s for %.3fs", self.name or "source", wait)
                await self._sleep(wait)
            self._last = self._clock()
            return wait

    def reset(self) -> None:
        self._last = None


def build_limiters(
    settings: RateLimitSettings,
    *,
    clock: Clock = time.monotonic,
    sleep: Sleeper = asyncio.sleep,
) -> dict[SourceType, RateLimiter]:
    intervals = {
        SourceType.CATALOG: settings.catalog_seconds,
        SourceType.MARKETPLACE: settings.marketplace_seconds,
        SourceType.FINGERPRINT: settings.fingerprint_seconds,
    }
    return {
        source: RateLimiter(interval, name=source.label, clock=clock, sleep=sleep)
        for source, interval in intervals.items()
    }
