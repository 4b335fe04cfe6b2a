import asyncio
import time
from typing import Awaitable, Callable, Optional

from market_tracker.core.logger import logger

class RateLimiter:
    """
    Paces requests to at most `rate_per_second`.
    Owned by one job invocation and handed to the REST client; never shared across runs.
    The n-th request (0-based) is scheduled no earlier than n / rate seconds after the
    first, and consecutive requests are at least 1 / rate seconds apart.
    """

    def __init__(
        self,
        rate_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        self.rate = rate_per_second
        self.delay = 1.0 / rate_per_second
        self._clock = clock
        self._sleep = sleep
        self.start_time: Optional[float] = None
        self.request_count = 0
        self._next_slot = 0.0

    async def acquire(self):
        now = self._clock()
        if self.start_time is None:
            self.start_time = now
            self._next_slot = now

        # Reserve synchronously so concurrent callers get distinct slots
        slot = max(now, self._next_slot)
        self._next_slot = slot + self.delay
        self.request_count += 1

        wait = slot - now
        if wait > 0:
            logger.debug(f"Rate limiting: waiting {wait * 1000:.0f}ms before request {self.request_count}")
            await self._sleep(wait)
