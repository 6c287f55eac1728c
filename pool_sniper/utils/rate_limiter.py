"""
Token bucket used by the HTTP clients that talk to rate-limited public
APIs (Jupiter, Birdeye).
"""

import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    `rate` requests per second on average, bursts of up to `capacity`.

    Waiters are served one at a time so concurrent monitors polling the
    price API queue up instead of all sleeping and then bursting together.
    """

    def __init__(self, rate: float = 5.0, capacity: int = 10, clock: Callable[[], float] = time.monotonic):
        if rate <= 0 or capacity < 1:
            raise ValueError("rate must be > 0 and capacity >= 1")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._tokens = float(capacity)
        self._stamp = clock()
        self._lock = asyncio.Lock()

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self) -> float:
        """Take one token, sleeping until one is free. Returns seconds waited."""
        async with self._lock:
            self._refill()
            wait = 0.0
            if self._tokens < 1.0:
                wait = (1.0 - self._tokens) / self.rate
                logger.debug("Rate limited, waiting %.2fs", wait)
                await asyncio.sleep(wait)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1.0)
            return wait

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(float(self.capacity), self._tokens + (now - self._stamp) * self.rate)
        self._stamp = now
