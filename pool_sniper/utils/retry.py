"""
Retry and circuit breaking for calls to external services.

`async_retry` backs off between attempts on RPC reads and, when asked,
re-raises the final error as DataUnavailable so callers only deal with the
engine's own exception types. `CircuitBreaker` stops the swap router from
hammering an aggregator that keeps failing.
"""

import asyncio
import logging
import time
from enum import Enum
from functools import wraps
from typing import Any, Callable, Optional, Type

from ..exceptions import BotException

logger = logging.getLogger(__name__)


def async_retry(
    max_attempts: int = 3,
    delay: float = 0.5,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,),
    wrap_as: Optional[Type[BotException]] = None,
):
    """
    Retry an async call with exponential backoff.

    BotExceptions raised by the call are treated as final and never retried.
    If `wrap_as` is given, the last error is re-raised as that type.

    Example:
        @async_retry(max_attempts=3, wrap_as=DataUnavailable)
        async def get_mint_info(self, mint): ...
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            wait = delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except BotException:
                    raise
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.warning("%s gave up after %d attempts: %s", func.__name__, attempt, e)
                        if wrap_as is not None:
                            raise wrap_as(f"{func.__name__} failed: {e}", attempts=attempt) from e
                        raise
                    logger.debug("%s failed (%s), retry %d in %.1fs", func.__name__, e, attempt, wait)
                    await asyncio.sleep(wait)
                    wait *= backoff

        return wrapper
    return decorator


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Blocks calls for `recovery_timeout` seconds after `failure_threshold`
    consecutive failures, then lets a single probe through (HALF_OPEN).
    One more failure while half open re-opens it immediately.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 60.0,
        name: str = "default",
        clock: Callable[[], float] = time.time,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self._clock = clock
        self.failures = 0
        self.opened_at = 0.0
        self.state = BreakerState.CLOSED

    def record_success(self) -> None:
        if self.state != BreakerState.CLOSED:
            logger.info("Circuit '%s' closed again", self.name)
        self.failures = 0
        self.state = BreakerState.CLOSED

    def record_failure(self) -> None:
        self.failures += 1
        if self.state == BreakerState.HALF_OPEN or (
            self.state == BreakerState.CLOSED and self.failures >= self.failure_threshold
        ):
            self.state = BreakerState.OPEN
            self.opened_at = self._clock()
            logger.warning(
                "Circuit '%s' open for %.0fs after %d failures",
                self.name, self.recovery_timeout, self.failures,
            )

    def can_execute(self) -> bool:
        if self.state == BreakerState.OPEN:
            if self._clock() - self.opened_at < self.recovery_timeout:
                return False
            self.state = BreakerState.HALF_OPEN
            logger.info("Circuit '%s' half open, probing", self.name)
        return True
