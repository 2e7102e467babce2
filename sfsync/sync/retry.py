# sfsync/sync/retry.py
import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from sfsync.core.config import settings
from sfsync.core.errors import TransientNetworkError

logger = logging.getLogger(settings.APP_NAME)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for idempotent calls."""
    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.0 # Fraction of the delay added at random, 0 keeps delays deterministic
    retry_on: Tuple[Type[BaseException], ...] = (TransientNetworkError,)
    rng: Callable[[], float] = field(default=random.random, compare=False)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number `attempt` (1-based)."""
        delay = min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += delay * self.jitter * self.rng()
        return delay

    async def call(
        self,
        fn: Callable[[], Awaitable[Any]],
        sleep: Sleep = asyncio.sleep,
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    ) -> Any:
        """Runs `fn`, retrying on `retry_on` errors. The last error propagates."""
        attempt = 1
        while True:
            try:
                return await fn()
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                if on_retry:
                    on_retry(attempt, e, delay)
                await sleep(delay)
                attempt += 1

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.BULK_RETRY_ATTEMPTS,
            initial_delay=settings.BULK_RETRY_INITIAL_DELAY_SECONDS,
            max_delay=settings.BULK_RETRY_MAX_DELAY_SECONDS,
        )


@dataclass(frozen=True)
class PollPolicy:
    """How often job status is read and how long to wait in total."""
    interval: float = 2.0
    backoff: float = 1.0
    max_interval: float = 30.0
    max_wait: float = 600.0

    def next_interval(self, current: float) -> float:
        return min(current * self.backoff, self.max_interval)

    @classmethod
    def from_settings(cls) -> "PollPolicy":
        return cls(
            interval=settings.BULK_POLL_INTERVAL_SECONDS,
            backoff=settings.BULK_POLL_BACKOFF,
            max_interval=settings.BULK_POLL_MAX_INTERVAL_SECONDS,
            max_wait=settings.BULK_MAX_POLL_WAIT_SECONDS,
        )
