"""Rate limiter implementation using token bucket algorithm."""

import asyncio
import time
from typing import Any, Awaitable, Callable, List, Optional


class TokenBucket:
    """Token bucket gating outbound calls to the upstream API.

    Holds up to ``capacity`` tokens refilled continuously at ``refill_rate``
    tokens per second. Refill is computed lazily from elapsed time on every
    acquisition attempt; there is no background timer.

    Waiters are released in arrival order: a caller that has to wait for a
    refill holds the bucket's lock while sleeping, and ``asyncio.Lock``
    wakes queued acquirers FIFO.
    """

    def __init__(
        self,
        capacity: int = 20,
        refill_rate: float = 20.0,
        now: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        min_sleep: float = 0.001,
        logger: Optional['StructuredLogger'] = None,
    ):
        """Initialize a full bucket.

        Args:
            capacity: Maximum tokens in bucket, i.e. burst size (default: 20)
            refill_rate: Tokens added per second (default: 20.0)
            now: Clock function for time operations (default: time.monotonic)
            sleeper: Async sleep function (default: asyncio.sleep)
            min_sleep: Lower bound on a single wait step in seconds
            logger: Optional structured logger for telemetry
        """
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got: {capacity}")
        if refill_rate <= 0:
            raise ValueError(f"refill_rate must be positive, got: {refill_rate}")

        self.capacity = capacity
        self.refill_rate = refill_rate
        self.min_sleep = min_sleep
        self.logger = logger
        self._now = now
        self._sleep = sleeper
        self._lock = asyncio.Lock()

        self._tokens = float(capacity)
        self._last_refill = now()

    async def acquire(self) -> None:
        """Take one token, waiting for a refill if the bucket is empty.

        Never fails; only delays. Returns without suspending when a token is
        available and nobody is queued ahead. Cancelling a waiting caller
        leaves the bucket untouched.
        """
        async with self._lock:
            while not self._take():
                await self._wait(self.time_until_available())

    def try_acquire(self) -> bool:
        """Take one token if one is available right now.

        Returns:
            True if a token was consumed, False if the bucket is empty or
            other callers are already queued
        """
        if self._lock.locked():
            return False
        return self._take()

    def time_until_available(self) -> float:
        """Seconds until at least one token will be in the bucket."""
        self._refill()
        if self._tokens >= 1.0:
            return 0.0
        return (1.0 - self._tokens) / self.refill_rate

    def tokens_available(self) -> int:
        """Get the number of whole tokens currently available.

        Used for monitoring and testing purposes.
        """
        self._refill()
        return int(self._tokens)

    def reset(self) -> None:
        """Refill the bucket to capacity (test isolation hook)."""
        self._tokens = float(self.capacity)
        self._last_refill = self._now()

    def _take(self) -> bool:
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    def _refill(self) -> None:
        """Add tokens for the time elapsed since the last refill, capped at capacity."""
        current_time = self._now()
        elapsed = max(0.0, current_time - self._last_refill)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_rate)
        self._last_refill = current_time

    async def _wait(self, seconds: float) -> None:
        delay = max(seconds, self.min_sleep)
        if self.logger:
            self.logger.rate_limit_wait(delay * 1000)
        await self._sleep(delay)


class RateLimiter:
    """Gate calls on several token buckets at once.

    The upstream enforces both a per-second burst limit and a per-minute
    sustained limit; a call proceeds only when every bucket can spare a
    token, and it then takes one from each.
    """

    def __init__(
        self,
        *buckets: TokenBucket,
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        min_sleep: float = 0.001,
        logger: Optional['StructuredLogger'] = None,
    ):
        if not buckets:
            raise ValueError("RateLimiter needs at least one bucket")
        self.buckets: List[TokenBucket] = list(buckets)
        self.min_sleep = min_sleep
        self.logger = logger
        self._sleep = sleeper
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: 'AhaConfig',
        logger: Optional['StructuredLogger'] = None,
    ) -> "RateLimiter":
        """Build burst and (optionally) sustained buckets from configuration."""
        buckets = [
            TokenBucket(
                capacity=config.rate_limit_burst,
                refill_rate=config.rate_limit_refill_per_second,
            )
        ]
        if config.rate_limit_sustained > 0:
            buckets.append(
                TokenBucket(
                    capacity=config.rate_limit_sustained,
                    refill_rate=config.rate_limit_sustained_per_second,
                )
            )
        return cls(*buckets, logger=logger)

    async def acquire(self) -> None:
        """Take one token from every bucket, waiting until all can spare one."""
        async with self._lock:
            while True:
                wait = max(bucket.time_until_available() for bucket in self.buckets)
                if wait <= 0:
                    for bucket in self.buckets:
                        bucket._take()
                    return

                delay = max(wait, self.min_sleep)
                if self.logger:
                    self.logger.rate_limit_wait(delay * 1000)
                await self._sleep(delay)

    def tokens_available(self) -> int:
        """Whole calls that could proceed right now without waiting."""
        return min(bucket.tokens_available() for bucket in self.buckets)

    def reset(self) -> None:
        """Refill every bucket to capacity (test isolation hook)."""
        for bucket in self.buckets:
            bucket.reset()
