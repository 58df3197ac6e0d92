"""Unit tests for TokenBucket against the real event loop clock."""

import asyncio
import time

import pytest

from aha_smt.fetcher.rate_limiter import TokenBucket


class TestTokenBucket:

    @pytest.fixture
    def bucket(self):
        return TokenBucket(capacity=20, refill_rate=10.0)

    def test_initialization(self, bucket):
        assert bucket.capacity == 20
        assert bucket.refill_rate == 10.0
        assert bucket.tokens_available() == 20

    @pytest.mark.asyncio
    async def test_acquire_consumes_token(self, bucket):
        await bucket.acquire()
        assert bucket.tokens_available() == 19

    @pytest.mark.asyncio
    async def test_full_burst_resolves_without_delay(self, bucket):
        start = time.monotonic()

        await asyncio.gather(*(bucket.acquire() for _ in range(20)))

        assert time.monotonic() - start < 0.05

    @pytest.mark.asyncio
    async def test_one_past_burst_waits_for_refill(self, bucket):
        start = time.monotonic()

        async def acquire():
            await bucket.acquire()
            return time.monotonic() - start

        latencies = sorted(await asyncio.gather(*(acquire() for _ in range(21))))

        assert latencies[19] < 0.05
        # 1 / refill_rate = 0.1s
        assert latencies[20] >= 0.09

    @pytest.mark.asyncio
    async def test_blocks_when_exhausted(self, bucket):
        for _ in range(20):
            await bucket.acquire()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(bucket.acquire(), timeout=0.05)

    @pytest.mark.asyncio
    async def test_refills_over_time(self, bucket):
        for _ in range(20):
            await bucket.acquire()

        await asyncio.sleep(0.25)

        assert bucket.tokens_available() >= 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_bucket_consistent(self):
        bucket = TokenBucket(capacity=1, refill_rate=10.0)
        await bucket.acquire()

        waiter = asyncio.create_task(bucket.acquire())
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        # The cancelled caller took nothing and released its place in line
        await asyncio.wait_for(bucket.acquire(), timeout=1.0)
        assert bucket.tokens_available() == 0

    @pytest.mark.asyncio
    async def test_enforces_rate_limit(self):
        bucket = TokenBucket(capacity=5, refill_rate=10.0)
        start = time.monotonic()

        # 5 immediate + 5 at 10/sec should take ~0.5 seconds
        for _ in range(10):
            await bucket.acquire()

        assert time.monotonic() - start >= 0.45
