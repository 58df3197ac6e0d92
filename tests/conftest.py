"""Pytest configuration and shared fixtures."""

import random

import pytest


class FakeClock:
    """Fake clock for deterministic time testing."""

    def __init__(self, initial_time: float = 0.0):
        self.t = initial_time

    def now(self) -> float:
        """Get current fake time."""
        return self.t

    async def sleep(self, dt: float) -> None:
        """Advance fake time by dt seconds."""
        self.t += dt


@pytest.fixture(scope="session")
def deterministic_seed():
    """Set a fixed random seed for deterministic test results."""
    random.seed(42)
    return 42


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sample_config():
    """Provide a sample configuration pointed at a fake upstream."""
    from aha_smt.models.config import AhaConfig

    return AhaConfig(
        aha_domain="acme",
        aha_api_token="test-token",
        cache_ttl_seconds=60.0,
        cache_stale_multiplier=1.0,
        rate_limit_burst=20,
        rate_limit_refill_per_second=20.0,
        rate_limit_sustained=0,
        max_retries=2,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        retry_jitter_max=0.0,
    )
