"""Upstream fetching with rate limiting and retry handling."""

from .errors import AhaAPIError, AhaError, AhaGraphQLError, ConfigurationError
from .rate_limiter import RateLimiter, TokenBucket

__all__ = [
    "AhaAPIError",
    "AhaError",
    "AhaGraphQLError",
    "ConfigurationError",
    "RateLimiter",
    "TokenBucket",
]
