"""Retry policy with exponential backoff and jitter."""

import random
from typing import FrozenSet, Iterable, Optional


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    jitter_max: float = 0.5
) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Formula: min(max_delay, (base_delay * (2 ** attempt)) + random_jitter)

    Args:
        attempt: Retry attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter_max: Maximum jitter to add in seconds

    Returns:
        Delay in seconds
    """
    exponential_delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0, jitter_max)
    return min(max_delay, exponential_delay + jitter)


class RetryPolicy:
    """
    Decides which upstream failures are retried and how long to back off.

    Retries on: 429, 502, 503, 504 status codes and timeouts
    Max retries: 3 (configurable)
    Backoff: Exponential with jitter, capped at 4 seconds
    """

    DEFAULT_RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({429, 502, 503, 504})

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 4.0,
        jitter_max: float = 0.5,
        retryable_status_codes: Optional[Iterable[int]] = None,
    ):
        """
        Initialize retry policy.

        Args:
            max_retries: Retries allowed after the first attempt
            base_delay: Base delay for exponential backoff
            max_delay: Maximum delay cap
            jitter_max: Maximum jitter to add
            retryable_status_codes: HTTP status codes that trigger retries
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_max = jitter_max
        self.retryable_status_codes = frozenset(
            retryable_status_codes or self.DEFAULT_RETRYABLE_STATUS_CODES
        )

    def is_retryable(
        self,
        status_code: Optional[int] = None,
        is_timeout: bool = False
    ) -> bool:
        """
        Check if error is retryable.

        Args:
            status_code: HTTP status code
            is_timeout: Whether the error was a timeout

        Returns:
            True if error should be retried
        """
        if is_timeout:
            return True
        return status_code in self.retryable_status_codes

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after ``attempt`` (0-indexed) failed."""
        return attempt < self.max_retries

    def backoff(self, attempt: int) -> float:
        """Delay in seconds before retrying after ``attempt`` failed."""
        return calculate_backoff_delay(
            attempt,
            self.base_delay,
            self.max_delay,
            self.jitter_max
        )
