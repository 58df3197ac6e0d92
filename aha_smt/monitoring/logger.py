"""Structured logging for cache, limiter and upstream fetch telemetry."""

import json
import logging
from typing import Optional


class StructuredLogger:
    """Structured logger emitting one JSON object per event."""

    def __init__(self, name: str = "aha_smt", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, level: int = logging.INFO, **kwargs) -> None:
        """
        Log structured event.

        Standard keys: event, key, pattern, removed, method, url, status,
                      attempt, elapsed_ms, wait_ms, error
        """
        log_data = {"event": event, **kwargs}
        self.logger.log(level, json.dumps(log_data, default=str))

    def cache_hit(self, key: str) -> None:
        self.log("cache_hit", level=logging.DEBUG, key=key)

    def cache_miss(self, key: str) -> None:
        self.log("cache_miss", level=logging.DEBUG, key=key)

    def cache_stale(self, key: str) -> None:
        self.log("cache_stale", key=key)

    def cache_invalidate(self, pattern: str, removed: int) -> None:
        self.log("cache_invalidate", pattern=pattern, removed=removed)

    def rate_limit_wait(self, wait_ms: float) -> None:
        self.log("rate_limit_wait", level=logging.DEBUG, wait_ms=round(wait_ms, 2))

    def fetch_start(self, method: str, url: str) -> None:
        self.log("fetch_start", level=logging.DEBUG, method=method, url=url)

    def fetch_success(self, method: str, url: str, elapsed_ms: float) -> None:
        self.log("fetch_success", method=method, url=url, elapsed_ms=round(elapsed_ms, 2))

    def fetch_error(self, method: str, url: str, status: Optional[int], error: str, attempt: int) -> None:
        self.log(
            "fetch_error",
            level=logging.WARNING,
            method=method,
            url=url,
            status=status,
            error=error,
            attempt=attempt,
        )

    def refresh_failed(self, key: str, error: str) -> None:
        self.log("refresh_failed", level=logging.WARNING, key=key, error=error)
