"""Exceptions raised by the upstream client layer."""

from typing import Any, Dict, Optional


class AhaError(Exception):
    """Base exception for upstream client failures."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class AhaAPIError(AhaError):
    """Upstream REST call returned a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", url: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(
            "UPSTREAM_HTTP_ERROR",
            f"Aha API error {status_code}: {body}",
            {"status_code": status_code, "url": url},
        )


class AhaGraphQLError(AhaError):
    """GraphQL response carried errors or no data."""

    def __init__(self, message: str):
        super().__init__("UPSTREAM_GRAPHQL_ERROR", f"Aha GraphQL error: {message}")


class ConfigurationError(AhaError):
    """Configuration is missing or invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)
