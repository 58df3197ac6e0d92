"""Cache key derivation for upstream requests."""

import json
from typing import Any, Mapping, Optional


def get_cache_key(url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Build a canonical cache key from a URL and its query parameters.

    Parameters are serialized with sorted keys so that equivalent requests
    collide regardless of insertion order. An empty or missing parameter
    mapping yields the URL itself.

    Args:
        url: Base URL or resource path
        params: Query parameters

    Returns:
        Cache key string, e.g. ``/releases/1/features:{"page":"1"}``
    """
    if not params:
        return url
    param_str = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return f"{url}:{param_str}"
