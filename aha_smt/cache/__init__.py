"""Volatile response cache for upstream API calls."""

from .keys import get_cache_key
from .ttl_cache import MISS, TTLCache

__all__ = ["MISS", "TTLCache", "get_cache_key"]
