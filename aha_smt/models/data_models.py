"""Core data models for the request-acceleration layer."""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class CacheEntry:
    """A cached upstream payload with its freshness window."""
    value: Any
    expires_at: float  # fresh while now < expires_at
    stale_until: float  # purged once now >= stale_until


@dataclass
class StaleRead:
    """Result of a stale-tolerant cache read."""
    value: Any
    is_stale: bool


@dataclass
class CacheStats:
    """Counters kept by the TTL cache."""
    hits: int = 0
    stale_hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        served = self.hits + self.stale_hits
        total = served + self.misses
        return served / total if total else 0.0


@dataclass
class Pagination:
    """Pagination block returned by list endpoints."""
    total_records: int
    total_pages: int
    current_page: int
    per_page: int


@dataclass
class FeaturesPage:
    """A single page of features for paginated views."""
    features: List[Dict[str, Any]] = field(default_factory=list)
    pagination: Pagination = None
