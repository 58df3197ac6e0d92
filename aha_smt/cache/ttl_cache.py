"""In-process TTL cache with lazy expiry and substring invalidation."""

import time
from typing import Any, Callable, Dict, Optional

from aha_smt.models.data_models import CacheEntry, CacheStats, StaleRead


MISS = object()


class TTLCache:
    """
    Volatile key/value cache for upstream responses.

    Entries expire lazily: nothing sweeps in the background, an expired
    entry is dropped the next time it is read, invalidated or cleared.
    Keys embed resource paths, so ``invalidate("/releases/")`` evicts a
    whole resource subtree after a mutation.

    With ``stale_multiplier > 1`` an entry outlives its freshness window
    and stays readable through ``get_stale`` until ``ttl * stale_multiplier``
    has elapsed, which lets the client serve stale data while refreshing.
    """

    def __init__(
        self,
        default_ttl: float = 60.0,
        stale_multiplier: float = 1.0,
        now: Callable[[], float] = time.monotonic,
        logger: Optional['StructuredLogger'] = None,
    ):
        """
        Initialize an empty cache.

        Args:
            default_ttl: TTL in seconds used when ``set`` is called without one
            stale_multiplier: Retention window as a multiple of the TTL (>= 1)
            now: Clock function for time operations (default: time.monotonic)
            logger: Optional structured logger for telemetry
        """
        if stale_multiplier < 1.0:
            raise ValueError(f"stale_multiplier must be >= 1, got: {stale_multiplier}")
        self.default_ttl = default_ttl
        self.stale_multiplier = stale_multiplier
        self._now = now
        self.logger = logger
        self._entries: Dict[str, CacheEntry] = {}
        self._stats = CacheStats()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Return the fresh value stored under ``key``.

        Args:
            key: Cache key
            default: Returned on a miss (pass ``MISS`` to cache falsy values)

        Returns:
            Cached value, or ``default`` if absent or past its TTL
        """
        entry = self._lookup(key)
        if entry is None or self._now() >= entry.expires_at:
            self._stats.misses += 1
            if self.logger:
                self.logger.cache_miss(key)
            return default

        self._stats.hits += 1
        if self.logger:
            self.logger.cache_hit(key)
        return entry.value

    def get_stale(self, key: str) -> Optional[StaleRead]:
        """
        Return the stored value even if past its TTL but still retained.

        Counts as a hit, a stale hit or a miss in ``stats``.

        Args:
            key: Cache key

        Returns:
            StaleRead with the value and whether it is stale, or None
        """
        entry = self._lookup(key)
        if entry is None:
            self._stats.misses += 1
            if self.logger:
                self.logger.cache_miss(key)
            return None

        is_stale = self._now() >= entry.expires_at
        if is_stale:
            self._stats.stale_hits += 1
            if self.logger:
                self.logger.cache_stale(key)
        else:
            self._stats.hits += 1
            if self.logger:
                self.logger.cache_hit(key)
        return StaleRead(value=entry.value, is_stale=is_stale)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store ``value`` under ``key``, replacing any previous entry.

        A non-positive TTL means "do not cache": the key is dropped instead.

        Args:
            key: Cache key
            value: Payload to store
            ttl: Time-to-live in seconds (default: ``default_ttl``)
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            self._entries.pop(key, None)
            return

        now = self._now()
        self._entries[key] = CacheEntry(
            value=value,
            expires_at=now + ttl,
            stale_until=now + ttl * self.stale_multiplier,
        )
        self._stats.sets += 1

    def invalidate(self, pattern: str) -> int:
        """
        Remove every entry whose key contains ``pattern``.

        Args:
            pattern: Substring to match against keys

        Returns:
            Number of entries removed
        """
        doomed = [key for key in self._entries if pattern in key]
        for key in doomed:
            del self._entries[key]

        self._stats.invalidations += len(doomed)
        if self.logger:
            self.logger.cache_invalidate(pattern, len(doomed))
        return len(doomed)

    def clear(self) -> None:
        """Remove all entries and reset counters."""
        self._entries.clear()
        self._stats = CacheStats()

    def purge_expired(self) -> int:
        """
        Drop every entry past its retention window.

        Optional sweep for hosts that want bounded memory; reads already
        evict lazily.

        Returns:
            Number of entries removed
        """
        now = self._now()
        doomed = [key for key, entry in self._entries.items() if now >= entry.stale_until]
        for key in doomed:
            del self._entries[key]
        self._stats.evictions += len(doomed)
        return len(doomed)

    @property
    def stats(self) -> CacheStats:
        """Hit/miss/set/eviction counters."""
        return self._stats

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._now() < entry.expires_at

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        """Fetch an entry, purging it if past its retention window."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._now() >= entry.stale_until:
            del self._entries[key]
            self._stats.evictions += 1
            return None

        return entry
