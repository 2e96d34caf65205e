from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..exceptions import ConfigurationError
from ..models import CacheMetrics, CacheTypeTag

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    type_tag: CacheTypeTag


class CacheService:
    """
    In-memory response cache with per-type TTL, FIFO eviction and metrics.

    - Fixed TTL per type tag (current weather, forecast, historical, location)
    - An entry is live through its expiry instant and gone right after
    - Expired entries are dropped when read, plus a periodic sweep
    - Over max_size, oldest-inserted entries go first down to the
      cleanup threshold (FIFO, not LRU)
    - evictions counts only size-based removals; TTL removals are
      counted separately as expirations
    - Thread-safe operations
    """

    DEFAULT_TTLS: Dict[CacheTypeTag, int] = {
        CacheTypeTag.CURRENT_WEATHER: 300,  # 5 minutes
        CacheTypeTag.FORECAST: 1800,  # 30 minutes
        CacheTypeTag.HISTORICAL: 86400,  # 24 hours
        CacheTypeTag.LOCATION: 604800,  # 7 days
    }
    MAX_CACHE_ENTRIES = 10000
    CLEANUP_THRESHOLD = 8000
    CLEANUP_INTERVAL = 60

    def __init__(
        self,
        ttl_table: Optional[Dict[str, int]] = None,
        max_size: int = MAX_CACHE_ENTRIES,
        cleanup_threshold: int = CLEANUP_THRESHOLD,
        sweep_interval: int = CLEANUP_INTERVAL,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if cleanup_threshold >= max_size:
            raise ConfigurationError(
                "cleanup_threshold must be below max_size",
                details={"max_size": max_size, "cleanup_threshold": cleanup_threshold},
            )

        self._ttls = dict(self.DEFAULT_TTLS)
        for tag, ttl in (ttl_table or {}).items():
            self._ttls[CacheTypeTag(tag)] = ttl

        self.max_size = max_size
        self.cleanup_threshold = cleanup_threshold
        self.sweep_interval = sweep_interval
        self._clock = clock or time.time

        # dicts keep insertion order, which is the eviction order
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0
        self.errors = 0
        self._last_cleanup = self._clock()

    @staticmethod
    def build_key(
        query_type: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        location: Optional[str] = None,
        units: str = "metric",
        language: str = "en",
        granularity: Optional[str] = None,
        date: Optional[str] = None,
        precision: int = 4,
    ) -> str:
        """
        Derive a cache key from a resolved request.

        Coordinates are rounded so nearby requests for the same place share
        an entry; units, language, granularity and date keep differently
        shaped responses apart.
        """
        if latitude is not None and longitude is not None:
            place = f"{round(latitude, precision):.{precision}f},{round(longitude, precision):.{precision}f}"
        else:
            place = " ".join((location or "").lower().split())
        parts = [
            "weather",
            query_type,
            place,
            units,
            language,
            granularity or "default",
        ]
        if date:
            parts.append(date)
        return ":".join(parts)

    @staticmethod
    def location_key(name: str) -> str:
        """Key for a geocoded place name."""
        return "location:" + " ".join((name or "").lower().split())

    def ttl_for(self, type_tag: CacheTypeTag | str) -> int:
        return self._ttls[CacheTypeTag(type_tag)]

    def set(self, key: str, value: Any, type_tag: CacheTypeTag | str) -> bool:
        """Store value under key; an unknown type tag is counted, never raised."""
        try:
            tag = CacheTypeTag(type_tag)
        except ValueError:
            with self._lock:
                self.errors += 1
            logger.error("Cache set rejected: unknown type tag %r", type_tag)
            return False

        expiry = self._clock() + self._ttls[tag]
        with self._lock:
            # Re-setting a key moves it to the back of the eviction queue
            self._cache.pop(key, None)
            self._cache[key] = CacheEntry(value=value, expires_at=expiry, type_tag=tag)
            if len(self._cache) > self.max_size:
                self._evict()
        return True

    def get(self, key: str) -> Any | None:
        with self._lock:
            # Trigger cleanup if interval elapsed
            self._maybe_cleanup()

            entry = self._cache.get(key)
            if not entry:
                self.misses += 1
                return None
            if entry.expires_at < self._clock():
                self._cache.pop(key, None)
                self.expirations += 1
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def sweep(self) -> int:
        """Remove every expired entry now. Returns the number removed."""
        with self._lock:
            return self._remove_expired()

    def _remove_expired(self) -> int:
        """Drop expired entries (must hold lock)."""
        now = self._clock()
        expired_keys = [k for k, v in self._cache.items() if v.expires_at < now]
        for key in expired_keys:
            self._cache.pop(key, None)
        self.expirations += len(expired_keys)
        self._last_cleanup = now
        if expired_keys:
            logger.debug("Cache sweep removed %d expired entries", len(expired_keys))
        return len(expired_keys)

    def _maybe_cleanup(self) -> None:
        """Sweep expired entries if interval elapsed (must hold lock)."""
        if self._clock() - self._last_cleanup < self.sweep_interval:
            return
        self._remove_expired()

    def _evict(self) -> None:
        """Bring the cache back under max_size (must hold lock)."""
        self._remove_expired()
        if len(self._cache) <= self.max_size:
            return

        to_remove = len(self._cache) - self.cleanup_threshold
        for key in list(self._cache)[:to_remove]:
            del self._cache[key]
        self.evictions += to_remove
        logger.info(
            "Cache evicted %d oldest entries (size now %d, max %d)",
            to_remove, len(self._cache), self.max_size,
        )

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self.hits = 0
            self.misses = 0
            self.evictions = 0
            self.expirations = 0
            self.errors = 0
            self._last_cleanup = self._clock()

    def __len__(self) -> int:
        return len(self._cache)

    def get_metrics(self) -> CacheMetrics:
        with self._lock:
            total_requests = self.hits + self.misses
            hit_rate = (self.hits / total_requests) if total_requests > 0 else 0.0
            return CacheMetrics(
                size=len(self._cache),
                max_size=self.max_size,
                hits=self.hits,
                misses=self.misses,
                hit_rate=round(hit_rate, 4),
                evictions=self.evictions,
                expirations=self.expirations,
                errors=self.errors,
                memory_usage_percent=round(len(self._cache) / self.max_size * 100, 2),
            )
