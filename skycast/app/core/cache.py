"""
In-process TTL cache — memoises geocoding lookups.

Provides:
    • ExpiringCache: thread-safe key → value map with per-entry expiry
    • Lazy expiration (an expired read is a miss and evicts the entry)
    • Bulk sweep via cleanup(), run hourly as a scheduler system job
    • normalize_cache_key() so "Chicago", " chicago " and "CHICAGO" collide

Usage:
    from skycast.app.core.cache import create_geo_cache, normalize_cache_key

    geo_cache = create_geo_cache()
    key = normalize_cache_key("  Chicago ")
    location = geo_cache.get(key)
    if location is None:
        location = await geocode_upstream("Chicago")
        geo_cache.insert(key, location)

Re-inserting a key replaces the entry and restarts its TTL; values are never
merged.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

from skycast.app.core.config import settings

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float  # clock() reading after which the entry is stale


class ExpiringCache(Generic[K, V]):
    """
    Generic TTL cache.

    Parameters
    ----------
    ttl_seconds : float
        Lifetime of each entry, counted from insertion.
    clock : callable
        Monotonic time source in seconds. Injected for tests.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._ttl = ttl_seconds
        self._clock = clock
        self._data: Dict[K, CacheEntry[V]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: K) -> Optional[V]:
        """Return the live value for ``key`` or None; evicts if expired."""
        now = self._clock()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expires_at > now:
                self.hits += 1
                return entry.value
            del self._data[key]
            self.misses += 1
            return None

    def insert(self, key: K, value: V) -> None:
        entry = CacheEntry(value=value, expires_at=self._clock() + self._ttl)
        with self._lock:
            self._data[key] = entry

    def remove(self, key: K) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def cleanup(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._data.items() if e.expires_at <= now]
            for k in expired:
                del self._data[k]
            remaining = len(self._data)
        if expired:
            logger.debug(
                "Cache cleanup removed %d entries (%d remaining)",
                len(expired), remaining,
            )
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        # Includes expired entries that have not been swept yet
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]


def normalize_cache_key(location: str) -> str:
    """Case- and whitespace-insensitive key for a location string."""
    return location.strip().lower()


def create_geo_cache(ttl_seconds: Optional[float] = None) -> ExpiringCache:
    """Geocoding cache; 24 h TTL unless overridden in settings."""
    return ExpiringCache(ttl_seconds or settings.GEO_CACHE_TTL_SECONDS)
