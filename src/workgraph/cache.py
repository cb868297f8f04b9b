"""Bounded TTL cache for embedding vectors.

Sits in front of an embedding provider so repeated texts are not
re-embedded. Expiry is lazy: entries are checked when read, and
purge_expired() sweeps on demand. There is no background thread.
"""

import logging
import threading
from dataclasses import dataclass
from time import time
from typing import Any, Callable

from pydantic import BaseModel, Field

from .constants import DEFAULT_CACHE_MAX_SIZE, DEFAULT_CACHE_NAMESPACE, DEFAULT_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


class CacheConfig(BaseModel):
    enabled: bool = True
    ttl: float = DEFAULT_CACHE_TTL_SECONDS  # seconds; <= 0 means entries never expire
    max_size: int = Field(default=DEFAULT_CACHE_MAX_SIZE, ge=1)
    namespace: str = DEFAULT_CACHE_NAMESPACE


@dataclass
class CachedVector:
    vector: list[float]
    stored_at: float


@dataclass
class CacheStats:
    hits: int
    misses: int
    size: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class VectorCache:
    """Thread-safe in-memory vector cache.

    When full, storing a new key evicts the single oldest entry. Storing
    an existing key refreshes it in place and never evicts.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time,
    ):
        """Initialize cache

        Args:
            config: Cache options (default: CacheConfig())
            clock: Time source in seconds, injectable for tests
        """
        self.config = config or CacheConfig()
        self._clock = clock

        self._lock = threading.RLock()
        # Insertion order doubles as age order: set() re-inserts refreshed keys
        self._entries: dict[str, CachedVector] = {}

        self._hits = 0
        self._misses = 0

        logger.debug(
            f"VectorCache initialized (enabled={self.config.enabled}, "
            f"ttl={self.config.ttl}s, max_size={self.config.max_size})"
        )

    def _key(self, key: str) -> str:
        namespace = self.config.namespace
        return f"{namespace}:{key}" if namespace else key

    def _expired(self, entry: CachedVector) -> bool:
        if self.config.ttl <= 0:
            return False
        return self._clock() - entry.stored_at > self.config.ttl

    def get(self, key: str) -> list[float] | None:
        """Cached vector for key, or None on miss/expiry (or when disabled)."""
        if not self.config.enabled:
            return None

        with self._lock:
            full_key = self._key(key)
            entry = self._entries.get(full_key)
            if entry is None:
                self._misses += 1
                return None

            if self._expired(entry):
                del self._entries[full_key]
                self._misses += 1
                logger.debug(f"Cache entry expired: {full_key}")
                return None

            self._hits += 1
            return list(entry.vector)

    def set(self, key: str, vector: list[float]) -> None:
        """Store a vector, evicting the oldest entry if a new key would overflow."""
        if not self.config.enabled:
            return

        with self._lock:
            full_key = self._key(key)
            if full_key in self._entries:
                del self._entries[full_key]
            elif len(self._entries) >= self.config.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                logger.debug(f"Evicted oldest cache entry: {oldest}")

            self._entries[full_key] = CachedVector(vector=list(vector), stored_at=self._clock())

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(self._key(key), None)

    def clear(self) -> None:
        """Drop all entries and reset hit/miss counts."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))

    def purge_expired(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            expired = [k for k, entry in self._entries.items() if self._expired(entry)]
            for k in expired:
                del self._entries[k]
            if expired:
                logger.debug(f"Purged {len(expired)} expired cache entries")
            return len(expired)

    def update_config(self, **changes: Any) -> None:
        """Replace individual config options, e.g. update_config(ttl=60)."""
        with self._lock:
            self.config = self.config.model_copy(update=changes)
