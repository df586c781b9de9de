"""In-memory TTL cache for resolved prices.

Entries are judged fresh at read time and are never swept: a stale entry is
ignored by ``get`` and replaced by the next ``put`` for the same key. An
optional ``max_entries`` bound adds least-recently-used eviction on ``put``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from app.schemas.price import PriceRecord

logger = logging.getLogger(__name__)


@dataclass
class CacheItem:
    """Cached value plus the instant it was stored."""

    value: PriceRecord
    stored_at: float


class SimpleTTLCache:
    """Thread-safe, in-memory TTL cache keyed by coin id.

    Attributes:
        ttl_seconds: Age below which an entry is served.
        max_entries: Maximum number of cached items (None for unlimited).
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1 or None")

        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, CacheItem] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"SimpleTTLCache(ttl_seconds={self._ttl}, max_entries={self._max_entries}, "
            f"size={len(self._store)}, hits={self._hits}, misses={self._misses})"
        )

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str) -> PriceRecord | None:
        """Return the cached value for ``key`` if it is still fresh.

        Args:
            key: Cache key.

        Returns:
            Cached value, or None when missing or stale.
        """

        with self._lock:
            item = self._store.get(key)
            if item is None:
                self._misses += 1
                logger.debug("cache.miss", extra={"cache_key": key, "reason": "not_found"})
                return None

            age = self._clock() - item.stored_at
            if age >= self._ttl:
                self._misses += 1
                logger.debug(
                    "cache.miss",
                    extra={"cache_key": key, "reason": "stale", "age_s": round(age, 3)},
                )
                return None

            self._hits += 1
            self._store.move_to_end(key)
            logger.debug("cache.hit", extra={"cache_key": key, "age_s": round(age, 3)})
            return item.value

    def put(self, key: str, value: PriceRecord) -> None:
        """Store ``value`` under ``key`` stamped with the current time.

        Args:
            key: Cache key.
            value: Price record to store.
        """

        with self._lock:
            self._store[key] = CacheItem(value=value, stored_at=self._clock())
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()

            logger.debug(
                "cache.set",
                extra={"cache_key": key, "size": len(self._store), "ttl_s": self._ttl},
            )

    def size(self) -> int:
        """Number of entries held, fresh or stale."""

        with self._lock:
            return len(self._store)

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | float | None]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "ttl_seconds": self._ttl,
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            self._store.popitem(last=False)
            self._evictions += 1
