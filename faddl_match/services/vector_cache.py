"""
Faddl Match — Vector Cache

In-process TTL cache for embedding vectors and composite embedding records.

Two ceilings are enforced on every write: an entry-count ceiling and an
estimated-memory ceiling.  When either is exceeded the oldest ~10% of tracked
keys (insertion order; re-setting a key refreshes it) are evicted, repeatedly,
until both hold.  Entry size is approximated by the length of the value's JSON
serialisation.

The cache is an accelerator, never a source of truth: any internal error makes
``get`` behave as a miss and ``set`` return ``False``.
"""

from __future__ import annotations

import fnmatch
import json
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float
    size_bytes: int
    hits: int = 0


def estimate_size(value: Any) -> int:
    """Approximate the in-memory footprint of *value* in bytes."""
    if hasattr(value, "model_dump_json"):
        return len(value.model_dump_json())
    try:
        return len(json.dumps(value, default=str, separators=(",", ":")))
    except (TypeError, ValueError):
        return len(repr(value))


class VectorCache:
    """Thread-safe TTL cache with approximate-LRU eviction and statistics."""

    EVICTION_FRACTION = 0.10
    # Fraction of the memory ceiling that triggers eviction during maintenance
    MAINTENANCE_MEMORY_RATIO = 0.80
    ACTIVITY_LOG_THRESHOLD = 100

    def __init__(
        self,
        default_ttl_seconds: float = 24 * 60 * 60,
        max_entries: int = 10_000,
        max_memory_bytes: int = 100 * 1024 * 1024,
        clock: Callable[[], float] = time.monotonic,
        name: str = "vector_cache",
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.default_ttl_seconds = default_ttl_seconds
        self.max_entries = max_entries
        self.max_memory_bytes = max_memory_bytes
        self.name = name
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._bytes = 0
        self._lock = threading.RLock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "evictions": 0,
            "expirations": 0,
        }
        self._activity_at_last_log = 0

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "VectorCache":
        return cls(
            default_ttl_seconds=settings.CACHE_DEFAULT_TTL_SECONDS,
            max_entries=settings.CACHE_MAX_ENTRIES,
            max_memory_bytes=settings.cache_max_memory_bytes,
            **kwargs,
        )

    @staticmethod
    def make_key(namespace: str, *parts: Any) -> str:
        """Build a ``namespace:part:part`` key."""
        return ":".join([namespace, *(str(p) for p in parts)])

    # ── Core operations ───────────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` when absent or expired."""
        try:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    self._stats["misses"] += 1
                    return None
                if entry.expires_at <= self._clock():
                    self._remove(key)
                    self._stats["expirations"] += 1
                    self._stats["misses"] += 1
                    return None
                entry.hits += 1
                self._stats["hits"] += 1
                return entry.value
        except Exception:
            logger.exception("cache_get_failed", cache=self.name, key=key)
            with self._lock:
                self._stats["misses"] += 1
            return None

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> bool:
        """Store *value* under *key*; returns ``False`` if it could not be stored."""
        try:
            ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
            if ttl <= 0:
                raise ValueError(f"ttl_seconds must be positive, got {ttl}")
            size = estimate_size(value)
            if size > self.max_memory_bytes:
                logger.warning(
                    "cache_entry_too_large",
                    cache=self.name,
                    key=key,
                    size_bytes=size,
                    max_memory_bytes=self.max_memory_bytes,
                )
                return False

            now = self._clock()
            with self._lock:
                if key in self._entries:
                    self._remove(key)
                self._entries[key] = CacheEntry(
                    value=value,
                    created_at=now,
                    expires_at=now + ttl,
                    size_bytes=size,
                )
                self._bytes += size
                self._stats["sets"] += 1
                self._enforce_limits(protect=key)
            return True
        except Exception:
            logger.exception("cache_set_failed", cache=self.name, key=key)
            return False

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            self._stats["deletes"] += 1
            return True

    def has(self, key: str) -> bool:
        """True if *key* holds an unexpired value.  Does not touch hit/miss stats."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.expires_at <= self._clock():
                self._remove(key)
                self._stats["expirations"] += 1
                return False
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._bytes = 0
        logger.info("cache_cleared", cache=self.name)

    # ── Bulk helpers ──────────────────────────────────────────────────────

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the subset of *keys* that are cached."""
        found: dict[str, Any] = {}
        for key in keys:
            value = self.get(key)
            if value is not None:
                found[key] = value
        return found

    def set_many(self, items: Mapping[str, Any], ttl_seconds: float | None = None) -> bool:
        """Store every item; ``True`` only if all writes succeeded."""
        results = [self.set(k, v, ttl_seconds) for k, v in items.items()]
        return all(results)

    def keys(self, pattern: str | None = None) -> list[str]:
        """List live keys, optionally filtered by a glob *pattern*."""
        now = self._clock()
        with self._lock:
            live = [k for k, e in self._entries.items() if e.expires_at > now]
        if pattern is None:
            return live
        return [k for k in live if fnmatch.fnmatchcase(k, pattern)]

    async def warm(
        self,
        loaders: Mapping[str, Callable[[], Awaitable[Any]]],
        ttl_seconds: float | None = None,
    ) -> int:
        """Preload keys that are not already cached.

        Loader failures are logged and skipped; returns the number of keys
        that were loaded.
        """
        loaded = 0
        for key, loader in loaders.items():
            if self.has(key):
                continue
            try:
                value = await loader()
            except Exception:
                logger.exception("cache_warm_failed", cache=self.name, key=key)
                continue
            if value is not None and self.set(key, value, ttl_seconds):
                loaded += 1
        logger.info("cache_warmed", cache=self.name, requested=len(loaders), loaded=loaded)
        return loaded

    # ── Maintenance ───────────────────────────────────────────────────────

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                self._remove(key)
            self._stats["expirations"] += len(expired)
        return len(expired)

    def maintain(self) -> dict[str, Any]:
        """Periodic upkeep: purge expired entries and relieve memory pressure."""
        purged = self.purge_expired()
        evicted = 0
        with self._lock:
            if self._bytes > self.max_memory_bytes * self.MAINTENANCE_MEMORY_RATIO:
                evicted = self._evict_batch(protect=None)

        stats = self.stats()
        activity = stats["hits"] + stats["misses"] + stats["sets"]
        if activity - self._activity_at_last_log > self.ACTIVITY_LOG_THRESHOLD:
            self._activity_at_last_log = activity
            logger.info("cache_stats", cache=self.name, **stats)
        return {"purged": purged, "evicted": evicted}

    def stats(self) -> dict[str, Any]:
        with self._lock:
            stats: dict[str, Any] = dict(self._stats)
            stats["entry_count"] = len(self._entries)
            stats["estimated_bytes"] = self._bytes
        lookups = stats["hits"] + stats["misses"]
        stats["hit_ratio"] = round(stats["hits"] / lookups, 4) if lookups else 0.0
        return stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ── Internals (caller holds the lock) ─────────────────────────────────

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._bytes -= entry.size_bytes

    def _over_limits(self) -> bool:
        return len(self._entries) > self.max_entries or self._bytes > self.max_memory_bytes

    def _enforce_limits(self, protect: str | None) -> None:
        while self._over_limits():
            if self._evict_batch(protect) == 0:
                break

    def _evict_batch(self, protect: str | None) -> int:
        batch = max(1, math.ceil(len(self._entries) * self.EVICTION_FRACTION))
        victims = [k for k in self._entries if k != protect][:batch]
        for key in victims:
            self._remove(key)
        self._stats["evictions"] += len(victims)
        if victims:
            logger.info(
                "cache_evicted",
                cache=self.name,
                evicted=len(victims),
                remaining=len(self._entries),
                estimated_bytes=self._bytes,
            )
        return len(victims)
