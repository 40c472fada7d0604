"""
Bounded in-memory response cache.

Entries carry a TTL and a priority. Capacity is limited both by item count
and by estimated byte size; when either limit would be exceeded, expired
entries go first, then the entry with the lowest score:

    score = (access_count + 1) * priority * remaining_ttl_fraction

so rarely read, low-priority, nearly expired entries are evicted first.
A background task sweeps expired entries periodically. All mutation
happens under one lock, so concurrent fan-out callers see atomic
set/get/evict.

Example:
    cache = ResponseCache(max_items=200, default_ttl=300)
    cache.set("Groq:llama-3.1-8b-instant:abc123", {"content": "..."}, priority=2.0)
    cached = cache.get("Groq:llama-3.1-8b-instant:abc123")
"""

import asyncio
import json
import logging
import threading
import time
from typing import Any, Callable

from pydantic import BaseModel

from clipnote.config import Settings
from clipnote.models.cache import CacheEntry, CacheStats, PersistedEntry
from clipnote.services.cache.persistent_cache import PersistentCache

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 200
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_TTL = 5 * 60.0  # seconds
DEFAULT_SWEEP_INTERVAL = 60.0  # seconds


def estimate_size(value: Any) -> int:
    """
    Rough byte size of a cached value.

    Strings count 2 bytes per character, numbers 8, booleans 4, anything
    else the JSON length times two.

    Args:
        value: Value to measure

    Returns:
        Estimated size in bytes
    """
    if value is None:
        return 0
    if isinstance(value, str):
        return len(value) * 2
    if isinstance(value, bool):
        return 4
    if isinstance(value, (int, float)):
        return 8
    if isinstance(value, BaseModel):
        return len(value.model_dump_json()) * 2
    try:
        return len(json.dumps(value, default=str)) * 2
    except (TypeError, ValueError):
        return len(repr(value)) * 2


class ResponseCache:
    """
    TTL- and priority-aware cache bounded by count and bytes.

    Attributes:
        max_items: Maximum number of entries
        max_bytes: Maximum total estimated size
        default_ttl: TTL in seconds for set() without ttl
        sweep_interval: Seconds between background sweeps
        store: Optional persistent store for restore()/persist()
    """

    def __init__(
        self,
        max_items: int = DEFAULT_MAX_ITEMS,
        max_bytes: int = DEFAULT_MAX_BYTES,
        default_ttl: float = DEFAULT_TTL,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        store: PersistentCache | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize empty cache.

        Args:
            max_items: Item capacity
            max_bytes: Byte capacity
            default_ttl: Default TTL in seconds
            sweep_interval: Background sweep period in seconds
            store: Persistent store (optional)
            clock: Wall-clock time source; wall time keeps persisted
                timestamps meaningful across restarts
        """
        if max_items < 1 or max_bytes < 1:
            raise ValueError("Cache capacity must be positive")

        self.max_items = max_items
        self.max_bytes = max_bytes
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self.store = store
        self._clock = clock

        self._entries: dict[str, CacheEntry] = {}
        self._total_bytes = 0
        self._lock = threading.RLock()
        self._sweep_task: asyncio.Task | None = None

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResponseCache":
        """
        Create cache from application settings.

        A configured `cache_persist_path` attaches a PersistentCache.

        Args:
            settings: Application settings

        Returns:
            Configured ResponseCache
        """
        store = None
        if settings.cache_persist_path is not None:
            store = PersistentCache(
                settings.cache_persist_path,
                namespace="responses",
                max_items=settings.cache_max_items,
            )
        return cls(
            max_items=settings.cache_max_items,
            max_bytes=settings.cache_max_bytes,
            default_ttl=settings.cache_default_ttl,
            sweep_interval=settings.cache_sweep_interval,
            store=store,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Key/value operations
    # ═══════════════════════════════════════════════════════════════════════

    def get(self, key: str) -> Any | None:
        """
        Get a value; expired entries are removed and never returned.

        Args:
            key: Cache key

        Returns:
            Cached value or None
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if entry.is_expired(now):
                self._remove(key)
                self._expirations += 1
                self._misses += 1
                return None

            entry.access_count += 1
            entry.last_access = now
            self._hits += 1
            return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        priority: float = 1.0,
    ) -> bool:
        """
        Store a value, evicting as needed to stay within both limits.

        Args:
            key: Cache key
            value: Value to store
            ttl: Seconds until expiry (default_ttl if None)
            priority: Eviction weight, > 0 (higher survives longer)

        Returns:
            False if the value alone is larger than max_bytes

        Raises:
            ValueError: If ttl or priority is not positive
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        if priority <= 0:
            raise ValueError(f"priority must be positive, got {priority}")

        size = estimate_size(value)
        if size > self.max_bytes:
            logger.warning(f"Not caching '{key}': {size} bytes exceeds cache size")
            return False

        with self._lock:
            now = self._clock()
            self._remove(key)
            self._make_room(size, now)
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                ttl=ttl,
                last_access=now,
                size=size,
                priority=priority,
            )
            self._total_bytes += size
        return True

    def has(self, key: str) -> bool:
        """True if a non-expired entry exists (does not count as an access)."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def delete(self, key: str) -> bool:
        """
        Remove an entry.

        Returns:
            True if the key was present
        """
        with self._lock:
            return self._remove(key)

    def clear(self) -> None:
        """Remove every entry (counters are kept)."""
        with self._lock:
            self._entries.clear()
            self._total_bytes = 0

    def cleanup(self) -> int:
        """
        Purge expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            return self._purge_expired(self._clock())

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    # ═══════════════════════════════════════════════════════════════════════
    # Metrics
    # ═══════════════════════════════════════════════════════════════════════

    def get_stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                items=len(self._entries),
                total_bytes=self._total_bytes,
                max_items=self.max_items,
                max_bytes=self.max_bytes,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
            )

    def get_hot_items(self, limit: int = 10) -> list[tuple[str, int]]:
        """
        Most frequently read keys.

        Args:
            limit: Maximum number of keys

        Returns:
            (key, access_count) pairs, most accessed first
        """
        with self._lock:
            ranked = sorted(
                self._entries.values(), key=lambda e: e.access_count, reverse=True
            )
            return [(entry.key, entry.access_count) for entry in ranked[:limit]]

    # ═══════════════════════════════════════════════════════════════════════
    # Background sweep
    # ═══════════════════════════════════════════════════════════════════════

    def start(self) -> None:
        """Start the periodic expiry sweep (needs a running event loop)."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
            logger.debug(f"Cache sweep started (every {self.sweep_interval:.0f}s)")

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.cleanup()
            if removed:
                logger.debug(f"Cache sweep removed {removed} expired entries")

    # ═══════════════════════════════════════════════════════════════════════
    # Persistence
    # ═══════════════════════════════════════════════════════════════════════

    async def restore(self) -> int:
        """
        Load non-expired entries from the persistent store.

        Entries keep their original timestamps, so their remaining TTL is
        the same as before the restart.

        Returns:
            Number of entries restored (0 without a store)
        """
        if self.store is None:
            return 0

        persisted = await self.store.load()
        restored = 0
        with self._lock:
            now = self._clock()
            for key, item in persisted.items():
                entry = CacheEntry(
                    key=key,
                    value=item.value,
                    created_at=item.created_at,
                    ttl=item.ttl,
                    last_access=now,
                    size=estimate_size(item.value),
                    priority=item.priority,
                )
                if entry.is_expired(now) or entry.size > self.max_bytes:
                    continue
                self._remove(key)
                self._make_room(entry.size, now)
                self._entries[key] = entry
                self._total_bytes += entry.size
                restored += 1

        logger.info(f"Restored {restored} cache entries from {self.store.path}")
        return restored

    async def persist(self) -> int:
        """
        Write non-expired, JSON-serialisable entries to the persistent store.

        Returns:
            Number of entries written (0 without a store)
        """
        if self.store is None:
            return 0

        snapshot: dict[str, PersistedEntry] = {}
        with self._lock:
            now = self._clock()
            for key, entry in self._entries.items():
                if entry.is_expired(now):
                    continue
                value = entry.value
                if isinstance(value, BaseModel):
                    value = value.model_dump(mode="json")
                try:
                    json.dumps(value)
                except (TypeError, ValueError):
                    logger.debug(f"Skipping non-serialisable cache entry '{key}'")
                    continue
                snapshot[key] = PersistedEntry(
                    value=value,
                    created_at=entry.created_at,
                    ttl=entry.ttl,
                    priority=entry.priority,
                )

        self.store.replace(snapshot)
        await self.store.save()
        return len(snapshot)

    # ═══════════════════════════════════════════════════════════════════════
    # Internals (caller holds the lock)
    # ═══════════════════════════════════════════════════════════════════════

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._total_bytes -= entry.size
        return True

    def _purge_expired(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        self._expirations += len(expired)
        return len(expired)

    def _make_room(self, incoming_size: int, now: float) -> None:
        if not self._over_capacity(incoming_size):
            return

        self._purge_expired(now)

        while self._entries and self._over_capacity(incoming_size):
            victim = min(self._entries.values(), key=lambda e: self._score(e, now))
            self._remove(victim.key)
            self._evictions += 1
            logger.debug(f"Evicted '{victim.key}' (score {self._score(victim, now):.3f})")

    def _over_capacity(self, incoming_size: int) -> bool:
        return (
            len(self._entries) + 1 > self.max_items
            or self._total_bytes + incoming_size > self.max_bytes
        )

    @staticmethod
    def _score(entry: CacheEntry, now: float) -> float:
        return (entry.access_count + 1) * entry.priority * entry.remaining_fraction(now)
