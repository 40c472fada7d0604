"""
Cache models for the response cache and its on-disk store.

In-memory entries are plain dataclasses (values are arbitrary objects);
the persisted form and statistics are Pydantic models so they can be
validated on load and returned from the API.

Example:
    .cache/
    └── responses.json       # PersistentCacheFile for namespace "responses"
"""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field


@dataclass
class CacheEntry:
    """Single entry held by the in-memory response cache.

    Attributes:
        key: Cache key
        value: Cached value
        created_at: Wall-clock time the entry was written (seconds)
        ttl: Time-to-live in seconds
        access_count: Number of successful reads
        last_access: Time of the most recent read or write
        size: Estimated size in bytes
        priority: Eviction weight (higher survives longer)
    """

    key: str
    value: Any
    created_at: float
    ttl: float
    access_count: int = 0
    last_access: float = 0.0
    size: int = 0
    priority: float = 1.0

    def is_expired(self, now: float) -> bool:
        """True once `now - created_at > ttl`."""
        return now - self.created_at > self.ttl

    def remaining_fraction(self, now: float) -> float:
        """Share of the TTL still left, clamped to [0, 1]."""
        if self.ttl <= 0:
            return 0.0
        remaining = self.ttl - (now - self.created_at)
        return max(0.0, min(1.0, remaining / self.ttl))


class CacheStats(BaseModel):
    """Snapshot of response cache counters."""

    items: int = 0
    total_bytes: int = 0
    max_items: int = 0
    max_bytes: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        """Hits divided by lookups (0.0 with no lookups)."""
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class PersistedEntry(BaseModel):
    """Entry as written to the persistent store.

    Attributes:
        value: JSON-serialisable value
        created_at: Wall-clock time the entry was written (seconds)
        ttl: Time-to-live in seconds
        priority: Eviction weight carried back into memory on restore
    """

    value: Any
    created_at: float
    ttl: float
    priority: float = 1.0


class PersistentCacheFile(BaseModel):
    """On-disk layout of one persistent cache namespace.

    Attributes:
        namespace: Logical store name (also the file stem)
        version: Format version; files with another version are discarded
        entries: key -> persisted entry
    """

    namespace: str
    version: int = 1
    entries: dict[str, PersistedEntry] = Field(default_factory=dict)
