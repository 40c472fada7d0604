"""
JSON-file key/value store with TTLs.

Backs the response cache across restarts. One file per namespace; files
written with another format version are discarded on load, and expired
entries are dropped every time the file is read.

Example:
    store = PersistentCache(Path(".cache"), namespace="responses")
    await store.load()
    store.set("processed:dQw4w9WgXcQ", {"file_path": "..."}, ttl=3600)
    await store.save()
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from clipnote.models.cache import PersistedEntry, PersistentCacheFile

logger = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = 1
DEFAULT_PERSISTENT_TTL = 24 * 60 * 60.0  # 24 hours
DEFAULT_MAX_ITEMS = 100


class PersistentCache:
    """Namespace-scoped persistent cache stored as one JSON file.

    Reads and writes are explicit (load/save); in between, the store works
    on its in-memory index.

    Attributes:
        directory: Folder holding the namespace files
        namespace: Store name, used as file stem
        max_items: Oldest entries are dropped beyond this count
        default_ttl: TTL in seconds for set() without ttl
    """

    def __init__(
        self,
        directory: Path,
        namespace: str = "responses",
        max_items: int = DEFAULT_MAX_ITEMS,
        default_ttl: float = DEFAULT_PERSISTENT_TTL,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize store (nothing is read until load()).

        Args:
            directory: Folder for the JSON file (created on save)
            namespace: Store name
            max_items: Capacity
            default_ttl: Default TTL in seconds
            clock: Wall-clock time source, replaceable in tests
        """
        self.directory = Path(directory)
        self.namespace = namespace
        self.max_items = max_items
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, PersistedEntry] = {}

    @property
    def path(self) -> Path:
        """Location of the namespace file."""
        return self.directory / f"{self.namespace}.json"

    async def load(self) -> dict[str, PersistedEntry]:
        """Read the namespace file into the index.

        Missing, corrupt or version-mismatched files yield an empty index.

        Returns:
            Non-expired entries keyed by cache key
        """
        self._entries = {}

        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = PersistentCacheFile.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed to load persistent cache {self.path}: {e}")
            return {}

        if data.version != CACHE_FORMAT_VERSION or data.namespace != self.namespace:
            logger.info(
                f"Discarding persistent cache {self.path}: "
                f"version {data.version}, namespace {data.namespace}"
            )
            return {}

        self._entries = dict(data.entries)
        removed = self.cleanup_expired()
        logger.debug(
            f"Loaded {len(self._entries)} entries from {self.path} "
            f"({removed} expired dropped)"
        )
        return dict(self._entries)

    async def save(self) -> Path:
        """Write the index to disk.

        Returns:
            Path of the written file
        """
        self.cleanup_expired()
        self.directory.mkdir(parents=True, exist_ok=True)

        data = PersistentCacheFile(
            namespace=self.namespace,
            version=CACHE_FORMAT_VERSION,
            entries=self._entries,
        )
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(data.model_dump_json(indent=2))

        logger.debug(f"Saved {len(self._entries)} entries to {self.path}")
        return self.path

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            del self._entries[key]
            return None
        return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        priority: float = 1.0,
        created_at: float | None = None,
    ) -> None:
        """Store a JSON-serialisable value.

        Raises:
            TypeError: If the value cannot be serialised to JSON
        """
        json.dumps(value)

        self._entries[key] = PersistedEntry(
            value=value,
            created_at=created_at if created_at is not None else self._clock(),
            ttl=ttl if ttl is not None else self.default_ttl,
            priority=priority,
        )
        self._enforce_capacity()

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def replace(self, entries: dict[str, PersistedEntry]) -> None:
        """Swap the whole index (used when the memory cache persists)."""
        self._entries = dict(entries)
        self._enforce_capacity()

    def entries(self) -> dict[str, PersistedEntry]:
        return dict(self._entries)

    def cleanup_expired(self) -> int:
        """Drop expired entries.

        Returns:
            Number of entries removed
        """
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _is_expired(self, entry: PersistedEntry) -> bool:
        return self._clock() - entry.created_at > entry.ttl

    def _enforce_capacity(self) -> None:
        if len(self._entries) <= self.max_items:
            return
        by_age = sorted(self._entries.items(), key=lambda item: item[1].created_at)
        for key, _ in by_age[: len(self._entries) - self.max_items]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
