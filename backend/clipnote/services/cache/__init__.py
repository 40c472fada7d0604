"""
Response cache (in-memory, bounded) and its optional JSON-file store.
"""

from clipnote.services.cache.memory_cache import ResponseCache, estimate_size
from clipnote.services.cache.persistent_cache import PersistentCache

__all__ = ["ResponseCache", "PersistentCache", "estimate_size"]
