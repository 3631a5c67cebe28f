"""Response caching for cachegate.

This package provides :class:`CacheStore`, a version- and TTL-aware cache
with batch LRU eviction, and the persistence backends it runs on:
:class:`DiskBackend` (a :mod:`diskcache` directory) and
:class:`MemoryBackend` (process-local).

The store is consumed by :class:`~cachegate.coordinator.RequestCoordinator`
and is tuned by the ``core`` section of the configuration
(:class:`~cachegate.models.CoreConfig`).
"""

from cachegate.cache.backends import STORAGE_KEY, CacheBackend, DiskBackend, MemoryBackend
from cachegate.cache.store import CacheStore

__all__ = ["CacheBackend", "CacheStore", "DiskBackend", "MemoryBackend", "STORAGE_KEY"]
