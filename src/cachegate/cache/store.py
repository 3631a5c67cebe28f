"""Version- and TTL-aware response cache with batch LRU eviction.

:class:`CacheStore` keeps every cached payload in one persisted document
(see :mod:`cachegate.cache.backends`).  Entries carry the schema version
they were written under and their creation time; an entry whose version
no longer matches, or whose age exceeds its TTL, is purged the next time
it is read.  There is no background sweep.

When the document reaches ``max_entries`` the oldest tenth of capacity,
ranked by last access, is evicted before the new entry is inserted.
Recency is only tracked on reads and writes, so this is an approximate
LRU.

The cache is advisory.  The raising primitives :meth:`CacheStore.lookup`
and :meth:`CacheStore.put` report storage trouble as
:class:`~cachegate.exceptions.CacheReadError` and
:class:`~cachegate.exceptions.CacheWriteError`; the public
:meth:`CacheStore.get` and :meth:`CacheStore.set` map those to a miss and
to ``False`` respectively.

Every load-mutate-save sequence runs under an in-process lock and inside
the backend's transaction, so concurrent readers and writers cannot lose
each other's updates.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from typing import Any, Callable, Optional

from pydantic import ValidationError

from cachegate.cache.backends import CacheBackend, CacheDocument
from cachegate.exceptions import CacheError, CacheReadError, CacheWriteError
from cachegate.models import CacheEntry, CacheEntryMetadata, CacheStats, CoreConfig

logger = logging.getLogger(__name__)

EVICTION_FRACTION = 0.1


def wall_clock_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class CacheStore:
    """Persistent response cache.

    Args:
        backend: Whole-document persistence backend.
        config: Supplies ``schema_version``, ``ttl_ms`` and ``max_entries``.
        clock: Returns the current time in epoch milliseconds.  Tests
            inject a fake clock to step over TTL boundaries.

    Example::

        from cachegate.cache import CacheStore, MemoryBackend
        from cachegate.models import CoreConfig

        store = CacheStore(MemoryBackend(), CoreConfig(max_entries=100))
        store.set(key, {"summary": "..."}, namespace="claude")
        hit = store.get(key)
    """

    def __init__(
        self,
        backend: CacheBackend,
        config: CoreConfig,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._backend = backend
        self._schema_version = config.schema_version
        self._ttl_ms = config.ttl_ms
        self._max_entries = config.max_entries
        self._clock = clock or wall_clock_ms
        self._lock = threading.RLock()
        self._hit_count = 0
        self._miss_count = 0

    @property
    def schema_version(self) -> int:
        """Schema version entries must carry to be served."""
        return self._schema_version

    @property
    def max_entries(self) -> int:
        return self._max_entries

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached payload for *key*, or *default* on a miss.

        Storage failures are logged and reported as a miss; this method
        never raises because of the backend.

        Args:
            key: Derived cache key.
            default: Value returned on a miss.  Pass a sentinel when
                ``None`` is a legitimate payload.
        """
        try:
            entry = self.lookup(key)
        except CacheReadError as exc:
            logger.warning("Cache read failed, treating as miss: %s", exc)
            with self._lock:
                self._miss_count += 1
            return default
        if entry is None:
            return default
        return entry.payload

    def lookup(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for *key* and record the access.

        Stale entries (schema version mismatch, TTL elapsed, or unreadable)
        are deleted and reported as a miss.  Hit and miss counters are
        updated.

        Returns:
            The entry with its access metadata already bumped, or ``None``.

        Raises:
            CacheReadError: If the backend cannot be read or written.
        """
        try:
            with self._lock, self._backend.transaction():
                document = self._backend.load()
                raw = document.get(key)
                if raw is None:
                    self._miss_count += 1
                    return None

                now = self._clock()
                entry = self._parse(raw)
                if entry is None or not entry.is_valid(now, self._schema_version):
                    logger.debug("Purging stale cache entry %s", key[:12])
                    del document[key]
                    self._backend.save(document)
                    self._miss_count += 1
                    return None

                entry.metadata.access_count += 1
                entry.metadata.last_accessed_at = now
                document[key] = _to_record(entry)
                self._backend.save(document)
                self._hit_count += 1
        except Exception as exc:
            raise CacheReadError(f"Cannot read cache entry {key[:12]}: {exc}") from exc

        logger.debug(
            "Cache hit %s (namespace=%s, access_count=%d)",
            key[:12],
            entry.metadata.namespace,
            entry.metadata.access_count,
        )
        return entry

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def set(self, key: str, value: Any, namespace: str) -> bool:
        """Store *value* under *key*, best effort.

        Returns:
            ``True`` if the entry was persisted, ``False`` if a storage
            failure was absorbed.
        """
        try:
            self.put(key, value, namespace)
        except CacheWriteError as exc:
            logger.warning("Cache write failed, continuing without caching: %s", exc)
            return False
        return True

    def put(self, key: str, value: Any, namespace: str) -> CacheEntry:
        """Insert a fresh entry, evicting first when the cache is full.

        Raises:
            CacheWriteError: If the backend cannot be read or written.
        """
        now = self._clock()
        entry = CacheEntry(
            key=key,
            payload=value,
            metadata=CacheEntryMetadata(
                namespace=namespace,
                created_at=now,
                ttl_ms=self._ttl_ms,
                access_count=1,
                last_accessed_at=now,
                schema_version=self._schema_version,
            ),
        )
        try:
            with self._lock, self._backend.transaction():
                document = self._backend.load()
                if len(document) >= self._max_entries:
                    self._evict(document)
                document[key] = _to_record(entry)
                self._backend.save(document)
                size = len(document)
        except Exception as exc:
            raise CacheWriteError(f"Cannot write cache entry {key[:12]}: {exc}") from exc

        logger.debug("Cached %s (namespace=%s, entries=%d)", key[:12], namespace, size)
        return entry

    def delete(self, key: str) -> None:
        """Remove a single entry.  Missing keys are ignored.

        Raises:
            CacheError: If the backend cannot be read or written.
        """
        try:
            with self._lock, self._backend.transaction():
                document = self._backend.load()
                if key in document:
                    del document[key]
                    self._backend.save(document)
        except Exception as exc:
            raise CacheError(f"Cannot delete cache entry {key[:12]}: {exc}") from exc

    def clear(self) -> None:
        """Remove every entry and reset the hit/miss counters.

        Raises:
            CacheError: If the backend cannot be cleared.
        """
        try:
            with self._lock:
                self._backend.remove()
                self._hit_count = 0
                self._miss_count = 0
        except Exception as exc:
            raise CacheError(f"Cannot clear cache: {exc}") from exc
        logger.info("Cache cleared")

    # ------------------------------------------------------------------ #
    # Stats
    # ------------------------------------------------------------------ #

    def stats(self) -> CacheStats:
        """Return entry count, hit/miss counters, and size estimate.

        Entries are counted as stored; stale entries still count until a
        read purges them.  If storage cannot be read, the counters are
        returned with zero entries.
        """
        with self._lock:
            hits, misses = self._hit_count, self._miss_count
            try:
                document = self._backend.load()
            except Exception as exc:
                logger.warning("Cannot read cache for stats: %s", exc)
                return CacheStats(hit_count=hits, miss_count=misses)

        created = [
            entry.metadata.created_at
            for entry in map(self._parse, document.values())
            if entry is not None
        ]
        return CacheStats(
            total_entries=len(document),
            hit_count=hits,
            miss_count=misses,
            approx_size_bytes=len(json.dumps(document, default=str).encode("utf-8")),
            oldest_entry_timestamp=min(created) if created else None,
            newest_entry_timestamp=max(created) if created else None,
        )

    def close(self) -> None:
        """Release the backend."""
        self._backend.close()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _evict(self, document: CacheDocument) -> list[str]:
        """Drop the least recently accessed tenth of capacity from *document*."""
        evict_count = math.ceil(self._max_entries * EVICTION_FRACTION)
        ranked = sorted(document, key=lambda k: _last_accessed(document[k]))
        victims = ranked[:evict_count]
        for key in victims:
            del document[key]
        logger.info("Evicted %d cache entries (capacity %d)", len(victims), self._max_entries)
        return victims

    @staticmethod
    def _parse(raw: Any) -> Optional[CacheEntry]:
        # Only the metadata is validated; the payload is returned as stored.
        if not isinstance(raw, dict):
            return None
        try:
            metadata = CacheEntryMetadata.model_validate(raw.get("metadata"))
        except ValidationError:
            return None
        return CacheEntry.model_construct(
            key=raw.get("key", ""), payload=raw.get("payload"), metadata=metadata
        )


def _to_record(entry: CacheEntry) -> dict[str, Any]:
    # The payload is stored as given; only the metadata is dumped.
    return {"key": entry.key, "payload": entry.payload, "metadata": entry.metadata.model_dump()}


def _last_accessed(raw: Any) -> int:
    # Unreadable entries sort first so they are evicted before live ones.
    try:
        return int(raw["metadata"]["last_accessed_at"])
    except (KeyError, TypeError, ValueError):
        return 0
