"""Whole-document persistence backends for :class:`~cachegate.cache.CacheStore`.

The cache persists its entire entry map as one document under a fixed
storage key, so every backend only needs whole-document ``load`` /
``save`` / ``remove`` plus a ``transaction`` context that makes a
load-mutate-save sequence atomic with respect to other writers.

* :class:`DiskBackend` -- :mod:`diskcache` directory on the filesystem.
  Its transactions are SQLite transactions, so several processes may
  share one cache directory.
* :class:`MemoryBackend` -- a process-local dict, used by tests and by
  callers that want caching without touching disk.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Protocol

import diskcache

STORAGE_KEY = "llm_response_cache"

CacheDocument = dict[str, dict[str, Any]]


class CacheBackend(Protocol):
    """Structural interface every persistence backend satisfies."""

    def load(self) -> CacheDocument:
        """Return the persisted entry map, or an empty dict."""
        ...

    def save(self, document: CacheDocument) -> None:
        """Replace the persisted entry map with *document*."""
        ...

    def remove(self) -> None:
        """Delete the persisted entry map entirely."""
        ...

    def transaction(self) -> Any:
        """Return a context manager guarding a load-mutate-save sequence."""
        ...

    def close(self) -> None:
        """Release any resources held by the backend."""
        ...


class DiskBackend:
    """Backend storing the entry map in a :class:`diskcache.Cache` directory.

    Args:
        cache_dir: Root directory for the cache.  A ``responses/``
            subdirectory is created inside it.
        storage_key: Key under which the whole document is stored.

    Example::

        backend = DiskBackend("/tmp/cachegate")
        store = CacheStore(backend, CoreConfig())
    """

    def __init__(self, cache_dir: str | Path, storage_key: str = STORAGE_KEY) -> None:
        self._directory = Path(cache_dir) / "responses"
        self._storage_key = storage_key
        self._cache: Optional[diskcache.Cache] = diskcache.Cache(str(self._directory))

    @property
    def directory(self) -> Path:
        """Filesystem directory holding the diskcache database."""
        return self._directory

    def load(self) -> CacheDocument:
        document = self._require().get(self._storage_key)
        if document is None:
            return {}
        return dict(document)

    def save(self, document: CacheDocument) -> None:
        self._require().set(self._storage_key, document)

    def remove(self) -> None:
        self._require().delete(self._storage_key)

    def transaction(self) -> Any:
        return self._require().transact()

    def close(self) -> None:
        """Close the underlying :class:`diskcache.Cache`; safe to call twice."""
        if self._cache is not None:
            self._cache.close()
            self._cache = None

    def _require(self) -> diskcache.Cache:
        if self._cache is None:
            raise RuntimeError("DiskBackend is closed")
        return self._cache


class MemoryBackend:
    """Process-local backend holding the entry map in memory.

    Documents are deep-copied on the way in and out, so callers see the
    same whole-document semantics as with :class:`DiskBackend`.
    """

    def __init__(self) -> None:
        self._document: Optional[CacheDocument] = None
        self._lock = threading.RLock()

    def load(self) -> CacheDocument:
        if self._document is None:
            return {}
        return copy.deepcopy(self._document)

    def save(self, document: CacheDocument) -> None:
        self._document = copy.deepcopy(document)

    def remove(self) -> None:
        self._document = None

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield

    def close(self) -> None:
        pass
