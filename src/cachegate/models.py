"""Canonical Pydantic models shared across all cachegate modules.

The models fall into three groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`CoreConfig`, :class:`OutputConfig`, and :class:`GlobalConfig`.

**Cache models** -- the persisted cache document and its statistics:
    :class:`CacheEntryMetadata`, :class:`CacheEntry`, :class:`CacheStats`,
    and :class:`RateLimiterState`.

**Request models** -- what flows through the coordinator:
    :class:`AnalysisRequest`, :class:`OutcomeSource`, :class:`ErrorKind`,
    :class:`CoordinatorState`, and :class:`RequestOutcome`.

All timestamps are integer milliseconds. Cache entry timestamps are
wall-clock epoch milliseconds because they are persisted; rate limiter
timestamps come from a monotonic clock.
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TTL_MS = 30 * 24 * 60 * 60 * 1000
"""Thirty days."""


# --- Configuration ---


class CoreConfig(BaseModel):
    """Tuning knobs for the cache, limiter, retry, and timeout layers.

    Bumping ``schema_version`` invalidates every existing cache entry the
    next time it is read, without touching storage up front.
    """

    schema_version: int = Field(default=1, ge=0, description="Cache payload schema version")
    ttl_ms: int = Field(default=DEFAULT_TTL_MS, ge=0, description="Entry time to live (ms)")
    max_entries: int = Field(default=1000, ge=1, description="Entries kept before eviction")
    rate_limit_capacity: int = Field(default=10, ge=1, description="Requests per window")
    rate_limit_window_ms: int = Field(default=60000, ge=1, description="Window length (ms)")
    remote_timeout_ms: int = Field(default=30000, ge=1, description="Remote call deadline (ms)")
    max_retries: int = Field(default=2, ge=0, description="Retries after the first attempt")
    retry_base_delay_ms: int = Field(default=1000, ge=0, description="First backoff delay (ms)")
    cancel_on_timeout: bool = Field(
        default=False, description="Cancel the remote call when its deadline passes"
    )
    cache_enabled: bool = Field(default=True, description="Enable the disk cache")


class OutputConfig(BaseModel):
    """CLI output preferences stored in :class:`GlobalConfig`."""

    format: str = Field(default="auto", description="auto, json, plain, or rich")


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/cachegate/config.json``.

    Loaded and saved by :func:`~cachegate.config.load_config` and
    :func:`~cachegate.config.save_config`.  Environment variables override
    individual ``core`` fields; see :func:`~cachegate.config.resolve_config`.
    """

    core: CoreConfig = Field(default_factory=CoreConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)


# --- Cache ---


class CacheEntryMetadata(BaseModel):
    """Bookkeeping attached to every cached payload."""

    namespace: str
    created_at: int
    ttl_ms: int
    access_count: int = 1
    last_accessed_at: int
    schema_version: int


class CacheEntry(BaseModel):
    """A single cached payload keyed by its derived cache key.

    ``payload`` is opaque to the cache; it only has to survive the
    backend's serialisation (pickle for the disk backend).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    key: str
    payload: Any = None
    metadata: CacheEntryMetadata

    def is_valid(self, now_ms: int, schema_version: int) -> bool:
        """Return ``True`` if the entry may be served at *now_ms*."""
        if self.metadata.schema_version != schema_version:
            return False
        return now_ms - self.metadata.created_at <= self.metadata.ttl_ms


class CacheStats(BaseModel):
    """Snapshot returned by :meth:`~cachegate.cache.CacheStore.stats`."""

    total_entries: int = 0
    hit_count: int = 0
    miss_count: int = 0
    approx_size_bytes: int = 0
    oldest_entry_timestamp: Optional[int] = None
    newest_entry_timestamp: Optional[int] = None


class RateLimiterState(BaseModel):
    """Snapshot of a :class:`~cachegate.limiter.RateLimiter` window."""

    window_start: Optional[int] = None
    count: int = 0
    capacity: int
    window_ms: int


# --- Requests ---


class AnalysisRequest(BaseModel):
    """A logical request to the analysis provider.

    Only the fields that identify the request semantically take part in
    the cache key: ``namespace`` (usually the provider name), ``content``,
    and the ordered ``context`` strings.  ``options`` is forwarded to the
    remote call untouched and never affects caching.

    Example::

        AnalysisRequest(
            namespace="openai",
            content="Prefer early returns here.",
            context=["if x:\\n    return 1"],
        )
    """

    namespace: str
    content: str
    context: list[str] = Field(default_factory=list)
    options: dict[str, Any] = Field(default_factory=dict)

    def seed_parts(self) -> list[str]:
        """Return the canonical key material for this request."""
        return [self.content, *self.context]


class OutcomeSource(str, enum.Enum):
    """Where the value of a :class:`RequestOutcome` came from."""

    CACHE = "cache"
    REMOTE = "remote"
    FALLBACK = "fallback"
    NONE = "none"


class ErrorKind(str, enum.Enum):
    """Failure categories surfaced to callers."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    REMOTE = "remote"


class CoordinatorState(str, enum.Enum):
    """States of :class:`~cachegate.coordinator.RequestCoordinator`."""

    IDLE = "idle"
    KEY_DERIVED = "key_derived"
    CACHE_CHECKED = "cache_checked"
    HIT_RETURN = "hit_return"
    RATE_CHECKED = "rate_checked"
    RATE_LIMITED_RETURN = "rate_limited_return"
    CALLING = "calling"
    SUCCESS_CACHE_WRITE = "success_cache_write"
    FAILURE_RETURN = "failure_return"
    FALLBACK_RETURN = "fallback_return"


class RequestOutcome(BaseModel):
    """Typed result of :meth:`~cachegate.coordinator.RequestCoordinator.execute`.

    Rate-limit and remote failures are reported here instead of being
    raised, so callers can render a specific message such as "retry in N
    seconds".
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    retry_after_seconds: Optional[int] = None
    source: OutcomeSource = OutcomeSource.NONE
    state: CoordinatorState = CoordinatorState.IDLE
    cache_key: Optional[str] = None

    @property
    def from_cache(self) -> bool:
        """Whether the value was served from the cache."""
        return self.source == OutcomeSource.CACHE
