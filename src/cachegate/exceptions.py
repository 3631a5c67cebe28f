"""Exception hierarchy for cachegate.

All exceptions inherit from :class:`CachegateError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`cachegate.exit_codes`.
The CLI entry point in :func:`cachegate.app.main` catches
``CachegateError`` and exits with the matching code.

Inside the request path most of these never reach the caller: cache
errors are mapped to misses or discarded, and rate-limit and remote
failures are turned into :class:`~cachegate.models.RequestOutcome`
values by the coordinator.

Subclass hierarchy::

    CachegateError (exit 1)
    +-- ConfigError              (exit 1)
    +-- CacheError               (exit 3)
    |   +-- CacheReadError
    |   +-- CacheWriteError
    |   +-- CacheSubsystemError
    +-- RateLimitExceededError   (exit 4)
    +-- RemoteCallError          (exit 5)
        +-- RemoteTimeoutError   (exit 6)
        +-- TerminalRemoteError
"""

from __future__ import annotations

from cachegate.exit_codes import (
    EXIT_CACHE_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_RATE_LIMITED,
    EXIT_REMOTE_ERROR,
    EXIT_TIMEOUT,
)


class CachegateError(Exception):
    """Base exception for all cachegate errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(CachegateError):
    """Raised for configuration problems (invalid JSON, out-of-range values)."""

    exit_code = EXIT_GENERIC_FAILURE


class CacheError(CachegateError):
    """Raised when the cache storage cannot be read, written, or cleared."""

    exit_code = EXIT_CACHE_ERROR


class CacheReadError(CacheError):
    """Raised by :meth:`~cachegate.cache.CacheStore.lookup` when storage cannot be read.

    :meth:`~cachegate.cache.CacheStore.get` degrades it to a miss.
    """


class CacheWriteError(CacheError):
    """Raised by :meth:`~cachegate.cache.CacheStore.put` when storage cannot be written.

    :meth:`~cachegate.cache.CacheStore.set` absorbs it.
    """


class CacheSubsystemError(CacheError):
    """Raised when key derivation or the cache lookup itself malfunctions.

    The coordinator reacts by bypassing caching and admission control for
    that single call.
    """


class RateLimitExceededError(CachegateError):
    """Raised when the rate limiter refuses a request.

    Args:
        retry_after_seconds: Whole seconds until the current window resets.
    """

    exit_code = EXIT_RATE_LIMITED

    def __init__(self, retry_after_seconds: int, message: str | None = None):
        super().__init__(
            message or f"Rate limit exceeded, retry in {retry_after_seconds} seconds"
        )
        self.retry_after_seconds = retry_after_seconds


class RemoteCallError(CachegateError):
    """Raised when the remote analysis call fails."""

    exit_code = EXIT_REMOTE_ERROR


class RemoteTimeoutError(RemoteCallError):
    """Raised by :class:`~cachegate.resilience.TimeoutGuard` when the deadline passes first.

    Args:
        timeout_ms: The deadline that elapsed, in milliseconds.
    """

    exit_code = EXIT_TIMEOUT

    def __init__(self, timeout_ms: int):
        super().__init__(f"Request timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class TerminalRemoteError(RemoteCallError):
    """Raised by a remote call for failures that retrying cannot fix.

    :class:`~cachegate.resilience.RetryExecutor` re-raises it immediately
    instead of backing off (e.g. a malformed request rejected with HTTP 400).
    """
