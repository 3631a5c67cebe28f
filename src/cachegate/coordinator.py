"""The composed request path: cache, admission, retry, and timeout.

:class:`RequestCoordinator` runs every logical request through the same
sequence of states::

    IDLE -> KEY_DERIVED -> CACHE_CHECKED -> HIT_RETURN
                                         -> RATE_CHECKED -> RATE_LIMITED_RETURN
                                                         -> CALLING -> SUCCESS_CACHE_WRITE
                                                                    -> FAILURE_RETURN

1. Derive the content-addressed key (:mod:`cachegate.keys`).
2. Look the key up in the :class:`~cachegate.cache.CacheStore`.  A hit is
   returned at once and the rate limiter is never consulted: cached
   responses are free.
3. On a miss, ask the :class:`~cachegate.limiter.RateLimiter` for
   admission.  A refusal is returned as a typed outcome carrying the
   whole seconds until the window resets.
4. Call the remote function under
   :class:`~cachegate.resilience.RetryExecutor` and
   :class:`~cachegate.resilience.TimeoutGuard`.
5. Store a successful result best effort and return it, or return the
   last error as a typed failure.

If steps 1 and 2 themselves blow up, the coordinator fails open: it calls
the remote function exactly once, with no caching, admission control,
retry, or deadline, and reports whatever that yields
(``FALLBACK_RETURN``).
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, Optional

from cachegate.cache import CacheBackend, CacheStore, MemoryBackend
from cachegate.exceptions import (
    CacheSubsystemError,
    RateLimitExceededError,
    RemoteTimeoutError,
)
from cachegate.keys import key_for_request
from cachegate.limiter import RateLimiter
from cachegate.models import (
    AnalysisRequest,
    CoordinatorState,
    CoreConfig,
    ErrorKind,
    OutcomeSource,
    RequestOutcome,
)
from cachegate.resilience import RetryExecutor, Sleeper, TimeoutGuard

logger = logging.getLogger(__name__)

RemoteCall = Callable[[AnalysisRequest], Awaitable[Any]]

_MISS = object()


class RequestCoordinator:
    """Cache-first, rate-limited, retried, time-bounded request path.

    All collaborators are injected so that tests (and several remote
    services in one process) get isolated instances.  Use
    :meth:`from_config` to build a wired coordinator from a
    :class:`~cachegate.models.CoreConfig`.

    Args:
        remote_call: Coroutine function performing the actual analysis
            call.  It may raise; any exception counts as a failed attempt.
        cache: Response cache, or ``None`` to disable caching.
        limiter: Admission control for the remote service.
        retry_executor: Retry policy around each remote call.
        timeout_guard: Deadline race around each attempt.
        timeout_ms: Deadline for a single attempt.
        schema_version: Key schema version used when *cache* is ``None``;
            otherwise the cache's own version is used.

    Example::

        coordinator = RequestCoordinator.from_config(CoreConfig(), call_provider)
        outcome = await coordinator.execute(request)
        if outcome.error_kind == ErrorKind.RATE_LIMITED:
            print(f"Retry in {outcome.retry_after_seconds} seconds")
    """

    def __init__(
        self,
        remote_call: RemoteCall,
        cache: Optional[CacheStore],
        limiter: RateLimiter,
        retry_executor: RetryExecutor,
        timeout_guard: TimeoutGuard,
        timeout_ms: int = 30000,
        schema_version: int = 1,
    ) -> None:
        self._remote_call = remote_call
        self._cache = cache
        self._limiter = limiter
        self._retry = retry_executor
        self._timeout = timeout_guard
        self._timeout_ms = timeout_ms
        self._schema_version = cache.schema_version if cache is not None else schema_version

    @classmethod
    def from_config(
        cls,
        config: CoreConfig,
        remote_call: RemoteCall,
        backend: Optional[CacheBackend] = None,
        cache_clock: Optional[Callable[[], int]] = None,
        limiter_clock: Optional[Callable[[], int]] = None,
        sleep: Optional[Sleeper] = None,
    ) -> RequestCoordinator:
        """Build a coordinator and its collaborators from *config*.

        Args:
            config: Tuning knobs for every layer.
            remote_call: The analysis call to protect.
            backend: Cache persistence; defaults to a :class:`MemoryBackend`.
                Ignored when ``config.cache_enabled`` is false.
            cache_clock: Wall clock for cache timestamps (epoch ms).
            limiter_clock: Clock for the rate limiter (ms).
            sleep: Backoff sleeper taking seconds.
        """
        cache: Optional[CacheStore] = None
        if config.cache_enabled:
            cache = CacheStore(backend or MemoryBackend(), config, clock=cache_clock)
        return cls(
            remote_call=remote_call,
            cache=cache,
            limiter=RateLimiter(
                capacity=config.rate_limit_capacity,
                window_ms=config.rate_limit_window_ms,
                clock=limiter_clock,
            ),
            retry_executor=RetryExecutor(
                max_retries=config.max_retries,
                base_delay_ms=config.retry_base_delay_ms,
                sleep=sleep,
            ),
            timeout_guard=TimeoutGuard(cancel_on_timeout=config.cancel_on_timeout),
            timeout_ms=config.remote_timeout_ms,
            schema_version=config.schema_version,
        )

    @property
    def cache(self) -> Optional[CacheStore]:
        return self._cache

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def timeout_guard(self) -> TimeoutGuard:
        return self._timeout

    async def execute(self, request: AnalysisRequest) -> RequestOutcome:
        """Run *request* through the cache-first request path.

        Never raises for cache, rate-limit, or remote failures; those are
        reported on the returned :class:`~cachegate.models.RequestOutcome`.
        """
        try:
            key, cached = await self._check_cache(request)
        except CacheSubsystemError as exc:
            logger.error("Cache subsystem failed, calling remote directly: %s", exc)
            return await self._call_fail_open(request)

        if cached is not _MISS:
            self._trace(key, CoordinatorState.HIT_RETURN)
            return RequestOutcome(
                success=True,
                data=cached,
                source=OutcomeSource.CACHE,
                state=CoordinatorState.HIT_RETURN,
                cache_key=key,
            )

        self._trace(key, CoordinatorState.RATE_CHECKED)
        if not self._limiter.try_request():
            retry_after = math.ceil(self._limiter.get_time_until_reset() / 1000)
            refusal = RateLimitExceededError(retry_after)
            logger.info("Request %s refused: %s", key[:12], refusal)
            self._trace(key, CoordinatorState.RATE_LIMITED_RETURN)
            return RequestOutcome(
                success=False,
                error=str(refusal),
                error_kind=ErrorKind.RATE_LIMITED,
                retry_after_seconds=retry_after,
                state=CoordinatorState.RATE_LIMITED_RETURN,
                cache_key=key,
            )

        self._trace(key, CoordinatorState.CALLING)
        try:
            result = await self._retry.retry(
                lambda: self._timeout.with_timeout(self._remote_call(request), self._timeout_ms)
            )
        except Exception as exc:
            logger.error("Remote call for %s failed after retries: %s", key[:12], exc)
            self._trace(key, CoordinatorState.FAILURE_RETURN)
            return RequestOutcome(
                success=False,
                error=_message(exc),
                error_kind=ErrorKind.TIMEOUT if isinstance(exc, RemoteTimeoutError) else ErrorKind.REMOTE,
                source=OutcomeSource.REMOTE,
                state=CoordinatorState.FAILURE_RETURN,
                cache_key=key,
            )

        self._trace(key, CoordinatorState.SUCCESS_CACHE_WRITE)
        await self._store(key, result, request.namespace)
        return RequestOutcome(
            success=True,
            data=result,
            source=OutcomeSource.REMOTE,
            state=CoordinatorState.SUCCESS_CACHE_WRITE,
            cache_key=key,
        )

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _check_cache(self, request: AnalysisRequest) -> tuple[str, Any]:
        """Derive the key and look it up, wrapping any failure."""
        try:
            key = key_for_request(request, self._schema_version)
            self._trace(key, CoordinatorState.KEY_DERIVED)
            if self._cache is None:
                return key, _MISS
            cached = await asyncio.to_thread(self._cache.get, key, _MISS)
        except Exception as exc:
            raise CacheSubsystemError(_message(exc)) from exc
        self._trace(key, CoordinatorState.CACHE_CHECKED)
        return key, cached

    async def _store(self, key: str, result: Any, namespace: str) -> None:
        if self._cache is None:
            return
        try:
            await asyncio.to_thread(self._cache.set, key, result, namespace)
        except Exception as exc:
            logger.warning("Discarding cache write for %s: %s", key[:12], exc)

    async def _call_fail_open(self, request: AnalysisRequest) -> RequestOutcome:
        """Single unguarded remote call used when the cache subsystem is broken."""
        try:
            result = await self._remote_call(request)
        except Exception as exc:
            return RequestOutcome(
                success=False,
                error=_message(exc),
                error_kind=ErrorKind.REMOTE,
                source=OutcomeSource.FALLBACK,
                state=CoordinatorState.FALLBACK_RETURN,
            )
        return RequestOutcome(
            success=True,
            data=result,
            source=OutcomeSource.FALLBACK,
            state=CoordinatorState.FALLBACK_RETURN,
        )

    @staticmethod
    def _trace(key: str, state: CoordinatorState) -> None:
        logger.debug("Request %s -> %s", key[:12], state.value)


def _message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__
