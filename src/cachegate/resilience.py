"""Retry with exponential backoff and a deadline guard for remote calls.

:class:`RetryExecutor` re-runs a failing coroutine factory up to
``max_retries`` extra times, sleeping ``base_delay_ms * 2 ** attempt``
between attempts (1 s, 2 s, ... with the defaults).  There is no jitter,
and every exception is retried the same way unless the remote call marks
it as :class:`~cachegate.exceptions.TerminalRemoteError`.

:class:`TimeoutGuard` races an awaitable against a timer.  By default the
losing call is **not** cancelled: it keeps running in the background and
its eventual result is discarded.  Such calls are tracked in
:attr:`TimeoutGuard.orphaned` so the leak stays visible.  Pass
``cancel_on_timeout=True`` to cancel them instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from cachegate.exceptions import RemoteTimeoutError, TerminalRemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[Any]]


class RetryExecutor:
    """Bounded retry around a fallible async operation.

    Args:
        max_retries: Retries after the first attempt.
        base_delay_ms: Delay before the first retry; doubles each attempt.
        sleep: Coroutine function taking seconds.  Tests inject a recorder.
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay_ms: int = 1000,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self._max_retries = max_retries
        self._base_delay_ms = base_delay_ms
        self._sleep = sleep or asyncio.sleep

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def delay_for(self, attempt: int) -> int:
        """Backoff in milliseconds after the failed attempt with index *attempt*."""
        return self._base_delay_ms * 2 ** attempt

    async def retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
    ) -> T:
        """Run *operation* until it succeeds or the attempts run out.

        Args:
            operation: Zero-argument callable returning a fresh awaitable
                for each attempt.
            max_retries: Overrides the executor's default for this call.

        Returns:
            The first successful result.

        Raises:
            Exception: The last error once every attempt has failed, or a
                :class:`~cachegate.exceptions.TerminalRemoteError` as soon
                as one is raised.
        """
        retries = self._max_retries if max_retries is None else max_retries

        for attempt in range(retries + 1):
            try:
                return await operation()
            except TerminalRemoteError:
                raise
            except Exception as exc:
                if attempt == retries:
                    raise
                delay_ms = self.delay_for(attempt)
                logger.warning(
                    "Attempt %d/%d failed: %s, retrying in %dms",
                    attempt + 1,
                    retries + 1,
                    exc,
                    delay_ms,
                )
                await self._sleep(delay_ms / 1000)

        raise AssertionError("unreachable")  # pragma: no cover


class TimeoutGuard:
    """Deadline race for a single awaitable.

    Args:
        cancel_on_timeout: Cancel the losing call instead of letting it run
            to completion in the background.
    """

    def __init__(self, cancel_on_timeout: bool = False) -> None:
        self._cancel_on_timeout = cancel_on_timeout
        self._orphans: set[asyncio.Future[Any]] = set()

    @property
    def orphaned(self) -> int:
        """Calls that lost their race and are still running."""
        return len(self._orphans)

    async def with_timeout(self, operation: Awaitable[T], timeout_ms: int) -> T:
        """Await *operation*, failing after *timeout_ms* milliseconds.

        Raises:
            RemoteTimeoutError: If the deadline passes first.
            Exception: Whatever *operation* raises if it settles first.
        """
        task = asyncio.ensure_future(operation)
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            self._abandon(task)
            raise

        if task in done:
            return task.result()

        logger.warning("Remote call exceeded %dms deadline", timeout_ms)
        self._abandon(task)
        raise RemoteTimeoutError(timeout_ms)

    def _abandon(self, task: asyncio.Future[Any]) -> None:
        if self._cancel_on_timeout:
            task.cancel()
            return
        self._orphans.add(task)
        task.add_done_callback(self._release)

    def _release(self, task: asyncio.Future[Any]) -> None:
        self._orphans.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Abandoned remote call failed after its deadline: %s", exc)
        else:
            logger.debug("Abandoned remote call finished after its deadline; result discarded")
