"""Tests for RequestCoordinator, the composed request path."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from cachegate.cache import CacheStore, MemoryBackend
from cachegate.coordinator import RequestCoordinator
from cachegate.exceptions import CacheWriteError, RemoteCallError, TerminalRemoteError
from cachegate.keys import key_for_request
from cachegate.limiter import RateLimiter
from cachegate.models import (
    AnalysisRequest,
    CoordinatorState,
    CoreConfig,
    ErrorKind,
    OutcomeSource,
)
from cachegate.resilience import RetryExecutor, TimeoutGuard
from conftest import FakeClock, RecordingSleep


class FakeRemote:
    """Scripted remote call.

    Each entry of *script* is either a value to return or an exception to
    raise; the last entry repeats once the script is exhausted.
    """

    def __init__(self, *script: Any, delay: float = 0.0) -> None:
        self.script = list(script) or [{"summary": "ok"}]
        self.delay = delay
        self.calls: list[AnalysisRequest] = []

    async def __call__(self, request: AnalysisRequest) -> Any:
        index = min(len(self.calls), len(self.script) - 1)
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        step = self.script[index]
        if isinstance(step, Exception):
            raise step
        return step


class ExplodingCache:
    """Cache stand-in whose reads blow up outside the read-error contract."""

    schema_version = 1

    def get(self, key: str, default: Any = None) -> Any:
        raise RuntimeError("cache document corrupted")

    def set(self, key: str, value: Any, namespace: str) -> bool:
        raise AssertionError("fail-open path must not write")


class RefusingCache(CacheStore):
    """CacheStore whose writes always fail."""

    def put(self, key: str, value: Any, namespace: str) -> None:
        raise CacheWriteError("disk full")


@pytest.fixture
def request_() -> AnalysisRequest:
    return AnalysisRequest(namespace="claude", content="Prefer early returns.", context=["def f(): ..."])


def _build(
    remote: FakeRemote,
    clock: FakeClock,
    sleeper: RecordingSleep,
    **overrides: Any,
) -> RequestCoordinator:
    config = CoreConfig(**overrides)
    return RequestCoordinator.from_config(
        config,
        remote,
        cache_clock=clock,
        limiter_clock=clock,
        sleep=sleeper,
    )


def _run(coordinator: RequestCoordinator, request: AnalysisRequest):
    return asyncio.run(coordinator.execute(request))


# ------------------------------------------------------------------ #
# Cache path
# ------------------------------------------------------------------ #


class TestCachePath:
    def test_miss_calls_remote_and_caches(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote({"summary": "fresh"})
        coordinator = _build(remote, clock, sleeper)

        outcome = _run(coordinator, request_)

        assert outcome.success is True
        assert outcome.data == {"summary": "fresh"}
        assert outcome.source == OutcomeSource.REMOTE
        assert outcome.state == CoordinatorState.SUCCESS_CACHE_WRITE
        assert outcome.cache_key == key_for_request(request_, 1)
        assert coordinator.cache.get(outcome.cache_key) == {"summary": "fresh"}

    def test_identical_request_served_from_cache(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        """A second identical request is a hit and the remote is called once."""
        remote = FakeRemote({"summary": "fresh"})
        coordinator = _build(remote, clock, sleeper)

        _run(coordinator, request_)
        outcome = _run(coordinator, AnalysisRequest(**request_.model_dump()))

        assert outcome.success is True
        assert outcome.from_cache is True
        assert outcome.state == CoordinatorState.HIT_RETURN
        assert outcome.data == {"summary": "fresh"}
        assert len(remote.calls) == 1

    def test_cache_hit_does_not_consume_rate_limit(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote()
        coordinator = _build(remote, clock, sleeper, rate_limit_capacity=1)

        _run(coordinator, request_)
        for _ in range(5):
            assert _run(coordinator, request_).from_cache is True
        assert coordinator.limiter.state().count == 1

    def test_cache_disabled_always_calls_remote(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote()
        coordinator = _build(remote, clock, sleeper, cache_enabled=False)

        _run(coordinator, request_)
        outcome = _run(coordinator, request_)

        assert coordinator.cache is None
        assert outcome.source == OutcomeSource.REMOTE
        assert len(remote.calls) == 2

    def test_options_forwarded_but_not_keyed(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote()
        coordinator = _build(remote, clock, sleeper)

        tuned = request_.model_copy(update={"options": {"model": "large"}})
        _run(coordinator, tuned)
        assert remote.calls[0].options == {"model": "large"}
        assert _run(coordinator, request_).from_cache is True

    def test_cache_write_failure_still_succeeds(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote({"summary": "fresh"})
        config = CoreConfig()
        coordinator = RequestCoordinator(
            remote_call=remote,
            cache=RefusingCache(MemoryBackend(), config, clock=clock),
            limiter=RateLimiter(clock=clock),
            retry_executor=RetryExecutor(sleep=sleeper),
            timeout_guard=TimeoutGuard(),
        )

        outcome = _run(coordinator, request_)

        assert outcome.success is True
        assert outcome.data == {"summary": "fresh"}
        assert outcome.state == CoordinatorState.SUCCESS_CACHE_WRITE


# ------------------------------------------------------------------ #
# Rate limiting
# ------------------------------------------------------------------ #


class TestRateLimiting:
    def test_eleventh_distinct_request_refused(
        self, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote()
        coordinator = _build(remote, clock, sleeper)

        for i in range(10):
            assert _run(coordinator, AnalysisRequest(namespace="claude", content=f"c{i}")).success

        clock.advance(20_500)
        outcome = _run(coordinator, AnalysisRequest(namespace="claude", content="c10"))

        assert outcome.success is False
        assert outcome.error_kind == ErrorKind.RATE_LIMITED
        assert outcome.state == CoordinatorState.RATE_LIMITED_RETURN
        # 39.5 s left in the window, rounded up
        assert outcome.retry_after_seconds == 40
        assert outcome.error == "Rate limit exceeded, retry in 40 seconds"
        assert len(remote.calls) == 10

    def test_admitted_again_after_window(
        self, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote()
        coordinator = _build(remote, clock, sleeper, rate_limit_capacity=1)

        _run(coordinator, AnalysisRequest(namespace="claude", content="a"))
        assert not _run(coordinator, AnalysisRequest(namespace="claude", content="b")).success

        clock.advance(60_000)
        assert _run(coordinator, AnalysisRequest(namespace="claude", content="b")).success


# ------------------------------------------------------------------ #
# Remote failures
# ------------------------------------------------------------------ #


class TestRemoteFailures:
    def test_transient_failures_are_retried(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote(RemoteCallError("HTTP 503: busy"), RemoteCallError("HTTP 503: busy"), "ok")
        coordinator = _build(remote, clock, sleeper)

        outcome = _run(coordinator, request_)

        assert outcome.success is True
        assert outcome.data == "ok"
        assert len(remote.calls) == 3
        assert sleeper.delays == [1.0, 2.0]

    def test_exhausted_retries_return_failure(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote(RemoteCallError("HTTP 500: boom"))
        coordinator = _build(remote, clock, sleeper)

        outcome = _run(coordinator, request_)

        assert outcome.success is False
        assert outcome.error_kind == ErrorKind.REMOTE
        assert outcome.error == "HTTP 500: boom"
        assert outcome.state == CoordinatorState.FAILURE_RETURN
        assert len(remote.calls) == 3
        assert coordinator.cache.get(outcome.cache_key) is None

    def test_failed_attempts_count_once_against_limit(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote(RemoteCallError("HTTP 500: boom"))
        coordinator = _build(remote, clock, sleeper)
        _run(coordinator, request_)
        assert coordinator.limiter.state().count == 1

    def test_terminal_error_skips_retries(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote(TerminalRemoteError("HTTP 401: invalid key"))
        coordinator = _build(remote, clock, sleeper)

        outcome = _run(coordinator, request_)

        assert outcome.success is False
        assert outcome.error_kind == ErrorKind.REMOTE
        assert len(remote.calls) == 1
        assert sleeper.delays == []

    def test_error_without_message_uses_class_name(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote(RuntimeError())
        coordinator = _build(remote, clock, sleeper, max_retries=0)
        assert _run(coordinator, request_).error == "RuntimeError"

    def test_timeout_reported_as_timeout(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote("late", delay=0.2)
        coordinator = _build(
            remote, clock, sleeper, remote_timeout_ms=20, max_retries=1, cancel_on_timeout=True
        )

        outcome = _run(coordinator, request_)

        assert outcome.success is False
        assert outcome.error_kind == ErrorKind.TIMEOUT
        assert outcome.error == "Request timeout after 20ms"
        assert len(remote.calls) == 2
        assert sleeper.delays == [1.0]


# ------------------------------------------------------------------ #
# Fail-open fallback
# ------------------------------------------------------------------ #


class TestFailOpen:
    def _coordinator(self, remote: FakeRemote, sleeper: RecordingSleep) -> RequestCoordinator:
        return RequestCoordinator(
            remote_call=remote,
            cache=ExplodingCache(),  # type: ignore[arg-type]
            limiter=RateLimiter(capacity=1),
            retry_executor=RetryExecutor(sleep=sleeper),
            timeout_guard=TimeoutGuard(),
        )

    def test_broken_cache_calls_remote_once(
        self, request_: AnalysisRequest, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote({"summary": "direct"})
        coordinator = self._coordinator(remote, sleeper)

        outcome = _run(coordinator, request_)

        assert outcome.success is True
        assert outcome.data == {"summary": "direct"}
        assert outcome.source == OutcomeSource.FALLBACK
        assert outcome.state == CoordinatorState.FALLBACK_RETURN
        assert len(remote.calls) == 1
        assert coordinator.limiter.state().count == 0

    def test_fallback_failure_is_not_retried(
        self, request_: AnalysisRequest, sleeper: RecordingSleep
    ) -> None:
        remote = FakeRemote(RemoteCallError("HTTP 503: busy"))
        coordinator = self._coordinator(remote, sleeper)

        outcome = _run(coordinator, request_)

        assert outcome.success is False
        assert outcome.error == "HTTP 503: busy"
        assert outcome.source == OutcomeSource.FALLBACK
        assert len(remote.calls) == 1
        assert sleeper.delays == []

    def test_unreadable_backend_is_just_a_miss(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        """Backend read errors are absorbed by the store, not the fallback path."""

        class UnreadableBackend(MemoryBackend):
            def load(self):
                raise OSError("disk unavailable")

        remote = FakeRemote("ok")
        coordinator = RequestCoordinator.from_config(
            CoreConfig(), remote, backend=UnreadableBackend(), cache_clock=clock,
            limiter_clock=clock, sleep=sleeper,
        )

        outcome = _run(coordinator, request_)

        assert outcome.success is True
        assert outcome.source == OutcomeSource.REMOTE
        assert coordinator.limiter.state().count == 1


# ------------------------------------------------------------------ #
# Construction
# ------------------------------------------------------------------ #


class TestFromConfig:
    def test_wires_collaborators(self, clock: FakeClock, sleeper: RecordingSleep) -> None:
        config = CoreConfig(
            schema_version=7,
            max_entries=50,
            rate_limit_capacity=3,
            rate_limit_window_ms=1000,
            cancel_on_timeout=True,
        )
        coordinator = RequestCoordinator.from_config(config, FakeRemote(), limiter_clock=clock)

        assert coordinator.cache.schema_version == 7
        assert coordinator.cache.max_entries == 50
        assert coordinator.limiter.capacity == 3
        assert coordinator.limiter.window_ms == 1000

    def test_key_uses_schema_version(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        coordinator = _build(FakeRemote(), clock, sleeper, schema_version=3)
        outcome = _run(coordinator, request_)
        assert outcome.cache_key == key_for_request(request_, 3)

    def test_coordinators_are_isolated(
        self, request_: AnalysisRequest, clock: FakeClock, sleeper: RecordingSleep
    ) -> None:
        first = _build(FakeRemote(), clock, sleeper, rate_limit_capacity=1)
        second = _build(FakeRemote(), clock, sleeper, rate_limit_capacity=1)

        _run(first, request_)
        assert _run(second, request_).source == OutcomeSource.REMOTE
