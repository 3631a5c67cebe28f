"""Shared test fixtures for cachegate.

Provides fake clocks and sleepers so TTL, window, and backoff behaviour
can be tested without waiting, isolated config directories, output
state management, and a CLI runner.  These fixtures are discovered by
pytest automatically.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from cachegate.cache import CacheStore, MemoryBackend
from cachegate.models import CoreConfig
from cachegate.output import OutputFormat, OutputManager, reset_output, set_output


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingSleep:
    """Async sleeper that records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time; CliRunner swaps those streams, so a stale manager
    would write to closed files in the next test.  The same applies to
    the RichHandler that ``configure_logging`` installs.
    """
    yield
    reset_output()
    logger = logging.getLogger("cachegate")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    """Fake wall clock in epoch milliseconds."""
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    """Backoff sleeper that records delays in seconds."""
    return RecordingSleep()


# ---------------------------------------------------------------------------
# Cache fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def core_config() -> CoreConfig:
    """Default tuning with a small capacity to keep eviction tests fast."""
    return CoreConfig(max_entries=20)


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(memory_backend: MemoryBackend, core_config: CoreConfig, clock: FakeClock) -> CacheStore:
    """A CacheStore over an in-memory backend driven by the fake clock."""
    return CacheStore(memory_backend, core_config, clock=clock)


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and cache directories to *tmp_path*.

    Sets the XDG variables to subdirectories of tmp_path so tests never
    touch real user files, forces the XDG layout, and clears every
    ``CACHEGATE_*`` environment variable.

    Returns:
        The tmp_path root directory.
    """
    monkeypatch.setattr("cachegate.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for field in CoreConfig.model_fields:
        monkeypatch.delenv(f"CACHEGATE_{field.upper()}", raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a quiet PLAIN-format OutputManager for the duration of a test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
