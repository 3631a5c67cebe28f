"""Configuration management with XDG paths, atomic writes, and env overrides.

This module handles all persistent configuration for cachegate:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.cachegate/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **Global config** -- A single :class:`~cachegate.models.GlobalConfig`
  JSON file holding the ``core`` tuning knobs and output preferences.
* **Precedence resolution** -- :func:`resolve_config` layers
  ``CACHEGATE_*`` environment variables over the config file over
  defaults.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from cachegate.exceptions import ConfigError
from cachegate.models import CoreConfig, GlobalConfig

_APP_NAME = "cachegate"
_CONFIG_FILENAME = "config.json"
ENV_PREFIX = "CACHEGATE_"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/cachegate/`` (default ``~/.config/cachegate/``).
    On macOS/Windows: ``~/.cachegate/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the cache directory, creating it if necessary.

    Holds the response cache database.  Its contents can be deleted at any
    time; the next request simply misses.

    On Linux/BSD: ``$XDG_CACHE_HOME/cachegate/`` (default ``~/.cache/cachegate/``).
    On macOS/Windows: ``~/.cachegate/cache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/cachegate/`` (default ``~/.local/share/cachegate/``).
    On macOS/Windows: ``~/.cachegate/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems.  On any failure
    the temp file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~cachegate.models.GlobalConfig`, or a
        default instance if the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    _atomic_write(config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def env_overrides(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Collect ``CACHEGATE_<FIELD>`` overrides for :class:`CoreConfig` fields.

    Values are returned as raw strings (booleans normalised); Pydantic
    coerces and validates them in :func:`resolve_config`.

    Example::

        CACHEGATE_MAX_ENTRIES=50 CACHEGATE_CANCEL_ON_TIMEOUT=true
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name, field in CoreConfig.model_fields.items():
        raw = env.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None or raw == "":
            continue
        if field.annotation is bool:
            overrides[name] = raw.strip().lower() in ("true", "1", "yes", "on")
        else:
            overrides[name] = raw.strip()
    return overrides


def resolve_config(environ: Optional[dict[str, str]] = None) -> GlobalConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. Environment variables (``CACHEGATE_MAX_RETRIES`` etc.)
        2. User config (``~/.config/cachegate/config.json``)
        3. Defaults

    Raises:
        ConfigError: If the file is invalid or an override fails validation.
    """
    global_cfg = load_config()
    overrides = env_overrides(environ)
    if not overrides:
        return global_cfg

    core_data = global_cfg.core.model_dump()
    core_data.update(overrides)
    try:
        global_cfg.core = CoreConfig.model_validate(core_data)
    except ValidationError as exc:
        names = ", ".join(f"{ENV_PREFIX}{k.upper()}" for k in overrides)
        raise ConfigError(f"Invalid environment override ({names}): {exc}") from exc
    return global_cfg
