"""Cache commands -- inspect and maintain the on-disk response cache.

Provides the ``cachegate cache`` sub-command group (``stats``, ``clear``,
``delete``) and the top-level ``cachegate key`` command.  All commands
operate on the disk cache under :func:`~cachegate.config.get_cache_dir`
using the effective configuration from
:func:`~cachegate.config.resolve_config`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import typer

from cachegate.output import (
    OutputFormat,
    format_response,
    get_output,
    info,
    print_data,
    print_table,
    success,
    warning,
)

cache_app = typer.Typer(no_args_is_help=True)


def _open_store():
    """Open the disk-backed :class:`~cachegate.cache.CacheStore` for the active config."""
    from cachegate.cache import CacheStore, DiskBackend
    from cachegate.config import get_cache_dir, resolve_config

    config = resolve_config()
    if not config.core.cache_enabled:
        warning("Caching is disabled in the configuration (core.cache_enabled)")
    backend = DiskBackend(get_cache_dir())
    return CacheStore(backend, config.core), backend


def _format_timestamp(value: Optional[int]) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat(timespec="seconds")


@cache_app.command("stats")
def cache_stats() -> None:
    """Show cache statistics.

    Hit and miss counters only cover the current process, so they read
    zero here; entry count, size, and age range come from disk.

    Example::

        cachegate cache stats
        cachegate --json cache stats
    """
    store, backend = _open_store()
    try:
        stats = store.stats()
    finally:
        store.close()

    info(f"Cache directory: {backend.directory}")
    if get_output().format == OutputFormat.JSON:
        format_response(stats.model_dump(mode="json"))
        return

    rows = [
        ["total_entries", str(stats.total_entries)],
        ["hit_count", str(stats.hit_count)],
        ["miss_count", str(stats.miss_count)],
        ["approx_size_bytes", str(stats.approx_size_bytes)],
        ["oldest_entry", _format_timestamp(stats.oldest_entry_timestamp)],
        ["newest_entry", _format_timestamp(stats.newest_entry_timestamp)],
    ]
    print_table(["field", "value"], rows, title="Response cache")


@cache_app.command("clear")
def cache_clear(ctx: typer.Context) -> None:
    """Remove every cached response.

    Asks for confirmation unless ``--force`` is active.

    Example::

        cachegate cache clear
        cachegate --force cache clear
    """
    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Remove all cached responses?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    store, _ = _open_store()
    try:
        store.clear()
    finally:
        store.close()
    success("Cache cleared successfully.")


@cache_app.command("delete")
def cache_delete(
    key: str = typer.Argument(help="Cache key as printed by 'cachegate key'."),
) -> None:
    """Remove a single cached response by key."""
    store, _ = _open_store()
    try:
        store.delete(key)
    finally:
        store.close()
    success(f"Deleted {key}")


def key_command(
    namespace: str = typer.Argument(help="Namespace, usually the provider name."),
    content: str = typer.Argument(help="Request content."),
    context: list[str] = typer.Option(
        [], "--context", "-c", help="Context string (repeatable, order matters)."
    ),
) -> None:
    """Print the cache key a request would be stored under.

    Example::

        cachegate key claude "Use early returns" -c "if x: return 1"
    """
    from cachegate.config import resolve_config
    from cachegate.keys import key_for_request
    from cachegate.models import AnalysisRequest

    config = resolve_config()
    request = AnalysisRequest(namespace=namespace, content=content, context=list(context))
    print_data(key_for_request(request, config.core.schema_version))
