"""Config commands -- view and modify the global configuration.

Provides the ``cachegate config`` sub-command group for reading,
updating, and resetting the user's configuration file
(:class:`~cachegate.models.GlobalConfig`).  The settings tune the cache,
rate limiter, retry, and timeout layers.
"""

from __future__ import annotations

import typer

from cachegate.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show the effective configuration.

    Environment overrides (``CACHEGATE_*``) are applied, so this is what
    a coordinator built from the config would actually use.

    Example::

        cachegate config show
        cachegate --json config show
    """
    from cachegate.config import config_path, resolve_config

    config = resolve_config()
    info(f"Config file: {config_path()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'core.max_entries')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    Uses dot notation for nested keys.  The value is coerced to match the
    existing field's type (bool, int, or str) and the updated config is
    validated before saving.

    Raises:
        typer.Exit: With code 2 if the key path is invalid, the value
            cannot be coerced, or validation fails.

    Example::

        cachegate config set core.max_entries 500
        cachegate config set core.cancel_on_timeout true
    """
    from cachegate.config import load_config, save_config
    from cachegate.models import GlobalConfig

    config = load_config()
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target or isinstance(target[final_key], dict):
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    current = target[final_key]
    if isinstance(current, bool):
        coerced = value.lower() in ("true", "1", "yes")
    elif isinstance(current, int):
        try:
            coerced = int(value)
        except ValueError:
            error(f"Expected integer for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    else:
        coerced = value  # type: ignore[assignment]

    target[final_key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except Exception as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset configuration to defaults.

    Asks for confirmation unless ``--force`` is active.

    Example::

        cachegate config reset
        cachegate --force config reset
    """
    from cachegate.config import save_config
    from cachegate.models import GlobalConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_config(GlobalConfig())
    success("Configuration reset to defaults.")
