"""Config commands -- view and modify global configuration.

Provides the ``tiercache config`` sub-command group for reading, updating
and resetting :class:`~tiercache.models.GlobalConfig` (cache capacities,
the TTL table, metrics settings).
"""

from __future__ import annotations

from typing import Any

import typer

from tiercache.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show current configuration.

    Example::

        tiercache config show --json
    """
    from tiercache.config import get_config_dir, load_global_config

    config = load_global_config()
    info(f"Config directory: {get_config_dir()}")
    format_response(config.model_dump(mode="json"))


def _coerce(current: Any, value: str, key: str) -> Any:
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            error(f"Expected integer for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    if isinstance(current, float):
        try:
            return float(value)
        except ValueError:
            error(f"Expected number for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    return value


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g. 'cache.max_memory_entries' or 'cache.ttls.brands')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    The value is coerced to the type of the existing field and the whole
    config is validated before it is saved.

    Example::

        tiercache config set cache.max_storage_entries 200
        tiercache config set cache.ttls.search_results 90
        tiercache config set metrics.context_label storefront
    """
    from pydantic import ValidationError

    from tiercache.config import load_global_config, save_global_config
    from tiercache.models import GlobalConfig

    data = load_global_config().model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    coerced = _coerce(target[final_key], value, key)
    target[final_key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_global_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset configuration to defaults.

    Asks for confirmation unless ``--force`` is active.
    """
    from tiercache.config import reset_global_config

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force and not typer.confirm("Reset all config to defaults?"):
        info("Cancelled.")
        raise typer.Exit()

    reset_global_config()
    success("Configuration reset to defaults.")
