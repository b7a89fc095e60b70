"""Cache commands -- inspect and maintain the persistent cache tier.

Provides the ``tiercache cache`` sub-command group. A fresh CLI process
has an empty volatile tier, so these commands effectively operate on the
on-disk store shared with applications using the same cache directory
and key prefix.
"""

from __future__ import annotations

from typing import Optional

import typer

from tiercache.cache import CacheFacade
from tiercache.exceptions import StorageUnavailableError
from tiercache.output import error, format_response, info, print_table, success


cache_app = typer.Typer(no_args_is_help=True)


def _open_cache(ctx: typer.Context) -> CacheFacade:
    """Build a facade over the configured store.

    Raises:
        StorageUnavailableError: If the store directory cannot be opened.
    """
    from tiercache.cache import create_cache
    from tiercache.config import resolve_config

    cache_dir: Optional[str] = ctx.obj.get("cache_dir") if ctx.obj else None
    config, store_dir = resolve_config(cli_cache_dir=cache_dir)
    config.cache.enabled_persistent = True
    cache = create_cache(store_dir, config.cache)
    if cache.persistent is None or not cache.persistent.available:
        raise StorageUnavailableError(f"Persistent cache store unavailable at {store_dir}")
    return cache


def _parse_params(pairs: list[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            error(f"Expected NAME=VALUE, got: {pair}")
            raise typer.Exit(code=2)
        params[name] = value
    return params


@cache_app.command("stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show entry counts and the effective cache configuration.

    Example::

        tiercache cache stats --json
    """
    cache = _open_cache(ctx)
    try:
        format_response(cache.get_stats())
    finally:
        cache.close()


@cache_app.command("keys")
def cache_keys(ctx: typer.Context) -> None:
    """List persisted keys, oldest first."""
    cache = _open_cache(ctx)
    try:
        assert cache.persistent is not None
        keys = cache.persistent.keys()
        print_table(["key"], [[k] for k in keys], title="Persisted keys")
        info(f"{len(keys)} entries")
    finally:
        cache.close()


@cache_app.command("key")
def cache_key(
    namespace: str = typer.Argument(help="Cache namespace, e.g. 'products'."),
    params: Optional[list[str]] = typer.Argument(None, help="Parameters as NAME=VALUE."),
) -> None:
    """Print the cache key an application would use for a lookup.

    Example::

        tiercache cache key products brand=acme page=2
    """
    key = CacheFacade.generate_key(namespace, _parse_params(params or []))
    typer.echo(key)


@cache_app.command("get")
def cache_get(
    ctx: typer.Context,
    key: str = typer.Argument(help="Exact cache key (see 'tiercache cache key')."),
) -> None:
    """Print the live value stored under KEY.

    Exits with code 4 if the key is absent or expired.
    """
    from tiercache.exit_codes import EXIT_NOT_FOUND

    cache = _open_cache(ctx)
    try:
        sentinel = object()
        value = cache.get(key, default=sentinel)
        if value is sentinel:
            error(f"No live entry for key: {key}")
            raise typer.Exit(code=EXIT_NOT_FOUND)
        format_response(value)
    finally:
        cache.close()


@cache_app.command("invalidate")
def cache_invalidate(
    ctx: typer.Context,
    pattern: str = typer.Argument(help="Substring; every key containing it is removed."),
) -> None:
    """Remove every entry whose key contains PATTERN.

    Example::

        tiercache cache invalidate products
    """
    cache = _open_cache(ctx)
    try:
        removed = cache.invalidate_pattern(pattern)
        success(f"Removed {removed} entries matching '{pattern}'.")
    finally:
        cache.close()


@cache_app.command("sweep")
def cache_sweep(ctx: typer.Context) -> None:
    """Delete expired or corrupt entries and enforce the size cap."""
    cache = _open_cache(ctx)
    try:
        assert cache.persistent is not None
        removed = cache.persistent.cleanup()
        success(f"Swept {removed} entries; {cache.persistent.size()} remain.")
    finally:
        cache.close()


@cache_app.command("clear")
def cache_clear(ctx: typer.Context) -> None:
    """Remove every entry under the configured key prefix.

    Asks for confirmation unless ``--force`` is active.
    """
    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force and not typer.confirm("Remove all cached entries?"):
        info("Cancelled.")
        raise typer.Exit()

    cache = _open_cache(ctx)
    try:
        cache.clear()
        success("Cache cleared.")
    finally:
        cache.close()
