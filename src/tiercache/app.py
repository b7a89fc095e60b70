"""Typer application and CLI entry point for tiercache operator tooling.

Registers the ``cache``, ``metrics`` and ``config`` sub-command groups.
The :func:`main` function is the console-script entry point declared in
``pyproject.toml``; :class:`~tiercache.exceptions.TiercacheError`
instances exit with their ``exit_code`` and anything else writes a crash
log under the data directory.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from tiercache import __version__
from tiercache.commands.cache import cache_app
from tiercache.commands.config import config_app
from tiercache.commands.metrics import metrics_app
from tiercache.exit_codes import EXIT_ABORTED, EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="tiercache",
    help="Inspect and maintain the tiercache response cache and metric exports.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.add_typer(cache_app, name="cache", help="Persistent cache maintenance.")
app.add_typer(metrics_app, name="metrics", help="Metric snapshot inspection.")
app.add_typer(config_app, name="config", help="Configuration management.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tiercache {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool, no_color: bool = False) -> None:
    """Send ``tiercache`` log records to stderr through Rich.

    WARNING and above by default, DEBUG with ``--verbose``. Calling this
    again only adjusts the level.
    """
    logger = logging.getLogger("tiercache")
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=Console(stderr=True, no_color=no_color),
            show_time=False,
            show_path=False,
        )
        logger.addHandler(handler)
        logger.propagate = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    cache_dir: Optional[str] = typer.Option(
        None, "--cache-dir", help="Cache root directory (store lives in <dir>/store)."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmations."),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~tiercache.output.OutputManager`,
    configures logging, and stores shared options in ``ctx.obj``.
    """
    from tiercache.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    configure_logging(verbose, no_color=no_color)

    ctx.ensure_object(dict)
    ctx.obj["cache_dir"] = cache_dir
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_ABORTED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback to the data directory and return its path."""
    from tiercache.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``tiercache`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_ABORTED)
    except Exception as exc:
        from tiercache.exceptions import TiercacheError
        from tiercache.output import error

        if isinstance(exc, TiercacheError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
