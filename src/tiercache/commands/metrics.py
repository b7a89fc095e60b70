"""Metrics commands -- read exported metric snapshots.

Applications write snapshots with
:meth:`~tiercache.metrics.MetricsCollector.write_export`. The
``tiercache metrics`` group summarises one snapshot or compares two, so
runs can be diffed without the application being alive.
"""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError

from tiercache.metrics import MetricsCollector, Snapshot, Summary
from tiercache.output import (
    OutputFormat,
    error,
    format_response,
    get_output,
    info,
    print_table,
)


metrics_app = typer.Typer(no_args_is_help=True)


def load_snapshot(path: Path) -> Snapshot:
    """Read and validate a snapshot file, exiting with code 2 if it is unusable."""
    try:
        return Snapshot.model_validate_json(path.read_text(encoding="utf-8"))
    except OSError as exc:
        error(f"Cannot read {path}: {exc}")
        raise typer.Exit(code=2) from None
    except ValidationError as exc:
        error(f"Invalid metrics snapshot {path}: {exc.error_count()} problems")
        raise typer.Exit(code=2) from None


def summarize(snapshot: Snapshot) -> Summary:
    return MetricsCollector.from_snapshot(snapshot).get_summary()


def _fmt(value: float) -> str:
    return f"{value:.2f}"


@metrics_app.command("show")
def metrics_show(
    path: Path = typer.Argument(help="Snapshot file written by write_export()."),
) -> None:
    """Summarise a metrics snapshot.

    Rates and averages cover the records in the snapshot only.

    Example::

        tiercache metrics show metrics.json
        tiercache --json metrics show metrics.json
    """
    snapshot = load_snapshot(path)
    summary = summarize(snapshot)
    info(f"Snapshot '{snapshot.context_label}' taken at {snapshot.timestamp:.0f}")

    if get_output().format == OutputFormat.JSON:
        format_response(summary.model_dump(mode="json"))
        return

    print_table(
        ["endpoint", "calls", "avg_s", "success_%", "cache_hit_%", "errors"],
        [
            [
                s.endpoint,
                str(s.count),
                _fmt(s.average_duration),
                _fmt(s.success_rate),
                _fmt(s.cache_hit_rate),
                str(s.error_count),
            ]
            for s in summary.api
        ],
        title="API endpoints",
    )
    if summary.cache:
        print_table(
            ["key", "hits", "misses", "hit_%"],
            [[c.key, str(c.hits), str(c.misses), _fmt(c.hit_rate)] for c in summary.cache],
            title="Cache",
        )
    if summary.navigation:
        print_table(
            ["route", "navigations", "avg_s"],
            [[n.route, str(n.total_navigations), _fmt(n.average_duration)] for n in summary.navigation],
            title="Navigation",
        )
    if summary.web_vitals:
        print_table(
            ["vital", "latest"],
            [[name, _fmt(value)] for name, value in summary.web_vitals.items()],
            title="Web vitals",
        )


@metrics_app.command("diff")
def metrics_diff(
    old: Path = typer.Argument(help="Baseline snapshot."),
    new: Path = typer.Argument(help="Snapshot to compare against the baseline."),
) -> None:
    """Compare API endpoint statistics between two snapshots.

    Endpoints present in only one snapshot show ``-`` on the other side.
    """
    before = {s.endpoint: s for s in summarize(load_snapshot(old)).api}
    after = {s.endpoint: s for s in summarize(load_snapshot(new)).api}

    rows: list[list[str]] = []
    for endpoint in sorted(before.keys() | after.keys()):
        a, b = before.get(endpoint), after.get(endpoint)
        avg_delta = (
            _fmt(b.average_duration - a.average_duration) if a is not None and b is not None else "-"
        )
        success_delta = (
            _fmt(b.success_rate - a.success_rate) if a is not None and b is not None else "-"
        )
        rows.append(
            [
                endpoint,
                str(a.count) if a is not None else "-",
                str(b.count) if b is not None else "-",
                avg_delta,
                success_delta,
            ]
        )
    print_table(
        ["endpoint", "calls_old", "calls_new", "avg_s_delta", "success_%_delta"],
        rows,
        title="API endpoint changes",
    )
