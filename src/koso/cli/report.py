"""koso report CLI commands.

Commands:
  koso report generate <spec-id>   — stream and cache an analysis report
  koso report status <spec-id>     — show the cached report and whether it is stale
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from koso.cli.common import DEFAULT_DB, DEFAULT_WORKSPACE, config_for, console, open_db, require_api_key
from koso.cli.errors import err_failed, err_no_report, err_spec_not_found, warn_stale_report
from koso.db.repository import Repository
from koso.jobs import CANCELLED, DELTA, DONE, JobEvent, JobRegistry
from koso.pipeline import start_report
from koso.staleness import report_status

report_app = typer.Typer(
    name="report",
    help="Generate and check cached specification reports.",
    add_completion=False,
)


@report_app.command("generate")
def report_generate_cmd(
    spec_id: Annotated[str, typer.Argument(help="Specification id.")],
    workspace: Annotated[str, typer.Option("--workspace", "-w")] = DEFAULT_WORKSPACE,
    db: Annotated[Path, typer.Option("--db", help="Path to .koso.db.")] = DEFAULT_DB,
) -> None:
    """Generate the analysis report for a specification (Ctrl+C cancels)."""
    conn = open_db(db)
    try:
        spec = Repository(conn).get_specification(spec_id, workspace)
    finally:
        conn.close()
    if spec is None:
        console.print(err_spec_not_found(spec_id, workspace))
        raise typer.Exit(1)

    cfg = config_for(db)
    require_api_key(cfg.embedding.model)
    require_api_key(cfg.generation.report_model)

    streamed: list[str] = []

    def on_event(event: JobEvent) -> None:
        if event.kind == DELTA:
            streamed.append(event.data)
            console.print(event.data, end="", markup=False, highlight=False)

    registry = JobRegistry()
    try:
        handle = start_report(registry, db, spec_id, workspace, cfg, on_event=on_event)
        try:
            final = handle.wait()
        except KeyboardInterrupt:
            registry.cancel(handle.job_id)
            final = handle.wait()
    finally:
        registry.shutdown()

    if final is None or final.kind == CANCELLED:
        console.print("\n[yellow]Cancelled.[/] No report was saved.")
        raise typer.Exit(1)
    if final.kind != DONE:
        console.print(err_failed("Report generation"))
        raise typer.Exit(1)

    if not streamed:
        console.print(final.data.body, markup=False, highlight=False)
    console.print(f"\n[green]✓[/] Report saved for [bold]{spec_id}[/]")


@report_app.command("status")
def report_status_cmd(
    spec_id: Annotated[str, typer.Argument(help="Specification id.")],
    show: Annotated[bool, typer.Option("--show", help="Print the report body.")] = False,
    workspace: Annotated[str, typer.Option("--workspace", "-w")] = DEFAULT_WORKSPACE,
    db: Annotated[Path, typer.Option("--db", help="Path to .koso.db.")] = DEFAULT_DB,
) -> None:
    """Show whether the cached report still matches its specification."""
    conn = open_db(db)
    try:
        status = report_status(Repository(conn), spec_id, workspace)
    finally:
        conn.close()

    if status.report is None:
        console.print(err_no_report(spec_id))
        raise typer.Exit(0)

    console.print(f"Report for [bold]{spec_id}[/] generated {status.report.generated_at}")
    if status.spec_missing:
        console.print("[yellow]⚠[/] The specification no longer exists.")
    elif status.is_stale:
        console.print(warn_stale_report(spec_id))
    else:
        console.print("[green]✓[/] Up to date")

    if show:
        console.print()
        console.print(status.report.body, markup=False, highlight=False)
