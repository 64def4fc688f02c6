"""koso clusters CLI commands.

Commands:
  koso clusters compute            — recompute themes when due (--force ignores freshness)
  koso clusters list               — show stored themes, most critical first
  koso clusters nudges <text>      — themes relevant to a section being written
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from koso.cli.common import DEFAULT_DB, DEFAULT_WORKSPACE, config_for, console, open_db, require_api_key
from koso.cli.errors import err_computing, err_failed
from koso.clusters.engine import ClusterEngine
from koso.clusters.nudges import NudgeFinder
from koso.db.models import Cluster
from koso.db.repository import Repository
from koso.errors import KosoError
from koso.pipeline import embedder_for

logger = logging.getLogger(__name__)

clusters_app = typer.Typer(
    name="clusters",
    help="Group evidence into themes (compute, list, nudges).",
    add_completion=False,
)

_LEVEL_STYLE = {"critical": "bold red", "high": "red", "medium": "yellow", "low": "dim"}


@clusters_app.command("compute")
def clusters_compute_cmd(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Recompute even if the current themes are fresh.")
    ] = False,
    workspace: Annotated[str, typer.Option("--workspace", "-w")] = DEFAULT_WORKSPACE,
    db: Annotated[Path, typer.Option("--db", help="Path to .koso.db.")] = DEFAULT_DB,
) -> None:
    """Recompute evidence themes for a workspace."""
    conn = open_db(db)
    cfg = config_for(db)
    try:
        engine = ClusterEngine(Repository(conn), cfg.clustering, cfg.generation)
        if engine.is_locked(workspace):
            console.print(err_computing(workspace, cfg.clustering.lease_minutes))
            raise typer.Exit(1)
        if not force and not engine.should_recompute(workspace):
            console.print("[dim]Themes are up to date (use --force to recompute).[/]")
            raise typer.Exit(0)

        require_api_key(cfg.generation.model)
        try:
            clusters = engine.compute_clusters(
                workspace, on_progress=lambda step: console.print(f"  [dim]{step}[/]")
            )
        except KosoError as exc:
            logger.debug("Cluster computation failed", exc_info=True)
            console.print(err_failed("Cluster computation"))
            raise typer.Exit(1) from exc
    finally:
        conn.close()

    if not clusters:
        console.print(
            f"[yellow]Not enough evidence to cluster[/] (need {cfg.clustering.min_evidence})."
        )
        return
    console.print(f"[green]✓[/] {len(clusters)} themes")
    _print_clusters(clusters)


@clusters_app.command("list")
def clusters_list_cmd(
    workspace: Annotated[str, typer.Option("--workspace", "-w")] = DEFAULT_WORKSPACE,
    db: Annotated[Path, typer.Option("--db", help="Path to .koso.db.")] = DEFAULT_DB,
) -> None:
    """List stored themes, most critical first."""
    conn = open_db(db)
    try:
        clusters = Repository(conn).list_clusters(workspace)
    finally:
        conn.close()

    if not clusters:
        console.print("[yellow]No themes yet.[/]  Run:  koso clusters compute")
        raise typer.Exit(0)
    _print_clusters(clusters)


@clusters_app.command("nudges")
def clusters_nudges_cmd(
    text: Annotated[str, typer.Argument(help="Section text being written.")],
    section: Annotated[
        str | None, typer.Option("--section", "-s", help="Section name, e.g. 'Problem'.")
    ] = None,
    workspace: Annotated[str, typer.Option("--workspace", "-w")] = DEFAULT_WORKSPACE,
    db: Annotated[Path, typer.Option("--db", help="Path to .koso.db.")] = DEFAULT_DB,
) -> None:
    """Suggest evidence themes relevant to a section."""
    conn = open_db(db)
    cfg = config_for(db)
    require_api_key(cfg.embedding.model)
    try:
        nudges = NudgeFinder(Repository(conn), embedder_for(cfg)).nudges(
            text, workspace, section_name=section
        )
    except KosoError as exc:
        logger.debug("Nudge lookup failed", exc_info=True)
        console.print(err_failed("Nudge lookup"))
        raise typer.Exit(1) from exc
    finally:
        conn.close()

    if not nudges:
        console.print("[dim]No relevant themes.[/]")
        return
    for n in nudges:
        console.print(
            f"[bold]{n.cluster.label}[/] ({n.cluster.evidence_count} items, score {n.score:.2f})\n"
            f"  {n.cluster.summary}"
        )


def _print_clusters(clusters: list[Cluster]) -> None:
    table = Table(title="Evidence Themes", show_header=True, header_style="bold")
    table.add_column("Theme", style="bold")
    table.add_column("Items", justify="right")
    table.add_column("Criticality")
    table.add_column("Summary")
    for c in clusters:
        level = c.criticality_level or ""
        style = _LEVEL_STYLE.get(level, "")
        table.add_row(
            c.label,
            str(c.evidence_count),
            f"[{style}]{level}[/]" if style else level,
            c.summary,
        )
    console.print(table)
