"""koso search / related / link — query the store and maintain links."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from koso.cli.common import DEFAULT_DB, DEFAULT_WORKSPACE, config_for, console, open_db, require_api_key
from koso.cli.errors import err_failed, err_source_not_indexed, err_unknown_source_type
from koso.db.models import EVIDENCE, SOURCE_TYPES, SimilarityResult
from koso.db.repository import Repository
from koso.errors import KosoError
from koso.links.auto_linker import AutoLinker
from koso.pipeline import embedder_for
from koso.search.similarity import SimilaritySearch

logger = logging.getLogger(__name__)

_SNIPPET_CHARS = 80


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    source_type: Annotated[
        list[str] | None, typer.Option("--type", "-t", help="Restrict to a source type (repeatable).")
    ] = None,
    limit: Annotated[int | None, typer.Option("--limit", "-n")] = None,
    threshold: Annotated[float | None, typer.Option("--threshold")] = None,
    workspace: Annotated[str, typer.Option("--workspace", "-w")] = DEFAULT_WORKSPACE,
    db: Annotated[Path, typer.Option("--db", help="Path to .koso.db.")] = DEFAULT_DB,
) -> None:
    """Find the chunks most similar to QUERY."""
    for t in source_type or []:
        if t not in SOURCE_TYPES:
            console.print(err_unknown_source_type(t, SOURCE_TYPES))
            raise typer.Exit(1)

    conn = open_db(db)
    cfg = config_for(db)
    require_api_key(cfg.embedding.model)
    try:
        search = SimilaritySearch(Repository(conn), embedder_for(cfg))
        results = search.search(
            query,
            workspace,
            source_types=source_type or None,
            limit=limit if limit is not None else cfg.search.limit,
            threshold=threshold if threshold is not None else cfg.search.threshold,
        )
    except KosoError as exc:
        logger.debug("Search failed", exc_info=True)
        console.print(err_failed("Search"))
        raise typer.Exit(1) from exc
    finally:
        conn.close()

    _print_results(f"Results for '{query}'", results)


def related_cmd(
    source_id: Annotated[str, typer.Argument(help="Source whose neighbours to show.")],
    limit: Annotated[int, typer.Option("--limit", "-n")] = 5,
    workspace: Annotated[str, typer.Option("--workspace", "-w")] = DEFAULT_WORKSPACE,
    db: Annotated[Path, typer.Option("--db", help="Path to .koso.db.")] = DEFAULT_DB,
) -> None:
    """Show chunks from other documents that resemble SOURCE_ID as a whole."""
    conn = open_db(db)
    cfg = config_for(db)
    try:
        search = SimilaritySearch(Repository(conn), embedder_for(cfg))
        if search.source_vector(source_id) is None:
            console.print(err_source_not_indexed(source_id))
            raise typer.Exit(0)
        results = search.related_to(source_id, workspace, limit=limit)
    finally:
        conn.close()

    _print_results(f"Related to '{source_id}'", results)


def link_cmd(
    source_id: Annotated[str, typer.Argument(help="Evidence or specification id.")],
    source_type: Annotated[str, typer.Option("--type", "-t")] = EVIDENCE,
    workspace: Annotated[str, typer.Option("--workspace", "-w")] = DEFAULT_WORKSPACE,
    db: Annotated[Path, typer.Option("--db", help="Path to .koso.db.")] = DEFAULT_DB,
) -> None:
    """Create related_to links between evidence and specifications."""
    if source_type not in SOURCE_TYPES:
        console.print(err_unknown_source_type(source_type, SOURCE_TYPES))
        raise typer.Exit(1)

    conn = open_db(db)
    cfg = config_for(db)
    try:
        repo = Repository(conn)
        linker = AutoLinker(repo, SimilaritySearch(repo, embedder_for(cfg)), cfg.linking)
        created = linker.link(source_id, source_type, workspace)
        links = repo.list_links(workspace, source_id)
    finally:
        conn.close()

    console.print(f"[green]✓[/] {created} new links ({len(links)} total) for [bold]{source_id}[/]")
    for link in links:
        console.print(f"  {link.source_id} → {link.target_id}")


def _print_results(title: str, results: list[SimilarityResult]) -> None:
    if not results:
        console.print("[dim]No matches.[/]")
        return

    table = Table(title=title)
    table.add_column("Score", justify="right")
    table.add_column("Type")
    table.add_column("Source")
    table.add_column("Chunk", justify="right")
    table.add_column("Text")
    for r in results:
        snippet = r.chunk_text.replace("\n", " ")
        if len(snippet) > _SNIPPET_CHARS:
            snippet = snippet[: _SNIPPET_CHARS - 1] + "…"
        table.add_row(f"{r.similarity:.3f}", r.source_type, r.source_id, str(r.chunk_index), snippet)
    console.print(table)
