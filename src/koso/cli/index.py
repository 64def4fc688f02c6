"""koso index / koso remove — keep the store in sync with one document.

Source body by extension:
  .json  → structured document tree (specifications) or JSON text
  other  → plain text

Usage:
  koso index interview-07.txt --type evidence
  koso index checkout.json --type specification --id spec-checkout
  koso remove spec-checkout --type specification
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer

from koso.cli.common import DEFAULT_DB, DEFAULT_WORKSPACE, config_for, console, open_db, require_api_key
from koso.cli.errors import err_failed, err_file_not_found, err_unknown_source_type
from koso.db.models import EVIDENCE, SOURCE_TYPES, SPECIFICATION, Source
from koso.db.repository import Repository
from koso.errors import KosoError
from koso.pipeline import process_source

logger = logging.getLogger(__name__)


def index_cmd(
    path: Annotated[Path, typer.Argument(help="Document file to index.")],
    source_type: Annotated[
        str, typer.Option("--type", "-t", help="specification, evidence or code_module.")
    ] = EVIDENCE,
    source_id: Annotated[
        str | None, typer.Option("--id", help="Source id. Defaults to the file stem.")
    ] = None,
    title: Annotated[
        str | None, typer.Option("--title", help="Title. Defaults to the file stem.")
    ] = None,
    workspace: Annotated[str, typer.Option("--workspace", "-w")] = DEFAULT_WORKSPACE,
    db: Annotated[Path, typer.Option("--db", help="Path to .koso.db.")] = DEFAULT_DB,
) -> None:
    """Chunk, embed and auto-link one document."""
    if source_type not in SOURCE_TYPES:
        console.print(err_unknown_source_type(source_type, SOURCE_TYPES))
        raise typer.Exit(1)
    if not path.is_file():
        console.print(err_file_not_found(str(path)))
        raise typer.Exit(1)

    open_db(db).close()
    cfg = config_for(db)
    require_api_key(cfg.embedding.model)

    source = Source(
        source_id=source_id or path.stem,
        source_type=source_type,
        workspace_id=workspace,
        body=_read_body(path),
        title=title or path.stem,
    )

    try:
        with console.status(f"Indexing {path.name}…"):
            result = process_source(db, source, cfg)
    except KosoError as exc:
        logger.debug("Indexing %s failed", path, exc_info=True)
        console.print(err_failed(f"Indexing '{path.name}'"))
        raise typer.Exit(1) from exc

    console.print(
        f"[green]✓[/] {source.source_type} [bold]{source.source_id}[/]: "
        f"{result.chunks} chunks, {result.links} new links"
    )


def remove_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id to remove.")],
    source_type: Annotated[str, typer.Option("--type", "-t")] = EVIDENCE,
    db: Annotated[Path, typer.Option("--db", help="Path to .koso.db.")] = DEFAULT_DB,
) -> None:
    """Remove a document's embeddings and its stored row."""
    if source_type not in SOURCE_TYPES:
        console.print(err_unknown_source_type(source_type, SOURCE_TYPES))
        raise typer.Exit(1)

    conn = open_db(db)
    try:
        repo = Repository(conn)
        try:
            deleted = repo.delete_embeddings(source_id, source_type)
            if source_type == EVIDENCE:
                repo.delete_evidence(source_id)
            elif source_type == SPECIFICATION:
                repo.delete_specification(source_id)
        except KosoError as exc:
            logger.debug("Removing %s failed", source_id, exc_info=True)
            console.print(err_failed(f"Removing '{source_id}'"))
            raise typer.Exit(1) from exc
    finally:
        conn.close()

    console.print(f"[green]✓[/] Removed {source_type} [bold]{source_id}[/] ({deleted} chunks)")


def _read_body(path: Path) -> dict[str, Any] | str:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() != ".json":
        return text
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text
    return parsed if isinstance(parsed, dict) else text
