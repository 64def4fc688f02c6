"""koso init — create the project database and config.

Creates:
  .koso.db    — empty store with schema (existing data is preserved)
  koso.yaml   — project config with defaults (left alone if present)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from koso.cli.common import console
from koso.config import write_project_config
from koso.db.connection import Database
from koso.db.migrations import CURRENT_VERSION, initialize


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
) -> None:
    """Initialize a koso project."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / ".koso.db"
    existed = db_path.exists()
    with Database(db_path) as conn:
        initialize(conn)
    if existed:
        console.print(f"[yellow]⚠[/]  {db_path.name} already exists; schema at v{CURRENT_VERSION}.")
    else:
        console.print(f"  [green]✓[/] {db_path.name}")

    cfg_path = write_project_config(project_dir)
    console.print(f"  [green]✓[/] {cfg_path.name}")

    console.print("\nNext steps:")
    console.print("  1. koso index <file> --type evidence       (add customer evidence)")
    console.print("  2. koso index <file> --type specification  (add a spec)")
    console.print("  3. koso clusters compute                   (group evidence into themes)")
