"""Helpers shared by koso commands: database, config and API-key checks."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from koso.cli.errors import err_config, err_no_api_key, err_no_db
from koso.config import ConfigError, KosoConfig, load_config
from koso.db.connection import Database
from koso.db.migrations import initialize
from koso.llm.client import validate_api_key

console = Console()

DEFAULT_DB = Path(".koso.db")
DEFAULT_WORKSPACE = "default"


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open an existing project database, or exit with an actionable error."""
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def config_for(db_path: Path) -> KosoConfig:
    """Load configuration for the project that owns *db_path*."""
    try:
        return load_config(db_path.resolve().parent)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def require_api_key(model: str) -> None:
    try:
        validate_api_key(model)
    except EnvironmentError as exc:
        provider = model.split("/")[0] if "/" in model else "openai"
        console.print(err_no_api_key(provider))
        raise typer.Exit(1) from exc
