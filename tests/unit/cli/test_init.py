"""Tests for koso init and the top-level app."""

from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from koso.cli.main import app
from koso.db.connection import Database
from koso.db.migrations import CURRENT_VERSION

runner = CliRunner()


def test_init_creates_db_and_config(tmp_path: Path):
    result = runner.invoke(app, ["init", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert (tmp_path / ".koso.db").exists()
    cfg = yaml.safe_load((tmp_path / "koso.yaml").read_text(encoding="utf-8"))
    assert cfg["embedding"]["model"] == "openai/text-embedding-3-small"
    assert "koso index" in result.output

    with Database(tmp_path / ".koso.db") as conn:
        version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == CURRENT_VERSION


def test_init_creates_missing_directory(tmp_path: Path):
    target = tmp_path / "new" / "project"
    result = runner.invoke(app, ["init", str(target)])

    assert result.exit_code == 0, result.output
    assert (target / ".koso.db").exists()


def test_init_twice_keeps_existing_files(tmp_path: Path):
    runner.invoke(app, ["init", str(tmp_path)])
    (tmp_path / "koso.yaml").write_text("search:\n  limit: 3\n", encoding="utf-8")

    result = runner.invoke(app, ["init", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "already exists" in result.output
    assert (tmp_path / "koso.yaml").read_text(encoding="utf-8") == "search:\n  limit: 3\n"


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("koso ")


def test_version_command():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("koso ")
