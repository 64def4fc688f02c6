"""Tests for koso clusters compute / list / nudges."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from koso.cli.main import app
from koso.db.connection import Database
from koso.db.models import COMPUTING, EVIDENCE, ComputationLog, Source
from koso.db.repository import Repository
from koso.errors import StoreError
from koso.index.indexer import Indexer
from koso.pipeline import store_source

runner = CliRunner()


@pytest.fixture
def project(tmp_path: Path, monkeypatch, embedder):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    runner.invoke(app, ["init", str(tmp_path)])
    with patch("koso.cli.clusters.embedder_for", return_value=embedder):
        yield tmp_path / ".koso.db"


def _add_evidence(db_path: Path, embedder, count: int) -> None:
    with Database(db_path) as conn:
        repo = Repository(conn)
        indexer = Indexer(repo, embedder)
        for i in range(count):
            text = f"Billing issue number {i}."
            store_source(repo, Source(f"ev-{i}", EVIDENCE, "default", text, title=f"Note {i}"))
            indexer.reindex(f"ev-{i}", EVIDENCE, "default", text)


def _compute(db_path: Path, *extra: str):
    return runner.invoke(app, ["clusters", "compute", "--db", str(db_path), *extra])


def test_compute_not_due_with_too_little_evidence(project, embedder):
    _add_evidence(project, embedder, 2)

    with patch("koso.clusters.engine.complete") as mock_c:
        result = _compute(project)

    assert result.exit_code == 0, result.output
    assert "up to date" in result.output
    mock_c.assert_not_called()


def test_force_with_too_little_evidence(project, embedder):
    _add_evidence(project, embedder, 2)

    result = _compute(project, "--force")

    assert result.exit_code == 0, result.output
    assert "Not enough evidence" in result.output


def test_compute_then_list(project, embedder):
    _add_evidence(project, embedder, 3)

    with patch("koso.clusters.engine.complete", return_value="no json here"):
        result = _compute(project)

    assert result.exit_code == 0, result.output
    assert "Fetching evidence..." in result.output
    assert "1 themes" in result.output
    assert "All evidence" in result.output

    listed = runner.invoke(app, ["clusters", "list", "--db", str(project)])
    assert listed.exit_code == 0, listed.output
    assert "All evidence" in listed.output

    again = _compute(project)
    assert "up to date" in again.output


def test_compute_failure_is_reported(project, embedder):
    _add_evidence(project, embedder, 3)

    with patch(
        "koso.clusters.engine.ClusterEngine.compute_clusters", side_effect=StoreError("disk full")
    ):
        result = _compute(project)

    assert result.exit_code == 1
    assert "Cluster computation failed" in result.output


def test_compute_without_generation_key(project, embedder, monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    _add_evidence(project, embedder, 3)

    result = _compute(project)

    assert result.exit_code == 1
    assert "ANTHROPIC_API_KEY" in result.output


def test_list_empty(project):
    result = runner.invoke(app, ["clusters", "list", "--db", str(project)])

    assert result.exit_code == 0
    assert "No themes yet." in result.output


def test_nudges(project, embedder):
    _add_evidence(project, embedder, 3)
    with patch("koso.clusters.engine.complete", return_value="no json here"):
        _compute(project)

    result = runner.invoke(
        app, ["clusters", "nudges", "Billing must not double charge.", "--section", "Problem", "--db", str(project)]
    )

    assert result.exit_code == 0, result.output
    assert "All evidence" in result.output
    assert "3 items" in result.output


def test_nudges_none_relevant(project):
    result = runner.invoke(app, ["clusters", "nudges", "Export to CSV.", "--db", str(project)])

    assert result.exit_code == 0, result.output
    assert "No relevant themes." in result.output


def _hold_lease(db_path: Path, ago: timedelta) -> None:
    with Database(db_path) as conn:
        Repository(conn).upsert_computation_log(
            ComputationLog(
                workspace_id="default",
                status=COMPUTING,
                last_computed_at=(datetime.now(timezone.utc) - ago).isoformat(),
                evidence_count_at_computation=0,
            )
        )


def test_force_refused_while_another_run_holds_the_lease(project, embedder):
    _add_evidence(project, embedder, 3)
    _hold_lease(project, timedelta(minutes=1))

    with patch("koso.clusters.engine.complete") as mock_c:
        result = _compute(project, "--force")

    assert result.exit_code == 1
    assert "already being computed" in result.output
    mock_c.assert_not_called()


def test_force_runs_once_the_lease_expired(project, embedder):
    _add_evidence(project, embedder, 3)
    _hold_lease(project, timedelta(minutes=30))

    with patch("koso.clusters.engine.complete", return_value="no json here"):
        result = _compute(project, "--force")

    assert result.exit_code == 0, result.output
    assert "1 themes" in result.output
