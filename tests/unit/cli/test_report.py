"""Tests for koso report generate / status."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from koso.cli.main import app
from koso.db.connection import Database
from koso.db.models import SPECIFICATION, Source
from koso.db.repository import Repository
from koso.pipeline import store_source

runner = CliRunner()


def _doc(text):
    return {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}]}


def _save_spec(db_path: Path, text: str) -> None:
    with Database(db_path) as conn:
        store_source(
            Repository(conn),
            Source("spec-1", SPECIFICATION, "default", _doc(text), title="Checkout"),
        )


@pytest.fixture
def project(tmp_path: Path, monkeypatch, embedder):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    runner.invoke(app, ["init", str(tmp_path)])
    db = tmp_path / ".koso.db"
    _save_spec(db, "Billing retries.")
    with patch("koso.pipeline.embedder_for", return_value=embedder):
        yield db


def _stream(*deltas):
    def fake(*args, **kwargs):
        yield from deltas

    return fake


def _generate(db_path: Path, spec_id: str = "spec-1"):
    return runner.invoke(app, ["report", "generate", spec_id, "--db", str(db_path)])


def _status(db_path: Path, *extra: str):
    return runner.invoke(app, ["report", "status", "spec-1", "--db", str(db_path), *extra])


def test_generate_streams_and_saves(project):
    with patch("koso.reports.generator.stream_complete", side_effect=_stream("## Fit\n", "Strong.")):
        result = _generate(project)

    assert result.exit_code == 0, result.output
    assert "## Fit\nStrong." in result.output
    assert "Report saved for spec-1" in result.output
    with Database(project) as conn:
        assert Repository(conn).get_report("spec-1", "default").body == "## Fit\nStrong."


def test_generate_unknown_spec(project):
    result = _generate(project, "spec-404")

    assert result.exit_code == 1
    assert "not found" in result.output


def test_generate_model_failure(project):
    def broken(*args, **kwargs):
        raise RuntimeError("overloaded")

    with patch("koso.reports.generator.stream_complete", side_effect=broken):
        result = _generate(project)

    assert result.exit_code == 1
    assert "Report generation failed" in result.output
    with Database(project) as conn:
        assert Repository(conn).get_report("spec-1", "default") is None


def test_status_without_report(project):
    result = _status(project)

    assert result.exit_code == 0
    assert "No report" in result.output


def test_status_tracks_spec_edits(project):
    with patch("koso.reports.generator.stream_complete", side_effect=_stream("Body text.")):
        _generate(project)

    fresh = _status(project)
    assert fresh.exit_code == 0, fresh.output
    assert "Up to date" in fresh.output

    _save_spec(project, "Billing retries and refunds.")
    stale = _status(project)
    assert "changed since" in stale.output
    assert "koso report generate spec-1" in stale.output


def test_status_show_prints_body(project):
    with patch("koso.reports.generator.stream_complete", side_effect=_stream("Body [^1] text.")):
        _generate(project)

    result = _status(project, "--show")

    assert "Body [^1] text." in result.output


def test_status_spec_deleted(project):
    with patch("koso.reports.generator.stream_complete", side_effect=_stream("Body.")):
        _generate(project)
    runner.invoke(app, ["remove", "spec-1", "--type", SPECIFICATION, "--db", str(project)])

    result = _status(project)

    assert "no longer exists" in result.output


def test_stored_spec_is_json(project):
    with Database(project) as conn:
        content = Repository(conn).get_specification("spec-1").content
    assert json.loads(content)["type"] == "doc"
