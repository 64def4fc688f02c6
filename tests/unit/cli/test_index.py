"""Tests for koso index / koso remove."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from koso.cli.main import app
from koso.db.connection import Database
from koso.db.models import EVIDENCE, SPECIFICATION
from koso.db.repository import Repository

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path: Path, monkeypatch, embedder):
    """Initialized project with a fake embedder and an API key in the env."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    runner.invoke(app, ["init", str(tmp_path)])
    with patch("koso.pipeline.embedder_for", return_value=embedder):
        yield tmp_path / ".koso.db"


def _index(db_path: Path, path: Path, *extra: str):
    return runner.invoke(app, ["index", str(path), "--db", str(db_path), *extra])


def _repo(db_path: Path) -> tuple[Repository, object]:
    conn = Database(db_path).connect()
    return Repository(conn), conn


def test_index_evidence_text_file(db_path, tmp_path):
    src = tmp_path / "interview-07.txt"
    src.write_text("Billing charged me twice.", encoding="utf-8")

    result = _index(db_path, src)

    assert result.exit_code == 0, result.output
    assert "interview-07: 1 chunks, 0 new links" in result.output
    repo, conn = _repo(db_path)
    try:
        evidence = repo.get_evidence("interview-07")
        assert evidence.title == "interview-07"
        assert evidence.workspace_id == "default"
        assert repo.count_embeddings("interview-07", EVIDENCE) == 1
    finally:
        conn.close()


def test_index_spec_json_links_to_evidence(db_path, tmp_path):
    ev = tmp_path / "ev.txt"
    ev.write_text("Billing charged me twice.", encoding="utf-8")
    spec = tmp_path / "checkout.json"
    spec.write_text(
        json.dumps(
            {
                "type": "doc",
                "content": [
                    {"type": "heading", "content": [{"type": "text", "text": "Problem"}]},
                    {"type": "paragraph", "content": [{"type": "text", "text": "Billing retries."}]},
                ],
            }
        ),
        encoding="utf-8",
    )

    _index(db_path, ev)
    result = _index(db_path, spec, "--type", SPECIFICATION, "--id", "spec-checkout", "--title", "Checkout")

    assert result.exit_code == 0, result.output
    assert "1 new links" in result.output
    repo, conn = _repo(db_path)
    try:
        stored = repo.get_specification("spec-checkout")
        assert stored.title == "Checkout"
        assert stored.body["type"] == "doc"
        assert repo.list_chunk_texts("spec-checkout", SPECIFICATION) == ["Problem\nBilling retries."]
    finally:
        conn.close()


def test_index_custom_workspace(db_path, tmp_path):
    src = tmp_path / "note.txt"
    src.write_text("Search is slow.", encoding="utf-8")

    result = _index(db_path, src, "--workspace", "acme")

    assert result.exit_code == 0, result.output
    repo, conn = _repo(db_path)
    try:
        assert repo.get_evidence("note").workspace_id == "acme"
    finally:
        conn.close()


def test_index_unknown_type(db_path, tmp_path):
    src = tmp_path / "a.txt"
    src.write_text("x", encoding="utf-8")

    result = _index(db_path, src, "--type", "invoice")

    assert result.exit_code == 1
    assert "Unknown source type" in result.output


def test_index_missing_file(db_path, tmp_path):
    result = _index(db_path, tmp_path / "nope.txt")

    assert result.exit_code == 1
    assert "File not found" in result.output


def test_index_without_db(tmp_path):
    src = tmp_path / "a.txt"
    src.write_text("x", encoding="utf-8")

    result = _index(tmp_path / ".koso.db", src)

    assert result.exit_code == 1
    assert "No database found" in result.output
    assert "koso init" in result.output


def test_index_without_api_key(db_path, tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    src = tmp_path / "a.txt"
    src.write_text("Billing.", encoding="utf-8")

    result = _index(db_path, src)

    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output


def test_index_embedding_failure_is_reported(db_path, tmp_path):
    src = tmp_path / "broken.txt"
    src.write_text("boom", encoding="utf-8")

    result = _index(db_path, src)

    assert result.exit_code == 1
    assert "Indexing 'broken.txt' failed" in result.output
    assert "--verbose" in result.output


def test_remove_evidence(db_path, tmp_path):
    src = tmp_path / "ev.txt"
    src.write_text("Billing charged me twice.", encoding="utf-8")
    _index(db_path, src)

    result = runner.invoke(app, ["remove", "ev", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Removed evidence ev (1 chunks)" in result.output
    repo, conn = _repo(db_path)
    try:
        assert repo.get_evidence("ev") is None
        assert repo.count_embeddings("ev") == 0
    finally:
        conn.close()


def test_remove_unknown_type(db_path):
    result = runner.invoke(app, ["remove", "ev", "--type", "invoice", "--db", str(db_path)])
    assert result.exit_code == 1
