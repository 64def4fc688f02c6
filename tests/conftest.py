"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from koso.db.connection import Database
from koso.db.migrations import initialize
from koso.errors import EmbeddingError


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".koso.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture(autouse=True)
def _no_model_env(monkeypatch):
    """Keep KOSO_* model overrides from the developer's shell out of tests."""
    monkeypatch.delenv("KOSO_GENERATION_MODEL", raising=False)
    monkeypatch.delenv("KOSO_EMBEDDING_MODEL", raising=False)


class KeywordEmbedder:
    """Deterministic stand-in for EmbeddingClient: one axis per keyword.

    Texts containing ``boom`` fail, like a provider error would.
    """

    KEYWORDS = ("billing", "search", "export")

    def __init__(self) -> None:
        self.dimensions = len(self.KEYWORDS)
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        lowered = text.lower()
        if not lowered.strip():
            raise EmbeddingError("Cannot embed empty text")
        if "boom" in lowered:
            raise EmbeddingError("provider unavailable")
        return [lowered.count(k) + 0.01 for k in self.KEYWORDS]


@pytest.fixture
def embedder():
    return KeywordEmbedder()
