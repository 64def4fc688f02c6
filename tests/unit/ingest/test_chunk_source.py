"""Tests for chunk_source dispatch."""

from __future__ import annotations

import pytest

from koso.config import ChunkingCfg
from koso.db.models import CODE_MODULE, EVIDENCE, SPECIFICATION, Source
from koso.ingest.chunker import chunk_source


def _source(body, source_type=EVIDENCE, title="", source_id="src-1"):
    return Source(
        source_id=source_id, source_type=source_type, workspace_id="ws", body=body, title=title
    )


def test_structured_spec_uses_sections():
    doc = {
        "type": "doc",
        "content": [
            {"type": "heading", "content": [{"type": "text", "text": "Problem"}]},
            {"type": "paragraph", "content": [{"type": "text", "text": "Slow checkout."}]},
        ],
    }
    chunks = chunk_source(_source(doc, SPECIFICATION))
    assert [c.text for c in chunks] == ["Problem\nSlow checkout."]


def test_empty_structured_spec_yields_no_chunks():
    assert chunk_source(_source({"type": "doc", "content": []}, SPECIFICATION)) == []


def test_plain_string_spec_chunked_as_text():
    chunks = chunk_source(_source("A plain spec.", SPECIFICATION))
    assert [c.text for c in chunks] == ["A plain spec."]


def test_empty_evidence_falls_back_to_title():
    chunks = chunk_source(_source("   ", EVIDENCE, title="Call with Acme"))
    assert [c.text for c in chunks] == ["Call with Acme"]


def test_empty_code_module_falls_back_to_type_and_id():
    chunks = chunk_source(_source("", CODE_MODULE, source_id="mod-9"))
    assert [c.text for c in chunks] == ["code_module mod-9"]


def test_chunking_budget_from_config():
    text = "\n\n".join(["a" * 30, "b" * 30])
    chunks = chunk_source(_source(text), ChunkingCfg(max_tokens=10, overlap_tokens=0))
    assert len(chunks) == 2


def test_unknown_source_type_rejected():
    with pytest.raises(ValueError, match="Unknown source_type"):
        _source("x", "invoice")
