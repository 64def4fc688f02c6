"""Tests for validated JSON decoding of model replies."""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from koso.llm.decode import decode_json, strip_code_fences


class _Label(BaseModel):
    label: str
    score: float


@pytest.mark.parametrize(
    "raw",
    [
        '{"label": "x", "score": 1}',
        '```json\n{"label": "x", "score": 1}\n```',
        '```\n{"label": "x", "score": 1}\n```  ',
    ],
)
def test_strip_code_fences(raw):
    assert strip_code_fences(raw) == '{"label": "x", "score": 1}'


def test_decode_json_success():
    decoded = decode_json('```json\n{"label": "Billing", "score": 0.5}\n```', _Label)

    assert decoded.ok
    assert decoded.value == _Label(label="Billing", score=0.5)
    assert decoded.reason == ""


def test_decode_json_empty_reply():
    decoded = decode_json("   ", _Label)
    assert not decoded.ok
    assert decoded.value is None
    assert decoded.reason == "empty reply"


def test_decode_json_invalid_json():
    decoded = decode_json("Sure! Here are the themes:", _Label)
    assert not decoded.ok
    assert decoded.reason.startswith("invalid JSON")


def test_decode_json_wrong_shape():
    decoded = decode_json('{"label": "Billing"}', _Label)
    assert not decoded.ok
    assert "unexpected shape" in decoded.reason
