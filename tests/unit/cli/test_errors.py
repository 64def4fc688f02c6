"""Tests for koso rich error messages."""

from __future__ import annotations

import pytest

from koso.cli.errors import (
    err_config,
    err_failed,
    err_file_not_found,
    err_no_api_key,
    err_no_db,
    err_no_report,
    err_source_not_indexed,
    err_spec_not_found,
    err_unknown_source_type,
    warn_stale_report,
)
from koso.db.models import SOURCE_TYPES


def _has_action(msg: str) -> bool:
    """Every error must carry an actionable instruction."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "set:", "use one of", "fix ", "re-run", "regenerate:"])


@pytest.mark.parametrize(
    "msg",
    [
        err_no_api_key("openai"),
        err_no_db(".koso.db"),
        err_config("linking.threshold must be in [0, 1]"),
        err_unknown_source_type("invoice", SOURCE_TYPES),
        err_source_not_indexed("ev-1"),
        err_spec_not_found("spec-1", "default"),
        err_no_report("spec-1"),
        err_failed("Indexing 'a.txt'"),
        warn_stale_report("spec-1"),
    ],
)
def test_errors_are_actionable(msg):
    assert _has_action(msg)


def test_err_no_api_key_known_provider():
    assert "ANTHROPIC_API_KEY" in err_no_api_key("anthropic")


def test_err_no_api_key_unknown_provider():
    assert "VOYAGE_API_KEY" in err_no_api_key("voyage")


def test_err_unknown_source_type_lists_allowed():
    msg = err_unknown_source_type("invoice", SOURCE_TYPES)
    assert "invoice" in msg
    assert "specification, evidence, code_module" in msg


def test_err_file_not_found():
    assert "notes.txt" in err_file_not_found("notes.txt")


def test_err_failed_points_to_verbose():
    msg = err_failed("Search")
    assert msg.startswith("[red]Error:[/] Search failed.")
    assert "--verbose" in msg
