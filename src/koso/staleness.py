"""Content-hash staleness detection for cached reports.

A report stores the hash of the specification text it was generated from.
Reading it back recomputes the hash of the live text; any difference means
the report is stale.

The hash is a 31-multiplier rolling hash over UTF-16 code units wrapped to a
signed 32-bit integer, so values match hashes stored by other clients of the
same database.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from koso.db.models import Report
from koso.db.repository import Repository


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def content_hash(text: str) -> int:
    h = 0
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = _to_int32((h << 5) - h + unit)
    return h


def canonicalize(body: dict[str, Any] | list[Any] | str) -> str:
    """Deterministic text form of a document body.

    Strings pass through unchanged; structured bodies are serialized with
    sorted keys and compact separators.
    """
    if isinstance(body, str):
        return body
    return json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def is_stale(stored_hash: int, live_text: str) -> bool:
    return content_hash(live_text) != stored_hash


@dataclass
class ReportStatus:
    report: Report | None
    is_stale: bool
    spec_missing: bool = False


def report_status(repo: Repository, spec_id: str, workspace_id: str) -> ReportStatus:
    """Return the cached report for *spec_id* and whether it is still current.

    A missing report is reported as stale; so is a report whose
    specification has since been deleted.
    """
    report = repo.get_report(spec_id, workspace_id)
    if report is None:
        return ReportStatus(report=None, is_stale=True)

    spec = repo.get_specification(spec_id, workspace_id)
    if spec is None:
        return ReportStatus(report=report, is_stale=True, spec_missing=True)

    return ReportStatus(
        report=report,
        is_stale=is_stale(report.content_hash, canonicalize(spec.body)),
    )
