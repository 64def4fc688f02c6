"""Report generator: stream an analysis of one specification and cache it.

Pipeline:
  1. Load the live specification; its prose is the context query and the
     prompt, its canonical form is hashed for staleness.
  2. Assemble context: evidence and code-module chunks similar to the spec,
     plus the workspace's current evidence clusters.
  3. Stream the completion. The cancellation token is checked between deltas;
     a cancelled stream raises JobCancelled and nothing is written.
  4. Append source attribution and upsert the Report together with the
     content hash of the text it was generated from (see koso.staleness).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from koso.config import GenerationCfg
from koso.db.models import CODE_MODULE, EVIDENCE, Cluster, Report, SimilarityResult
from koso.db.repository import Repository
from koso.errors import EmbeddingError, JobCancelled, ReportError
from koso.ingest.document import extract_text
from koso.llm.client import stream_complete
from koso.search.similarity import SimilaritySearch
from koso.staleness import canonicalize, content_hash

logger = logging.getLogger(__name__)

# Characters of the specification prose used as the context query.
QUERY_CHARS = 2000
REPORT_MAX_TOKENS = 4096

REPORT_SYSTEM = "\n".join(
    [
        "You are a senior product analyst reviewing a product specification.",
        "Using the evidence and code context provided, write a Markdown report with:",
        "- How well the specification is supported by customer evidence",
        "- Evidence themes the specification does not address",
        "- Code areas likely to be affected",
        "- Risks and open questions",
        "Cite context items as [^N] using the numbers given.",
    ]
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReportGenerator:
    """Generate and cache the analysis report of a specification.

    Args:
        repo: Open Repository instance.
        search: Similarity search bound to the same repository.
        generation: Report model and limits.
        now: Clock for ``generated_at`` (injectable for tests).
    """

    def __init__(
        self,
        repo: Repository,
        search: SimilaritySearch,
        generation: GenerationCfg | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._search = search
        self._generation = generation or GenerationCfg()
        self._now = now

    def generate(
        self,
        spec_id: str,
        workspace_id: str,
        cancel: threading.Event | None = None,
        on_delta: Callable[[str], None] | None = None,
    ) -> Report:
        """Stream, persist and return the report for *spec_id*.

        Raises:
            ReportError: If the specification is missing or empty, or the
                context or model call fails.
            JobCancelled: If *cancel* is set before the stream completes.
        """
        spec = self._repo.get_specification(spec_id, workspace_id)
        if spec is None:
            raise ReportError(f"Specification '{spec_id}' not found in workspace '{workspace_id}'")

        text = canonicalize(spec.body)
        prose = spec_prose(spec.body)
        if not prose.strip():
            raise ReportError(f"Specification '{spec_id}' is empty")

        try:
            context = self._search.assemble_context(
                prose[:QUERY_CHARS], workspace_id, source_types=[EVIDENCE, CODE_MODULE]
            )
        except EmbeddingError as exc:
            raise ReportError(f"Could not assemble context: {exc}") from exc

        sources = context[EVIDENCE] + context[CODE_MODULE]
        clusters = self._repo.list_clusters(workspace_id)
        messages = [
            {"role": "system", "content": REPORT_SYSTEM},
            {"role": "user", "content": build_prompt(spec.title, prose, sources, clusters)},
        ]

        logger.info(
            "Generating report for %s with %d context chunks and %d clusters",
            spec_id,
            len(sources),
            len(clusters),
        )
        parts: list[str] = []
        try:
            for delta in stream_complete(
                self._generation.report_model,
                messages,
                cancel=cancel,
                max_tokens=REPORT_MAX_TOKENS,
            ):
                parts.append(delta)
                if on_delta is not None:
                    on_delta(delta)
        except JobCancelled:
            logger.info("Report generation for %s cancelled", spec_id)
            raise
        except Exception as exc:
            raise ReportError(f"Report model call failed: {exc}") from exc

        report = Report(
            spec_id=spec_id,
            workspace_id=workspace_id,
            body=add_attribution("".join(parts), sources),
            content_hash=content_hash(text),
            generated_at=self._now().isoformat(),
        )
        self._repo.upsert_report(report)
        return report


def spec_prose(body: dict[str, Any] | str) -> str:
    """Readable text of a specification body, one line per top-level block."""
    if isinstance(body, str):
        return body
    nodes = body.get("content") or []
    return "\n".join(extract_text(node) for node in nodes if isinstance(node, dict))


def build_prompt(
    title: str,
    spec_text: str,
    sources: list[SimilarityResult],
    clusters: list[Cluster],
) -> str:
    parts = [f"## Specification: {title or 'Untitled'}", "", spec_text, ""]

    if sources:
        parts.append("--- Related Context ---")
        for i, result in enumerate(sources, start=1):
            parts.append(f"[{i}] ({result.source_type}) {result.chunk_text}")
        parts.append("")

    if clusters:
        parts.append("--- Evidence Themes ---")
        for cluster in clusters:
            line = f"- {cluster.label} ({cluster.evidence_count} items): {cluster.summary}"
            if cluster.criticality_level:
                line += f" [criticality: {cluster.criticality_level}]"
            parts.append(line)
        parts.append("")

    return "\n".join(parts).rstrip()


def add_attribution(content: str, sources: list[SimilarityResult]) -> str:
    """Append a footnote block listing the context sources.

    Format:
      [^1]: evidence ev-1, chunk 0
    """
    if not sources:
        return content

    footnotes = [
        f"[^{i}]: {r.source_type} {r.source_id}, chunk {r.chunk_index}"
        for i, r in enumerate(sources, start=1)
    ]
    return content.rstrip() + "\n\n---\n\n" + "\n".join(footnotes)
