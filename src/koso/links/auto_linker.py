"""Auto-linker — create ``related_to`` edges between evidence and specifications.

Each direction queries the opposite source type with the linking source's
centroid vector, keeps matches above the similarity threshold, and inserts
only edges that do not already exist in either direction. Edges are always
stored evidence → specification.

A source whose embeddings are not stored yet produces no links; a store
failure is logged and also produces no links. Neither case raises.
"""

from __future__ import annotations

import logging

from koso.config import LinkingCfg
from koso.db.models import EVIDENCE, RELATED_TO, SPECIFICATION, Link
from koso.db.repository import Repository
from koso.errors import LinkError, StoreError
from koso.search.similarity import SimilaritySearch

logger = logging.getLogger(__name__)


class AutoLinker:
    """Maintain evidence ↔ specification association edges.

    Args:
        repo: Open Repository instance.
        search: Similarity search bound to the same repository.
        config: Threshold and result caps.
    """

    def __init__(
        self,
        repo: Repository,
        search: SimilaritySearch,
        config: LinkingCfg | None = None,
    ) -> None:
        self._repo = repo
        self._search = search
        self._config = config or LinkingCfg()

    def link_evidence_to_specs(self, evidence_id: str, workspace_id: str) -> int:
        """Link one evidence item to similar specifications. Returns links created."""
        spec_ids = self._similar_sources(
            evidence_id, EVIDENCE, SPECIFICATION, workspace_id, self._config.evidence_limit
        )
        return self._insert_new(
            workspace_id,
            anchor_id=evidence_id,
            anchor_type=EVIDENCE,
            peer_ids=spec_ids,
            peer_type=SPECIFICATION,
        )

    def link_spec_to_evidence(self, spec_id: str, workspace_id: str) -> int:
        """Link one specification to similar evidence. Returns links created."""
        evidence_ids = self._similar_sources(
            spec_id, SPECIFICATION, EVIDENCE, workspace_id, self._config.spec_limit
        )
        return self._insert_new(
            workspace_id,
            anchor_id=spec_id,
            anchor_type=SPECIFICATION,
            peer_ids=evidence_ids,
            peer_type=EVIDENCE,
        )

    def link(self, source_id: str, source_type: str, workspace_id: str) -> int:
        """Dispatch on *source_type*; other types are never linked."""
        if source_type == EVIDENCE:
            return self.link_evidence_to_specs(source_id, workspace_id)
        if source_type == SPECIFICATION:
            return self.link_spec_to_evidence(source_id, workspace_id)
        return 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _similar_sources(
        self,
        source_id: str,
        source_type: str,
        peer_type: str,
        workspace_id: str,
        limit: int,
    ) -> list[str]:
        vector = self._search.source_vector(source_id, source_type)
        if vector is None:
            logger.info("No embeddings yet for %s:%s — skipping auto-link", source_type, source_id)
            return []

        results = self._search.search_by_vector(
            vector,
            workspace_id,
            source_types=[peer_type],
            limit=limit,
            threshold=self._config.threshold,
        )
        # dict.fromkeys keeps first-seen (best) order while deduplicating
        return list(dict.fromkeys(r.source_id for r in results if r.source_id != source_id))

    def _insert_new(
        self,
        workspace_id: str,
        anchor_id: str,
        anchor_type: str,
        peer_ids: list[str],
        peer_type: str,
    ) -> int:
        if not peer_ids:
            return 0

        existing = self._repo.linked_peer_ids(workspace_id, anchor_id, anchor_type, peer_type)
        new_links = [
            _edge(workspace_id, anchor_id, anchor_type, peer_id)
            for peer_id in peer_ids
            if peer_id not in existing
        ]
        if not new_links:
            return 0

        try:
            return self._write(new_links)
        except LinkError as exc:
            logger.error("Failed to create links for %s:%s: %s", anchor_type, anchor_id, exc)
            return 0

    def _write(self, links: list[Link]) -> int:
        try:
            return self._repo.insert_links(links)
        except StoreError as exc:
            raise LinkError(str(exc)) from exc


def _edge(workspace_id: str, anchor_id: str, anchor_type: str, peer_id: str) -> Link:
    """Build an evidence → specification edge regardless of which side is the anchor."""
    if anchor_type == EVIDENCE:
        evidence_id, spec_id = anchor_id, peer_id
    else:
        evidence_id, spec_id = peer_id, anchor_id
    return Link(
        workspace_id=workspace_id,
        source_id=evidence_id,
        source_type=EVIDENCE,
        target_id=spec_id,
        target_type=SPECIFICATION,
        relationship=RELATED_TO,
    )
