"""Evidence nudges — surface clusters relevant to a section being written.

A nudge pairs a stored cluster with a combined score:

    score = similarity * 0.6 + section_relevance[section] * 0.4

where similarity compares the section text to the cluster centroid.
"""

from __future__ import annotations

from dataclasses import dataclass

from koso.db.models import Cluster
from koso.db.repository import Repository
from koso.llm.client import EmbeddingClient

SIMILARITY_WEIGHT = 0.6
RELEVANCE_WEIGHT = 0.4
CANDIDATE_LIMIT = 8
CANDIDATE_THRESHOLD = 0.25


@dataclass
class Nudge:
    cluster: Cluster
    similarity: float
    score: float


class NudgeFinder:
    def __init__(self, repo: Repository, embedder: EmbeddingClient) -> None:
        self._repo = repo
        self._embedder = embedder

    def nudges(
        self,
        section_text: str,
        workspace_id: str,
        section_name: str | None = None,
        limit: int = 3,
    ) -> list[Nudge]:
        """Top clusters for *section_text*, highest combined score first.

        Raises:
            EmbeddingError: If the section text cannot be embedded.
        """
        vector = self._embedder.embed(section_text)
        candidates = self._repo.match_clusters(
            vector, workspace_id, limit=CANDIDATE_LIMIT, threshold=CANDIDATE_THRESHOLD
        )
        scored = [
            Nudge(cluster=c, similarity=sim, score=combined_score(c, sim, section_name))
            for c, sim in candidates
        ]
        scored.sort(key=lambda n: n.score, reverse=True)
        return scored[:limit]


def combined_score(cluster: Cluster, similarity: float, section_name: str | None) -> float:
    relevance = cluster.section_relevance.get(section_name, 0.0) if section_name else 0.0
    return similarity * SIMILARITY_WEIGHT + relevance * RELEVANCE_WEIGHT
