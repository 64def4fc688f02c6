"""Workspace-scoped similarity search over stored chunk embeddings.

Two query shapes:
  - search():      embed a query string and match it against the workspace.
  - related_to():  average a source's own chunk vectors (its centroid) and find
                   what else in the workspace resembles the whole document.

Results can be bucketed by source type with group_by_type(); that is pure
post-processing and never touches the store.
"""

from __future__ import annotations

from koso.db.models import SOURCE_TYPES, SimilarityResult
from koso.db.repository import Repository
from koso.db.vectors import centroid
from koso.llm.client import EmbeddingClient

# related_to() over-fetches so that dropping the source's own chunks still
# leaves enough rows.
_RELATED_OVERFETCH = 10

_CONTEXT_LIMIT = 20
_CONTEXT_THRESHOLD = 0.1


class SimilaritySearch:
    """Nearest-neighbour queries, always filtered by workspace.

    Args:
        repo: Open Repository instance.
        embedder: Embedding client; must use the same model as the indexer.
    """

    def __init__(self, repo: Repository, embedder: EmbeddingClient) -> None:
        self._repo = repo
        self._embedder = embedder

    def search(
        self,
        query: str,
        workspace_id: str,
        source_types: list[str] | None = None,
        limit: int = 10,
        threshold: float = 0.0,
    ) -> list[SimilarityResult]:
        """Return the chunks most similar to *query*, best first.

        Raises:
            EmbeddingError: If the query cannot be embedded.
        """
        query_vector = self._embedder.embed(query)
        return self._repo.match_embeddings(
            query_vector,
            workspace_id,
            source_types=source_types,
            limit=limit,
            threshold=threshold,
        )

    def source_vector(self, source_id: str, source_type: str | None = None) -> list[float] | None:
        """Centroid of a source's stored chunk vectors, or None if it has none yet."""
        return centroid(self._repo.get_vectors([source_id], source_type))

    def search_by_vector(
        self,
        vector: list[float],
        workspace_id: str,
        source_types: list[str] | None = None,
        limit: int = 10,
        threshold: float = 0.0,
    ) -> list[SimilarityResult]:
        return self._repo.match_embeddings(
            vector,
            workspace_id,
            source_types=source_types,
            limit=limit,
            threshold=threshold,
        )

    def related_to(
        self,
        source_id: str,
        workspace_id: str,
        limit: int = 5,
        source_type: str | None = None,
    ) -> list[SimilarityResult]:
        """Chunks from other sources that resemble *source_id* as a whole.

        Returns an empty list when the source has not been indexed yet.
        """
        vector = self.source_vector(source_id, source_type)
        if vector is None:
            return []
        rows = self.search_by_vector(
            vector, workspace_id, limit=limit + _RELATED_OVERFETCH, threshold=0.0
        )
        return [r for r in rows if r.source_id != source_id][:limit]

    def assemble_context(
        self,
        query: str,
        workspace_id: str,
        source_types: list[str] | None = None,
    ) -> dict[str, list[SimilarityResult]]:
        """Search broadly and bucket the results for prompt assembly."""
        results = self.search(
            query,
            workspace_id,
            source_types=source_types,
            limit=_CONTEXT_LIMIT,
            threshold=_CONTEXT_THRESHOLD,
        )
        return group_by_type(results)


def group_by_type(results: list[SimilarityResult]) -> dict[str, list[SimilarityResult]]:
    """Partition *results* into one bucket per source type, preserving order.

    Every known type gets a bucket, possibly empty.
    """
    grouped: dict[str, list[SimilarityResult]] = {t: [] for t in SOURCE_TYPES}
    for result in results:
        grouped.setdefault(result.source_type, []).append(result)
    return grouped

