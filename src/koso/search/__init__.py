"""Similarity search over the workspace vector store."""

from koso.search.similarity import SimilaritySearch, group_by_type

__all__ = ["SimilaritySearch", "group_by_type"]
