"""Vector helpers for stored embeddings."""

from __future__ import annotations


def centroid(vectors: list[list[float]]) -> list[float] | None:
    """Per-dimension arithmetic mean of *vectors*; None when there are none.

    Raises:
        ValueError: If the vectors do not all have the same dimension.
    """
    if not vectors:
        return None
    dims = len(vectors[0])
    if any(len(v) != dims for v in vectors):
        raise ValueError("Cannot average vectors of different dimensions")
    n = len(vectors)
    return [sum(column) / n for column in zip(*vectors)]
