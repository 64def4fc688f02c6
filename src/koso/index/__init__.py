"""Vector index maintenance."""

from koso.index.indexer import Indexer

__all__ = ["Indexer"]
