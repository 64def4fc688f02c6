"""koso — retrieval and clustering engine for product documents."""

__version__ = "0.1.0"
