"""koso ingest pipeline — chunkers and source dispatch."""

from koso.ingest.base import BaseChunker
from koso.ingest.chunker import chunk_source
from koso.ingest.document import DocumentChunker, extract_text
from koso.ingest.plaintext import PlainTextChunker

__all__ = [
    "BaseChunker",
    "DocumentChunker",
    "PlainTextChunker",
    "chunk_source",
    "extract_text",
]
