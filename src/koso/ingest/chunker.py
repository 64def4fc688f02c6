"""Source → chunk dispatch.

Specifications are structured documents; evidence and code-module summaries
are plain text. A text source always yields at least one chunk so it stays
searchable.
"""

from __future__ import annotations

from koso.config import ChunkingCfg
from koso.db.models import SPECIFICATION, Chunk, Source
from koso.ingest.document import DocumentChunker
from koso.ingest.plaintext import PlainTextChunker


def chunk_source(source: Source, cfg: ChunkingCfg | None = None) -> list[Chunk]:
    """Chunk *source* according to its type.

    A specification whose body is a plain string is chunked as plain text.
    """
    cfg = cfg or ChunkingCfg()

    if source.source_type == SPECIFICATION and isinstance(source.body, dict):
        return DocumentChunker(cfg.max_tokens, cfg.overlap_tokens).chunk(source.body)

    chunks = PlainTextChunker(cfg.max_tokens, cfg.overlap_tokens).chunk(source.body)
    if chunks or source.source_type == SPECIFICATION:
        return chunks
    return [Chunk(text=_fallback_text(source), index=0)]


def _fallback_text(source: Source) -> str:
    if source.title.strip():
        return source.title.strip()
    return f"{source.source_type} {source.source_id}"
