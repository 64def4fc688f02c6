"""Indexer — chunk, embed and replace the stored vectors of one source.

For each call:
1. Chunk the body (zero chunks → no-op; the existing index is kept).
2. Embed every chunk, one call at a time, so provider rate limits hold.
3. Replace the source's record set: delete everything stored for
   ``(source_id, source_type)`` and insert the new records.

Chunk boundaries move on every edit, so there is no per-chunk identity to
diff against; a full replace is the only update. An EmbeddingError in step 2
aborts before anything is written.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from koso.config import ChunkingCfg
from koso.db.models import EmbeddingRecord, Source
from koso.db.repository import Repository
from koso.ingest.chunker import chunk_source
from koso.llm.client import EmbeddingClient

logger = logging.getLogger(__name__)


class Indexer:
    """Keep the vector store in sync with one source at a time.

    Args:
        repo: Open Repository instance.
        embedder: Embedding client used for every chunk.
        chunking: Chunk budget configuration.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingClient,
        chunking: ChunkingCfg | None = None,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._chunking = chunking or ChunkingCfg()

    def reindex(
        self,
        source_id: str,
        source_type: str,
        workspace_id: str,
        body: dict[str, Any] | str,
        title: str = "",
    ) -> int:
        """Re-embed a source and replace its stored records.

        Returns:
            Number of records written (0 when the body produced no chunks).

        Raises:
            EmbeddingError: If any chunk fails to embed. Nothing is written.
            StoreError: If the replace fails.
        """
        source = Source(
            source_id=source_id,
            source_type=source_type,
            workspace_id=workspace_id,
            body=body,
            title=title,
        )
        chunks = chunk_source(source, self._chunking)
        if not chunks:
            logger.info("No chunks generated for %s:%s", source_type, source_id)
            return 0

        logger.info(
            "Embedding %d chunks for %s:%s", len(chunks), source_type, source_id
        )
        records = [
            EmbeddingRecord(
                id=str(uuid.uuid4()),
                workspace_id=workspace_id,
                source_id=source_id,
                source_type=source_type,
                chunk_text=chunk.text,
                chunk_index=chunk.index,
                vector=self._embedder.embed(chunk.text),
            )
            for chunk in chunks
        ]

        written = self._repo.replace_embeddings(source_id, source_type, records)
        logger.info("Stored %d chunks for %s:%s", written, source_type, source_id)
        return written

    def remove(self, source_id: str, source_type: str) -> int:
        """Drop every stored record of a source. Returns rows deleted."""
        deleted = self._repo.delete_embeddings(source_id, source_type)
        logger.info("Removed %d chunks for %s:%s", deleted, source_type, source_id)
        return deleted
