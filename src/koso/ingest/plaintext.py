"""Plain text chunker — greedy paragraph packing with trailing overlap."""

from __future__ import annotations

import json
from typing import Any

from koso.db.models import Chunk
from koso.ingest.base import BaseChunker


class PlainTextChunker(BaseChunker):
    """Pack blank-line-delimited paragraphs into chunks of at most ``max_tokens``.

    When a chunk is closed, up to ``overlap_tokens`` worth of its trailing
    paragraphs are carried into the next chunk, as long as the carried text
    plus the next paragraph still fits the budget.

    Non-string bodies are serialized to JSON before splitting.
    """

    def chunk(self, body: dict[str, Any] | str) -> list[Chunk]:
        text = body if isinstance(body, str) else json.dumps(body, ensure_ascii=False)
        paragraphs = self.split_paragraphs(text)
        if not paragraphs:
            return []

        texts: list[str] = []
        current = ""
        since_split: list[str] = []

        for para in paragraphs:
            candidate = f"{current}\n\n{para}" if current else para
            if current and not self.fits(candidate):
                texts.append(current)
                overlap = self._overlap(since_split)
                carried = f"{overlap}\n\n{para}" if overlap else para
                current = carried if self.fits(carried) else para
                since_split = []
            else:
                current = candidate
            since_split.append(para)

        if current.strip():
            texts.append(current)
        return self._make_chunks(texts)

    def _overlap(self, paragraphs: list[str]) -> str:
        """Join the longest tail of *paragraphs* that stays within ``overlap_tokens``."""
        overlap = ""
        for para in reversed(paragraphs):
            candidate = f"{para}\n\n{overlap}" if overlap else para
            if self.estimate_tokens(candidate) > self.overlap_tokens:
                break
            overlap = candidate
        return overlap
