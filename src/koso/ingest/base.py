"""Base chunker interface shared by the document and plain-text chunkers."""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from typing import Any

from koso.db.models import Chunk

# Blank-line paragraph boundary.
_PARAGRAPH_RE = re.compile(r"\n\s*\n+")


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Token counting uses a 4-chars-per-token approximation rounded up; no
    external tokenizer dependency is required.
    """

    def __init__(self, max_tokens: int = 500, overlap_tokens: int = 50) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        if not 0 <= overlap_tokens < max_tokens:
            raise ValueError("overlap_tokens must be in [0, max_tokens)")
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens

    @abstractmethod
    def chunk(self, body: dict[str, Any] | str) -> list[Chunk]:
        """Split *body* into ordered Chunks with sequential 0-based ``index``."""

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Approximate token count: ceil(chars / 4)."""
        return math.ceil(len(text) / 4)

    def fits(self, text: str) -> bool:
        return self.estimate_tokens(text) <= self.max_tokens

    @staticmethod
    def split_paragraphs(text: str) -> list[str]:
        """Split on blank lines, dropping empty paragraphs."""
        return [p for p in _PARAGRAPH_RE.split(text) if p.strip()]

    @staticmethod
    def _make_chunks(texts: list[str]) -> list[Chunk]:
        """Strip, drop empties, and index the remaining texts from 0."""
        cleaned = [t.strip() for t in texts if t.strip()]
        return [Chunk(text=t, index=i) for i, t in enumerate(cleaned)]
