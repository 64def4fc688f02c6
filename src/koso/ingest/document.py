"""Structured document chunker — heading-aware sections with paragraph packing.

Documents are editor trees of ``{"type", "content"?, "text"?, "attrs"?}`` nodes
rooted at a ``doc`` node. Only known block type names are interpreted; any
other node is treated as an inline container.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from koso.db.models import Chunk
from koso.ingest.base import BaseChunker

BLOCK_TYPES: frozenset[str] = frozenset(
    [
        "paragraph",
        "heading",
        "bulletList",
        "orderedList",
        "taskList",
        "blockquote",
        "codeBlock",
        "listItem",
        "taskItem",
    ]
)


@dataclass
class _Section:
    heading: str
    blocks: list[str]

    @property
    def body(self) -> str:
        return "\n\n".join(b for b in self.blocks if b.strip()).strip()

    @property
    def text(self) -> str:
        return f"{self.heading}\n{self.body}" if self.heading else self.body


def extract_text(node: dict[str, Any]) -> str:
    """Return the text of *node*: block children join with newlines, inline ones concatenate."""
    text = node.get("text")
    if text:
        return str(text)
    children = node.get("content")
    if not children:
        return ""
    sep = "\n" if node.get("type") in BLOCK_TYPES else ""
    return sep.join(extract_text(child) for child in children if isinstance(child, dict))


class DocumentChunker(BaseChunker):
    """Split a structured document on heading boundaries.

    Strategy:
    - Each ``heading`` node opens a section; other top-level blocks accumulate
      under the most recent heading (content before the first heading forms a
      heading-less section).
    - A section that fits ``max_tokens`` becomes one chunk: ``heading\\nbody``.
    - A larger section is split on blank-line paragraphs and packed greedily;
      every sub-chunk after the first starts again with ``heading\\n``.
    - A single paragraph larger than the budget is kept whole.

    Documents without any text yield no chunks.
    """

    def chunk(self, body: dict[str, Any] | str) -> list[Chunk]:
        if not isinstance(body, dict):
            return []

        texts: list[str] = []
        for section in self._sections(body):
            section_text = section.text
            if not section_text.strip():
                continue
            if self.fits(section_text):
                texts.append(section_text)
            else:
                texts.extend(self._split_section(section))
        return self._make_chunks(texts)

    def _sections(self, doc: dict[str, Any]) -> list[_Section]:
        sections: list[_Section] = []
        current = _Section(heading="", blocks=[])

        for node in doc.get("content") or []:
            if not isinstance(node, dict):
                continue
            if node.get("type") == "heading":
                if current.heading or current.body:
                    sections.append(current)
                current = _Section(heading=extract_text(node).strip(), blocks=[])
            else:
                current.blocks.append(extract_text(node))

        if current.heading or current.body:
            sections.append(current)
        return sections

    def _split_section(self, section: _Section) -> list[str]:
        pieces: list[str] = []
        current = ""
        for para in self.split_paragraphs(section.text):
            candidate = f"{current}\n\n{para}" if current else para
            if current and not self.fits(candidate):
                pieces.append(current)
                prefixed = f"{section.heading}\n{para}" if section.heading else para
                current = prefixed if self.fits(prefixed) else para
            else:
                current = candidate
        if current.strip():
            pieces.append(current)
        return pieces
