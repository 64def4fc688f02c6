"""Domain models for the koso database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

SPECIFICATION = "specification"
EVIDENCE = "evidence"
CODE_MODULE = "code_module"

SOURCE_TYPES: tuple[str, ...] = (SPECIFICATION, EVIDENCE, CODE_MODULE)

COMPUTING = "computing"
COMPLETED = "completed"
FAILED = "failed"

RELATED_TO = "related_to"


@dataclass
class Source:
    """An embeddable entity as supplied by the document collaborator.

    ``body`` is either a structured document tree (dict) or a plain string.
    """

    source_id: str
    source_type: str
    workspace_id: str
    body: dict[str, Any] | str
    title: str = ""

    def __post_init__(self) -> None:
        if self.source_type not in SOURCE_TYPES:
            raise ValueError(
                f"Unknown source_type '{self.source_type}'. "
                f"Expected one of: {', '.join(SOURCE_TYPES)}"
            )


@dataclass
class Chunk:
    text: str
    index: int


@dataclass
class EmbeddingRecord:
    id: str
    workspace_id: str
    source_id: str
    source_type: str
    chunk_text: str
    chunk_index: int
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SimilarityResult:
    """One row returned by a nearest-neighbour query. Never persisted."""

    id: str
    source_id: str
    source_type: str
    chunk_text: str
    chunk_index: int
    metadata: dict[str, Any]
    similarity: float


@dataclass
class Link:
    workspace_id: str
    source_id: str
    source_type: str
    target_id: str
    target_type: str
    relationship: str = RELATED_TO


@dataclass
class Evidence:
    id: str
    workspace_id: str
    title: str
    content: str
    created_at: str


@dataclass
class Specification:
    id: str
    workspace_id: str
    title: str
    content: str  # JSON-serialized tree or plain text
    updated_at: str | None = None

    @property
    def body(self) -> dict[str, Any] | str:
        """Return the parsed document tree, or the raw text if it is not JSON."""
        try:
            parsed = json.loads(self.content)
        except json.JSONDecodeError:
            return self.content
        return parsed if isinstance(parsed, dict) else self.content


@dataclass
class Cluster:
    workspace_id: str
    label: str
    summary: str
    evidence_ids: list[str]
    evidence_count: int
    computed_at: str
    centroid: list[float] | None = None
    section_relevance: dict[str, float] = field(default_factory=dict)
    criticality_score: float | None = None
    criticality_level: str | None = None
    criticality_reason: str | None = None
    id: str | None = None  # set once persisted


@dataclass
class ComputationLog:
    workspace_id: str
    status: str
    last_computed_at: str
    evidence_count_at_computation: int


@dataclass
class Report:
    spec_id: str
    workspace_id: str
    body: str
    content_hash: int
    generated_at: str
