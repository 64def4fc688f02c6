"""Prompt templates and reply schemas for the clustering calls.

Each call asks for one JSON shape; the pydantic models below are what a
reply must validate against (see koso.llm.decode).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

CLUSTER_SYSTEM = (
    "You are a product research analyst. Group these evidence items into "
    "{min_groups}-{max_groups} thematic clusters. For each cluster return a JSON "
    "object with: label (3-5 words), summary (one sentence), items (array of "
    '0-based indices). Return valid JSON — an object with a "clusters" key '
    "containing the array. No markdown, no code fences."
)

RELEVANCE_SYSTEM = (
    "You are a product research analyst. For each cluster, score its relevance "
    "(0.0 to 1.0) to each document section: {sections}. Return JSON: "
    '{{"results": [{{"label": "...", "relevance": {{"{first_section}": 0.9}}}}]}}. '
    "No markdown, no code fences."
)

CRITICALITY_SYSTEM = (
    "You are a product analyst assessing business criticality of evidence themes. "
    "Score each on a 0.0-1.0 scale considering: frequency (evidence count), "
    "business impact (revenue, churn, compliance risk), breadth (how many users "
    "affected), and recency. {recency_ratio:.2f} of evidence is from the last 30 "
    "days. Provide a short reason (one sentence). Return JSON: "
    '{{"results": [{{"label": "...", "score": 0.85, "reason": "..."}}]}}. '
    "No markdown, no code fences."
)

# Characters of each evidence item shown to the model.
EVIDENCE_EXCERPT_CHARS = 300


def evidence_listing(items: list[tuple[str, str]]) -> str:
    """Numbered ``index. title: excerpt`` lines for the clustering call."""
    return "\n".join(
        f"{i}. {title}: {content[:EVIDENCE_EXCERPT_CHARS]}"
        for i, (title, content) in enumerate(items)
    )


def cluster_listing(clusters: list[tuple[str, str, int | None]]) -> str:
    """Bullet list of clusters; the count is included when given."""
    lines = []
    for label, summary, count in clusters:
        line = f'- "{label}": {summary}'
        if count is not None:
            line += f" ({count} evidence items)"
        lines.append(line)
    return "\n".join(lines)


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


# ---------------------------------------------------------------------------
# Reply schemas
# ---------------------------------------------------------------------------


class ClusterGroup(BaseModel):
    label: str
    summary: str = ""
    items: list[int] = Field(default_factory=list)


class ClusterReply(BaseModel):
    clusters: list[ClusterGroup]

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"clusters": data}
        return data


class SectionScores(BaseModel):
    label: str
    relevance: dict[str, float] = Field(default_factory=dict)

    @field_validator("relevance")
    @classmethod
    def _clamp_scores(cls, value: dict[str, float]) -> dict[str, float]:
        return {k: _clamp(v) for k, v in value.items()}


class RelevanceReply(BaseModel):
    results: list[SectionScores]


class CriticalityItem(BaseModel):
    label: str
    score: float
    reason: str = ""

    @field_validator("score")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return _clamp(value)


class CriticalityReply(BaseModel):
    results: list[CriticalityItem]
