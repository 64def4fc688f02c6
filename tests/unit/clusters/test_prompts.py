"""Tests for clustering prompt helpers and reply schemas."""

from __future__ import annotations

from koso.clusters.prompts import (
    CRITICALITY_SYSTEM,
    EVIDENCE_EXCERPT_CHARS,
    RELEVANCE_SYSTEM,
    ClusterReply,
    CriticalityItem,
    SectionScores,
    cluster_listing,
    evidence_listing,
)


def test_evidence_listing_numbers_from_zero_and_truncates():
    listing = evidence_listing([("Call", "x" * 500), ("Ticket", "short")])

    lines = listing.splitlines()
    assert lines[0] == "0. Call: " + "x" * EVIDENCE_EXCERPT_CHARS
    assert lines[1] == "1. Ticket: short"


def test_cluster_listing_with_and_without_counts():
    listing = cluster_listing([("Billing", "Charges wrong.", 4), ("Search", "Slow.", None)])

    assert listing.splitlines() == [
        '- "Billing": Charges wrong. (4 evidence items)',
        '- "Search": Slow.',
    ]


def test_system_templates_format():
    relevance = RELEVANCE_SYSTEM.format(sections="Problem, Scope", first_section="Problem")
    assert '"Problem": 0.9' in relevance

    criticality = CRITICALITY_SYSTEM.format(recency_ratio=0.5)
    assert "0.50 of evidence" in criticality


def test_cluster_reply_accepts_bare_list():
    reply = ClusterReply.model_validate([{"label": "A", "items": [0]}])
    assert reply.clusters[0].label == "A"
    assert reply.clusters[0].summary == ""


def test_scores_are_clamped():
    assert SectionScores(label="A", relevance={"Problem": -0.2, "Scope": 3}).relevance == {
        "Problem": 0.0,
        "Scope": 1.0,
    }
    assert CriticalityItem(label="A", score=1.5).score == 1.0
