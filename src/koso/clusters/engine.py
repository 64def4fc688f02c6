"""Cluster engine — periodic thematic grouping of a workspace's evidence.

Per-workspace state lives in the cluster computation log:

    idle → computing → completed
                     ↘ failed

The ``computing`` status is a soft lock with a lease: a second recompute is
refused while it is fresher than ``lease_minutes``, so a crashed worker only
blocks its workspace until the lease runs out.

Language-model replies are decoded against fixed schemas. A call that fails
or returns something unusable never fails the run; each call has a fallback:

    grouping     → one catch-all cluster over every evidence item
    relevance    → empty section map
    criticality  → no criticality fields
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from pydantic import BaseModel

from koso.clusters.prompts import (
    CLUSTER_SYSTEM,
    CRITICALITY_SYSTEM,
    RELEVANCE_SYSTEM,
    ClusterGroup,
    ClusterReply,
    CriticalityItem,
    CriticalityReply,
    RelevanceReply,
    cluster_listing,
    evidence_listing,
)
from koso.config import ClusteringCfg, GenerationCfg
from koso.db.models import COMPLETED, COMPUTING, EVIDENCE, FAILED, Cluster, ComputationLog, Evidence
from koso.db.repository import Repository
from koso.db.vectors import centroid
from koso.errors import ClusteringError
from koso.llm.client import complete
from koso.llm.decode import decode_json

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

MIN_GROUPS = 3
MAX_GROUPS = 8
RECENCY_WINDOW = timedelta(days=30)

CATCH_ALL_LABEL = "All evidence"
CATCH_ALL_SUMMARY = "Could not cluster."


def criticality_level(score: float) -> str:
    """Map a 0-1 criticality score to its level name."""
    if score >= 0.8:
        return "critical"
    if score >= 0.6:
        return "high"
    if score >= 0.4:
        return "medium"
    return "low"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: str) -> datetime | None:
    try:
        ts = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


@dataclass
class _Group:
    label: str
    summary: str
    indices: list[int]


class ClusterEngine:
    """Decide when to recompute clusters, and recompute them.

    Args:
        repo: Open Repository instance.
        config: Recompute policy and section names.
        generation: Model used for the three clustering calls.
        now: Clock returning an aware UTC datetime (injectable for tests).
    """

    def __init__(
        self,
        repo: Repository,
        config: ClusteringCfg | None = None,
        generation: GenerationCfg | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._config = config or ClusteringCfg()
        self._generation = generation or GenerationCfg()
        self._now = now

    # ------------------------------------------------------------------
    # Trigger policy
    # ------------------------------------------------------------------

    def should_recompute(self, workspace_id: str) -> bool:
        """Return True when the workspace's clusters should be recomputed."""
        cfg = self._config
        evidence_count = self._repo.count_evidence(workspace_id)
        if evidence_count < cfg.min_evidence:
            return False

        log = self._repo.get_computation_log(workspace_id)
        if log is None:
            return True
        if log.status == FAILED:
            return True

        last = _parse_ts(log.last_computed_at)
        if last is None:
            return True
        if self._lease_held(log, last):
            return False
        if self._now() - last >= timedelta(hours=cfg.stale_hours):
            return True
        return evidence_count - log.evidence_count_at_computation >= cfg.growth_trigger

    def is_locked(self, workspace_id: str) -> bool:
        """True while another recompute of *workspace_id* holds a live lease."""
        log = self._repo.get_computation_log(workspace_id)
        if log is None:
            return False
        last = _parse_ts(log.last_computed_at)
        return last is not None and self._lease_held(log, last)

    def _lease_held(self, log: ComputationLog, last: datetime) -> bool:
        lease = timedelta(minutes=self._config.lease_minutes)
        return log.status == COMPUTING and self._now() - last < lease

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def compute_clusters(
        self,
        workspace_id: str,
        on_progress: Callable[[str], None] | None = None,
    ) -> list[Cluster]:
        """Recompute and replace every cluster of *workspace_id*.

        Returns the clusters written (empty when there is too little evidence).

        Raises:
            StoreError: If persistence fails. The log is marked ``failed``
                first so the next trigger retries.
        """
        progress = on_progress or (lambda _step: None)
        self._mark(workspace_id, COMPUTING, 0)

        try:
            progress("Fetching evidence...")
            # The log records the whole workspace, not the capped sample.
            total = self._repo.count_evidence(workspace_id)
            evidence = self._repo.list_recent_evidence(workspace_id, self._config.max_evidence)
            if len(evidence) < self._config.min_evidence:
                self._mark(workspace_id, COMPLETED, total)
                return []

            progress(f"Identifying patterns across {len(evidence)} items...")
            groups = self._group(evidence)

            progress(f"Computing embeddings for {len(groups)} themes...")
            computed_at = self._now().isoformat()
            clusters = [self._build(workspace_id, g, evidence, computed_at) for g in groups]

            if clusters:
                progress("Scoring section relevance...")
                self._apply_relevance(clusters)
                progress("Assessing criticality...")
                self._apply_criticality(clusters, self._recency_ratio(evidence))

            progress("Saving themes...")
            self._repo.replace_clusters(workspace_id, clusters)
            self._mark(workspace_id, COMPLETED, total)
        except Exception:
            logger.exception("Cluster computation failed for workspace %s", workspace_id)
            self._mark(workspace_id, FAILED, 0)
            raise

        logger.info("Stored %d clusters for workspace %s", len(clusters), workspace_id)
        return clusters

    def list_clusters(self, workspace_id: str) -> list[Cluster]:
        return self._repo.list_clusters(workspace_id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _group(self, evidence: list[Evidence]) -> list[_Group]:
        n = len(evidence)
        catch_all = [_Group(CATCH_ALL_LABEL, CATCH_ALL_SUMMARY, list(range(n)))]

        def ask() -> list[_Group]:
            reply = self._ask(
                CLUSTER_SYSTEM.format(min_groups=MIN_GROUPS, max_groups=MAX_GROUPS),
                evidence_listing([(e.title, e.content) for e in evidence]),
                ClusterReply,
            )
            claimed: set[int] = set()
            groups = [_to_group(g, n, claimed) for g in reply.clusters[:MAX_GROUPS]]
            usable = [g for g in groups if g.indices]
            if not usable:
                raise ClusteringError("reply contained no usable groups")
            return usable

        return self._with_fallback("Evidence grouping", ask, catch_all)

    def _build(
        self, workspace_id: str, group: _Group, evidence: list[Evidence], computed_at: str
    ) -> Cluster:
        member_ids = [evidence[i].id for i in group.indices]
        return Cluster(
            workspace_id=workspace_id,
            label=group.label,
            summary=group.summary,
            evidence_ids=member_ids,
            evidence_count=len(member_ids),
            centroid=centroid(self._repo.get_vectors(member_ids, EVIDENCE)),
            computed_at=computed_at,
        )

    def _apply_relevance(self, clusters: list[Cluster]) -> None:
        sections = self._config.sections
        if not sections:
            return

        def ask() -> dict[str, dict[str, float]]:
            reply = self._ask(
                RELEVANCE_SYSTEM.format(sections=", ".join(sections), first_section=sections[0]),
                cluster_listing([(c.label, c.summary, None) for c in clusters]),
                RelevanceReply,
            )
            return {
                r.label: {s: score for s, score in r.relevance.items() if s in sections}
                for r in reply.results
            }

        by_label = self._with_fallback("Section relevance", ask, {})
        for cluster in clusters:
            cluster.section_relevance = by_label.get(cluster.label, {})

    def _apply_criticality(self, clusters: list[Cluster], recency_ratio: float) -> None:
        def ask() -> dict[str, CriticalityItem]:
            reply = self._ask(
                CRITICALITY_SYSTEM.format(recency_ratio=recency_ratio),
                cluster_listing([(c.label, c.summary, c.evidence_count) for c in clusters]),
                CriticalityReply,
            )
            return {r.label: r for r in reply.results}

        by_label = self._with_fallback("Criticality", ask, {})
        for cluster in clusters:
            item = by_label.get(cluster.label)
            if item is None:
                continue
            cluster.criticality_score = item.score
            cluster.criticality_level = criticality_level(item.score)
            cluster.criticality_reason = item.reason or None

    def _recency_ratio(self, evidence: list[Evidence]) -> float:
        if not evidence:
            return 0.0
        cutoff = self._now() - RECENCY_WINDOW
        recent = 0
        for item in evidence:
            ts = _parse_ts(item.created_at)
            if ts is not None and ts > cutoff:
                recent += 1
        return recent / len(evidence)

    # ------------------------------------------------------------------
    # Model access
    # ------------------------------------------------------------------

    def _ask(self, system: str, user: str, schema: type[M]) -> M:
        """One completion decoded against *schema*.

        Raises:
            ClusteringError: If the call fails or the reply does not decode.
        """
        try:
            raw = complete(
                self._generation.model,
                [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                max_tokens=self._generation.max_tokens,
            )
        except Exception as exc:
            raise ClusteringError(f"model call failed: {exc}") from exc

        decoded = decode_json(raw, schema)
        if not decoded.ok or decoded.value is None:
            raise ClusteringError(decoded.reason)
        return decoded.value

    @staticmethod
    def _with_fallback(step: str, call: Callable[[], T], fallback: T) -> T:
        try:
            return call()
        except ClusteringError as exc:
            logger.warning("%s failed, using fallback: %s", step, exc)
            return fallback

    def _mark(self, workspace_id: str, status: str, evidence_count: int) -> None:
        self._repo.upsert_computation_log(
            ComputationLog(
                workspace_id=workspace_id,
                status=status,
                last_computed_at=self._now().isoformat(),
                evidence_count_at_computation=evidence_count,
            )
        )


def _to_group(group: ClusterGroup, n: int, claimed: set[int]) -> _Group:
    """Keep in-range indices not already claimed by an earlier group."""
    indices = []
    for i in group.items:
        if 0 <= i < n and i not in claimed:
            claimed.add(i)
            indices.append(i)
    return _Group(label=group.label.strip() or CATCH_ALL_LABEL, summary=group.summary.strip(), indices=indices)
