"""Repository pattern for all koso database operations.

Single interface for: embeddings (vector store read + write), evidence,
specifications, links, clusters, the cluster computation log and reports.
Write failures surface as StoreError; reads let sqlite3 errors propagate.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterable

from koso.db.models import (
    Cluster,
    ComputationLog,
    EmbeddingRecord,
    Evidence,
    Link,
    Report,
    SimilarityResult,
    Specification,
)
from koso.errors import StoreError


class Repository:
    """Data access layer for all koso entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see koso.db.migrations.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Embeddings — vector store writes
    # ------------------------------------------------------------------

    def replace_embeddings(
        self, source_id: str, source_type: str, records: list[EmbeddingRecord]
    ) -> int:
        """Delete every record of ``(source_id, source_type)`` and insert *records*.

        Both statements run in one transaction, so readers see either the old
        set or the new one. Returns the number of rows inserted.
        """
        try:
            with self._conn:
                self._conn.execute(
                    "DELETE FROM embeddings WHERE source_id = ? AND source_type = ?",
                    (source_id, source_type),
                )
                self._conn.executemany(
                    """
                    INSERT INTO embeddings
                        (id, workspace_id, source_id, source_type, chunk_text,
                         chunk_index, embedding, metadata)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            r.id,
                            r.workspace_id,
                            r.source_id,
                            r.source_type,
                            r.chunk_text,
                            r.chunk_index,
                            json.dumps(r.vector),
                            json.dumps(r.metadata),
                        )
                        for r in records
                    ],
                )
        except sqlite3.Error as exc:
            raise StoreError(
                f"Failed to replace embeddings for {source_type}:{source_id}: {exc}"
            ) from exc
        return len(records)

    def delete_embeddings(self, source_id: str, source_type: str) -> int:
        """Delete all records for a source. Returns the number of rows deleted."""
        try:
            cur = self._conn.execute(
                "DELETE FROM embeddings WHERE source_id = ? AND source_type = ?",
                (source_id, source_type),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(
                f"Failed to delete embeddings for {source_type}:{source_id}: {exc}"
            ) from exc
        return cur.rowcount

    # ------------------------------------------------------------------
    # Embeddings — reads
    # ------------------------------------------------------------------

    def count_embeddings(self, source_id: str, source_type: str | None = None) -> int:
        if source_type is None:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM embeddings WHERE source_id = ?", (source_id,)
            ).fetchone()
        else:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM embeddings WHERE source_id = ? AND source_type = ?",
                (source_id, source_type),
            ).fetchone()
        return row[0]

    def list_chunk_texts(self, source_id: str, source_type: str) -> list[str]:
        """Return the stored chunk texts of a source in chunk order."""
        rows = self._conn.execute(
            """
            SELECT chunk_text FROM embeddings
            WHERE source_id = ? AND source_type = ?
            ORDER BY chunk_index
            """,
            (source_id, source_type),
        ).fetchall()
        return [r["chunk_text"] for r in rows]

    def get_vectors(
        self, source_ids: Iterable[str], source_type: str | None = None
    ) -> list[list[float]]:
        """Return every stored chunk vector belonging to *source_ids*."""
        ids = list(source_ids)
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        sql = f"SELECT embedding FROM embeddings WHERE source_id IN ({placeholders})"
        params: list[object] = list(ids)
        if source_type is not None:
            sql += " AND source_type = ?"
            params.append(source_type)
        return [json.loads(r["embedding"]) for r in self._conn.execute(sql, params).fetchall()]

    def match_embeddings(
        self,
        query_vector: list[float],
        workspace_id: str,
        source_types: list[str] | None = None,
        limit: int = 10,
        threshold: float = 0.0,
    ) -> list[SimilarityResult]:
        """Nearest-neighbour query scoped to a workspace.

        Cosine similarity comes from sqlite-vec's ``vec_distance_cosine``.
        Rows with ``similarity <= threshold`` are cut inside the query;
        results are ordered by descending similarity.
        """
        inner_where = "workspace_id = ?"
        params: list[object] = [json.dumps(query_vector), workspace_id]
        if source_types:
            inner_where += f" AND source_type IN ({','.join('?' * len(source_types))})"
            params.extend(source_types)
        params.extend([threshold, limit])

        rows = self._conn.execute(
            f"""
            SELECT id, source_id, source_type, chunk_text, chunk_index, metadata, similarity
            FROM (
                SELECT id, source_id, source_type, chunk_text, chunk_index, metadata,
                       1.0 - vec_distance_cosine(vec_f32(embedding), vec_f32(?)) AS similarity
                FROM embeddings
                WHERE {inner_where}
            )
            WHERE similarity > ?
            ORDER BY similarity DESC
            LIMIT ?
            """,
            params,
        ).fetchall()
        return [_row_to_similarity(r) for r in rows]

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    def upsert_evidence(self, evidence: Evidence) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO evidence (id, workspace_id, title, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    content = excluded.content
                """,
                (
                    evidence.id,
                    evidence.workspace_id,
                    evidence.title,
                    evidence.content,
                    evidence.created_at,
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to save evidence {evidence.id}: {exc}") from exc

    def get_evidence(self, evidence_id: str) -> Evidence | None:
        row = self._conn.execute(
            "SELECT id, workspace_id, title, content, created_at FROM evidence WHERE id = ?",
            (evidence_id,),
        ).fetchone()
        return _row_to_evidence(row) if row else None

    def count_evidence(self, workspace_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM evidence WHERE workspace_id = ?", (workspace_id,)
        ).fetchone()[0]

    def list_recent_evidence(self, workspace_id: str, limit: int) -> list[Evidence]:
        """Return up to *limit* evidence items, newest first."""
        rows = self._conn.execute(
            """
            SELECT id, workspace_id, title, content, created_at FROM evidence
            WHERE workspace_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (workspace_id, limit),
        ).fetchall()
        return [_row_to_evidence(r) for r in rows]

    def delete_evidence(self, evidence_id: str) -> None:
        try:
            self._conn.execute("DELETE FROM evidence WHERE id = ?", (evidence_id,))
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to delete evidence {evidence_id}: {exc}") from exc

    # ------------------------------------------------------------------
    # Specifications
    # ------------------------------------------------------------------

    def upsert_specification(self, spec: Specification) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO specifications (id, workspace_id, title, content)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    content = excluded.content,
                    updated_at = datetime('now')
                """,
                (spec.id, spec.workspace_id, spec.title, spec.content),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to save specification {spec.id}: {exc}") from exc

    def get_specification(self, spec_id: str, workspace_id: str | None = None) -> Specification | None:
        sql = "SELECT id, workspace_id, title, content, updated_at FROM specifications WHERE id = ?"
        params: list[object] = [spec_id]
        if workspace_id is not None:
            sql += " AND workspace_id = ?"
            params.append(workspace_id)
        row = self._conn.execute(sql, params).fetchone()
        if row is None:
            return None
        return Specification(
            id=row["id"],
            workspace_id=row["workspace_id"],
            title=row["title"],
            content=row["content"],
            updated_at=row["updated_at"],
        )

    def delete_specification(self, spec_id: str) -> None:
        try:
            self._conn.execute("DELETE FROM specifications WHERE id = ?", (spec_id,))
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to delete specification {spec_id}: {exc}") from exc

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def linked_peer_ids(
        self, workspace_id: str, source_id: str, source_type: str, peer_type: str
    ) -> set[str]:
        """Return ids of *peer_type* entities already linked to a source, either direction."""
        rows = self._conn.execute(
            """
            SELECT target_id AS peer FROM links
            WHERE workspace_id = ? AND source_id = ? AND source_type = ? AND target_type = ?
            UNION
            SELECT source_id AS peer FROM links
            WHERE workspace_id = ? AND target_id = ? AND target_type = ? AND source_type = ?
            """,
            (
                workspace_id, source_id, source_type, peer_type,
                workspace_id, source_id, source_type, peer_type,
            ),
        ).fetchall()
        return {r["peer"] for r in rows}

    def insert_links(self, links: list[Link]) -> int:
        """Insert *links*, ignoring edges that already exist. Returns rows inserted."""
        inserted = 0
        try:
            with self._conn:
                for link in links:
                    cur = self._conn.execute(
                        """
                        INSERT OR IGNORE INTO links
                            (id, workspace_id, source_id, source_type,
                             target_id, target_type, relationship)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            str(uuid.uuid4()),
                            link.workspace_id,
                            link.source_id,
                            link.source_type,
                            link.target_id,
                            link.target_type,
                            link.relationship,
                        ),
                    )
                    inserted += cur.rowcount
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to insert links: {exc}") from exc
        return inserted

    def list_links(self, workspace_id: str, entity_id: str | None = None) -> list[Link]:
        """Return links in a workspace, optionally only those touching *entity_id*."""
        sql = (
            "SELECT workspace_id, source_id, source_type, target_id, target_type, relationship "
            "FROM links WHERE workspace_id = ?"
        )
        params: list[object] = [workspace_id]
        if entity_id is not None:
            sql += " AND (source_id = ? OR target_id = ?)"
            params.extend([entity_id, entity_id])
        sql += " ORDER BY created_at, rowid"
        return [
            Link(
                workspace_id=r["workspace_id"],
                source_id=r["source_id"],
                source_type=r["source_type"],
                target_id=r["target_id"],
                target_type=r["target_type"],
                relationship=r["relationship"],
            )
            for r in self._conn.execute(sql, params).fetchall()
        ]

    # ------------------------------------------------------------------
    # Cluster computation log
    # ------------------------------------------------------------------

    def get_computation_log(self, workspace_id: str) -> ComputationLog | None:
        row = self._conn.execute(
            """
            SELECT workspace_id, status, last_computed_at, evidence_count_at_computation
            FROM cluster_computation_log WHERE workspace_id = ?
            """,
            (workspace_id,),
        ).fetchone()
        if row is None:
            return None
        return ComputationLog(
            workspace_id=row["workspace_id"],
            status=row["status"],
            last_computed_at=row["last_computed_at"],
            evidence_count_at_computation=row["evidence_count_at_computation"],
        )

    def upsert_computation_log(self, log: ComputationLog) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO cluster_computation_log
                    (workspace_id, status, last_computed_at, evidence_count_at_computation)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(workspace_id) DO UPDATE SET
                    status = excluded.status,
                    last_computed_at = excluded.last_computed_at,
                    evidence_count_at_computation = excluded.evidence_count_at_computation
                """,
                (
                    log.workspace_id,
                    log.status,
                    log.last_computed_at,
                    log.evidence_count_at_computation,
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(
                f"Failed to update computation log for {log.workspace_id}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Clusters
    # ------------------------------------------------------------------

    def replace_clusters(self, workspace_id: str, clusters: list[Cluster]) -> None:
        """Delete every cluster of the workspace and insert *clusters* in one transaction.

        Assigns a fresh id to each cluster.
        """
        try:
            with self._conn:
                self._conn.execute(
                    "DELETE FROM evidence_clusters WHERE workspace_id = ?", (workspace_id,)
                )
                for cluster in clusters:
                    cluster.id = str(uuid.uuid4())
                    self._conn.execute(
                        """
                        INSERT INTO evidence_clusters
                            (id, workspace_id, label, summary, evidence_ids, evidence_count,
                             centroid, section_relevance, criticality_score,
                             criticality_level, criticality_reason, computed_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            cluster.id,
                            workspace_id,
                            cluster.label,
                            cluster.summary,
                            json.dumps(cluster.evidence_ids),
                            cluster.evidence_count,
                            json.dumps(cluster.centroid) if cluster.centroid is not None else None,
                            json.dumps(cluster.section_relevance),
                            cluster.criticality_score,
                            cluster.criticality_level,
                            cluster.criticality_reason,
                            cluster.computed_at,
                        ),
                    )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to replace clusters for {workspace_id}: {exc}") from exc

    def list_clusters(self, workspace_id: str) -> list[Cluster]:
        """Return clusters, most critical first, then largest."""
        rows = self._conn.execute(
            """
            SELECT * FROM evidence_clusters
            WHERE workspace_id = ?
            ORDER BY COALESCE(criticality_score, -1) DESC, evidence_count DESC, label
            """,
            (workspace_id,),
        ).fetchall()
        return [_row_to_cluster(r) for r in rows]

    def match_clusters(
        self,
        query_vector: list[float],
        workspace_id: str,
        limit: int = 8,
        threshold: float = 0.25,
    ) -> list[tuple[Cluster, float]]:
        """Clusters whose centroid resembles *query_vector*, best first.

        Clusters without a centroid are never returned.
        """
        rows = self._conn.execute(
            """
            SELECT * FROM (
                SELECT *,
                       1.0 - vec_distance_cosine(vec_f32(centroid), vec_f32(?)) AS similarity
                FROM evidence_clusters
                WHERE workspace_id = ? AND centroid IS NOT NULL
            )
            WHERE similarity > ?
            ORDER BY similarity DESC
            LIMIT ?
            """,
            (json.dumps(query_vector), workspace_id, threshold, limit),
        ).fetchall()
        return [
            (_row_to_cluster(r), min(1.0, max(0.0, float(r["similarity"])))) for r in rows
        ]

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def upsert_report(self, report: Report) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO reports (spec_id, workspace_id, body, content_hash, generated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(spec_id) DO UPDATE SET
                    workspace_id = excluded.workspace_id,
                    body = excluded.body,
                    content_hash = excluded.content_hash,
                    generated_at = excluded.generated_at
                """,
                (
                    report.spec_id,
                    report.workspace_id,
                    report.body,
                    report.content_hash,
                    report.generated_at,
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to save report for {report.spec_id}: {exc}") from exc

    def get_report(self, spec_id: str, workspace_id: str) -> Report | None:
        row = self._conn.execute(
            """
            SELECT spec_id, workspace_id, body, content_hash, generated_at
            FROM reports WHERE spec_id = ? AND workspace_id = ?
            """,
            (spec_id, workspace_id),
        ).fetchone()
        if row is None:
            return None
        return Report(
            spec_id=row["spec_id"],
            workspace_id=row["workspace_id"],
            body=row["body"],
            content_hash=row["content_hash"],
            generated_at=row["generated_at"],
        )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_similarity(row: sqlite3.Row) -> SimilarityResult:
    return SimilarityResult(
        id=row["id"],
        source_id=row["source_id"],
        source_type=row["source_type"],
        chunk_text=row["chunk_text"],
        chunk_index=row["chunk_index"],
        metadata=json.loads(row["metadata"] or "{}"),
        similarity=min(1.0, max(0.0, float(row["similarity"]))),
    )


def _row_to_evidence(row: sqlite3.Row) -> Evidence:
    return Evidence(
        id=row["id"],
        workspace_id=row["workspace_id"],
        title=row["title"],
        content=row["content"],
        created_at=row["created_at"],
    )


def _row_to_cluster(row: sqlite3.Row) -> Cluster:
    return Cluster(
        id=row["id"],
        workspace_id=row["workspace_id"],
        label=row["label"],
        summary=row["summary"],
        evidence_ids=json.loads(row["evidence_ids"]),
        evidence_count=row["evidence_count"],
        centroid=json.loads(row["centroid"]) if row["centroid"] else None,
        section_relevance=json.loads(row["section_relevance"] or "{}"),
        criticality_score=row["criticality_score"],
        criticality_level=row["criticality_level"],
        criticality_reason=row["criticality_reason"],
        computed_at=row["computed_at"],
    )
