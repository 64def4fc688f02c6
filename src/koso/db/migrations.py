"""Forward-only migration runner for the koso database schema."""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS embeddings (
    id              TEXT PRIMARY KEY,
    workspace_id    TEXT NOT NULL,
    source_id       TEXT NOT NULL,
    source_type     TEXT NOT NULL,
    chunk_text      TEXT NOT NULL,
    chunk_index     INTEGER NOT NULL DEFAULT 0,
    embedding       TEXT NOT NULL,
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_embeddings_source
    ON embeddings (source_id, source_type);
CREATE INDEX IF NOT EXISTS idx_embeddings_workspace
    ON embeddings (workspace_id, source_type);

CREATE TABLE IF NOT EXISTS evidence (
    id              TEXT PRIMARY KEY,
    workspace_id    TEXT NOT NULL,
    title           TEXT NOT NULL DEFAULT '',
    content         TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_evidence_workspace
    ON evidence (workspace_id, created_at);

CREATE TABLE IF NOT EXISTS specifications (
    id              TEXT PRIMARY KEY,
    workspace_id    TEXT NOT NULL,
    title           TEXT NOT NULL DEFAULT '',
    content         TEXT NOT NULL,
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS links (
    id              TEXT PRIMARY KEY,
    workspace_id    TEXT NOT NULL,
    source_id       TEXT NOT NULL,
    source_type     TEXT NOT NULL,
    target_id       TEXT NOT NULL,
    target_type     TEXT NOT NULL,
    relationship    TEXT NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_links_edge
    ON links (source_id, target_id, source_type, target_type);
CREATE INDEX IF NOT EXISTS idx_links_target
    ON links (workspace_id, target_id);
"""

_V2_SQL = """
CREATE TABLE IF NOT EXISTS evidence_clusters (
    id                  TEXT PRIMARY KEY,
    workspace_id        TEXT NOT NULL,
    label               TEXT NOT NULL,
    summary             TEXT NOT NULL,
    evidence_ids        TEXT NOT NULL DEFAULT '[]',
    evidence_count      INTEGER NOT NULL DEFAULT 0,
    centroid            TEXT,
    section_relevance   TEXT NOT NULL DEFAULT '{}',
    criticality_score   REAL,
    criticality_level   TEXT CHECK (criticality_level IN ('critical', 'high', 'medium', 'low')),
    criticality_reason  TEXT,
    computed_at         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_evidence_clusters_workspace
    ON evidence_clusters (workspace_id);

CREATE TABLE IF NOT EXISTS cluster_computation_log (
    workspace_id                    TEXT PRIMARY KEY,
    last_computed_at                TEXT NOT NULL,
    evidence_count_at_computation   INTEGER NOT NULL DEFAULT 0,
    status                          TEXT NOT NULL DEFAULT 'completed'
        CHECK (status IN ('computing', 'completed', 'failed'))
);
"""

_V3_SQL = """
CREATE TABLE IF NOT EXISTS reports (
    spec_id         TEXT PRIMARY KEY,
    workspace_id    TEXT NOT NULL,
    body            TEXT NOT NULL,
    content_hash    INTEGER NOT NULL,
    generated_at    TEXT NOT NULL
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
    (3, _V3_SQL),
]

CURRENT_VERSION = MIGRATIONS[-1][0]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)
