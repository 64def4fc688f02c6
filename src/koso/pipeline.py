"""Glue between document mutations and the engine.

A save runs, in one background task:

    store the document row → reindex → auto-link

so linking only ever sees the vectors the reindex just committed. Cluster
recomputes are triggered separately and decoupled from saves; report
generation runs as a cancellable job in the JobRegistry.

Each function that runs off-thread opens its own connection from ``db_path``.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from koso.clusters.engine import ClusterEngine
from koso.config import KosoConfig
from koso.db.connection import Database
from koso.db.models import EVIDENCE, SPECIFICATION, Evidence, Source, Specification
from koso.db.repository import Repository
from koso.index.indexer import Indexer
from koso.jobs import BackgroundTasks, JobHandle, JobRegistry, Subscriber, TaskHandle
from koso.links.auto_linker import AutoLinker
from koso.llm.client import EmbeddingClient
from koso.reports.generator import ReportGenerator
from koso.search.similarity import SimilaritySearch

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    source_id: str
    chunks: int
    links: int


def embedder_for(config: KosoConfig) -> EmbeddingClient:
    return EmbeddingClient(model=config.embedding.model, dimensions=config.embedding.dimensions)


def store_source(repo: Repository, source: Source, now: datetime | None = None) -> None:
    """Upsert the evidence or specification row backing *source*.

    Code modules have no row of their own; only their embeddings are stored.
    """
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    content = source.body if isinstance(source.body, str) else json.dumps(source.body)
    if source.source_type == EVIDENCE:
        repo.upsert_evidence(
            Evidence(
                id=source.source_id,
                workspace_id=source.workspace_id,
                title=source.title,
                content=content,
                created_at=stamp,
            )
        )
    elif source.source_type == SPECIFICATION:
        repo.upsert_specification(
            Specification(
                id=source.source_id,
                workspace_id=source.workspace_id,
                title=source.title,
                content=content,
                updated_at=stamp,
            )
        )


def process_source(
    db_path: Path | str,
    source: Source,
    config: KosoConfig,
    embedder: EmbeddingClient | None = None,
) -> SaveResult:
    """Store, reindex and auto-link one source on a fresh connection.

    Raises:
        EmbeddingError: If reindexing fails; nothing is linked then.
        StoreError: If the document row or embeddings cannot be written.
    """
    embedder = embedder or embedder_for(config)
    with Database(db_path) as conn:
        repo = Repository(conn)
        store_source(repo, source)
        chunks = Indexer(repo, embedder, config.chunking).reindex(
            source.source_id,
            source.source_type,
            source.workspace_id,
            source.body,
            title=source.title,
        )
        search = SimilaritySearch(repo, embedder)
        links = AutoLinker(repo, search, config.linking).link(
            source.source_id, source.source_type, source.workspace_id
        )
    return SaveResult(source_id=source.source_id, chunks=chunks, links=links)


def on_source_saved(
    db_path: Path | str,
    source: Source,
    config: KosoConfig,
    tasks: BackgroundTasks,
    embedder: EmbeddingClient | None = None,
) -> TaskHandle:
    """Schedule process_source without blocking the caller."""
    return tasks.submit(
        f"index:{source.source_type}:{source.source_id}",
        process_source,
        db_path,
        source,
        config,
        embedder,
    )


def recompute_if_due(
    db_path: Path | str,
    workspace_id: str,
    config: KosoConfig,
    on_progress: Callable[[str], None] | None = None,
) -> int | None:
    """Recompute clusters when the trigger policy says so.

    Returns the number of clusters written, or None when no recompute was due.
    """
    with Database(db_path) as conn:
        engine = ClusterEngine(Repository(conn), config.clustering, config.generation)
        if not engine.should_recompute(workspace_id):
            logger.debug("Cluster recompute not due for workspace %s", workspace_id)
            return None
        return len(engine.compute_clusters(workspace_id, on_progress=on_progress))


def schedule_recompute(
    db_path: Path | str,
    workspace_id: str,
    config: KosoConfig,
    tasks: BackgroundTasks,
) -> TaskHandle:
    return tasks.submit(f"clusters:{workspace_id}", recompute_if_due, db_path, workspace_id, config)


def start_report(
    registry: JobRegistry,
    db_path: Path | str,
    spec_id: str,
    workspace_id: str,
    config: KosoConfig,
    embedder: EmbeddingClient | None = None,
    on_event: Subscriber | None = None,
) -> JobHandle:
    """Start (or join) the report job for *spec_id*.

    Subscribers, *on_event* included, receive every streamed text delta; the
    final ``done`` event carries the persisted Report.
    """
    embedder = embedder or embedder_for(config)

    def target(cancel: threading.Event, emit: Callable[[Any], None]) -> Any:
        with Database(db_path) as conn:
            repo = Repository(conn)
            generator = ReportGenerator(repo, SimilaritySearch(repo, embedder), config.generation)
            return generator.generate(spec_id, workspace_id, cancel=cancel, on_delta=emit)

    return registry.start(report_job_id(spec_id), target, subscriber=on_event)


def report_job_id(spec_id: str) -> str:
    return f"report:{spec_id}"
