"""Exception taxonomy for the koso engine.

Background jobs catch these, log them and carry on. User-initiated commands
turn them into a short rich error message (see koso.cli.errors).
"""

from __future__ import annotations


class KosoError(Exception):
    """Base class for all koso errors."""


class EmbeddingError(KosoError):
    """Embedding provider failed or was asked to embed empty text.

    Aborts the caller's current reindex; nothing is written.
    """


class ClusteringError(KosoError):
    """A language-model call during clustering failed or returned unusable output.

    Never fails a workspace: the engine swaps in the call site's fallback.
    """


class LinkError(KosoError):
    """Writing auto-link edges failed."""


class StoreError(KosoError):
    """Generic persistence failure in the SQLite store."""


class ReportError(KosoError):
    """Report generation failed before anything was persisted."""


class JobCancelled(KosoError):
    """A job observed its cancellation token and stopped early."""
