"""koso database layer."""

from koso.db.connection import Database
from koso.db.migrations import MIGRATIONS, initialize, run_migrations
from koso.db.repository import Repository

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
