"""docembed database layer."""

from docembed.db.connection import Database
from docembed.db.migrations import MIGRATIONS, run_migrations
from docembed.db.repository import Repository
from docembed.db.schema import initialize

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
