"""notebookqa database layer."""

from notebookqa.db.connection import Database
from notebookqa.db.migrations import MIGRATIONS, run_migrations
from notebookqa.db.repository import Repository
from notebookqa.db.schema import initialize

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
