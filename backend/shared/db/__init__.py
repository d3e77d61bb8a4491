"""SQLite database layer: connection management and repository implementations."""

from shared.db.connection import Database
from shared.db.pool_repository import SqlitePoolRepository

__all__ = [
    "Database",
    "SqlitePoolRepository",
]
