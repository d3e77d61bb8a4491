"""SQLite database connection and schema management."""

import os
import sqlite3
from pathlib import Path

import structlog

logger = structlog.get_logger()

_DB_FILE_PERMISSIONS = 0o600
_IN_MEMORY = ":memory:"

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS pools (
    id TEXT PRIMARY KEY,
    invite_code TEXT NOT NULL,
    status TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_pools_invite_code
    ON pools (invite_code) WHERE status != 'completed';

CREATE TABLE IF NOT EXISTS cells (
    pool_id TEXT NOT NULL REFERENCES pools (id),
    cell_id TEXT NOT NULL,
    owner_id TEXT,
    data TEXT NOT NULL,
    PRIMARY KEY (pool_id, cell_id)
);

CREATE TABLE IF NOT EXISTS matchups (
    pool_id TEXT NOT NULL REFERENCES pools (id),
    game_id TEXT NOT NULL,
    week INTEGER,
    start_time TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (pool_id, game_id)
);

CREATE INDEX IF NOT EXISTS idx_matchups_week
    ON matchups (pool_id, week);

CREATE TABLE IF NOT EXISTS scoreboards (
    pool_id TEXT NOT NULL REFERENCES pools (id),
    key TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (pool_id, key)
);
"""


class Database:
    """SQLite database wrapper with schema management."""

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the active connection or raise if disconnected."""
        if self._conn is None:
            raise RuntimeError("Database is not connected")
        return self._conn

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> None:
        """Open the database, apply pragmas, create schema, and harden file permissions."""
        if self._path != _IN_MEMORY:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        if self._path != _IN_MEMORY:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(_SCHEMA_SQL)

        self._harden_permissions()
        logger.info("database connected", path=self._path)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _harden_permissions(self) -> None:
        """Set restrictive file permissions on POSIX systems (best effort).

        Covers the WAL/SHM sibling files as well as the main file.
        """
        if os.name != "posix" or self._path == _IN_MEMORY:  # pragma: no cover
            return
        for suffix in ("", "-wal", "-shm"):
            p = Path(self._path + suffix)
            if p.exists():
                try:
                    p.chmod(_DB_FILE_PERMISSIONS)
                except OSError:
                    logger.warning("could not set file permissions", permissions=oct(_DB_FILE_PERMISSIONS), path=str(p))
