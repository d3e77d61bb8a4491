"""Tests for Database connection and schema."""

from __future__ import annotations

import os
import stat
from typing import TYPE_CHECKING

import pytest

from shared.db.connection import Database

if TYPE_CHECKING:
    from pathlib import Path

_TABLES = {"pools", "cells", "matchups", "scoreboards"}


def _table_names(db: Database) -> set[str]:
    rows = db.connection.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {row[0] for row in rows}


class TestConnect:
    def test_creates_schema_and_connects(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()
        assert _TABLES <= _table_names(db)
        assert db.is_connected
        db.close()

    def test_in_memory_database(self) -> None:
        db = Database(":memory:")
        db.connect()
        assert _TABLES <= _table_names(db)
        db.close()

    def test_reconnect_keeps_schema_idempotent(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()
        db.close()
        db.connect()
        assert _TABLES <= _table_names(db)
        db.close()

    def test_connection_raises_when_disconnected(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        with pytest.raises(RuntimeError, match="not connected"):
            _ = db.connection

    def test_connection_raises_after_close(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()
        db.close()
        assert not db.is_connected
        with pytest.raises(RuntimeError, match="not connected"):
            _ = db.connection

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "nested" / "dir" / "test.db")
        db.connect()
        assert (tmp_path / "nested" / "dir" / "test.db").exists()
        db.close()

    def test_enables_foreign_keys(self) -> None:
        db = Database(":memory:")
        db.connect()
        assert db.connection.execute("PRAGMA foreign_keys").fetchone() == (1,)
        db.close()

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions only")
    def test_hardens_file_permissions(self, tmp_path: Path) -> None:
        path = tmp_path / "test.db"
        db = Database(path)
        db.connect()
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        db.close()
