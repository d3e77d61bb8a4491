"""SQLite-backed pool repository."""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog

from pools.logic.enums import PoolStatus
from pools.logic.exceptions import TransientStoreError
from pools.logic.types import CELL_ADAPTER, GridCell, Matchup, PickemScoreboard, Pool, StripSlot
from shared.dal.pool_repository import PoolRepository

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from shared.db.connection import Database

logger = structlog.get_logger()


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Report lock contention and I/O failures as retryable store errors."""
    try:
        yield
    except sqlite3.OperationalError as exc:
        logger.debug("sqlite operation failed", operation=operation, error=str(exc))
        raise TransientStoreError(f"{operation}: {exc}") from exc


class SqlitePoolRepository(PoolRepository):
    """SQLite implementation of PoolRepository.

    Stores each document as JSON with indexed columns for lookups. Cell
    ownership lives in its own column so ``save_cell`` can write
    conditionally on the owner the caller observed.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._lock = asyncio.Lock()

    # ---- pools ----

    async def create_pool(self, pool: Pool, cells: Sequence[GridCell | StripSlot] = ()) -> bool:
        """Insert a pool and its cells in one transaction.

        Returns False when the id or an active invite code is taken.
        """
        async with self._lock:
            conn = self._db.connection
            with _store_errors("create pool"):
                conn.execute("BEGIN")
                try:
                    conn.execute(
                        "INSERT INTO pools (id, invite_code, status, data) VALUES (?, ?, ?, ?)",
                        (pool.pool_id, pool.invite_code, pool.status.value, pool.model_dump_json()),
                    )
                    conn.executemany(
                        "INSERT INTO cells (pool_id, cell_id, owner_id, data) VALUES (?, ?, ?, ?)",
                        [(pool.pool_id, cell.cell_id, cell.owner_id, cell.model_dump_json()) for cell in cells],
                    )
                except sqlite3.IntegrityError:
                    conn.execute("ROLLBACK")
                    logger.warning("pool already exists, ignoring duplicate create", pool_id=pool.pool_id)
                    return False
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
        return True

    async def save_pool(self, pool: Pool, *, expected_status: PoolStatus | None = None) -> bool:
        """Overwrite the pool, only while its stored status is ``expected_status`` when given."""
        query = "UPDATE pools SET invite_code = ?, status = ?, data = ? WHERE id = ?"
        params: tuple[str, ...] = (pool.invite_code, pool.status.value, pool.model_dump_json(), pool.pool_id)
        if expected_status is not None:
            query += " AND status = ?"
            params += (expected_status.value,)
        async with self._lock:
            conn = self._db.connection
            with _store_errors("save pool"):
                cursor = conn.execute(query, params)
                conn.commit()
        if cursor.rowcount == 0:
            logger.info("pool write skipped", pool_id=pool.pool_id, expected_status=expected_status)
            return False
        return True

    async def get_pool(self, pool_id: str) -> Pool | None:
        with _store_errors("get pool"):
            row = self._db.connection.execute("SELECT data FROM pools WHERE id = ?", (pool_id,)).fetchone()
        if row is None:
            return None
        return Pool.model_validate_json(row[0])

    async def get_pool_by_invite_code(self, invite_code: str) -> Pool | None:
        """Look up a pool by invite code, preferring one that is still active."""
        with _store_errors("get pool by invite code"):
            row = self._db.connection.execute(
                "SELECT data FROM pools WHERE invite_code = ? ORDER BY status = ? LIMIT 1",
                (invite_code, PoolStatus.COMPLETED.value),
            ).fetchone()
        if row is None:
            return None
        return Pool.model_validate_json(row[0])

    async def list_active_invite_codes(self) -> set[str]:
        with _store_errors("list invite codes"):
            rows = self._db.connection.execute(
                "SELECT invite_code FROM pools WHERE status != ?",
                (PoolStatus.COMPLETED.value,),
            ).fetchall()
        return {row[0] for row in rows}

    # ---- cells ----

    async def get_cell(self, pool_id: str, cell_id: str) -> GridCell | StripSlot | None:
        with _store_errors("get cell"):
            row = self._db.connection.execute(
                "SELECT data FROM cells WHERE pool_id = ? AND cell_id = ?",
                (pool_id, cell_id),
            ).fetchone()
        if row is None:
            return None
        return CELL_ADAPTER.validate_json(row[0])

    async def save_cell(
        self,
        pool_id: str,
        cell: GridCell | StripSlot,
        *,
        expected_owner_id: str | None,
    ) -> bool:
        """Write the cell only if its persisted owner is still ``expected_owner_id``."""
        async with self._lock:
            conn = self._db.connection
            with _store_errors("save cell"):
                cursor = conn.execute(
                    "UPDATE cells SET owner_id = ?, data = ? WHERE pool_id = ? AND cell_id = ? AND owner_id IS ?",
                    (cell.owner_id, cell.model_dump_json(), pool_id, cell.cell_id, expected_owner_id),
                )
                conn.commit()
        if cursor.rowcount == 0:
            logger.info("conditional cell write skipped", pool_id=pool_id, cell_id=cell.cell_id)
            return False
        return True

    async def list_cells(self, pool_id: str) -> list[GridCell | StripSlot]:
        with _store_errors("list cells"):
            rows = self._db.connection.execute(
                "SELECT data FROM cells WHERE pool_id = ? ORDER BY rowid",
                (pool_id,),
            ).fetchall()
        return [CELL_ADAPTER.validate_json(row[0]) for row in rows]

    # ---- matchups ----

    async def save_matchup(self, pool_id: str, matchup: Matchup) -> None:
        async with self._lock:
            conn = self._db.connection
            with _store_errors("save matchup"):
                conn.execute(
                    "INSERT INTO matchups (pool_id, game_id, week, start_time, data) VALUES (?, ?, ?, ?, ?) "
                    "ON CONFLICT (pool_id, game_id) DO UPDATE SET "
                    "week = excluded.week, start_time = excluded.start_time, data = excluded.data",
                    (pool_id, matchup.game_id, matchup.week, matchup.start_time.isoformat(), matchup.model_dump_json()),
                )
                conn.commit()

    async def get_matchup(self, pool_id: str, game_id: str) -> Matchup | None:
        with _store_errors("get matchup"):
            row = self._db.connection.execute(
                "SELECT data FROM matchups WHERE pool_id = ? AND game_id = ?",
                (pool_id, game_id),
            ).fetchone()
        if row is None:
            return None
        return Matchup.model_validate_json(row[0])

    async def list_matchups(self, pool_id: str, week: int | None = None) -> list[Matchup]:
        """List matchups ordered by start time, optionally for a single week."""
        with _store_errors("list matchups"):
            if week is None:
                rows = self._db.connection.execute(
                    "SELECT data FROM matchups WHERE pool_id = ? ORDER BY start_time, game_id",
                    (pool_id,),
                ).fetchall()
            else:
                rows = self._db.connection.execute(
                    "SELECT data FROM matchups WHERE pool_id = ? AND week = ? ORDER BY start_time, game_id",
                    (pool_id, week),
                ).fetchall()
        return [Matchup.model_validate_json(row[0]) for row in rows]

    # ---- scoreboards ----

    async def save_scoreboard(self, pool_id: str, scoreboard: PickemScoreboard) -> None:
        async with self._lock:
            conn = self._db.connection
            with _store_errors("save scoreboard"):
                conn.execute(
                    "INSERT INTO scoreboards (pool_id, key, data) VALUES (?, ?, ?) "
                    "ON CONFLICT (pool_id, key) DO UPDATE SET data = excluded.data",
                    (pool_id, scoreboard.key, scoreboard.model_dump_json()),
                )
                conn.commit()

    async def get_scoreboard(self, pool_id: str, key: str) -> PickemScoreboard | None:
        with _store_errors("get scoreboard"):
            row = self._db.connection.execute(
                "SELECT data FROM scoreboards WHERE pool_id = ? AND key = ?",
                (pool_id, key),
            ).fetchone()
        if row is None:
            return None
        return PickemScoreboard.model_validate_json(row[0])
