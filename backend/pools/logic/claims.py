"""
Claim arbitration for grid cells and strip slots.

Per-cell states: available -> claimed -> available. Every attempt re-reads the
pool and the cell, so a retried claim re-validates against the current state
instead of replaying a decision made before the backoff.

Race handling is two-layered:
1. The write carries the owner observed before deciding (``expected_owner_id``).
   A store with conditional writes rejects it if the owner changed meanwhile.
2. After writing, the cell is re-read. If the persisted owner is not the
   caller, a concurrent claim won and AlreadyClaimedError is raised.

With a store that writes unconditionally, layer 2 alone still leaves the
last-writer-wins window open: a claim that re-reads before a competing write
lands reports success and is then overwritten.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from pools.logic.exceptions import (
    AlreadyClaimedError,
    CellNotFoundError,
    NotClaimedError,
    NotOwnerError,
    PoolNotFoundError,
    PoolNotOpenError,
)
from pools.logic.lifecycle import accepts_claims

if TYPE_CHECKING:
    from collections.abc import Callable

    from pools.logic.retry import CancellationToken, RetryableOperation
    from pools.logic.types import GridCell, StripSlot
    from shared.dal import PoolRepository

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class ClaimArbiter:
    def __init__(
        self,
        repository: PoolRepository,
        retry: RetryableOperation,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._retry = retry
        self._clock = clock

    async def _load_open_cell(self, pool_id: str, cell_id: str) -> GridCell | StripSlot:
        pool = await self._repository.get_pool(pool_id)
        if pool is None:
            raise PoolNotFoundError(pool_id)
        if not accepts_claims(pool):
            raise PoolNotOpenError(pool_id=pool_id, status=pool.status)
        cell = await self._repository.get_cell(pool_id, cell_id)
        if cell is None:
            raise CellNotFoundError(pool_id=pool_id, cell_id=cell_id)
        return cell

    async def claim(
        self,
        pool_id: str,
        cell_id: str,
        user_id: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> GridCell | StripSlot:
        """Claim an available cell for ``user_id``. Re-claiming your own cell is a no-op."""

        async def attempt() -> GridCell | StripSlot:
            cell = await self._load_open_cell(pool_id, cell_id)
            if cell.owner_id == user_id:
                return cell
            if cell.is_claimed:
                raise AlreadyClaimedError(cell_id=cell_id, owner_id=cell.owner_id)

            claimed = cell.claimed_by(user_id, self._clock())
            written = await self._repository.save_cell(pool_id, claimed, expected_owner_id=None)

            current = await self._repository.get_cell(pool_id, cell_id)
            if not written or current is None or current.owner_id != user_id:
                owner_id = current.owner_id if current is not None else None
                logger.info("claim lost race", pool_id=pool_id, cell_id=cell_id, user_id=user_id, owner_id=owner_id)
                raise AlreadyClaimedError(cell_id=cell_id, owner_id=owner_id)

            logger.info("cell claimed", pool_id=pool_id, cell_id=cell_id, user_id=user_id)
            return current

        return await self._retry.run("claim cell", attempt, cancel_token=cancel_token)

    async def release(
        self,
        pool_id: str,
        cell_id: str,
        user_id: str,
        *,
        is_privileged: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> GridCell | StripSlot:
        """Return a claimed cell to available. Only its owner or a privileged caller may do so."""

        async def attempt() -> GridCell | StripSlot:
            cell = await self._load_open_cell(pool_id, cell_id)
            if not cell.is_claimed:
                raise NotClaimedError(cell_id=cell_id)
            if cell.owner_id != user_id and not is_privileged:
                raise NotOwnerError(cell_id=cell_id, user_id=user_id)

            released = cell.released()
            written = await self._repository.save_cell(pool_id, released, expected_owner_id=cell.owner_id)
            if not written:
                # owner changed between read and write
                current = await self._repository.get_cell(pool_id, cell_id)
                if current is None or not current.is_claimed:
                    raise NotClaimedError(cell_id=cell_id)
                raise AlreadyClaimedError(cell_id=cell_id, owner_id=current.owner_id)

            logger.info(
                "cell released",
                pool_id=pool_id,
                cell_id=cell_id,
                user_id=user_id,
                previous_owner_id=cell.owner_id,
            )
            return released

        return await self._retry.run("release cell", attempt, cancel_token=cancel_token)
