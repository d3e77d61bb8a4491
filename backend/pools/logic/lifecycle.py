"""
Pool lifecycle: open -> locked -> completed, forward only.

Axis digits (squares) and strip numbers (strip cards) are assigned exactly
once, on the open -> locked transition. Existing assignments are never
overwritten, so re-reading a locked pool always shows the same numbers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from pools.logic.enums import PoolFormat, PoolStatus
from pools.logic.exceptions import InvalidTransitionError
from pools.logic.rng import assign_grid_digits, assign_strip_numbers, create_rng

if TYPE_CHECKING:
    import random

    from pools.logic.types import Pool

logger = structlog.get_logger()

ALLOWED_TRANSITIONS: dict[PoolStatus, PoolStatus] = {
    PoolStatus.OPEN: PoolStatus.LOCKED,
    PoolStatus.LOCKED: PoolStatus.COMPLETED,
}


def accepts_claims(pool: Pool) -> bool:
    return pool.status == PoolStatus.OPEN


def _check_transition(pool: Pool, target: PoolStatus) -> None:
    if ALLOWED_TRANSITIONS.get(pool.status) != target:
        raise InvalidTransitionError(pool_id=pool.pool_id, current=pool.status, target=target)


def lock_pool(pool: Pool, rng: random.Random | None = None) -> Pool:
    """Freeze claims and assign the pool's numbers if not already assigned."""
    _check_transition(pool, PoolStatus.LOCKED)
    update: dict[str, object] = {"status": PoolStatus.LOCKED}

    if pool.format == PoolFormat.SQUARES and pool.axis_numbers is None:
        update["axis_numbers"] = assign_grid_digits(rng or create_rng())
    elif pool.format == PoolFormat.STRIP_CARDS and pool.strip_numbers is None:
        update["strip_numbers"] = assign_strip_numbers(pool.strip_count, rng or create_rng())

    logger.info("pool locked", pool_id=pool.pool_id, format=pool.format)
    return pool.model_copy(update=update)


def complete_pool(pool: Pool) -> Pool:
    _check_transition(pool, PoolStatus.COMPLETED)
    logger.info("pool completed", pool_id=pool.pool_id)
    return pool.model_copy(update={"status": PoolStatus.COMPLETED})
