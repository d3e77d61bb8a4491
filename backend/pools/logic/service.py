"""
Pool workflows over a persistence backend.

PoolService is the explicitly constructed context for one server process: it
owns the repository, the retry policy, the telemetry sink, the random source
and the clock, so tests build one with fakes and no module-level state exists.

Every public workflow:
- validates its input before touching the store,
- routes each store call through RetryableOperation,
- runs under an overall ``asyncio.timeout`` (TimeoutError when exceeded).

Commissioner-only workflows take ``is_commissioner`` from the caller's
authorization context and raise PermissionDeniedError without it.
"""

from __future__ import annotations

import asyncio
import functools
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from pools.logic import lifecycle
from pools.logic.claims import ClaimArbiter
from pools.logic.enums import MatchupStatus, PoolFormat, PoolStatus
from pools.logic.exceptions import (
    CodeGenerationExhaustedError,
    FormatMismatchError,
    InvalidCountError,
    InvalidTransitionError,
    InvalidWeekError,
    InviteCodeNotFoundError,
    MatchupNotFoundError,
    PermissionDeniedError,
    PicksClosedError,
    PoolChangedError,
    PoolNotFoundError,
    PoolNotLockedError,
)
from pools.logic.payouts import allocate, parse_total_pot, validate_structure
from pools.logic.retry import RetryableOperation
from pools.logic.rng import (
    DEFAULT_INVITE_CODE_ATTEMPTS,
    DEFAULT_INVITE_CODE_LENGTH,
    MIN_STRIP_COUNT,
    create_rng,
    draw_unique_invite_code,
    is_valid_invite_code,
)
from pools.logic.scoring import (
    OVERALL_SCOREBOARD_KEY,
    compute_squares_winners,
    compute_strip_winners,
    rank_strip_owners,
    score_pickem,
    score_pickem_week,
)
from pools.logic.types import (
    DONATIONS_ONLY,
    GRID_SIZE,
    MAX_STRIP_COUNT,
    GridCell,
    PayoutStructure,
    Pool,
    StripSlot,
)
from shared.telemetry import LogTelemetrySink, emit_safely

if TYPE_CHECKING:
    import random
    from collections.abc import Awaitable, Callable, Coroutine

    from pools.logic.enums import Period, Side
    from pools.logic.retry import CancellationToken, RetryPolicy
    from pools.logic.types import (
        Matchup,
        PeriodPayouts,
        PeriodWinner,
        PickemOptions,
        PickemScoreboard,
        Score,
        StripStanding,
    )
    from shared.dal import PoolRepository
    from shared.telemetry import TelemetrySink

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_OPERATION_TIMEOUT_SECONDS = 60.0


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _new_pool_id() -> str:
    return uuid.uuid4().hex


def _time_limited(
    method: Callable[..., Coroutine[Any, Any, T]],
) -> Callable[..., Coroutine[Any, Any, T]]:
    """Bound a workflow by the service's overall operation timeout."""

    @functools.wraps(method)
    async def wrapper(self: PoolService, *args: Any, **kwargs: Any) -> T:  # noqa: ANN401
        async with asyncio.timeout(self.operation_timeout_seconds):
            return await method(self, *args, **kwargs)

    return wrapper


def _require_commissioner(is_commissioner: bool, action: str) -> None:  # noqa: FBT001
    if not is_commissioner:
        raise PermissionDeniedError(f"only the commissioner may {action}")


def _require_format(pool: Pool, *formats: PoolFormat) -> None:
    if pool.format not in formats:
        expected = " or ".join(formats)
        raise FormatMismatchError(f"pool {pool.pool_id} is a {pool.format} pool, expected {expected}")


class PoolService:
    def __init__(
        self,
        repository: PoolRepository,
        *,
        retry_policy: RetryPolicy | None = None,
        telemetry: TelemetrySink | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_pool_id,
        operation_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
        invite_code_length: int = DEFAULT_INVITE_CODE_LENGTH,
        invite_code_max_attempts: int = DEFAULT_INVITE_CODE_ATTEMPTS,
    ) -> None:
        self._repository = repository
        self._telemetry: TelemetrySink = telemetry or LogTelemetrySink()
        self._retry = RetryableOperation(retry_policy, telemetry=self._telemetry)
        self._rng = rng or create_rng()
        self._clock = clock
        self._id_factory = id_factory
        self._claims = ClaimArbiter(repository, self._retry, clock=clock)
        self.operation_timeout_seconds = operation_timeout_seconds
        self._invite_code_length = invite_code_length
        self._invite_code_max_attempts = invite_code_max_attempts

    async def _store(self, label: str, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:  # noqa: ANN401
        return await self._retry.run(label, lambda: operation(*args, **kwargs))

    async def _load_pool(self, pool_id: str) -> Pool:
        pool = await self._store("get pool", self._repository.get_pool, pool_id)
        if pool is None:
            raise PoolNotFoundError(pool_id)
        return pool

    async def _load_matchup(self, pool_id: str, game_id: str) -> Matchup:
        matchup = await self._store("get matchup", self._repository.get_matchup, pool_id, game_id)
        if matchup is None:
            raise MatchupNotFoundError(pool_id=pool_id, game_id=game_id)
        return matchup

    async def _save_pool(self, pool: Pool, updated: Pool) -> None:
        """Write back ``updated`` only if ``pool``'s status is still the stored one."""
        written = await self._store("save pool", self._repository.save_pool, updated, expected_status=pool.status)
        if written:
            return
        if updated.status == pool.status:
            raise PoolChangedError(pool_id=pool.pool_id, expected=pool.status)
        current = await self._load_pool(pool.pool_id)
        raise InvalidTransitionError(pool_id=pool.pool_id, current=current.status, target=updated.status)

    # ============ Pools ============

    @_time_limited
    async def create_pool(
        self,
        *,
        commissioner_id: str,
        format: PoolFormat,  # noqa: A002
        total_pot: str | float,
        name: str = "",
        payout_structure: PayoutStructure | None = None,
        strip_count: int = 10,
    ) -> Pool:
        """Create a pool with a unique invite code and seed its cells."""
        structure = payout_structure or PayoutStructure()
        pot = parse_total_pot(total_pot)
        if pot == DONATIONS_ONLY:
            validate_structure(structure)
        else:
            allocate(pot, structure)
        if not MIN_STRIP_COUNT <= strip_count <= MAX_STRIP_COUNT:
            raise InvalidCountError(f"Strip count must be between {MIN_STRIP_COUNT} and {MAX_STRIP_COUNT}")

        cells: list[GridCell | StripSlot]
        if format == PoolFormat.SQUARES:
            cells = [GridCell(row=r, col=c) for r in range(GRID_SIZE) for c in range(GRID_SIZE)]
        elif format == PoolFormat.STRIP_CARDS:
            cells = [StripSlot(position=p) for p in range(strip_count)]
        else:
            cells = []

        taken = set(await self._store("list invite codes", self._repository.list_active_invite_codes))
        for _ in range(self._invite_code_max_attempts):
            try:
                code = draw_unique_invite_code(taken, length=self._invite_code_length, max_attempts=1, rng=self._rng)
            except CodeGenerationExhaustedError:
                continue
            pool = Pool(
                pool_id=self._id_factory(),
                name=name,
                commissioner_id=commissioner_id,
                format=format,
                total_pot=pot,
                payout_structure=structure,
                invite_code=code,
                strip_count=strip_count,
                created_at=self._clock(),
            )
            if await self._store("create pool", self._repository.create_pool, pool, cells):
                break
            # another pool took the code between listing and inserting
            taken.add(code)
        else:
            raise CodeGenerationExhaustedError(attempts=self._invite_code_max_attempts)

        emit_safely(self._telemetry, "pool_created", pool_id=pool.pool_id, format=format, cells=len(cells))
        return pool

    @_time_limited
    async def get_pool(self, pool_id: str) -> Pool:
        return await self._load_pool(pool_id)

    @_time_limited
    async def find_pool_by_invite_code(self, invite_code: str) -> Pool:
        """Resolve a user-entered invite code (case-insensitive) to its pool."""
        normalized = invite_code.strip().upper()
        pool = None
        if is_valid_invite_code(normalized, self._invite_code_length):
            pool = await self._store(
                "get pool by invite code",
                self._repository.get_pool_by_invite_code,
                normalized,
            )
        if pool is None:
            raise InviteCodeNotFoundError(invite_code=normalized)
        return pool

    @_time_limited
    async def lock_pool(self, pool_id: str, *, is_commissioner: bool) -> Pool:
        """Close claims and assign axis digits or strip numbers.

        Of two overlapping lock requests only one is written; the other raises
        InvalidTransitionError, so the digits a caller receives are the stored ones.
        """
        _require_commissioner(is_commissioner, "lock the pool")
        pool = await self._load_pool(pool_id)
        locked = lifecycle.lock_pool(pool, self._rng)
        await self._save_pool(pool, locked)
        emit_safely(self._telemetry, "pool_locked", pool_id=pool_id, format=pool.format)
        return locked

    @_time_limited
    async def complete_pool(self, pool_id: str, *, is_commissioner: bool) -> Pool:
        _require_commissioner(is_commissioner, "complete the pool")
        pool = await self._load_pool(pool_id)
        completed = lifecycle.complete_pool(pool)
        await self._save_pool(pool, completed)
        emit_safely(self._telemetry, "pool_completed", pool_id=pool_id)
        return completed

    # ============ Cells ============

    @_time_limited
    async def claim_cell(
        self,
        pool_id: str,
        cell_id: str,
        user_id: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> GridCell | StripSlot:
        return await self._claims.claim(pool_id, cell_id, user_id, cancel_token=cancel_token)

    @_time_limited
    async def release_cell(
        self,
        pool_id: str,
        cell_id: str,
        user_id: str,
        *,
        is_commissioner: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> GridCell | StripSlot:
        """Release a cell. The commissioner may release cells owned by anyone."""
        return await self._claims.release(
            pool_id,
            cell_id,
            user_id,
            is_privileged=is_commissioner,
            cancel_token=cancel_token,
        )

    @_time_limited
    async def list_cells(self, pool_id: str) -> list[GridCell | StripSlot]:
        await self._load_pool(pool_id)
        return await self._store("list cells", self._repository.list_cells, pool_id)

    # ============ Payouts ============

    @_time_limited
    async def update_pot(
        self,
        pool_id: str,
        total_pot: str | float,
        payout_structure: PayoutStructure | None = None,
        *,
        is_commissioner: bool,
    ) -> PeriodPayouts:
        """Change the pot (and optionally the structure); return the new allocation."""
        _require_commissioner(is_commissioner, "change the pot")
        pot = parse_total_pot(total_pot)
        if payout_structure is not None:
            validate_structure(payout_structure)

        pool = await self._load_pool(pool_id)
        structure = payout_structure or pool.payout_structure
        payouts = allocate(pot, structure)
        updated = pool.model_copy(update={"total_pot": pot, "payout_structure": structure})
        await self._save_pool(pool, updated)
        logger.info("pot updated", pool_id=pool_id, total_pot=pot)
        return payouts

    @_time_limited
    async def get_payouts(self, pool_id: str) -> PeriodPayouts:
        pool = await self._load_pool(pool_id)
        return allocate(pool.total_pot, pool.payout_structure)

    # ============ Squares / strip cards ============

    async def _compute_winners(self, pool: Pool) -> dict[Period, PeriodWinner]:
        cells = await self._store("list cells", self._repository.list_cells, pool.pool_id)
        if pool.format == PoolFormat.SQUARES:
            if pool.axis_numbers is None:
                raise PoolNotLockedError(f"pool {pool.pool_id} has no axis numbers until it is locked")
            grid = [c for c in cells if isinstance(c, GridCell)]
            return compute_squares_winners(pool.axis_numbers, pool.period_scores, grid)
        if pool.strip_numbers is None:
            raise PoolNotLockedError(f"pool {pool.pool_id} has no strip numbers until it is locked")
        slots = [c for c in cells if isinstance(c, StripSlot)]
        return compute_strip_winners(pool.strip_numbers, pool.period_scores, slots)

    @_time_limited
    async def record_period_score(
        self,
        pool_id: str,
        period: Period,
        score: Score,
        *,
        is_commissioner: bool,
    ) -> Pool:
        """Store a checkpoint score and recompute every period's winner."""
        _require_commissioner(is_commissioner, "enter scores")
        pool = await self._load_pool(pool_id)
        _require_format(pool, PoolFormat.SQUARES, PoolFormat.STRIP_CARDS)
        if pool.status == PoolStatus.OPEN:
            raise PoolNotLockedError(f"pool {pool_id} must be locked before scores are entered")

        scored = pool.model_copy(update={"period_scores": {**pool.period_scores, period: score}})
        winners = await self._compute_winners(scored)
        updated = scored.model_copy(update={"winners": winners})
        await self._save_pool(pool, updated)

        winner = winners[period]
        emit_safely(
            self._telemetry,
            "period_score_recorded",
            pool_id=pool_id,
            period=period,
            cell_id=winner.cell_id,
            owner_id=winner.owner_id,
        )
        return updated

    @_time_limited
    async def refresh_winners(self, pool_id: str) -> dict[Period, PeriodWinner]:
        """Recompute winners from recorded scores and current ownership, caching the result."""
        pool = await self._load_pool(pool_id)
        _require_format(pool, PoolFormat.SQUARES, PoolFormat.STRIP_CARDS)
        winners = await self._compute_winners(pool)
        if winners != pool.winners:
            await self._save_pool(pool, pool.model_copy(update={"winners": winners}))
        return winners

    @_time_limited
    async def strip_standings(self, pool_id: str) -> list[StripStanding]:
        pool = await self._load_pool(pool_id)
        _require_format(pool, PoolFormat.STRIP_CARDS)
        cells = await self._store("list cells", self._repository.list_cells, pool_id)
        return rank_strip_owners(c for c in cells if isinstance(c, StripSlot))

    # ============ Pick'em ============

    @_time_limited
    async def add_matchup(self, pool_id: str, matchup: Matchup, *, is_commissioner: bool) -> Matchup:
        """Add or update a scheduled game.

        Picks only enter through submit_pick: the stored picks are kept and any
        in the payload are ignored. A completed game can no longer be re-seeded.
        """
        _require_commissioner(is_commissioner, "schedule matchups")
        pool = await self._load_pool(pool_id)
        _require_format(pool, PoolFormat.PICKEM)

        existing = await self._store("get matchup", self._repository.get_matchup, pool_id, matchup.game_id)
        if existing is not None and existing.status == MatchupStatus.COMPLETED:
            raise PicksClosedError(f"matchup {matchup.game_id} is already completed")
        matchup = matchup.model_copy(update={"picks": existing.picks if existing is not None else {}})
        await self._store("save matchup", self._repository.save_matchup, pool_id, matchup)
        return matchup

    @_time_limited
    async def list_matchups(self, pool_id: str, week: int | None = None) -> list[Matchup]:
        await self._load_pool(pool_id)
        return await self._store("list matchups", self._repository.list_matchups, pool_id, week)

    @_time_limited
    async def submit_pick(self, pool_id: str, game_id: str, user_id: str, side: Side) -> Matchup:
        """Record or change a user's pick until the game starts."""
        pool = await self._load_pool(pool_id)
        _require_format(pool, PoolFormat.PICKEM)
        if pool.status == PoolStatus.COMPLETED:
            raise PicksClosedError(f"pool {pool_id} is completed")

        matchup = await self._load_matchup(pool_id, game_id)
        if matchup.status == MatchupStatus.COMPLETED:
            raise PicksClosedError(f"matchup {game_id} is already completed")
        if matchup.start_time <= self._clock():
            raise PicksClosedError(f"matchup {game_id} has already started")

        updated = matchup.model_copy(update={"picks": {**matchup.picks, user_id: side}})
        await self._store("save matchup", self._repository.save_matchup, pool_id, updated)
        logger.info("pick submitted", pool_id=pool_id, game_id=game_id, user_id=user_id, side=side)
        return updated

    @_time_limited
    async def record_final_score(
        self,
        pool_id: str,
        game_id: str,
        score: Score,
        *,
        is_commissioner: bool,
    ) -> Matchup:
        _require_commissioner(is_commissioner, "enter scores")
        pool = await self._load_pool(pool_id)
        _require_format(pool, PoolFormat.PICKEM)
        matchup = await self._load_matchup(pool_id, game_id)
        completed = matchup.model_copy(update={"status": MatchupStatus.COMPLETED, "final_score": score})
        await self._store("save matchup", self._repository.save_matchup, pool_id, completed)
        emit_safely(
            self._telemetry,
            "final_score_recorded",
            pool_id=pool_id,
            game_id=game_id,
            home=score.home,
            away=score.away,
        )
        return completed

    @_time_limited
    async def calculate_pickem_scores(
        self,
        pool_id: str,
        options: PickemOptions | None = None,
    ) -> PickemScoreboard:
        """Score every matchup in the pool and persist the overall scoreboard."""
        pool = await self._load_pool(pool_id)
        _require_format(pool, PoolFormat.PICKEM)
        matchups = await self._store("list matchups", self._repository.list_matchups, pool_id)
        scoreboard = score_pickem(matchups, options, now=self._clock())
        await self._store("save scoreboard", self._repository.save_scoreboard, pool_id, scoreboard)
        emit_safely(
            self._telemetry,
            "pickem_scores_calculated",
            pool_id=pool_id,
            matchups=scoreboard.matchups_scored,
            users=len(scoreboard.entries),
        )
        return scoreboard

    @_time_limited
    async def calculate_weekly_scores(
        self,
        pool_id: str,
        week: int,
        options: PickemOptions | None = None,
    ) -> PickemScoreboard:
        """Score one week's matchups and persist the scoreboard under ``week{n}``."""
        if isinstance(week, bool) or not isinstance(week, int) or week < 1:
            raise InvalidWeekError(f"Week must be a positive integer, got {week!r}")
        pool = await self._load_pool(pool_id)
        _require_format(pool, PoolFormat.PICKEM)
        matchups = await self._store("list matchups", self._repository.list_matchups, pool_id, week)
        scoreboard = score_pickem_week(matchups, week, options, now=self._clock())
        await self._store("save scoreboard", self._repository.save_scoreboard, pool_id, scoreboard)
        emit_safely(
            self._telemetry,
            "pickem_scores_calculated",
            pool_id=pool_id,
            week=week,
            matchups=scoreboard.matchups_scored,
            users=len(scoreboard.entries),
        )
        return scoreboard

    @_time_limited
    async def get_scoreboard(self, pool_id: str, key: str = OVERALL_SCOREBOARD_KEY) -> PickemScoreboard | None:
        """Last persisted scoreboard snapshot, or None if never calculated."""
        await self._load_pool(pool_id)
        return await self._store("get scoreboard", self._repository.get_scoreboard, pool_id, key)
