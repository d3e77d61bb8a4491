"""
Pydantic models for pool data structures.

Every record is frozen; state changes produce a new instance via
``model_copy(update=...)``. Cells are a discriminated union on ``kind`` so
grid cells and strip slots share one persistence path.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003
from typing import Annotated, Literal, Self

from pydantic import (
    AwareDatetime,
    BaseModel,
    Field,
    StrictBool,
    TypeAdapter,
    computed_field,
    field_validator,
    model_validator,
)

from pools.logic.enums import CellStatus, MatchupStatus, Period, PoolFormat, PoolStatus, Side

GRID_SIZE = 10
DIGITS: tuple[int, ...] = tuple(range(10))
MAX_STRIP_COUNT = 20
MAX_GAME_ID_LENGTH = 50
MAX_TEAM_NAME_LENGTH = 100

DONATIONS_ONLY: Literal["donations only"] = "donations only"

Digit = Annotated[int, Field(ge=0, le=9)]
TotalPot = float | Literal["donations only"]


def grid_cell_id(row: int, col: int) -> str:
    return f"r{row}c{col}"


def strip_slot_id(position: int) -> str:
    return f"s{position}"


class Score(BaseModel, frozen=True):
    """Home/away points at a checkpoint or at the end of a game."""

    home: int = Field(ge=0)
    away: int = Field(ge=0)

    @property
    def total(self) -> int:
        return self.home + self.away


class PayoutStructure(BaseModel, frozen=True):
    """Share of the pot paid out at each scoring period.

    The defaults match the stock 20/20/20/40 split. The sum is checked by the
    payout allocator, not here, so an invalid structure can still be carried
    to the point where it is rejected with a typed error.
    """

    q1: float = Field(default=0.2, ge=0, le=1)
    q2: float = Field(default=0.2, ge=0, le=1)
    q3: float = Field(default=0.2, ge=0, le=1)
    final: float = Field(default=0.4, ge=0, le=1)

    def fraction(self, period: Period) -> float:
        return getattr(self, period.value)

    @property
    def total(self) -> float:
        return self.q1 + self.q2 + self.q3 + self.final


class PeriodPayouts(BaseModel, frozen=True):
    """Currency amounts per period. All None for donations-only pools."""

    q1: Decimal | None
    q2: Decimal | None
    q3: Decimal | None
    final: Decimal | None

    def amount_for(self, period: Period) -> Decimal | None:
        return getattr(self, period.value)

    @property
    def applicable(self) -> bool:
        return self.final is not None

    @property
    def total(self) -> Decimal | None:
        if not self.applicable:
            return None
        return sum((self.amount_for(p) or 0 for p in Period), start=Decimal(0))


class AxisNumbers(BaseModel, frozen=True):
    """Digits printed along the grid axes: ``rows[r]`` labels row r, ``cols[c]`` labels column c."""

    rows: tuple[Digit, ...]
    cols: tuple[Digit, ...]

    @field_validator("rows", "cols")
    @classmethod
    def _validate_permutation(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if tuple(sorted(v)) != DIGITS:
            raise ValueError("axis digits must be a permutation of 0-9")
        return v

    def position_of(self, row_digit: int, col_digit: int) -> tuple[int, int]:
        """Return the (row, col) grid position whose axis labels are the given digits."""
        return self.rows.index(row_digit), self.cols.index(col_digit)


class _ClaimableCell(BaseModel, frozen=True):
    owner_id: str | None = None
    claimed_at: datetime | None = None
    status: CellStatus = CellStatus.AVAILABLE

    @model_validator(mode="after")
    def _validate_ownership(self) -> Self:
        if (self.owner_id is not None) != (self.status == CellStatus.CLAIMED):
            raise ValueError("owner_id must be set exactly when status is claimed")
        if self.owner_id is None and self.claimed_at is not None:
            raise ValueError("claimed_at requires an owner")
        return self

    @property
    def is_claimed(self) -> bool:
        return self.owner_id is not None

    def claimed_by(self, user_id: str, at: datetime) -> Self:
        return self.model_copy(update={"owner_id": user_id, "claimed_at": at, "status": CellStatus.CLAIMED})

    def released(self) -> Self:
        return self.model_copy(update={"owner_id": None, "claimed_at": None, "status": CellStatus.AVAILABLE})


class GridCell(_ClaimableCell, frozen=True):
    """One of the 100 squares of a squares pool, addressed by grid position."""

    kind: Literal["grid"] = "grid"
    row: Digit
    col: Digit

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cell_id(self) -> str:
        return grid_cell_id(self.row, self.col)


class StripSlot(_ClaimableCell, frozen=True):
    """A numbered slot of a strip-card pool."""

    kind: Literal["strip"] = "strip"
    position: int = Field(ge=0, lt=MAX_STRIP_COUNT)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cell_id(self) -> str:
        return strip_slot_id(self.position)


Cell = Annotated[GridCell | StripSlot, Field(discriminator="kind")]
CELL_ADAPTER: TypeAdapter[GridCell | StripSlot] = TypeAdapter(Cell)


class PeriodWinner(BaseModel, frozen=True):
    """Winning cell for a period. ``owner_id`` is None when the cell was never claimed."""

    period: Period
    score: Score
    cell_id: str | None
    owner_id: str | None


class Pool(BaseModel, frozen=True):
    pool_id: str = Field(min_length=1)
    name: str = Field(default="", max_length=100)
    commissioner_id: str = Field(min_length=1)
    format: PoolFormat
    status: PoolStatus = PoolStatus.OPEN
    total_pot: TotalPot
    payout_structure: PayoutStructure = Field(default_factory=PayoutStructure)
    invite_code: str = Field(min_length=1)
    strip_count: int = Field(default=10, ge=1, le=MAX_STRIP_COUNT)
    # assigned once at open -> locked
    axis_numbers: AxisNumbers | None = None
    strip_numbers: tuple[Digit, ...] | None = None
    period_scores: dict[Period, Score] = Field(default_factory=dict)
    # cached snapshot, recomputed from period_scores on demand
    winners: dict[Period, PeriodWinner] = Field(default_factory=dict)
    created_at: datetime | None = None


class Matchup(BaseModel, frozen=True):
    """A single game seeded from the external schedule feed."""

    game_id: str = Field(min_length=1, max_length=MAX_GAME_ID_LENGTH)
    home_team: str = Field(min_length=1, max_length=MAX_TEAM_NAME_LENGTH)
    away_team: str = Field(min_length=1, max_length=MAX_TEAM_NAME_LENGTH)
    start_time: AwareDatetime
    status: MatchupStatus = MatchupStatus.PENDING
    final_score: Score | None = None
    favorite: Side | None = None
    picks: dict[str, Side] = Field(default_factory=dict)
    week: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _validate_final_score(self) -> Self:
        if self.final_score is not None and self.status != MatchupStatus.COMPLETED:
            raise ValueError("final_score is only recorded on completed matchups")
        return self

    @property
    def winner(self) -> Side | None:
        """Strictly higher-scoring side; None while unresolved or on a tie."""
        if self.status != MatchupStatus.COMPLETED or self.final_score is None:
            return None
        if self.final_score.home > self.final_score.away:
            return Side.HOME
        if self.final_score.away > self.final_score.home:
            return Side.AWAY
        return None


class PickemOptions(BaseModel, frozen=True):
    include_upsets: StrictBool = False
    upset_bonus: int = Field(default=2, ge=0)
    use_tiebreaker: StrictBool = False


class PickemEntry(BaseModel, frozen=True):
    points: int = 0
    tiebreaker_points: int = 0


class PickemScoreboard(BaseModel, frozen=True):
    """Scoreboard snapshot persisted under ``key`` ("overall" or "week{n}")."""

    key: str
    entries: dict[str, PickemEntry]
    matchups_scored: int
    computed_at: datetime


class StripStanding(BaseModel, frozen=True):
    user_id: str
    claimed_count: int
