"""Request bodies accepted by the pool server."""

from pydantic import BaseModel, ConfigDict, Field, StrictBool

from pools.logic.enums import Period, PoolFormat, Side
from pools.logic.types import MAX_STRIP_COUNT, Matchup, PayoutStructure, PickemOptions, Score


class RequestError(Exception):
    """Malformed or unauthenticated request, rejected before reaching the service."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class CreatePoolRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="", max_length=100)
    format: PoolFormat
    total_pot: str | float
    payout_structure: PayoutStructure | None = None
    strip_count: int = Field(default=10, ge=1, le=MAX_STRIP_COUNT, strict=True)


class UpdatePotRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_pot: str | float
    payout_structure: PayoutStructure | None = None


class PeriodScoreRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    period: Period
    home: int = Field(ge=0, strict=True)
    away: int = Field(ge=0, strict=True)

    @property
    def score(self) -> Score:
        return Score(home=self.home, away=self.away)


class FinalScoreRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    home: int = Field(ge=0, strict=True)
    away: int = Field(ge=0, strict=True)

    @property
    def score(self) -> Score:
        return Score(home=self.home, away=self.away)


class PickRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    side: Side


class AddMatchupRequest(Matchup):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ScorePickemRequest(BaseModel):
    """Options for a pick'em calculation; ``week`` restricts it to one week."""

    model_config = ConfigDict(extra="forbid")

    week: int | None = Field(default=None, ge=1, strict=True)
    include_upsets: StrictBool = False
    upset_bonus: int = Field(default=2, ge=0, strict=True)
    use_tiebreaker: StrictBool = False

    @property
    def options(self) -> PickemOptions:
        return PickemOptions(
            include_upsets=self.include_upsets,
            upset_bonus=self.upset_bonus,
            use_tiebreaker=self.use_tiebreaker,
        )
