from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from pools.logic.enums import MatchupStatus, PoolFormat, Side
from pools.logic.retry import RetryPolicy
from pools.logic.rng import create_rng
from pools.logic.service import PoolService
from pools.logic.types import Matchup, Pool, Score
from pools.tests.mocks.repository import InMemoryPoolRepository
from pools.tests.mocks.telemetry import RecordingTelemetrySink

FIXED_NOW = datetime(2026, 9, 13, 17, 0, tzinfo=UTC)
COMMISSIONER = "commish"

# ============================================================================
# Builders
# ============================================================================


def make_pool(**overrides: Any) -> Pool:  # noqa: ANN401
    """Create an open squares pool with sensible defaults."""
    fields: dict[str, Any] = {
        "pool_id": "pool-1",
        "name": "Sunday squares",
        "commissioner_id": COMMISSIONER,
        "format": PoolFormat.SQUARES,
        "total_pot": 100.0,
        "invite_code": "ABC123",
        "created_at": FIXED_NOW,
    }
    fields.update(overrides)
    return Pool(**fields)


def make_matchup(
    game_id: str = "g1",
    *,
    week: int | None = 1,
    picks: dict[str, Side] | None = None,
    final: tuple[int, int] | None = None,
    favorite: Side | None = None,
    start_time: datetime | None = None,
) -> Matchup:
    """Create a matchup; passing ``final`` marks it completed with that (home, away) score."""
    return Matchup(
        game_id=game_id,
        home_team="Home",
        away_team="Away",
        start_time=start_time or FIXED_NOW + timedelta(days=1),
        status=MatchupStatus.COMPLETED if final is not None else MatchupStatus.PENDING,
        final_score=Score(home=final[0], away=final[1]) if final is not None else None,
        favorite=favorite,
        picks=picks or {},
        week=week,
    )


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def repository() -> InMemoryPoolRepository:
    return InMemoryPoolRepository()


@pytest.fixture
def telemetry() -> RecordingTelemetrySink:
    return RecordingTelemetrySink()


@pytest.fixture
def service(repository, telemetry) -> PoolService:
    return PoolService(
        repository,
        retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=0),
        telemetry=telemetry,
        rng=create_rng(seed=42),
        clock=lambda: FIXED_NOW,
        operation_timeout_seconds=5,
    )
