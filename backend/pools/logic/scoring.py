"""
Winner and ranking computation for squares, strip cards and pick'em.

Every function here is pure: it recomputes from persisted facts (axis
digits, recorded scores, cell ownership, picks) with no accumulated state, so
running it twice on the same inputs yields the same result.

Squares:
    The row digit must equal the home score's last digit and the column digit
    the away score's last digit. Because each axis is a permutation of 0-9,
    exactly one cell matches.

Strip cards:
    The winning digit is the last digit of the combined score. The first slot
    carrying that digit wins; with repeated draws some digits may be absent.

Pick'em:
    A completed matchup with a strictly higher side awards 1 point per correct
    pick, plus ``upset_bonus`` when upsets are enabled and the declared
    favorite lost. The tiebreaker accumulates the game's total score for every
    correct pick (a cumulative proxy, not a single designated game).
"""

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from pools.logic.exceptions import InvalidWeekError, NoMatchupsForWeekError, NoMatchupsFoundError
from pools.logic.types import (
    GridCell,
    PeriodWinner,
    PickemEntry,
    PickemOptions,
    PickemScoreboard,
    StripSlot,
    StripStanding,
    grid_cell_id,
    strip_slot_id,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from pools.logic.enums import Period
    from pools.logic.types import AxisNumbers, Matchup, Score

logger = structlog.get_logger()

OVERALL_SCOREBOARD_KEY = "overall"


def last_digit(points: int) -> int:
    return points % 10


def weekly_scoreboard_key(week: int) -> str:
    return f"week{week}"


# ============ Squares ============


def find_squares_winning_cell(axis_numbers: AxisNumbers, score: Score) -> tuple[int, int]:
    """Return the (row, col) position labelled (home last digit, away last digit)."""
    return axis_numbers.position_of(last_digit(score.home), last_digit(score.away))


def compute_squares_winners(
    axis_numbers: AxisNumbers,
    period_scores: Mapping[Period, Score],
    cells: Iterable[GridCell],
) -> dict[Period, PeriodWinner]:
    """Winner per period that has a recorded score. Unclaimed winning cells have no owner."""
    owners = {(cell.row, cell.col): cell.owner_id for cell in cells}
    winners: dict[Period, PeriodWinner] = {}
    for period, score in period_scores.items():
        row, col = find_squares_winning_cell(axis_numbers, score)
        winners[period] = PeriodWinner(
            period=period,
            score=score,
            cell_id=grid_cell_id(row, col),
            owner_id=owners.get((row, col)),
        )
    return winners


# ============ Strip cards ============


def compute_strip_winners(
    strip_numbers: Sequence[int],
    period_scores: Mapping[Period, Score],
    slots: Iterable[StripSlot],
) -> dict[Period, PeriodWinner]:
    """Winner per scored period: first slot whose number is the combined score's last digit."""
    owners = {slot.position: slot.owner_id for slot in slots}
    winners: dict[Period, PeriodWinner] = {}
    for period, score in period_scores.items():
        digit = last_digit(score.total)
        position = next((i for i, n in enumerate(strip_numbers) if n == digit), None)
        if position is None:
            logger.info("no strip carries winning digit", period=period, digit=digit)
            winners[period] = PeriodWinner(period=period, score=score, cell_id=None, owner_id=None)
            continue
        winners[period] = PeriodWinner(
            period=period,
            score=score,
            cell_id=strip_slot_id(position),
            owner_id=owners.get(position),
        )
    return winners


def rank_strip_owners(slots: Iterable[StripSlot]) -> list[StripStanding]:
    """Claimed-slot count per user, most first.

    The sort is stable: users with equal counts keep the order in which they
    first appear when slots are read in position order.
    """
    counts = Counter(slot.owner_id for slot in sorted(slots, key=lambda s: s.position) if slot.owner_id is not None)
    standings = [StripStanding(user_id=user_id, claimed_count=count) for user_id, count in counts.items()]
    return sorted(standings, key=lambda s: s.claimed_count, reverse=True)


# ============ Pick'em ============


def _score_matchups(matchups: Iterable[Matchup], options: PickemOptions) -> dict[str, PickemEntry]:
    points: dict[str, int] = {}
    tiebreakers: dict[str, int] = {}

    for matchup in matchups:
        winner = matchup.winner
        if winner is None:
            if matchup.final_score is not None:
                # equal scores: no rule decides a winner, so nobody scores
                logger.info("skipping tied matchup", game_id=matchup.game_id)
            continue

        is_upset = options.include_upsets and matchup.favorite is not None and matchup.favorite != winner
        award = 1 + options.upset_bonus if is_upset else 1
        total = matchup.final_score.total if matchup.final_score is not None else 0

        for user_id, pick in matchup.picks.items():
            points.setdefault(user_id, 0)
            tiebreakers.setdefault(user_id, 0)
            if pick != winner:
                continue
            points[user_id] += award
            if options.use_tiebreaker:
                tiebreakers[user_id] += total

    return {user_id: PickemEntry(points=points[user_id], tiebreaker_points=tiebreakers[user_id]) for user_id in points}


def score_pickem(
    matchups: Sequence[Matchup],
    options: PickemOptions | None = None,
    *,
    now: datetime | None = None,
) -> PickemScoreboard:
    """Cumulative scoreboard over every matchup in the pool."""
    if not matchups:
        raise NoMatchupsFoundError("No matchups found for this pool")
    options = options or PickemOptions()
    entries = _score_matchups(matchups, options)
    return PickemScoreboard(
        key=OVERALL_SCOREBOARD_KEY,
        entries=entries,
        matchups_scored=len(matchups),
        computed_at=now or datetime.now(tz=UTC),
    )


def score_pickem_week(
    matchups: Sequence[Matchup],
    week: int,
    options: PickemOptions | None = None,
    *,
    now: datetime | None = None,
) -> PickemScoreboard:
    """Scoreboard restricted to matchups whose ``week`` equals ``week``."""
    if isinstance(week, bool) or not isinstance(week, int) or week < 1:
        raise InvalidWeekError(f"Week must be a positive integer, got {week!r}")
    weekly = [m for m in matchups if m.week == week]
    if not weekly:
        raise NoMatchupsForWeekError(week=week)
    options = options or PickemOptions()
    entries = _score_matchups(weekly, options)
    return PickemScoreboard(
        key=weekly_scoreboard_key(week),
        entries=entries,
        matchups_scored=len(weekly),
        computed_at=now or datetime.now(tz=UTC),
    )


def pickem_standings(scoreboard: PickemScoreboard) -> list[tuple[str, PickemEntry]]:
    """Order entries by points, then tiebreaker points; equal entries keep board order."""
    return sorted(
        scoreboard.entries.items(),
        key=lambda item: (item[1].points, item[1].tiebreaker_points),
        reverse=True,
    )
