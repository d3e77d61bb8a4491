"""
String enum definitions for pool concepts.
"""

from enum import StrEnum


class PoolStatus(StrEnum):
    """Coarse pool lifecycle state."""

    OPEN = "open"
    LOCKED = "locked"
    COMPLETED = "completed"


class PoolFormat(StrEnum):
    """Game format played by a pool."""

    SQUARES = "squares"
    STRIP_CARDS = "strip_cards"
    PICKEM = "pickem"


class CellStatus(StrEnum):
    """Ownership state of a grid cell or strip slot."""

    AVAILABLE = "available"
    CLAIMED = "claimed"


class CellKind(StrEnum):
    GRID = "grid"
    STRIP = "strip"


class MatchupStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class Side(StrEnum):
    """Side of a matchup: used for picks, favorites and winners."""

    HOME = "home"
    AWAY = "away"


class Period(StrEnum):
    """Scoring checkpoint at which a payout is determined."""

    Q1 = "q1"
    Q2 = "q2"
    Q3 = "q3"
    FINAL = "final"
