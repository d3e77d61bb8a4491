"""
Pot allocation across the four scoring periods.

Pure functions, no store access. Amounts are ``Decimal`` rounded half-up to
cents so a 100.00 pot split 20/20/20/40 reads back as exactly 20.00/20.00/
20.00/40.00. Donations-only pools have no pot to split, so every period is
reported as None rather than zero.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from pools.logic.enums import Period
from pools.logic.exceptions import InvalidPotError, InvalidStructureError
from pools.logic.types import DONATIONS_ONLY, PayoutStructure, PeriodPayouts, TotalPot

STRUCTURE_TOLERANCE = 0.01  # one percentage point
CENTS = Decimal("0.01")

DEFAULT_PAYOUT_STRUCTURE = PayoutStructure()


def parse_total_pot(value: str | float) -> TotalPot:
    """Normalize a commissioner-entered pot.

    Accepts a number, a numeric string, or "donations only" in any case.
    """
    if isinstance(value, bool):
        raise InvalidPotError("Total pot must be a number or 'donations only'")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidPotError("Total pot or 'donations only' is required")
        if stripped.lower() == DONATIONS_ONLY:
            return DONATIONS_ONLY
        try:
            value = float(stripped)
        except ValueError:
            raise InvalidPotError(f"Total pot must be a number or 'donations only', got {stripped!r}") from None
    if not isinstance(value, int | float) or not math.isfinite(value):
        raise InvalidPotError("Total pot must be a finite number")
    if value < 0:
        raise InvalidPotError("Total pot must not be negative")
    return float(value)


def validate_structure(structure: PayoutStructure) -> None:
    """Reject a structure whose fractions miss 1.0 by more than the tolerance."""
    if abs(structure.total - 1.0) > STRUCTURE_TOLERANCE:
        raise InvalidStructureError(f"Payout percentages must total 100%, got {structure.total * 100:.2f}%")


def _to_cents(amount: float) -> Decimal:
    try:
        return Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise InvalidPotError(f"Cannot convert {amount!r} to a currency amount") from exc


def allocate(total_pot: TotalPot, structure: PayoutStructure = DEFAULT_PAYOUT_STRUCTURE) -> PeriodPayouts:
    """Split ``total_pot`` by ``structure`` into per-period currency amounts."""
    if total_pot == DONATIONS_ONLY:
        validate_structure(structure)
        return PeriodPayouts(q1=None, q2=None, q3=None, final=None)
    if isinstance(total_pot, bool) or not isinstance(total_pot, int | float) or not math.isfinite(total_pot):
        raise InvalidPotError("Total pot must be a positive number or 'donations only'")
    if total_pot <= 0:
        raise InvalidPotError("Total pot must be a positive number")
    validate_structure(structure)

    pot = Decimal(str(total_pot))
    amounts = {
        period.value: (pot * Decimal(str(structure.fraction(period)))).quantize(CENTS, rounding=ROUND_HALF_UP)
        for period in Period
    }
    return PeriodPayouts(**amounts)


def format_currency(amount: Decimal | float) -> str:
    """Format an amount as US dollars, e.g. ``$1,234.50``."""
    cents = amount.quantize(CENTS, rounding=ROUND_HALF_UP) if isinstance(amount, Decimal) else _to_cents(amount)
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents):,.2f}"
