"""
Random assignment for invite codes, grid axis digits and strip numbers.

All draws go through a ``random.Random`` instance:
1. By default ``random.SystemRandom`` (the OS CSPRNG behind ``os.urandom``)
2. Only when the platform has no OS randomness source does ``create_rng``
   fall back to the Mersenne Twister ``random.Random``, and it logs a warning
   when it does.
3. Tests pass a seeded ``random.Random`` for deterministic output.

Shuffles are Fisher-Yates over a copy of the input; ``randrange`` performs
rejection sampling internally so every permutation is equally likely.
"""

from __future__ import annotations

import os
import random
import string
from typing import TYPE_CHECKING, TypeVar

import structlog

from pools.logic.exceptions import (
    CodeGenerationExhaustedError,
    EmptyInputError,
    InvalidCountError,
    InvalidLengthError,
)
from pools.logic.types import DIGITS, MAX_STRIP_COUNT, AxisNumbers

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence

logger = structlog.get_logger()

T = TypeVar("T")

INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_INVITE_CODE_LENGTH = 6
MIN_INVITE_CODE_LENGTH = 4
MAX_INVITE_CODE_LENGTH = 10
DEFAULT_INVITE_CODE_ATTEMPTS = 10
MIN_STRIP_COUNT = 1


def create_rng(seed: int | None = None) -> random.Random:
    """
    Create the random source used for every assignment.

    A seed yields a reproducible ``random.Random``. Without one, return the
    OS-backed ``SystemRandom`` unless the platform has no randomness source.
    """
    if seed is not None:
        return random.Random(seed)  # noqa: S311
    try:
        os.urandom(1)
    except NotImplementedError:
        logger.warning("no OS randomness source, falling back to pseudo-random generator")
        return random.Random()  # noqa: S311
    return random.SystemRandom()


def generate_invite_code(
    length: int = DEFAULT_INVITE_CODE_LENGTH,
    alphabet: str = INVITE_CODE_ALPHABET,
    rng: random.Random | None = None,
) -> str:
    """Draw ``length`` characters independently and uniformly from ``alphabet``.

    Uniqueness is the caller's concern; see draw_unique_invite_code.
    """
    if isinstance(length, bool) or not isinstance(length, int):
        raise InvalidLengthError(f"Invite code length must be an integer, got {type(length).__name__}")
    if not MIN_INVITE_CODE_LENGTH <= length <= MAX_INVITE_CODE_LENGTH:
        raise InvalidLengthError(
            f"Invite code length must be between {MIN_INVITE_CODE_LENGTH} and {MAX_INVITE_CODE_LENGTH}, got {length}",
        )
    if not alphabet:
        raise EmptyInputError("Invite code alphabet must not be empty")
    rng = rng or create_rng()
    return "".join(alphabet[rng.randrange(len(alphabet))] for _ in range(length))


def draw_unique_invite_code(
    taken: Collection[str],
    *,
    length: int = DEFAULT_INVITE_CODE_LENGTH,
    max_attempts: int = DEFAULT_INVITE_CODE_ATTEMPTS,
    rng: random.Random | None = None,
) -> str:
    """Re-draw invite codes until one is not in ``taken``.

    Raises CodeGenerationExhaustedError after ``max_attempts`` collisions.
    """
    rng = rng or create_rng()
    for _ in range(max_attempts):
        code = generate_invite_code(length, rng=rng)
        if code not in taken:
            return code
        logger.debug("invite code collision, redrawing", length=length)
    raise CodeGenerationExhaustedError(attempts=max_attempts)


def is_valid_invite_code(code: str, length: int = DEFAULT_INVITE_CODE_LENGTH) -> bool:
    """Check the shape of a user-entered invite code (``length`` alphanumerics, any case)."""
    normalized = code.strip().upper()
    return len(normalized) == length and all(c in INVITE_CODE_ALPHABET for c in normalized)


def shuffle(sequence: Sequence[T], rng: random.Random | None = None) -> list[T]:
    """
    Return a uniformly random permutation of ``sequence`` without mutating it.

    Fisher-Yates from the back: for i in n-1..1, swap items[i] with items[j]
    where j is uniform in [0, i].
    """
    if len(sequence) == 0:
        raise EmptyInputError("shuffle expects a non-empty sequence")
    rng = rng or create_rng()
    items = list(sequence)
    for i in range(len(items) - 1, 0, -1):
        j = rng.randrange(i + 1)
        items[i], items[j] = items[j], items[i]
    return items


def assign_grid_digits(rng: random.Random | None = None) -> AxisNumbers:
    """Two independent shuffles of 0-9, one per axis."""
    rng = rng or create_rng()
    return AxisNumbers(rows=tuple(shuffle(DIGITS, rng)), cols=tuple(shuffle(DIGITS, rng)))


def assign_strip_numbers(count: int, rng: random.Random | None = None) -> tuple[int, ...]:
    """Independent uniform digit draws, one per strip slot. Digits may repeat."""
    if isinstance(count, bool) or not isinstance(count, int) or not MIN_STRIP_COUNT <= count <= MAX_STRIP_COUNT:
        raise InvalidCountError(f"Strip count must be between {MIN_STRIP_COUNT} and {MAX_STRIP_COUNT}, got {count}")
    rng = rng or create_rng()
    return tuple(rng.randrange(len(DIGITS)) for _ in range(count))
