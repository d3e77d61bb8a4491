"""Typed domain exceptions for the pool resolution engine.

The hierarchy is closed so callers can branch on the family:

- PoolValidationError: bad input shape or range, raised before any store
  access. Safe to retry once the input is corrected.
- PoolConflictError: the operation is no longer valid given current state.
  Never retried automatically; the caller must re-fetch state and decide.
- PoolExhaustionError: the precondition can never be met with current data.
- RecordNotFoundError: a document the operation needs does not exist.
- TransientStoreError: the store is unavailable. The only family that
  RetryableOperation retries; surfaces as OperationFailedError once the
  attempt budget is spent.
"""


class PoolEngineError(Exception):
    """Base exception for every failure the engine reports."""


# ============ Validation ============


class PoolValidationError(PoolEngineError):
    """Input rejected before any state was read or written."""


class InvalidLengthError(PoolValidationError):
    """Invite code length outside the supported range."""


class InvalidCountError(PoolValidationError):
    """Strip slot count outside the supported range."""


class EmptyInputError(PoolValidationError):
    """A non-empty sequence was required."""


class InvalidPotError(PoolValidationError):
    """Total pot is not a positive amount or the donations-only literal."""


class InvalidStructureError(PoolValidationError):
    """Payout fractions do not add up to 1.0 within tolerance."""


class InvalidWeekError(PoolValidationError):
    """Week number is not a positive integer."""


# ============ Conflict ============


class PoolConflictError(PoolEngineError):
    """Operation invalid given the current (possibly concurrent) state."""


class AlreadyClaimedError(PoolConflictError):
    """Cell is owned by another user, or a concurrent claim won the race.

    Attributes:
        cell_id: The contested cell.
        owner_id: The owner observed at detection time (None when unknown).

    """

    def __init__(self, *, cell_id: str, owner_id: str | None) -> None:
        self.cell_id = cell_id
        self.owner_id = owner_id
        super().__init__(f"cell {cell_id} is already claimed")


class NotOwnerError(PoolConflictError):
    """Release attempted by a user who neither owns the cell nor is privileged."""

    def __init__(self, *, cell_id: str, user_id: str) -> None:
        self.cell_id = cell_id
        self.user_id = user_id
        super().__init__(f"user {user_id} does not own cell {cell_id}")


class NotClaimedError(PoolConflictError):
    """Release attempted on a cell that is already available."""

    def __init__(self, *, cell_id: str) -> None:
        self.cell_id = cell_id
        super().__init__(f"cell {cell_id} is not claimed")


class PoolNotOpenError(PoolConflictError):
    """Claim mutations are only accepted while the pool is open."""

    def __init__(self, *, pool_id: str, status: str) -> None:
        self.pool_id = pool_id
        self.status = status
        super().__init__(f"pool {pool_id} is {status}, not open")


class InvalidTransitionError(PoolConflictError):
    """Lifecycle transition that skips or reverses a state."""

    def __init__(self, *, pool_id: str, current: str, target: str) -> None:
        self.pool_id = pool_id
        self.current = current
        self.target = target
        super().__init__(f"pool {pool_id} cannot move from {current} to {target}")


class PoolChangedError(PoolConflictError):
    """Pool status moved on between reading the pool and writing it back."""

    def __init__(self, *, pool_id: str, expected: str) -> None:
        self.pool_id = pool_id
        self.expected = expected
        super().__init__(f"pool {pool_id} is no longer {expected}; reload and retry")


class PoolNotLockedError(PoolConflictError):
    """Winners need the digits assigned at lock time."""


class FormatMismatchError(PoolConflictError):
    """Operation does not apply to this pool's format."""


class PicksClosedError(PoolConflictError):
    """Picks cannot change once a matchup is completed."""


# ============ Exhaustion ============


class PoolExhaustionError(PoolEngineError):
    """Precondition cannot be satisfied with the current data."""


class CodeGenerationExhaustedError(PoolExhaustionError):
    """Every invite code drawn within the attempt budget was already taken."""

    def __init__(self, *, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"no unique invite code after {attempts} attempts")


class NoMatchupsFoundError(PoolExhaustionError):
    """Pool has no matchups at all."""


class NoMatchupsForWeekError(PoolExhaustionError):
    """Week filter matched no matchups."""

    def __init__(self, *, week: int) -> None:
        self.week = week
        super().__init__(f"no matchups found for week {week}")


# ============ Missing records ============


class RecordNotFoundError(PoolEngineError):
    """A document the operation depends on does not exist."""


class PoolNotFoundError(RecordNotFoundError):
    def __init__(self, pool_id: str) -> None:
        self.pool_id = pool_id
        super().__init__(f"pool {pool_id} not found")


class CellNotFoundError(RecordNotFoundError):
    def __init__(self, *, pool_id: str, cell_id: str) -> None:
        self.pool_id = pool_id
        self.cell_id = cell_id
        super().__init__(f"cell {cell_id} not found in pool {pool_id}")


class MatchupNotFoundError(RecordNotFoundError):
    def __init__(self, *, pool_id: str, game_id: str) -> None:
        self.pool_id = pool_id
        self.game_id = game_id
        super().__init__(f"matchup {game_id} not found in pool {pool_id}")


class InviteCodeNotFoundError(RecordNotFoundError):
    def __init__(self, *, invite_code: str) -> None:
        self.invite_code = invite_code
        super().__init__(f"no pool with invite code {invite_code}")


# ============ Authorization ============


class PermissionDeniedError(PoolEngineError):
    """Caller lacks the commissioner capability required for the operation."""


# ============ Transient / operational ============


class TransientStoreError(PoolEngineError):
    """Store unavailable or the request failed in transit. Safe to retry."""


class OperationFailedError(PoolEngineError):
    """A retried operation failed on every attempt.

    The last underlying error is available as ``__cause__``.
    """

    def __init__(self, *, label: str, attempts: int) -> None:
        self.label = label
        self.attempts = attempts
        super().__init__(f"{label} failed after {attempts} attempts")


class OperationCancelledError(PoolEngineError):
    """The enclosing workflow was abandoned while an operation was pending."""

    def __init__(self, *, label: str) -> None:
        self.label = label
        super().__init__(f"{label} cancelled")
