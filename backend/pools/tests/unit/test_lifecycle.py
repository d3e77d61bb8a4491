import pytest

from pools.logic.enums import PoolFormat, PoolStatus
from pools.logic.exceptions import InvalidTransitionError
from pools.logic.lifecycle import accepts_claims, complete_pool, lock_pool
from pools.logic.rng import create_rng
from pools.logic.types import AxisNumbers
from pools.tests.conftest import make_pool


class TestLockPool:
    def test_squares_lock_assigns_axis_numbers(self):
        locked = lock_pool(make_pool(), create_rng(seed=1))

        assert locked.status == PoolStatus.LOCKED
        assert locked.axis_numbers is not None
        assert sorted(locked.axis_numbers.rows) == list(range(10))
        assert locked.strip_numbers is None

    def test_strip_lock_assigns_strip_numbers(self):
        pool = make_pool(format=PoolFormat.STRIP_CARDS, strip_count=12)
        locked = lock_pool(pool, create_rng(seed=1))

        assert locked.strip_numbers is not None
        assert len(locked.strip_numbers) == 12
        assert locked.axis_numbers is None

    def test_pickem_lock_assigns_nothing(self):
        locked = lock_pool(make_pool(format=PoolFormat.PICKEM))
        assert locked.axis_numbers is None
        assert locked.strip_numbers is None

    def test_existing_numbers_are_kept(self):
        axes = AxisNumbers(rows=tuple(range(10)), cols=tuple(range(9, -1, -1)))
        locked = lock_pool(make_pool(axis_numbers=axes), create_rng(seed=99))
        assert locked.axis_numbers == axes

    def test_does_not_mutate_input(self):
        pool = make_pool()
        lock_pool(pool)
        assert pool.status == PoolStatus.OPEN
        assert pool.axis_numbers is None

    def test_relock_rejected_without_reshuffle(self):
        locked = lock_pool(make_pool(), create_rng(seed=5))

        with pytest.raises(InvalidTransitionError) as exc_info:
            lock_pool(locked, create_rng(seed=6))

        assert exc_info.value.current == PoolStatus.LOCKED
        assert exc_info.value.target == PoolStatus.LOCKED


class TestCompletePool:
    def test_locked_to_completed(self):
        completed = complete_pool(lock_pool(make_pool()))
        assert completed.status == PoolStatus.COMPLETED

    def test_cannot_skip_lock(self):
        with pytest.raises(InvalidTransitionError, match="cannot move from open to completed"):
            complete_pool(make_pool())

    def test_completed_is_terminal(self):
        completed = complete_pool(lock_pool(make_pool()))
        with pytest.raises(InvalidTransitionError):
            complete_pool(completed)
        with pytest.raises(InvalidTransitionError):
            lock_pool(completed)


class TestAcceptsClaims:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [(PoolStatus.OPEN, True), (PoolStatus.LOCKED, False), (PoolStatus.COMPLETED, False)],
    )
    def test_only_open_pools_accept_claims(self, status, expected):
        assert accepts_claims(make_pool(status=status)) is expected
