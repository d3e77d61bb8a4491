"""Abstract interface for pool persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pools.logic.enums import PoolStatus
    from pools.logic.types import GridCell, Matchup, PickemScoreboard, Pool, StripSlot


class PoolRepository(ABC):
    """Document-style store for pools, their cells, matchups and scoreboards.

    Missing documents are reported as None, never as an empty record.
    Implementations raise TransientStoreError when the backend is unavailable;
    that is the only error the engine retries.
    """

    # ---- pools ----

    @abstractmethod
    async def create_pool(self, pool: Pool, cells: Sequence[GridCell | StripSlot] = ()) -> bool:
        """Insert a new pool together with its cells, all or nothing.

        Returns False when the id or an active invite code is already taken.
        """

    @abstractmethod
    async def save_pool(self, pool: Pool, *, expected_status: PoolStatus | None = None) -> bool:
        """Overwrite a pool document.

        With ``expected_status`` the write only happens while the persisted
        status still equals it. Returns False when nothing was written.
        """

    @abstractmethod
    async def get_pool(self, pool_id: str) -> Pool | None: ...

    @abstractmethod
    async def get_pool_by_invite_code(self, invite_code: str) -> Pool | None: ...

    @abstractmethod
    async def list_active_invite_codes(self) -> set[str]:
        """Invite codes of every pool that is not completed."""

    # ---- cells ----

    @abstractmethod
    async def get_cell(self, pool_id: str, cell_id: str) -> GridCell | StripSlot | None: ...

    @abstractmethod
    async def save_cell(
        self,
        pool_id: str,
        cell: GridCell | StripSlot,
        *,
        expected_owner_id: str | None,
    ) -> bool:
        """Persist a cell's ownership.

        ``expected_owner_id`` is the owner the caller observed before deciding
        to write. A store with conditional writes skips the write and returns
        False when the persisted owner differs; an optimistic store may write
        unconditionally and return True.
        """

    @abstractmethod
    async def list_cells(self, pool_id: str) -> list[GridCell | StripSlot]: ...

    # ---- matchups ----

    @abstractmethod
    async def save_matchup(self, pool_id: str, matchup: Matchup) -> None: ...

    @abstractmethod
    async def get_matchup(self, pool_id: str, game_id: str) -> Matchup | None: ...

    @abstractmethod
    async def list_matchups(self, pool_id: str, week: int | None = None) -> list[Matchup]: ...

    # ---- scoreboards ----

    @abstractmethod
    async def save_scoreboard(self, pool_id: str, scoreboard: PickemScoreboard) -> None: ...

    @abstractmethod
    async def get_scoreboard(self, pool_id: str, key: str) -> PickemScoreboard | None: ...
