"""Data access layer: repository interfaces for pool persistence."""

from shared.dal.pool_repository import PoolRepository

__all__ = [
    "PoolRepository",
]
