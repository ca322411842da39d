"""
Grid Strategy Position Manager.

Owns lookups over a strategy's position list and the per-position lock map
that keeps two overlapping cycles from trading the same position id.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from .models import GridBotState, GridPosition, PositionStatus


class GridPositionManager:
    """Manage the in-memory positions of one ``GridBotState``."""

    def __init__(self, state: GridBotState) -> None:
        self._state = state
        self._locks: Dict[int, asyncio.Lock] = {}

    # ------------------------------------------------------------------ #
    # Query helpers
    # ------------------------------------------------------------------ #
    def all(self) -> List[GridPosition]:
        """The live position list (mutations are visible to the strategy)."""
        return self._state.positions

    def get(self, position_id: int) -> Optional[GridPosition]:
        for position in self._state.positions:
            if position.id == position_id:
                return position
        return None

    def holding(self) -> List[GridPosition]:
        return [p for p in self._state.positions if p.status == PositionStatus.HOLDING]

    # ------------------------------------------------------------------ #
    # Mutual exclusion
    # ------------------------------------------------------------------ #
    def is_locked(self, position_id: int) -> bool:
        lock = self._locks.get(position_id)
        return lock is not None and lock.locked()

    def has_active_trades(self) -> bool:
        return any(lock.locked() for lock in self._locks.values())

    @asynccontextmanager
    async def trade_guard(self, position_id: int) -> AsyncIterator[bool]:
        """
        Try to take the lock for ``position_id`` without waiting.

        Yields ``True`` when this caller owns the position for the duration of
        the block, ``False`` when another cycle already holds it. The lock is
        released and dropped from the map on every exit path.
        """
        lock = self._locks.setdefault(position_id, asyncio.Lock())
        if lock.locked():
            yield False
            return

        await lock.acquire()
        try:
            yield True
        finally:
            lock.release()
            if self._locks.get(position_id) is lock and not lock.locked():
                self._locks.pop(position_id, None)

    # ------------------------------------------------------------------ #
    # Maintenance helpers
    # ------------------------------------------------------------------ #
    def replace(self, positions: List[GridPosition]) -> None:
        """Swap in a regenerated grid."""
        self._state.positions = list(positions)
