"""
Grid construction and opportunity lookup.

Stateless helpers over a list of ``GridPosition``. Nothing here performs I/O
or mutates positions except ``regenerate_grid``, which builds a fresh list.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .config import GridConfig
from .models import GridPosition, GridStats, PositionStatus


AUTO_FLOOR_DIVISOR = Decimal("10")
AUTO_CEILING_MULTIPLIER = Decimal("4")
BOUNDARY_TOLERANCE = Decimal("0.001")


class GridConfigurationError(ValueError):
    """Grid parameters that cannot produce a valid grid."""


class GridEngine:
    """Pure grid functions grouped as static methods."""

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #
    @staticmethod
    def resolve_range(current_price: Decimal, config: GridConfig) -> Tuple[Decimal, Decimal]:
        """Configured floor/ceiling, or ``[price / 10, price * 4]``."""
        if config.floor_price is not None and config.ceiling_price is not None:
            floor, ceiling = config.floor_price, config.ceiling_price
        else:
            if current_price is None or current_price <= 0:
                raise GridConfigurationError(
                    "A positive current price is required to derive the grid range"
                )
            floor = current_price / AUTO_FLOOR_DIVISOR
            ceiling = current_price * AUTO_CEILING_MULTIPLIER

        if ceiling <= floor:
            raise GridConfigurationError(f"Grid ceiling {ceiling} must be above floor {floor}")
        return floor, ceiling

    @staticmethod
    def generate_grid(current_price: Decimal, config: GridConfig) -> List[GridPosition]:
        """
        Split ``[floor, ceiling]`` into ``num_positions`` contiguous ranges.

        Position ``i`` covers ``[floor + range*i/n, floor + range*(i+1)/n]``;
        the last upper bound is pinned to ``ceiling``. Sell targets are based
        on ``buy_max`` and stop losses on ``buy_min``.

        Raises:
            GridConfigurationError: ``num_positions <= 0`` or an empty range.
        """
        n = config.num_positions
        if n <= 0:
            raise GridConfigurationError("num_positions must be greater than 0")

        floor, ceiling = GridEngine.resolve_range(current_price, config)
        total_range = ceiling - floor

        take_profit = Decimal("1") + config.take_profit_percent / Decimal("100")
        stop_loss_pct = min(max(config.stop_loss_percent, Decimal("0")), Decimal("100"))
        stop_loss = Decimal("1") - stop_loss_pct / Decimal("100")

        positions: List[GridPosition] = []
        for i in range(n):
            buy_min = floor + total_range * i / n
            if i == n - 1:
                buy_max = ceiling
            else:
                buy_max = min(floor + total_range * (i + 1) / n, ceiling)

            positions.append(
                GridPosition(
                    id=i,
                    buy_min=buy_min,
                    buy_max=buy_max,
                    sell_price=buy_max * take_profit,
                    stop_loss_price=buy_min * stop_loss if config.stop_loss_enabled else Decimal("0"),
                    status=PositionStatus.EMPTY,
                )
            )
        return positions

    @staticmethod
    def regenerate_grid(
        current_price: Decimal,
        config: GridConfig,
        existing: Iterable[GridPosition],
        preserve_holding: bool = True,
    ) -> List[GridPosition]:
        """
        Build a new grid, optionally carrying over HOLDING positions.

        A held position takes over the new EMPTY slot whose range contains its
        ``buy_max``. When no free slot contains it, it is appended with an id
        past the end of the new grid so open exposure is never dropped.
        """
        fresh = GridEngine.generate_grid(current_price, config)
        if not preserve_holding:
            return fresh

        next_id = len(fresh)
        for held in existing:
            if held.status != PositionStatus.HOLDING:
                continue

            slot = GridEngine.find_buy_position(fresh, held.buy_max)
            if slot is not None:
                slot.status = PositionStatus.HOLDING
                slot.buy_tx_hash = held.buy_tx_hash
                slot.buy_timestamp = held.buy_timestamp
                slot.tokens_received = held.tokens_received
                slot.eth_cost = held.eth_cost
                continue

            fresh.append(replace(held, id=next_id))
            next_id += 1

        return fresh

    # ------------------------------------------------------------------ #
    # Opportunity lookup
    # ------------------------------------------------------------------ #
    @staticmethod
    def find_buy_position(
        positions: Iterable[GridPosition],
        current_price: Decimal,
        tolerance: Optional[Decimal] = None,
    ) -> Optional[GridPosition]:
        """First EMPTY position (array order) whose range contains the price."""
        for position in positions:
            if position.status != PositionStatus.EMPTY:
                continue
            if position.contains(current_price, tolerance):
                return position
        return None

    @staticmethod
    def find_sell_positions(positions: Iterable[GridPosition], current_price: Decimal) -> List[GridPosition]:
        """HOLDING positions at their take profit or stop loss."""
        matches: List[GridPosition] = []
        for position in positions:
            if position.status != PositionStatus.HOLDING:
                continue
            if current_price >= position.sell_price:
                matches.append(position)
                continue
            if position.stop_loss_price > 0 and current_price <= position.stop_loss_price:
                matches.append(position)
        return matches

    @staticmethod
    def is_take_profit(position: GridPosition, current_price: Decimal) -> bool:
        return current_price >= position.sell_price

    @staticmethod
    def find_next_buy_opportunity(
        positions: Iterable[GridPosition],
        current_price: Decimal,
    ) -> Optional[GridPosition]:
        """Nearest EMPTY position entirely above the current price."""
        candidates = [
            p for p in positions
            if p.status == PositionStatus.EMPTY and p.buy_min > current_price
        ]
        return min(candidates, key=lambda p: p.buy_min, default=None)

    @staticmethod
    def find_next_sell_opportunity(positions: Iterable[GridPosition]) -> Optional[GridPosition]:
        """HOLDING position with the lowest sell target."""
        holding = [p for p in positions if p.status == PositionStatus.HOLDING]
        return min(holding, key=lambda p: p.sell_price, default=None)

    # ------------------------------------------------------------------ #
    # Counting and sizing
    # ------------------------------------------------------------------ #
    @staticmethod
    def count_active_positions(positions: Iterable[GridPosition]) -> int:
        return sum(1 for p in positions if p.status == PositionStatus.HOLDING)

    @staticmethod
    def count_empty_positions(positions: Iterable[GridPosition]) -> int:
        return sum(1 for p in positions if p.status == PositionStatus.EMPTY)

    @staticmethod
    def calculate_position_size(total_eth_wei: int, num_positions: int) -> int:
        """Even split of ``total_eth_wei`` (integer division)."""
        if num_positions <= 0:
            raise GridConfigurationError("num_positions must be greater than 0")
        return total_eth_wei // num_positions

    @staticmethod
    def calculate_grid_stats(positions: Iterable[GridPosition]) -> GridStats:
        positions = list(positions)
        sold = [p for p in positions if p.status == PositionStatus.SOLD]
        profit_percent_sum = sum((p.profit_percent or Decimal("0") for p in sold), Decimal("0"))
        return GridStats(
            total_positions=len(positions),
            holding_positions=sum(1 for p in positions if p.status == PositionStatus.HOLDING),
            sold_positions=len(sold),
            empty_positions=sum(1 for p in positions if p.status == PositionStatus.EMPTY),
            avg_profit_percent=profit_percent_sum / len(sold) if sold else Decimal("0"),
            total_profit_eth=sum(p.profit_eth or 0 for p in sold),
        )

    # ------------------------------------------------------------------ #
    # Diagnostics
    # ------------------------------------------------------------------ #
    @staticmethod
    def validate_continuous_coverage(positions: Iterable[GridPosition]) -> bool:
        """Adjacent ranges (sorted by buy_min) meet within 0.1% of the width."""
        ordered = sorted(positions, key=lambda p: p.buy_min)
        for current, following in zip(ordered, ordered[1:]):
            tolerance = current.width * BOUNDARY_TOLERANCE
            if abs(current.buy_max - following.buy_min) > tolerance:
                return False
        return True

    @staticmethod
    def get_grid_range(positions: Iterable[GridPosition]) -> Optional[Dict[str, Decimal]]:
        ordered = sorted(positions, key=lambda p: p.buy_min)
        if not ordered:
            return None
        return {"floor": ordered[0].buy_min, "ceiling": ordered[-1].buy_max}

    @staticmethod
    def format_price(price: Decimal) -> str:
        if price < Decimal("0.0001"):
            return f"{price:.4e}"
        if price < 1:
            return f"{price:.6f}"
        return f"{price:.4f}"

    @staticmethod
    def format_price_range(low: Decimal, high: Decimal) -> str:
        return f"{GridEngine.format_price(low)} - {GridEngine.format_price(high)}"
