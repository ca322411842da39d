"""
Per-position trailing stop loss.

A stop that follows price upward once a HOLDING position has gained
``activation_percent`` over its entry (``buy_max``). The stop only ratchets
up; it never moves down for the life of the position.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpers.unified_logger import get_risk_logger

if TYPE_CHECKING:
    from strategies.implementations.grid.models import GridPosition


DEFAULT_INITIAL_STOP_FACTOR = Decimal("0.9")


class StepLevel(BaseModel):
    """Trail distance applied once profit reaches ``profit_percent``."""
    model_config = ConfigDict(frozen=True)

    profit_percent: Decimal
    trail_percent: Decimal = Field(..., gt=0, lt=100)


def _default_step_levels() -> List[StepLevel]:
    return [
        StepLevel(profit_percent=Decimal("10"), trail_percent=Decimal("3")),
        StepLevel(profit_percent=Decimal("20"), trail_percent=Decimal("5")),
        StepLevel(profit_percent=Decimal("50"), trail_percent=Decimal("10")),
    ]


class TrailingStopConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    trailing_percent: Decimal = Field(Decimal("5"), gt=0, lt=100)
    activation_percent: Decimal = Field(Decimal("3"), ge=0)
    use_dynamic_step: bool = False
    step_levels: List[StepLevel] = Field(default_factory=_default_step_levels)

    @field_validator("step_levels", mode="before")
    @classmethod
    def parse_step_levels(cls, v):
        """Allow ``[(profit, trail), ...]`` pairs as shorthand."""
        levels = []
        for item in v or []:
            if isinstance(item, (list, tuple)):
                levels.append({"profit_percent": item[0], "trail_percent": item[1]})
            else:
                levels.append(item)
        return levels


@dataclass
class TrailingStopState:
    highest_price: Decimal
    current_stop_price: Decimal
    activated: bool = False
    activated_at: Optional[float] = None
    last_update_time: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["highest_price"] = str(self.highest_price)
        data["current_stop_price"] = str(self.current_stop_price)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TrailingStopState":
        return cls(
            highest_price=Decimal(str(data["highest_price"])),
            current_stop_price=Decimal(str(data["current_stop_price"])),
            activated=bool(data.get("activated", False)),
            activated_at=data.get("activated_at"),
            last_update_time=float(data.get("last_update_time", 0.0)),
        )


@dataclass(frozen=True)
class TrailingStopUpdate:
    """Result of feeding one price observation to the tracker."""
    triggered: bool
    stop_price: Decimal
    activated: bool
    profit_percent: Decimal


class TrailingStopTracker:
    """Ratchet-up stop state keyed by grid position id."""

    def __init__(
        self,
        config: Optional[TrailingStopConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
        logger=None,
    ) -> None:
        self.config = config or TrailingStopConfig()
        self._clock = clock
        self._states: Dict[int, TrailingStopState] = {}
        self.logger = logger or get_risk_logger("trailing_stop")

    def initialize_position(self, position: GridPosition) -> TrailingStopState:
        if position.stop_loss_price > 0:
            initial_stop = position.stop_loss_price
        else:
            initial_stop = position.buy_min * DEFAULT_INITIAL_STOP_FACTOR
        state = TrailingStopState(
            highest_price=position.buy_max,
            current_stop_price=initial_stop,
            last_update_time=self._clock(),
        )
        self._states[position.id] = state
        return state

    def update(self, position: GridPosition, current_price: Decimal) -> TrailingStopUpdate:
        """
        Feed a price observation for ``position``.

        Activation is one-way. While activated, a new high recomputes the
        candidate stop, which replaces the current stop only when higher.
        """
        state = self._states.get(position.id)
        if state is None:
            state = self.initialize_position(position)

        entry_price = position.buy_price
        profit_percent = (current_price - entry_price) / entry_price * 100

        if not state.activated and profit_percent >= self.config.activation_percent:
            state.activated = True
            state.activated_at = self._clock()
            self.logger.log(
                f"Trailing stop armed for position #{position.id} at {profit_percent:.2f}% profit",
                "INFO",
            )

        if current_price > state.highest_price:
            state.highest_price = current_price
            if state.activated:
                trail = self._trail_percent(profit_percent)
                candidate = state.highest_price * (1 - trail / 100)
                if candidate > state.current_stop_price:
                    state.current_stop_price = candidate
                    state.last_update_time = self._clock()

        triggered = state.activated and current_price <= state.current_stop_price
        return TrailingStopUpdate(
            triggered=triggered,
            stop_price=state.current_stop_price,
            activated=state.activated,
            profit_percent=profit_percent,
        )

    def _trail_percent(self, profit_percent: Decimal) -> Decimal:
        if not self.config.use_dynamic_step or not self.config.step_levels:
            return self.config.trailing_percent
        for level in sorted(self.config.step_levels, key=lambda lvl: lvl.profit_percent, reverse=True):
            if profit_percent >= level.profit_percent:
                return level.trail_percent
        return self.config.trailing_percent

    def get_state(self, position_id: int) -> Optional[TrailingStopState]:
        return self._states.get(position_id)

    def remove_position(self, position_id: int) -> None:
        self._states.pop(position_id, None)

    def serialize(self) -> Dict[str, dict]:
        """Plain ``{position_id: state}`` map (string keys for JSON)."""
        return {str(pid): state.to_dict() for pid, state in self._states.items()}

    def deserialize(self, data: Dict[str, dict]) -> None:
        self._states = {int(pid): TrailingStopState.from_dict(raw) for pid, raw in (data or {}).items()}

    def get_summary(self, position_id: int) -> Optional[dict]:
        state = self._states.get(position_id)
        if state is None:
            return None
        distance = state.highest_price - state.current_stop_price
        return {
            "enabled": self.config.enabled,
            "activated": state.activated,
            "highest_price": state.highest_price,
            "current_stop": state.current_stop_price,
            "distance_from_stop": distance,
            "distance_percent": distance / state.highest_price * 100 if state.highest_price else Decimal("0"),
        }

    def reset(self) -> None:
        self._states.clear()

    def __len__(self) -> int:
        return len(self._states)
