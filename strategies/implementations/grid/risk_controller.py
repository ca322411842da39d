"""
Risk helpers for the grid strategy.

Bridges one strategy to the shared portfolio circuit breaker and to its own
trailing stop tracker.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Tuple

from risk.circuit_breaker import CircuitBreaker
from risk.trailing_stop import TrailingStopConfig, TrailingStopTracker

from .config import GridConfig
from .models import GridBotState, GridPosition, PortfolioSnapshot, PositionStatus


LogEventFn = Callable[..., None]
PortfolioProvider = Callable[[], Sequence[PortfolioSnapshot]]


class GridRiskController:
    """Collection of risk-related helpers used by ``GridStrategy``."""

    def __init__(
        self,
        config: GridConfig,
        state: GridBotState,
        logger,
        log_event: LogEventFn,
        circuit_breaker: Optional[CircuitBreaker] = None,
        trailing_stops: Optional[TrailingStopTracker] = None,
    ) -> None:
        self.config = config
        self.state = state
        self.logger = logger
        self._log_event = log_event
        self.circuit_breaker = circuit_breaker
        self.trailing_stops = trailing_stops or TrailingStopTracker(
            TrailingStopConfig(
                trailing_percent=config.trailing_stop_percent,
                activation_percent=config.trailing_stop_activation,
            ),
            logger=logger,
        )
        if state.trailing_stops:
            self.trailing_stops.deserialize(state.trailing_stops)
        self._portfolio_provider: Optional[PortfolioProvider] = None

    # ------------------------------------------------------------------ #
    # Wiring
    # ------------------------------------------------------------------ #
    def bind_portfolio(self, provider: Optional[PortfolioProvider]) -> None:
        """Use ``provider`` for portfolio-wide loss checks (default: this strategy only)."""
        self._portfolio_provider = provider

    def apply_config(self, config: GridConfig) -> None:
        self.config = config
        self.trailing_stops.config = self.trailing_stops.config.model_copy(
            update={
                "trailing_percent": config.trailing_stop_percent,
                "activation_percent": config.trailing_stop_activation,
            }
        )

    def portfolio(self) -> Sequence[PortfolioSnapshot]:
        if self._portfolio_provider is not None:
            return self._portfolio_provider()
        return [PortfolioSnapshot.from_state(self.state)]

    # ------------------------------------------------------------------ #
    # Entry gate
    # ------------------------------------------------------------------ #
    async def allows_new_entries(self) -> Tuple[bool, Optional[str]]:
        """Consult the circuit breaker; returns ``(allowed, reason)``."""
        if not self.config.use_circuit_breaker or self.circuit_breaker is None:
            return True, None

        verdict = await self.circuit_breaker.check(self.portfolio())
        if verdict.triggered:
            return False, verdict.reason or "Circuit breaker active"
        return True, None

    # ------------------------------------------------------------------ #
    # Trailing stops
    # ------------------------------------------------------------------ #
    def trailing_stop_exits(self, current_price: Decimal) -> List[GridPosition]:
        """Feed the price to every HOLDING position; return those whose stop fired."""
        if not self.config.use_trailing_stop_loss or not self.trailing_stops.config.enabled:
            return []

        triggered: List[GridPosition] = []
        for position in self.state.positions:
            if position.status != PositionStatus.HOLDING:
                continue
            update = self.trailing_stops.update(position, current_price)
            if update.triggered:
                self.logger.log(
                    f"Trailing stop hit for position #{position.id}: price {current_price} "
                    f"<= stop {update.stop_price}",
                    "WARNING",
                )
                triggered.append(position)

        self.state.trailing_stops = self.trailing_stops.serialize()
        return triggered

    def on_position_sold(self, position_id: int) -> None:
        self.trailing_stops.remove_position(position_id)
        self.state.trailing_stops = self.trailing_stops.serialize()

    def reset_trailing_stops(self) -> None:
        self.trailing_stops.reset()
        self.state.trailing_stops = {}
