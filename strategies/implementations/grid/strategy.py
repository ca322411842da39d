"""
Grid Trading Strategy

Token/ETH grid trading on a swap aggregator. One ``GridStrategy`` owns one
``GridBotState`` (grid positions plus counters) and runs a decision cycle per
scheduler visit:

1. refresh the price (oracle -> quote API -> last known -> sentinel)
2. buy into the first EMPTY range containing the price, if allowed
3. feed trailing stops and sell HOLDING positions at target or stop
4. persist the state in the background
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from clients.base import BaseChainClient, BasePriceSource, BaseQuoteClient
from clients.base_models import PriceData, TradeResult
from risk.circuit_breaker import CircuitBreaker
from risk.trailing_stop import TrailingStopTracker
from strategies.base_strategy import BaseStrategy

from .config import GridConfig
from .grid_engine import GridConfigurationError, GridEngine
from .models import CycleSummary, GridBotState, GridPosition, LiquidationReport, PositionStatus
from .operations import GridBuyOperator, GridSellOperator
from .position_manager import GridPositionManager
from .risk_controller import GridRiskController


SENTINEL_PRICE = Decimal("0.000001")
PRICE_DIVERGENCE_WARNING = Decimal("0.05")


class GridStrategy(BaseStrategy):
    """
    Grid trading strategy implementation.

    Collaborators are injected: quote client, chain client, optional price
    source, storage, notifier and the shared circuit breaker. ``tick()``
    never raises; outcomes are reported through the returned
    ``CycleSummary``, the logger and the notifier.
    """

    def __init__(
        self,
        state: GridBotState,
        quote_client: BaseQuoteClient,
        chain_client: BaseChainClient,
        *,
        price_source: Optional[BasePriceSource] = None,
        storage=None,
        notifier=None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        trailing_stops: Optional[TrailingStopTracker] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.state = state
        super().__init__(
            config=state.config,
            logger_context={"bot": state.id, "token": state.token_symbol},
        )
        self.quote_client = quote_client
        self.chain_client = chain_client
        self.price_source = price_source
        self.storage = storage
        self.event_notifier = notifier
        self._clock = clock

        self._background_tasks: Set[asyncio.Task] = set()
        self._buys_in_flight = 0
        self._oracle_reading: Optional[PriceData] = None

        # Compose helper components
        self.position_manager = GridPositionManager(state)
        self.risk_controller = GridRiskController(
            config=state.config,
            state=state,
            logger=self.logger,
            log_event=self._log_event,
            circuit_breaker=circuit_breaker,
            trailing_stops=trailing_stops,
        )
        self.buy_operator = GridBuyOperator(
            config=state.config,
            state=state,
            quote_client=quote_client,
            chain_client=chain_client,
            logger=self.logger,
            clock=clock,
        )
        self.sell_operator = GridSellOperator(
            config=state.config,
            state=state,
            quote_client=quote_client,
            chain_client=chain_client,
            logger=self.logger,
            log_event=self._log_event,
            clock=clock,
        )

        config = state.config
        self.logger.log("Grid strategy initialized with parameters:", "INFO")
        self.logger.log(f"  - Token: {state.token_symbol} ({state.token_address}) on {state.chain}", "INFO")
        self.logger.log(f"  - Positions: {config.num_positions}", "INFO")
        if config.floor_price is not None:
            self.logger.log(
                f"  - Range: {GridEngine.format_price_range(config.floor_price, config.ceiling_price)} ETH",
                "INFO",
            )
        else:
            self.logger.log("  - Range: auto (price / 10 to price * 4)", "INFO")
        self.logger.log(f"  - Take Profit: {config.take_profit_percent}%", "INFO")
        self.logger.log(
            f"  - Stop Loss: {'enabled' if config.stop_loss_enabled else 'disabled'} "
            f"({config.stop_loss_percent}%)",
            "INFO",
        )
        self.logger.log(f"  - Max Active Positions: {config.max_active_positions}", "INFO")
        self.logger.log(
            f"  - Buy Size: {config.buy_amount} ETH (fixed)" if config.use_fixed_buy_amount else "  - Buy Size: auto",
            "INFO",
        )
        self.logger.log(f"  - Profit Gate: {config.profit_gate_mode}", "INFO")
        if config.moon_bag_enabled:
            self.logger.log(f"  - Moon Bag: {config.moon_bag_percent}%", "INFO")
        if config.use_trailing_stop_loss:
            self.logger.log(
                f"  - Trailing Stop: {config.trailing_stop_percent}% "
                f"(activates at +{config.trailing_stop_activation}%)",
                "INFO",
            )

    # ------------------------------------------------------------------ #
    # Event helpers
    # ------------------------------------------------------------------ #
    def _serialize_value(self, value: Any) -> Any:
        """Serialize payload values for structured logging."""
        if isinstance(value, Decimal):
            return float(value)
        if isinstance(value, (list, tuple)):
            return [self._serialize_value(item) for item in value]
        if isinstance(value, dict):
            return {key: self._serialize_value(val) for key, val in value.items()}
        return value

    def _log_event(self, event_type: str, message: str, level: str = "INFO", **context: Any) -> None:
        """Emit structured grid strategy event."""
        payload = {
            "event_type": event_type,
            "strategy_id": self.state.id,
            **context,
        }
        serialized_payload = {key: self._serialize_value(val) for key, val in payload.items()}
        self.logger.log(message, level.upper(), **serialized_payload)

        if self.event_notifier:
            try:
                self.event_notifier.notify(
                    event_type=event_type,
                    level=level.upper(),
                    message=message,
                    payload=serialized_payload,
                )
            except Exception as exc:
                self.logger.log(f"Notifier failed for '{event_type}': {exc}", "WARNING")

    def _spawn(self, coro, description: str) -> asyncio.Task:
        """Run ``coro`` detached; failures are logged, never propagated."""
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._background_tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                self.logger.log(f"Background {description} failed: {exc}", "ERROR")

        task.add_done_callback(_done)
        return task

    async def drain_background(self) -> None:
        """Wait for detached persistence tasks to settle."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def is_running(self) -> bool:
        return self.state.is_running

    def _set_running(self, running: bool) -> None:
        self.state.is_running = running

    async def _initialize_strategy(self):
        """Generate the grid when the state has none yet."""
        if self.state.positions:
            return

        price, source = await self.refresh_price()
        if source == "sentinel" and self.config.floor_price is None:
            raise GridConfigurationError(
                f"No usable price for {self.state.token_symbol}; set floor_price and ceiling_price"
            )
        self.position_manager.replace(GridEngine.generate_grid(price, self.config))
        grid_range = GridEngine.get_grid_range(self.state.positions)
        self._log_event(
            "grid_initialized",
            f"Grid initialized: {len(self.state.positions)} positions, "
            f"{GridEngine.format_price_range(grid_range['floor'], grid_range['ceiling'])} ETH "
            f"(price {GridEngine.format_price(price)} from {source})",
            level="INFO",
            positions=len(self.state.positions),
            floor=grid_range["floor"],
            ceiling=grid_range["ceiling"],
            current_price=price,
        )
        await self._persist()

    def stop(self, reason: str = "requested"):
        super().stop(reason)
        if self._background_tasks or self._buys_in_flight:
            self.logger.log("In-flight work will complete before the strategy goes idle", "DEBUG")
        self._schedule_persist()

    async def cleanup(self):
        await self.drain_background()
        await super().cleanup()

    def get_strategy_name(self) -> str:
        return "Grid"

    # ------------------------------------------------------------------ #
    # Price
    # ------------------------------------------------------------------ #
    async def refresh_price(self) -> Tuple[Decimal, str]:
        """
        Current price and the source it came from.

        Order: oracle (when enabled and confident), quote API, last known
        price, last oracle price, then ``SENTINEL_PRICE``. Never raises.
        """
        token = self.state.token_address
        self._oracle_reading = None

        if self.config.use_price_oracle and self.price_source is not None:
            try:
                reading = await self.price_source.get_price(token)
            except Exception as exc:
                self.logger.log(f"Price oracle error: {exc}", "WARNING")
                reading = None
            self._oracle_reading = reading
            if reading is not None and reading.price > 0:
                if reading.confidence >= self.config.min_price_confidence:
                    self.state.last_oracle_price = reading.price
                    self.state.current_price = reading.price
                    return reading.price, f"oracle:{reading.source}"
                self.logger.log(
                    f"Oracle confidence {reading.confidence:.2f} below "
                    f"{self.config.min_price_confidence}; falling back to quote price",
                    "WARNING",
                )

        try:
            quote_price = await self.quote_client.get_token_price(token, self.state.wallet_address)
        except Exception as exc:
            self.logger.log(f"Quote price error: {exc}", "WARNING")
            quote_price = None

        if quote_price is not None and quote_price > 0:
            reference = self.state.last_oracle_price
            if reference:
                divergence = abs(quote_price - reference) / reference
                if divergence > PRICE_DIVERGENCE_WARNING:
                    self.logger.log(
                        f"Quote price {GridEngine.format_price(quote_price)} diverges "
                        f"{divergence * 100:.1f}% from last oracle price {GridEngine.format_price(reference)}",
                        "WARNING",
                    )
            self.state.current_price = quote_price
            return quote_price, "quote"

        if self.state.current_price > 0:
            return self.state.current_price, "last_known"
        if self.state.last_oracle_price:
            return self.state.last_oracle_price, "last_oracle"

        self.logger.log("No price source available; using sentinel price", "WARNING")
        return SENTINEL_PRICE, "sentinel"

    def _validate_buy_price(self) -> Tuple[bool, Optional[str]]:
        """With the oracle enabled, only buy on a confident reading from this cycle."""
        if not self.config.use_price_oracle or self.price_source is None:
            return True, None
        reading = self._oracle_reading
        if reading is None:
            return False, "Price oracle returned no reading"
        if reading.confidence < self.config.min_price_confidence:
            return False, (
                f"Oracle confidence {reading.confidence:.2f} below {self.config.min_price_confidence}"
            )
        return True, None

    # ------------------------------------------------------------------ #
    # Decision cycle
    # ------------------------------------------------------------------ #
    async def tick(self) -> CycleSummary:
        """Run one decision cycle. Never raises."""
        summary = CycleSummary(strategy_id=self.state.id)
        if not self.is_running:
            summary.stopped = True
            return summary

        try:
            price, source = await self.refresh_price()
            summary.price = price
            summary.price_source = source

            if self.config.buys_enabled:
                await self._buy_step(price, summary)

            trailing_exits = self.risk_controller.trailing_stop_exits(price)

            if self.config.sells_enabled and self.is_running:
                await self._sell_step(price, trailing_exits, summary)
        except Exception as exc:
            self._register_failure(f"Unexpected error in grid cycle: {exc}", summary, "cycle_error")

        self.state.last_updated = self._clock()
        self._schedule_persist()
        if not self.is_running:
            summary.stopped = True
        return summary

    async def _buy_step(self, price: Decimal, summary: CycleSummary) -> None:
        allowed, reason = await self.risk_controller.allows_new_entries()
        if not allowed:
            summary.buy_blocked_reason = reason
            self.logger.log(f"Buys blocked: {reason}", "DEBUG")
            return

        active = GridEngine.count_active_positions(self.state.positions)
        if active + self._buys_in_flight >= self.config.max_active_positions:
            summary.buy_blocked_reason = (
                f"Max active positions reached ({active}/{self.config.max_active_positions})"
            )
            return

        position = GridEngine.find_buy_position(self.position_manager.all(), price)
        if position is None:
            return

        async with self.position_manager.trade_guard(position.id) as acquired:
            if not acquired:
                summary.skipped.append(
                    {"side": "buy", "position_id": position.id, "reason": "buy already in flight"}
                )
                return
            if position.status != PositionStatus.EMPTY:
                summary.skipped.append(
                    {"side": "buy", "position_id": position.id, "reason": f"position is {position.status.value}"}
                )
                return

            price_ok, price_reason = self._validate_buy_price()
            if not price_ok:
                summary.skipped.append({"side": "buy", "position_id": position.id, "reason": price_reason})
                self.logger.log(f"Skipping buy for position #{position.id}: {price_reason}", "WARNING")
                return

            self.logger.log(
                f"Price {GridEngine.format_price(price)} entered position #{position.id} "
                f"[{GridEngine.format_price_range(position.buy_min, position.buy_max)}]; buying",
                "INFO",
            )
            self._buys_in_flight += 1
            try:
                result = await self.buy_operator.execute_buy(position)
            finally:
                self._buys_in_flight -= 1

            self._handle_buy_result(position, result, price, summary)

    def _handle_buy_result(
        self,
        position: GridPosition,
        result: TradeResult,
        price: Decimal,
        summary: CycleSummary,
    ) -> None:
        if result.success:
            self.state.total_buys += 1
            self.state.consecutive_errors = 0
            summary.bought = position.id
            self._log_event(
                "trade_executed",
                f"Bought position #{position.id}: {position.tokens_received} tokens "
                f"for {position.eth_cost} wei (tx {result.tx_hash})",
                level="INFO",
                position_id=position.id,
                tokens_received=position.tokens_received,
                eth_cost=position.eth_cost,
                gas_cost=result.gas_cost,
                price=price,
                tx_hash=result.tx_hash,
            )
            return

        if result.execution_failed:
            self._register_failure(
                f"Buy failed for position #{position.id}: {result.error_message}",
                summary,
                "buy_failed",
                position_id=position.id,
                tx_hash=result.tx_hash,
            )
            return

        summary.skipped.append({"side": "buy", "position_id": position.id, "reason": result.error_message})
        self.logger.log(f"Buy skipped for position #{position.id}: {result.error_message}", "INFO")

    async def _sell_step(
        self,
        price: Decimal,
        trailing_exits: List[GridPosition],
        summary: CycleSummary,
    ) -> None:
        candidates: List[Tuple[GridPosition, str]] = []
        seen: Set[int] = set()
        for position in GridEngine.find_sell_positions(self.position_manager.all(), price):
            reason = "take_profit" if GridEngine.is_take_profit(position, price) else "stop_loss"
            candidates.append((position, reason))
            seen.add(position.id)
        for position in trailing_exits:
            if position.id not in seen:
                candidates.append((position, "trailing_stop"))
                seen.add(position.id)

        for position, reason in candidates:
            if not self.is_running:
                break
            if position.status != PositionStatus.HOLDING or not position.tokens_received:
                continue

            async with self.position_manager.trade_guard(position.id) as acquired:
                if not acquired:
                    summary.skipped.append(
                        {"side": "sell", "position_id": position.id, "reason": "trade already in flight"}
                    )
                    continue
                if position.status != PositionStatus.HOLDING:
                    continue

                self.logger.log(
                    f"Position #{position.id} hit {reason} at {GridEngine.format_price(price)}; selling",
                    "INFO",
                )
                result = await self.sell_operator.execute_sell(position, reason)

            if result.success:
                self._on_sold(position, result, reason)
                summary.sold.append(position.id)
            elif result.execution_failed:
                self._register_failure(
                    f"Sell failed for position #{position.id}: {result.error_message}",
                    summary,
                    "sell_failed",
                    position_id=position.id,
                    tx_hash=result.tx_hash,
                )
            else:
                summary.skipped.append(
                    {"side": "sell", "position_id": position.id, "reason": result.error_message}
                )

    def _on_sold(self, position: GridPosition, result: TradeResult, reason: str) -> None:
        self.state.total_sells += 1
        self.state.total_profit_eth += position.profit_eth or 0
        self.state.consecutive_errors = 0
        self.risk_controller.on_position_sold(position.id)
        self._log_event(
            "profit_realized",
            f"Sold position #{position.id} ({reason}): profit {position.profit_eth} wei "
            f"({position.profit_percent}%) (tx {result.tx_hash})",
            level="INFO",
            position_id=position.id,
            reason=reason,
            eth_received=position.eth_received,
            profit_eth=position.profit_eth,
            profit_percent=position.profit_percent,
            gas_cost=result.gas_cost,
            tx_hash=result.tx_hash,
        )

    def _register_failure(self, message: str, summary: CycleSummary, event_type: str, **context: Any) -> None:
        """Count an execution failure; stop the strategy at the threshold."""
        self.state.consecutive_errors += 1
        summary.errors.append(message)
        self._log_event(
            event_type,
            message,
            level="ERROR",
            consecutive_errors=self.state.consecutive_errors,
            **context,
        )

        if self.state.consecutive_errors >= self.config.max_consecutive_errors and self.is_running:
            self._log_event(
                "strategy_stopped",
                f"Stopping {self.state.name} after {self.state.consecutive_errors} consecutive errors",
                level="CRITICAL",
                consecutive_errors=self.state.consecutive_errors,
                reason=message,
            )
            self.stop(reason="too many consecutive errors")
            summary.stopped = True

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #
    async def _persist(self) -> bool:
        if self.storage is None:
            return False
        try:
            await self.storage.save_strategy_state(self.state)
            return True
        except Exception as exc:
            self.logger.log(f"Failed to persist state (will retry next cycle): {exc}", "ERROR")
            return False

    def _schedule_persist(self) -> None:
        if self.storage is None:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Called from synchronous shutdown code.
            self.logger.log("State not persisted: no running event loop", "WARNING")
            return
        self._spawn(self._persist(), "state persistence")

    # ------------------------------------------------------------------ #
    # Operator actions
    # ------------------------------------------------------------------ #
    async def liquidate_all(self) -> LiquidationReport:
        """
        Drive every HOLDING position through the sell path now.

        The profit gate still applies; positions that fail it (or whose sell
        fails) are counted in ``failed`` and stay HOLDING.
        """
        report = LiquidationReport()
        holding = list(self.position_manager.holding())
        self.logger.log(f"Liquidating {len(holding)} holding positions", "WARNING")

        for position in holding:
            async with self.position_manager.trade_guard(position.id) as acquired:
                if not acquired or position.status != PositionStatus.HOLDING:
                    report.failed += 1
                    report.failed_ids.append(position.id)
                    continue
                result = await self.sell_operator.execute_sell(position, "liquidation")

            if result.success:
                self._on_sold(position, result, "liquidation")
                report.success += 1
                report.total_profit_eth += position.profit_eth or 0
                report.sold_ids.append(position.id)
            else:
                report.failed += 1
                report.failed_ids.append(position.id)
                self.logger.log(
                    f"Liquidation of position #{position.id} failed: {result.error_message}",
                    "ERROR" if result.execution_failed else "WARNING",
                )

        self._log_event(
            "liquidation_complete",
            f"Liquidation finished: {report.success} sold, {report.failed} failed, "
            f"profit {report.total_profit_eth} wei",
            level="WARNING",
            **report.to_dict(),
        )
        await self._persist()
        return report

    async def reconfigure(self, config: GridConfig, current_price: Optional[Decimal] = None) -> None:
        """
        Apply a new config and regenerate the grid, keeping HOLDING positions.

        Raises:
            RuntimeError: a trade is in flight for this strategy.
            GridConfigurationError: the new config cannot produce a grid.
        """
        if self.position_manager.has_active_trades() or self._buys_in_flight:
            raise RuntimeError("Cannot regenerate the grid while trades are in flight")

        price = current_price if current_price is not None else (await self.refresh_price())[0]
        positions = GridEngine.regenerate_grid(price, config, self.state.positions, preserve_holding=True)

        self.state.config = config
        self.config = config
        self.risk_controller.apply_config(config)
        self.buy_operator.apply_config(config)
        self.sell_operator.apply_config(config)
        self.position_manager.replace(positions)
        self.risk_controller.reset_trailing_stops()

        self.logger.log(
            f"Grid regenerated with {len(positions)} positions "
            f"({GridEngine.count_active_positions(positions)} holding carried over)",
            "INFO",
        )
        await self._persist()

    def get_stats(self) -> Dict[str, Any]:
        return state_stats(self.state)


def state_stats(state: GridBotState) -> Dict[str, Any]:
    """Counters and position breakdown of one strategy's state."""
    stats = GridEngine.calculate_grid_stats(state.positions)
    return {
        "id": state.id,
        "name": state.name,
        "token_symbol": state.token_symbol,
        "chain": state.chain,
        "is_running": state.is_running,
        "total_positions": stats.total_positions,
        "holding_positions": stats.holding_positions,
        "sold_positions": stats.sold_positions,
        "empty_positions": stats.empty_positions,
        "avg_profit_percent": stats.avg_profit_percent,
        "total_buys": state.total_buys,
        "total_sells": state.total_sells,
        "total_profit_eth": state.total_profit_eth,
        "current_price": state.current_price,
        "consecutive_errors": state.consecutive_errors,
    }
