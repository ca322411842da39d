"""
Grid Trading Bot - round-robin scheduler and bot assembly
"""

import asyncio
import contextlib
import signal
import time
import traceback
from typing import Any, Callable, Dict, List, Optional, Set

from clients.base import BaseChainClient, BasePriceSource, BaseQuoteClient
from clients.zerox import ZeroXQuoteClient
from helpers.discord_webhook import DiscordWebhook
from helpers.event_notifier import GridEventNotifier
from helpers.telegram_bot import TelegramBot
from helpers.unified_logger import get_core_logger, get_risk_logger
from persistence import JsonStorage
from risk.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from risk.trailing_stop import TrailingStopConfig, TrailingStopTracker
from strategies.implementations.grid import GridConfigurationError, GridStrategy
from strategies.implementations.grid.models import CycleSummary, GridBotState, LiquidationReport, PortfolioSnapshot
from trading_config.config_yaml import build_bot_states
from trading_config.settings import Settings


ChainClientFactory = Callable[[GridBotState], BaseChainClient]


class CycleScheduler:
    """
    Round-robin driver for grid strategies.

    Every heartbeat advances exactly one strategy. A strategy with
    ``skip_heartbeats = k`` runs on one of every ``k + 1`` of its own visits.
    Ticks are launched as tasks so a slow strategy never delays the
    heartbeat; ``stop()`` waits for in-flight ticks before returning.
    """

    def __init__(self, heartbeat_ms: int = 1000, *, logger=None):
        if heartbeat_ms <= 0:
            raise ValueError("heartbeat_ms must be positive")
        self.heartbeat_ms = heartbeat_ms
        self.logger = logger or get_core_logger("scheduler")

        self._strategies: Dict[str, GridStrategy] = {}
        self._visits: Dict[str, int] = {}
        self._cursor = 0
        self._inflight: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False

        self.last_heartbeat: Dict[str, float] = {}
        self.last_summaries: Dict[str, CycleSummary] = {}

    # ------------------------------------------------------------------ #
    # Strategy registry
    # ------------------------------------------------------------------ #
    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def strategies(self) -> List[GridStrategy]:
        return list(self._strategies.values())

    def add_strategy(self, strategy: GridStrategy) -> GridStrategy:
        strategy_id = strategy.state.id
        if strategy_id in self._strategies:
            raise ValueError(f"Strategy '{strategy_id}' is already scheduled")

        self._strategies[strategy_id] = strategy
        self._visits[strategy_id] = 0
        strategy.risk_controller.bind_portfolio(self.portfolio_snapshots)
        self.logger.info(f"Strategy {strategy.state.name} ({strategy_id}) added")
        return strategy

    def remove_strategy(self, strategy_id: str) -> Optional[GridStrategy]:
        strategy = self._strategies.pop(strategy_id, None)
        if strategy is None:
            return None

        self._visits.pop(strategy_id, None)
        if self._strategies:
            self._cursor %= len(self._strategies)
        else:
            self._cursor = 0
        if strategy.is_running:
            strategy.stop(reason="removed from scheduler")
        strategy.risk_controller.bind_portfolio(None)
        self.logger.info(f"Strategy {strategy_id} removed")
        return strategy

    def get_strategy(self, strategy_id: str) -> Optional[GridStrategy]:
        return self._strategies.get(strategy_id)

    def portfolio_snapshots(self) -> List[PortfolioSnapshot]:
        """Profit and invested capital of every scheduled strategy."""
        return [PortfolioSnapshot.from_state(s.state) for s in self._strategies.values()]

    # ------------------------------------------------------------------ #
    # Heartbeat
    # ------------------------------------------------------------------ #
    def tick_once(self) -> Optional[asyncio.Task]:
        """
        Visit the next strategy in rotation.

        Returns the launched tick task, or ``None`` when the visited strategy
        is stopped or skipped on this visit.
        """
        if not self._strategies:
            return None

        ids = list(self._strategies)
        strategy_id = ids[self._cursor % len(ids)]
        self._cursor = (self._cursor + 1) % len(ids)

        strategy = self._strategies[strategy_id]
        if not strategy.is_running:
            return None

        visit = self._visits.get(strategy_id, 0)
        self._visits[strategy_id] = visit + 1
        if visit % (strategy.config.skip_heartbeats + 1) != 0:
            return None

        task = asyncio.get_running_loop().create_task(self._run_tick(strategy), name=f"tick:{strategy_id}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run_tick(self, strategy: GridStrategy) -> Optional[CycleSummary]:
        strategy_id = strategy.state.id
        try:
            summary = await strategy.tick()
        except Exception as exc:
            self.logger.error(f"Strategy {strategy_id} tick raised: {exc}")
            self.logger.debug(traceback.format_exc())
            return None

        self.last_heartbeat[strategy_id] = time.time()
        self.last_summaries[strategy_id] = summary
        if summary.action != "wait":
            self.logger.debug(f"Strategy {strategy_id} cycle: {summary.to_dict()}")
        return summary

    async def run(self) -> None:
        """Heartbeat loop; the interval is re-read every beat."""
        while self._running:
            self.tick_once()
            await asyncio.sleep(self.heartbeat_ms / 1000)

    def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._loop_task = asyncio.get_running_loop().create_task(self.run(), name="scheduler")
        self.logger.info(f"Heartbeat started ({self.heartbeat_ms}ms interval)")
        self.logger.info(f"  Managing {len(self._strategies)} strategy(ies)")

    async def stop(self) -> None:
        """Stop the heartbeat and all strategies, then wait for in-flight ticks."""
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        for strategy in self._strategies.values():
            if strategy.is_running:
                strategy.stop(reason="scheduler stopped")

        if self._inflight:
            self.logger.info(f"Waiting for {len(self._inflight)} in-flight tick(s)")
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

        for strategy in self._strategies.values():
            await strategy.drain_background()

        self.logger.info("Heartbeat stopped")

    def update_interval(self, heartbeat_ms: int) -> None:
        """Change the heartbeat interval without restarting."""
        if heartbeat_ms <= 0:
            raise ValueError("heartbeat_ms must be positive")
        self.heartbeat_ms = heartbeat_ms
        if self._running:
            self.logger.info(f"Heartbeat interval updated to {heartbeat_ms}ms")
        else:
            self.logger.info(f"Heartbeat interval set to {heartbeat_ms}ms (will apply on start)")

    def get_status(self) -> Dict[str, Any]:
        strategies = []
        for strategy_id, strategy in self._strategies.items():
            entry = strategy.get_stats()
            entry["last_heartbeat"] = self.last_heartbeat.get(strategy_id)
            strategies.append(entry)
        return {
            "is_running": self._running,
            "heartbeat_ms": self.heartbeat_ms,
            "total_strategies": len(self._strategies),
            "strategies": strategies,
        }


class TradingBot:
    """Assemble grid strategies from bot definitions and run them under one scheduler."""

    def __init__(
        self,
        settings: Settings,
        bot_config: Dict[str, Any],
        *,
        chain_client_factory: ChainClientFactory,
        quote_client_factory: Optional[Callable[[str], BaseQuoteClient]] = None,
        price_source: Optional[BasePriceSource] = None,
        storage: Optional[JsonStorage] = None,
    ):
        """
        Initialize Trading Bot.

        Args:
            settings: Process settings (API keys, storage path, heartbeat)
            bot_config: Output of ``load_config_from_yaml``
            chain_client_factory: Builds the chain client for one bot's wallet
            quote_client_factory: Builds the quote client for a chain
                (default: 0x client from settings)
            price_source: Optional oracle shared by all bots
            storage: Persistence backend (default: JSON file from settings)
        """
        self.settings = settings
        self.bot_config = bot_config
        self.logger = get_core_logger("bot")
        self.storage = storage or JsonStorage(settings.storage_path)
        self.price_source = price_source
        self._chain_client_factory = chain_client_factory
        self._quote_client_factory = quote_client_factory or self._default_quote_client

        self._telegram_bot = (
            TelegramBot(settings.telegram_bot_token, settings.telegram_chat_id)
            if settings.telegram_bot_token and settings.telegram_chat_id
            else None
        )
        self._discord_webhook = (
            DiscordWebhook(settings.discord_webhook_url) if settings.discord_webhook_url else None
        )

        self.circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(**bot_config.get("circuit_breaker", {})),
            storage=self.storage,
            notifier=self._build_notifier("circuit_breaker", "portfolio", "ETH"),
            logger=get_risk_logger("circuit_breaker"),
        )
        self.trailing_defaults: Dict[str, Any] = dict(bot_config.get("trailing_stop", {}))
        self.scheduler = CycleScheduler(settings.heartbeat_ms)

        self._quote_clients: Dict[str, BaseQuoteClient] = {}
        self._chain_clients: List[BaseChainClient] = []
        self.shutdown_requested = False
        self._shutdown_event: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------ #
    # Assembly
    # ------------------------------------------------------------------ #
    def _default_quote_client(self, chain: str) -> BaseQuoteClient:
        return ZeroXQuoteClient(
            self.settings.zerox_api_key,
            chain=chain,
            base_url=self.settings.zerox_api_url,
            slippage_bps=self.settings.zerox_slippage_bps,
        )

    def _quote_client_for(self, chain: str) -> BaseQuoteClient:
        # One client per chain; bots on the same chain share it.
        if chain not in self._quote_clients:
            self._quote_clients[chain] = self._quote_client_factory(chain)
        return self._quote_clients[chain]

    def _build_notifier(self, strategy: str, bot_name: str, token_symbol: str) -> GridEventNotifier:
        return GridEventNotifier(
            strategy,
            bot_name,
            token_symbol,
            telegram_bot=self._telegram_bot,
            discord_webhook=self._discord_webhook,
            alert_level=self.settings.notification_alert_level,
        )

    def _trailing_tracker_for(self, state: GridBotState) -> TrailingStopTracker:
        merged = dict(self.trailing_defaults)
        merged["trailing_percent"] = state.config.trailing_stop_percent
        merged["activation_percent"] = state.config.trailing_stop_activation
        return TrailingStopTracker(TrailingStopConfig(**merged), logger=get_risk_logger("trailing_stop", bot=state.id))

    def build_strategy(self, state: GridBotState) -> GridStrategy:
        chain_client = self._chain_client_factory(state)
        self._chain_clients.append(chain_client)
        return GridStrategy(
            state,
            self._quote_client_for(state.chain),
            chain_client,
            price_source=self.price_source,
            storage=self.storage,
            notifier=self._build_notifier("grid", state.name, state.token_symbol),
            circuit_breaker=self.circuit_breaker,
            trailing_stops=self._trailing_tracker_for(state),
        )

    async def setup(self) -> List[GridStrategy]:
        """
        Restore persisted state for every configured bot and schedule it.

        A bot known to storage resumes its positions and counters; a changed
        ``config`` mapping regenerates its grid keeping HOLDING positions.
        Bots whose grid cannot be generated are logged and left out.
        """
        await self.circuit_breaker.initialize()

        persisted = {state.id: state for state in await self.storage.load_all_strategies()}
        configured = build_bot_states(self.bot_config, default_chain=self.settings.chain)
        configured_ids = {state.id for state in configured}
        for orphan in sorted(set(persisted) - configured_ids):
            self.logger.info(f"Persisted bot '{orphan}' is not in the config file; leaving it idle")

        for fresh in configured:
            state = persisted.get(fresh.id, fresh)
            config_changed = state is not fresh and state.config != fresh.config
            if state is not fresh:
                self.logger.info(
                    f"Resuming {state.name}: {len(state.holding_positions())} holding, "
                    f"{state.total_sells} sells, profit {state.total_profit_eth} wei"
                )

            strategy = self.build_strategy(state)
            try:
                await strategy.initialize()
                if config_changed:
                    self.logger.info(f"Config for {state.name} changed; regenerating grid")
                    await strategy.reconfigure(fresh.config)
            except GridConfigurationError as exc:
                self.logger.error(f"Skipping bot {state.name}: {exc}")
                continue

            state.consecutive_errors = 0
            strategy.start()
            self.scheduler.add_strategy(strategy)

        return self.scheduler.strategies

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def _request_shutdown(self, signame: str) -> None:
        self.logger.info(f"Signal received: {signame}")
        self.shutdown_requested = True
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError):
                # add_signal_handler is unavailable on some platforms / threads.
                self.logger.warning(f"Cannot install handler for {sig.name}")

    async def run(self) -> None:
        """Run until a signal or ``request_shutdown()``."""
        self._shutdown_event = asyncio.Event()
        try:
            strategies = await self.setup()
            if not strategies:
                self.logger.error("No bots could be started")
                return

            self._install_signal_handlers()
            self.scheduler.start()
            await self._shutdown_event.wait()
            await self.graceful_shutdown("Shutdown requested")

        except Exception as e:
            self.logger.error(f"Critical error: {e}")
            self.logger.error(f"Traceback: {traceback.format_exc()}")
            await self.graceful_shutdown(f"Critical error: {e}")
            raise

    def request_shutdown(self) -> None:
        self._request_shutdown("request")

    async def liquidate_all(self) -> Dict[str, LiquidationReport]:
        """Set up every bot and sell all of its HOLDING positions once."""
        if not self.scheduler.strategies:
            await self.setup()

        reports: Dict[str, LiquidationReport] = {}
        for strategy in self.scheduler.strategies:
            reports[strategy.state.id] = await strategy.liquidate_all()
        return reports

    async def graceful_shutdown(self, reason: str = "Unknown") -> None:
        """Stop the scheduler, let in-flight work persist, close clients."""
        self.logger.info(f"Graceful shutdown initiated: {reason}")
        self.shutdown_requested = True

        try:
            await asyncio.wait_for(self.scheduler.stop(), timeout=180.0)
        except asyncio.TimeoutError:
            self.logger.warning("In-flight ticks did not finish within 180s")

        for client in list(self._quote_clients.values()) + self._chain_clients:
            try:
                await asyncio.wait_for(client.close(), timeout=10.0)
            except Exception as exc:
                self.logger.warning(f"Client close failed: {exc}")

        for strategy in self.scheduler.strategies:
            await strategy.cleanup()

        self.logger.info("Shutdown complete")

    def get_status(self) -> Dict[str, Any]:
        status = self.scheduler.get_status()
        status["circuit_breaker"] = self.circuit_breaker.get_status()
        return status
