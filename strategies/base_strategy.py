"""
Base Strategy Interface

Defines the lifecycle every strategy driven by the scheduler implements:
initialize -> start -> tick (repeatedly) -> stop -> cleanup.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from helpers.unified_logger import UnifiedLogger, get_strategy_logger


class BaseStrategy(ABC):
    """
    Base class for all trading strategies.

    Subclasses implement ``_initialize_strategy`` and ``tick``. ``tick`` must
    not raise: the scheduler keeps advancing other strategies regardless of
    one strategy's failures.
    """

    def __init__(self, config, logger_context: Optional[Dict[str, Any]] = None):
        self.config = config
        self.logger: UnifiedLogger = get_strategy_logger(
            self.get_strategy_name().lower().replace(' ', '_'),
            **(logger_context or {}),
        )
        self.is_initialized = False
        self._running = False

    async def initialize(self):
        """Initialize strategy-specific components once."""
        if not self.is_initialized:
            await self._initialize_strategy()
            self.is_initialized = True
            self.logger.info(f"Strategy '{self.get_strategy_name()}' initialized")

    @abstractmethod
    async def _initialize_strategy(self):
        """Strategy-specific initialization logic."""

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def is_running(self) -> bool:
        return self._running

    def _set_running(self, running: bool) -> None:
        self._running = running

    def start(self):
        """Mark the strategy as running; the scheduler will start visiting it."""
        self._set_running(True)
        self.logger.info(f"Strategy '{self.get_strategy_name()}' started")

    def stop(self, reason: str = "requested"):
        """
        Mark the strategy as not running.

        An in-flight tick is not cancelled; it completes and persists, and the
        scheduler simply stops visiting the strategy.
        """
        self._set_running(False)
        self.logger.info(f"Strategy '{self.get_strategy_name()}' stopped ({reason})")

    @abstractmethod
    async def tick(self) -> Any:
        """Run one decision cycle and return its summary."""

    @abstractmethod
    def get_strategy_name(self) -> str:
        """Get the strategy name."""

    async def cleanup(self):
        """Release strategy resources and flush logs."""
        self.logger.info(f"Strategy '{self.get_strategy_name()}' cleanup completed")
        UnifiedLogger.flush_all_handlers()
