"""
Unified logging for the grid bot.

Every component (strategies, risk controls, collaborator clients, the
scheduler) logs through a ``UnifiedLogger`` so that console and file output
share one format and carry a component identifier such as
``STRATEGY:GRID:bot=pepe-1:token=PEPE``.

Built on loguru. Sinks are installed once per process:
- colored console sink (level from ``LOG_LEVEL``)
- ``unified_history.log`` shared across sessions
- ``session_<timestamp>.log`` for the current process
"""

import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger as _logger


_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | "
    "{level:<8} | "
    "{extra[component_id]:<40} | "
    "{message}"
)


def get_logs_dir() -> Path:
    """Directory used for log files and event history."""
    configured = os.getenv("GRID_BOT_LOG_DIR")
    logs_dir = Path(configured) if configured else Path(__file__).parent.parent / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def _ensure_component(record) -> bool:
    if "component_id" not in record["extra"]:
        record["extra"]["component_id"] = "UNKNOWN"
    return True


def _shorten_source(record) -> bool:
    """Right-align ``module:function:line`` so messages start in one column."""
    max_width = 45
    suffix = f":{record.get('function', '')}:{record.get('line', 0)}"
    module = record.get("module") or record.get("name", "")
    room = max_width - len(suffix)
    if room <= 3:
        module = "..."
    elif len(module) > room:
        module = "..." + module[-(room - 3):]
    record["extra"]["short_name"] = f"{module + suffix:>{max_width}}"
    return True


class UnifiedLogger:
    """
    Component-scoped logger.

    Supports the level methods (``debug`` .. ``critical``) plus the
    ``log(message, level)`` call style used across the strategy code.
    """

    def __init__(
        self,
        component_type: str,  # "strategy", "risk", "client", "service", "core"
        component_name: str,
        context: Optional[Dict[str, Any]] = None,
        log_to_console: bool = True,
        log_level: str = "INFO",
    ):
        self.component_type = component_type.upper()
        self.component_name = component_name.upper()
        self.context = context or {}
        self.log_level = log_level.upper()
        self.log_to_console = log_to_console

        self.component_id = f"{self.component_type}:{self.component_name}"
        if self.context:
            context_str = ":".join(f"{k}={v}" for k, v in self.context.items())
            self.component_id = f"{self.component_id}:{context_str}"

        self._setup_logger()

    def _setup_logger(self) -> None:
        """Install the shared sinks on first use and bind this component."""
        if not hasattr(_logger, "_grid_bot_console_setup"):
            _logger.remove()
            if self.log_to_console:
                console_format = (
                    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                    "<level>{level: <8}</level> | "
                    "<cyan>{extra[short_name]}</cyan> | "
                    "<level>{message}</level>"
                )
                _logger.add(
                    sys.stdout,
                    format=console_format,
                    level=self.log_level,
                    colorize=True,
                    filter=lambda record: bool(record["extra"].get("component_id")) and _shorten_source(record),
                    backtrace=True,
                    diagnose=False,
                )
            _logger._grid_bot_console_setup = True

        if not hasattr(_logger, "_grid_bot_files_setup"):
            logs_dir = get_logs_dir()
            session_ts = datetime.now().strftime("%Y%m%d_%H%M%S")
            for path in (logs_dir / "unified_history.log", logs_dir / f"session_{session_ts}.log"):
                _logger.add(
                    str(path),
                    format=_FILE_FORMAT,
                    level="DEBUG",
                    filter=_ensure_component,
                    backtrace=False,
                    diagnose=False,
                    enqueue=True,
                    catch=True,
                )
            _logger._grid_bot_files_setup = True

        self._logger = _logger.bind(component_id=self.component_id)

    def debug(self, message: str, **kwargs):
        self._logger.opt(depth=1).debug(message, **kwargs)

    def info(self, message: str, **kwargs):
        self._logger.opt(depth=1).info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._logger.opt(depth=1).warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        self._logger.opt(depth=1).error(message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._logger.opt(depth=1).critical(message, **kwargs)

    def log(self, message: str, level: str = "INFO", **kwargs):
        """
        Log ``message`` at a level given by name.

        Unknown level names fall back to INFO. Extra keyword arguments are
        attached to the record (``record["extra"]``) for the file sinks.
        """
        level = level.upper()
        if level not in _LEVELS:
            level = "INFO"
        self._logger.opt(depth=1).bind(**kwargs).log(level, message)

    def log_trade(self, side: str, position_id: int, amount: Any, price: Any, tx_hash: Optional[str]):
        """Structured one-line record of an executed swap."""
        self._logger.opt(depth=1).bind(
            trade=True,
            side=side,
            position_id=position_id,
            amount=str(amount),
            price=str(price),
            tx_hash=tx_hash,
        ).info(f"TRADE: {side.upper()} position #{position_id} | amount={amount} @ {price} | tx={tx_hash}")

    def with_context(self, **context) -> "UnifiedLogger":
        """Derive a logger that carries additional context in its component id."""
        return UnifiedLogger(
            component_type=self.component_type.lower(),
            component_name=self.component_name.lower(),
            context={**self.context, **context},
            log_to_console=self.log_to_console,
            log_level=self.log_level,
        )

    @staticmethod
    def flush_all_handlers() -> None:
        """Drain enqueued file records before process exit."""
        _logger.complete()
        time.sleep(0.1)
        sys.stdout.flush()
        sys.stderr.flush()


def get_logger(
    component_type: str,
    component_name: str,
    context: Optional[Dict[str, Any]] = None,
    log_to_console: bool = True,
    log_level: Optional[str] = None,
) -> UnifiedLogger:
    """
    Create a component logger.

    Examples:
        logger = get_logger("strategy", "grid", {"bot": "pepe-1"})
        logger = get_logger("client", "zerox")
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    return UnifiedLogger(
        component_type=component_type,
        component_name=component_name,
        context=context,
        log_to_console=log_to_console,
        log_level=log_level,
    )


def get_strategy_logger(strategy_name: str, **context) -> UnifiedLogger:
    """Get logger for trading strategies."""
    return get_logger("strategy", strategy_name, context)


def get_risk_logger(component_name: str, **context) -> UnifiedLogger:
    """Get logger for portfolio and position risk controls."""
    return get_logger("risk", component_name, context)


def get_client_logger(client_name: str, **context) -> UnifiedLogger:
    """Get logger for collaborator clients (quotes, chain, storage)."""
    return get_logger("client", client_name, context)


def get_core_logger(component_name: str, **context) -> UnifiedLogger:
    """Get logger for core utilities (scheduler, launcher)."""
    return get_logger("core", component_name, context)
