"""
Grid strategy event notifier.

Captures structured events emitted by grid strategies and the circuit
breaker, records them locally for post-trade analysis and forwards them to
alerting channels (Telegram, Discord) according to an alert level.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from helpers.alert_templates import render_alert
from helpers.discord_webhook import DiscordWebhook
from helpers.telegram_bot import TelegramBot
from helpers.unified_logger import get_core_logger, get_logs_dir


ALERT_LEVELS = ("all", "trades-only", "errors-only", "none")
TRADE_EVENTS = frozenset({"trade_executed", "profit_realized", "liquidation_complete"})
SEVERE_LEVELS = frozenset({"WARNING", "ERROR", "CRITICAL"})


def should_forward(alert_level: str, event_type: str, level: str) -> bool:
    """Decide whether an event is pushed to external channels."""
    if alert_level == "none":
        return False
    if alert_level == "trades-only":
        return event_type in TRADE_EVENTS
    if alert_level == "errors-only":
        return level in SEVERE_LEVELS
    return True


class GridEventNotifier:
    """
    Light-weight alert dispatcher.

    Responsibilities:
    - Persist every event as JSONL (``logs/grid_events.jsonl``)
    - Forward events passing the alert level to Telegram and/or Discord
      without blocking the caller (sends run in the default executor)
    """

    def __init__(
        self,
        strategy: str,
        bot_name: str,
        token_symbol: str,
        *,
        history_path: Optional[Path] = None,
        telegram_bot: Optional[TelegramBot] = None,
        discord_webhook: Optional[DiscordWebhook] = None,
        alert_level: str = "all",
    ) -> None:
        if alert_level not in ALERT_LEVELS:
            raise ValueError(f"alert_level must be one of {', '.join(ALERT_LEVELS)}")

        self.strategy = strategy
        self.bot_name = bot_name
        self.token_symbol = token_symbol
        self.alert_level = alert_level
        self.history_path = history_path or get_logs_dir() / "grid_events.jsonl"
        self.logger = get_core_logger("notifier", bot=bot_name)

        self._telegram_bot = telegram_bot
        self._discord_webhook = discord_webhook

    @property
    def has_channels(self) -> bool:
        return self._telegram_bot is not None or self._discord_webhook is not None

    def notify(
        self,
        *,
        event_type: str,
        level: str,
        message: str,
        payload: Dict[str, Any],
    ) -> None:
        """Persist and optionally forward an event."""
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "strategy": self.strategy,
            "bot": self.bot_name,
            "token": self.token_symbol,
            "level": level,
            "event_type": event_type,
            "message": message,
            "payload": payload,
        }

        self._write_history(record)

        if self.has_channels and should_forward(self.alert_level, event_type, level):
            self._dispatch(record)

    def _write_history(self, record: Dict[str, Any]) -> None:
        """Append record to JSONL history file."""
        try:
            with self.history_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, ensure_ascii=False, default=str))
                handle.write("\n")
        except OSError as exc:
            self.logger.log(f"Failed to write event history: {exc}", "ERROR")

    def _dispatch(self, record: Dict[str, Any]) -> None:
        text = render_alert(
            record["event_type"],
            bot_name=self.bot_name,
            token_symbol=self.token_symbol,
            message=record["message"],
            payload=record.get("payload") or {},
        )
        senders: List[Callable[[], None]] = []
        if self._telegram_bot is not None:
            senders.append(lambda: self._telegram_bot.send_text(text))
        if self._discord_webhook is not None:
            senders.append(
                lambda: self._discord_webhook.send_text(
                    text, title=record["event_type"], level=record["level"]
                )
            )

        for send in senders:
            self._run_in_background(send)

    def _run_in_background(self, send: Callable[[], None]) -> None:
        def _guarded() -> None:
            try:
                send()
            except Exception as exc:
                self.logger.log(f"Alert delivery failed: {exc}", "WARNING")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _guarded()
            return
        loop.run_in_executor(None, _guarded)
