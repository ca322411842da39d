"""
Human-readable alert texts for grid strategy events.

Templates receive the structured event payload emitted by the strategy or
the circuit breaker. Unknown event types fall back to a generic layout.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Dict, Mapping


WEI_PER_ETH = Decimal(10**18)
MAX_ERROR_LENGTH = 200


def format_eth(wei: Any, places: int = 6) -> str:
    """Render a wei amount (int or numeric string) as ETH."""
    try:
        value = Decimal(str(wei)) / WEI_PER_ETH
    except (ArithmeticError, ValueError):
        return str(wei)
    return f"{value:.{places}f}"


def format_percent(value: Any) -> str:
    try:
        number = Decimal(str(value))
    except (ArithmeticError, ValueError):
        return str(value)
    sign = "+" if number >= 0 else ""
    return f"{sign}{number:.2f}%"


def _truncate(text: str) -> str:
    return text if len(text) <= MAX_ERROR_LENGTH else text[:MAX_ERROR_LENGTH] + "..."


def _trade_executed(bot: str, token: str, payload: Mapping[str, Any], message: str) -> str:
    position = payload.get("position_id")
    header = "✅ <b>BUY EXECUTED</b>" + (f" (Position {position})" if position is not None else "")
    return (
        f"{header}\n\n"
        f"🤖 Bot: {bot}\n"
        f"💎 Bought: {payload.get('tokens_received', '?')} {token} units\n"
        f"💵 Cost: {format_eth(payload.get('eth_cost', 0))} ETH"
    )


def _profit_realized(bot: str, token: str, payload: Mapping[str, Any], message: str) -> str:
    position = payload.get("position_id")
    header = "💰 <b>PROFIT REALIZED</b>" + (f" (Position {position})" if position is not None else "")
    text = (
        f"{header}\n\n"
        f"🤖 Bot: {bot}\n"
        f"💎 Sold: {token}\n"
        f"📈 Profit: {format_percent(payload.get('profit_percent', 0))} "
        f"({format_eth(payload.get('profit_eth', 0))} ETH)"
    )
    if payload.get("eth_received") is not None:
        text += f"\n💵 Total Received: {format_eth(payload['eth_received'])} ETH"
    return text


def _strategy_stopped(bot: str, token: str, payload: Mapping[str, Any], message: str) -> str:
    return (
        "🛑 <b>BOT STOPPED</b>\n\n"
        f"🤖 Bot: {bot}\n"
        f"⚠️ Stopped after {payload.get('consecutive_errors', '?')} consecutive errors\n"
        f"📝 Reason: {_truncate(str(payload.get('reason', message)))}"
    )


def _execution_failed(bot: str, token: str, payload: Mapping[str, Any], message: str) -> str:
    text = (
        "⚠️ <b>ERROR ALERT</b>\n\n"
        f"🤖 Bot: {bot}\n"
        f"❌ Error: {_truncate(str(payload.get('error', message)))}"
    )
    if payload.get("position_id") is not None:
        text += f"\n📍 Position: {payload['position_id']}"
    return text


def _liquidation_complete(bot: str, token: str, payload: Mapping[str, Any], message: str) -> str:
    return (
        "🚨 <b>EMERGENCY LIQUIDATION COMPLETE</b>\n\n"
        f"🤖 Bot: {bot}\n"
        f"📊 Positions Sold: {payload.get('success', 0)}\n"
        f"❌ Failed: {payload.get('failed', 0)}\n"
        f"💵 Total Profit: {format_eth(payload.get('total_profit_eth', 0))} ETH"
    )


def _circuit_breaker_triggered(bot: str, token: str, payload: Mapping[str, Any], message: str) -> str:
    return (
        "🚨 <b>CIRCUIT BREAKER TRIGGERED</b>\n\n"
        f"Reason: {payload.get('reason', message)}\n"
        "New entries are blocked for all bots.\n"
        f"Cooldown: {payload.get('cooldown_minutes', '?')} minutes"
    )


def _circuit_breaker_reset(bot: str, token: str, payload: Mapping[str, Any], message: str) -> str:
    return "✅ Circuit breaker has been reset. Trading can resume."


def _generic(bot: str, token: str, payload: Mapping[str, Any], message: str) -> str:
    lines = [f"🤖 Bot: {bot}", f"💎 Token: {token}", message]
    lines.extend(f"{key}: {value}" for key, value in sorted(payload.items()))
    return "\n".join(lines)


TEMPLATES: Dict[str, Callable[[str, str, Mapping[str, Any], str], str]] = {
    "trade_executed": _trade_executed,
    "profit_realized": _profit_realized,
    "strategy_stopped": _strategy_stopped,
    "buy_failed": _execution_failed,
    "sell_failed": _execution_failed,
    "liquidation_complete": _liquidation_complete,
    "circuit_breaker_triggered": _circuit_breaker_triggered,
    "circuit_breaker_reset": _circuit_breaker_reset,
}


def render_alert(
    event_type: str,
    *,
    bot_name: str,
    token_symbol: str,
    message: str,
    payload: Mapping[str, Any],
) -> str:
    template = TEMPLATES.get(event_type, _generic)
    return template(bot_name, token_symbol, payload or {}, message)
