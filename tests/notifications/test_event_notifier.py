import asyncio
import json
from decimal import Decimal

import pytest

from helpers.alert_templates import format_eth, format_percent, render_alert
from helpers.event_notifier import GridEventNotifier, should_forward


class FakeTelegram:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send_text(self, text):
        if self.fail:
            raise ConnectionError("telegram unreachable")
        self.sent.append(text)


class FakeDiscord:
    def __init__(self):
        self.sent = []

    def send_text(self, text, *, title=None, level="INFO"):
        self.sent.append((text, title, level))


def make_notifier(tmp_path, **kwargs):
    return GridEventNotifier("grid", "PEPE bot", "PEPE", history_path=tmp_path / "events.jsonl", **kwargs)


@pytest.mark.parametrize(
    "alert_level,event_type,level,expected",
    [
        ("all", "grid_initialized", "INFO", True),
        ("none", "strategy_stopped", "CRITICAL", False),
        ("trades-only", "profit_realized", "INFO", True),
        ("trades-only", "buy_failed", "ERROR", False),
        ("errors-only", "buy_failed", "ERROR", True),
        ("errors-only", "trade_executed", "INFO", False),
        ("errors-only", "liquidation_complete", "WARNING", True),
    ],
)
def test_should_forward(alert_level, event_type, level, expected):
    assert should_forward(alert_level, event_type, level) is expected


def test_every_event_is_recorded_as_jsonl(tmp_path):
    notifier = make_notifier(tmp_path, alert_level="none")

    notifier.notify(event_type="trade_executed", level="INFO", message="bought", payload={"position_id": 1})
    notifier.notify(event_type="buy_failed", level="ERROR", message="reverted", payload={"price": Decimal("1.5")})

    lines = (tmp_path / "events.jsonl").read_text().splitlines()
    records = [json.loads(line) for line in lines]
    assert [r["event_type"] for r in records] == ["trade_executed", "buy_failed"]
    assert records[0]["bot"] == "PEPE bot"
    assert records[1]["payload"]["price"] == "1.5"


def test_forwarding_respects_alert_level(tmp_path):
    telegram = FakeTelegram()
    discord = FakeDiscord()
    notifier = make_notifier(tmp_path, telegram_bot=telegram, discord_webhook=discord, alert_level="trades-only")

    notifier.notify(
        event_type="profit_realized",
        level="INFO",
        message="sold",
        payload={"position_id": 0, "profit_percent": 9.0, "profit_eth": "90000000000000"},
    )
    notifier.notify(event_type="buy_failed", level="ERROR", message="reverted", payload={})

    assert len(telegram.sent) == 1
    assert "PROFIT REALIZED" in telegram.sent[0]
    assert discord.sent[0][1:] == ("profit_realized", "INFO")


def test_channel_failure_does_not_propagate(tmp_path):
    notifier = make_notifier(tmp_path, telegram_bot=FakeTelegram(fail=True))

    notifier.notify(event_type="strategy_stopped", level="CRITICAL", message="stopped", payload={})

    assert (tmp_path / "events.jsonl").exists()


@pytest.mark.asyncio
async def test_delivery_inside_event_loop_runs_off_loop(tmp_path):
    telegram = FakeTelegram()
    notifier = make_notifier(tmp_path, telegram_bot=telegram)

    notifier.notify(event_type="trade_executed", level="INFO", message="bought", payload={})
    for _ in range(100):
        if telegram.sent:
            break
        await asyncio.sleep(0.01)

    assert len(telegram.sent) == 1


def test_unknown_alert_level_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        make_notifier(tmp_path, alert_level="loud")


def test_profit_template():
    text = render_alert(
        "profit_realized",
        bot_name="PEPE bot",
        token_symbol="PEPE",
        message="",
        payload={"position_id": 3, "profit_percent": 9, "profit_eth": 9 * 10**13, "eth_received": 11 * 10**14},
    )

    assert "(Position 3)" in text
    assert "+9.00%" in text
    assert "0.000090 ETH" in text
    assert "0.001100 ETH" in text


def test_stopped_template_truncates_reason():
    text = render_alert(
        "strategy_stopped",
        bot_name="b",
        token_symbol="T",
        message="",
        payload={"consecutive_errors": 5, "reason": "x" * 500},
    )

    assert "5 consecutive errors" in text
    assert text.endswith("x" * 200 + "...")


def test_unknown_event_uses_generic_layout():
    text = render_alert("grid_initialized", bot_name="b", token_symbol="T", message="ready", payload={"positions": 24})

    assert "ready" in text
    assert "positions: 24" in text


def test_formatters():
    assert format_eth(10**18) == "1.000000"
    assert format_eth("not a number") == "not a number"
    assert format_percent("-1.234") == "-1.23%"
