"""
Validation of grid configs, YAML bot definitions and process settings.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from strategies.implementations.grid.config import GridConfig
from trading_config.config_yaml import (
    build_bot_states,
    create_example_config,
    load_config_from_yaml,
    save_config_to_yaml,
    validate_config_file,
)
from trading_config.settings import Settings


def bot_definition(bot_id="pepe-grid", **config):
    return {
        "id": bot_id,
        "name": f"{bot_id} bot",
        "token_address": "0x6982508145454Ce325dDbE47a25d4ec3d2311933",
        "token_symbol": "PEPE",
        "config": config,
    }


# ---------------------------------------------------------------------- #
# GridConfig
# ---------------------------------------------------------------------- #
def test_grid_config_defaults():
    config = GridConfig()

    assert config.num_positions == 24
    assert config.take_profit_percent == Decimal("8")
    assert config.max_active_positions == 4
    assert config.profit_gate_mode == "strict"
    assert config.moon_bag_enabled is True
    assert config.floor_price is None and config.ceiling_price is None


def test_grid_config_is_frozen():
    config = GridConfig()
    with pytest.raises(ValidationError):
        config.num_positions = 3


def test_floats_become_exact_decimals():
    config = GridConfig(take_profit_percent=8.1, floor_price=0.0001, ceiling_price=0.001)

    assert config.take_profit_percent == Decimal("8.1")
    assert config.floor_price == Decimal("0.0001")


@pytest.mark.parametrize(
    "overrides",
    [
        {"num_positions": 0},
        {"floor_price": Decimal("1")},
        {"floor_price": Decimal("2"), "ceiling_price": Decimal("1")},
        {"floor_price": Decimal("-1"), "ceiling_price": Decimal("1")},
        {"use_fixed_buy_amount": True, "buy_amount": Decimal("0")},
        {"moon_bag_percent": Decimal("60")},
        {"profit_gate_mode": "aggressive"},
        {"min_price_confidence": 1.5},
        {"max_consecutive_errors": 0},
        {"heartbeat_ms": 10},
        {"unknown_field": True},
    ],
)
def test_invalid_grid_configs(overrides):
    with pytest.raises(ValidationError):
        GridConfig(**overrides)


def test_gate_mode_is_case_insensitive():
    assert GridConfig(profit_gate_mode="LEGACY").profit_gate_mode == "legacy"


# ---------------------------------------------------------------------- #
# YAML bot definitions
# ---------------------------------------------------------------------- #
def test_save_and_load_yaml(tmp_path):
    path = tmp_path / "bots.yml"
    save_config_to_yaml(
        [bot_definition(num_positions=12, take_profit_percent=Decimal("6.5"))],
        path,
        circuit_breaker={"max_daily_loss_percent": Decimal("7.5")},
    )

    loaded = load_config_from_yaml(path)

    assert loaded["strategy"] == "grid"
    assert loaded["circuit_breaker"]["max_daily_loss_percent"] == Decimal("7.5")
    assert loaded["trailing_stop"] == {}
    bot = loaded["bots"][0]
    assert bot["config"]["take_profit_percent"] == Decimal("6.5")
    assert isinstance(bot["config"]["take_profit_percent"], Decimal)
    assert loaded["metadata"]["version"] == "1.0"


def test_build_bot_states(tmp_path):
    path = tmp_path / "bots.yml"
    definitions = [bot_definition("a", num_positions=5), bot_definition("b")]
    definitions[1]["chain"] = "Arbitrum"
    definitions[1]["wallet_address"] = "0xabc"
    save_config_to_yaml(definitions, path)

    states = build_bot_states(load_config_from_yaml(path), default_chain="base")

    assert [s.id for s in states] == ["a", "b"]
    assert states[0].chain == "base"
    assert states[0].config.num_positions == 5
    assert states[1].chain == "arbitrum"
    assert states[1].wallet_address == "0xabc"
    assert all(s.positions == [] and not s.is_running for s in states)


@pytest.mark.parametrize(
    "content,message",
    [
        ("- just\n- a list\n", "must be a YAML dictionary"),
        ("bots: []\n", "missing 'strategy'"),
        ("strategy: funding_arbitrage\nbots: []\n", "unknown strategy"),
        ("strategy: grid\nbots: []\n", "non-empty list"),
        ("strategy: grid\nbots:\n  - id: x\n    name: x\n", "missing token_address, token_symbol"),
    ],
)
def test_structural_errors(tmp_path, content, message):
    path = tmp_path / "bad.yml"
    path.write_text(content)

    with pytest.raises(ValueError, match=message):
        load_config_from_yaml(path)


def test_duplicate_bot_ids_rejected(tmp_path):
    path = tmp_path / "dup.yml"
    save_config_to_yaml([bot_definition("same"), bot_definition("same")], path)

    valid, error = validate_config_file(path)

    assert not valid
    assert "duplicate bot ids same" in error


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config_from_yaml("/nonexistent/bots.yml")
    valid, error = validate_config_file("/nonexistent/bots.yml")
    assert not valid
    assert "not found" in error


def test_validate_reports_bad_bot_config(tmp_path):
    path = tmp_path / "bots.yml"
    save_config_to_yaml([bot_definition("ok"), bot_definition("broken", num_positions=0)], path)

    valid, error = validate_config_file(path)

    assert not valid
    assert "Bot 'broken'" in error
    assert "Bot 'ok'" not in error


def test_validate_reports_bad_circuit_breaker(tmp_path):
    path = tmp_path / "bots.yml"
    save_config_to_yaml([bot_definition()], path, circuit_breaker={"cooldown_minutes": -5})

    valid, _ = validate_config_file(path)

    assert not valid


def test_example_config_is_valid(tmp_path):
    path = create_example_config(tmp_path / "configs" / "example.yml")

    assert validate_config_file(path) == (True, None)
    states = build_bot_states(load_config_from_yaml(path))
    assert states[0].config.use_fixed_buy_amount


# ---------------------------------------------------------------------- #
# Settings
# ---------------------------------------------------------------------- #
def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("CHAIN", "Base")
    monkeypatch.setenv("ZEROX_API_KEY", "key-123")
    monkeypatch.setenv("HEARTBEAT_MS", "250")
    monkeypatch.setenv("NOTIFICATION_ALERT_LEVEL", "Errors-Only")

    settings = Settings(_env_file=None)

    assert settings.chain == "base"
    assert settings.zerox_api_key == "key-123"
    assert settings.heartbeat_ms == 250
    assert settings.notification_alert_level == "errors-only"


@pytest.mark.parametrize("name,value", [("HEARTBEAT_MS", "10"), ("NOTIFICATION_ALERT_LEVEL", "loud")])
def test_invalid_settings(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
