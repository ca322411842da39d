"""
YAML Configuration File Support

Handles loading and saving grid bot definitions to/from YAML files.

Features:
- Load bot definitions from YAML
- Save bot definitions to YAML
- Validation against the grid, circuit breaker and trailing stop schemas
- Decimal/datetime serialization
"""

import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple
from decimal import Decimal
from datetime import datetime

from pydantic import ValidationError

from risk.circuit_breaker import CircuitBreakerConfig
from risk.trailing_stop import TrailingStopConfig
from strategies.implementations.grid.config import GridConfig
from strategies.implementations.grid.models import GridBotState


SUPPORTED_STRATEGIES = ("grid",)
REQUIRED_BOT_FIELDS = ("id", "name", "token_address", "token_symbol")


# ============================================================================
# YAML Custom Representers (for Decimal serialization)
# ============================================================================

class DecimalSafeLoader(yaml.SafeLoader):
    """Safe loader that reads YAML floats as ``Decimal``."""


class DecimalSafeDumper(yaml.SafeDumper):
    """Safe dumper that writes ``Decimal`` as YAML floats."""


def decimal_representer(dumper, data):
    """Custom representer for Decimal type."""
    return dumper.represent_scalar('tag:yaml.org,2002:float', str(data))


def decimal_constructor(loader, node):
    """Custom constructor for Decimal type."""
    value = loader.construct_scalar(node)
    return Decimal(value)


DecimalSafeDumper.add_representer(Decimal, decimal_representer)
DecimalSafeLoader.add_constructor('tag:yaml.org,2002:float', decimal_constructor)


# ============================================================================
# YAML Config Operations
# ============================================================================

def save_config_to_yaml(
    bots: List[Dict[str, Any]],
    file_path: Path,
    circuit_breaker: Optional[Dict[str, Any]] = None,
    trailing_stop: Optional[Dict[str, Any]] = None,
    strategy_name: str = "grid",
) -> None:
    """
    Save bot definitions to a YAML file.

    Args:
        bots: Bot definition dictionaries (``id``, ``name``, ``token_address``,
            ``token_symbol``, ``chain``, ``wallet_address``, ``config``)
        file_path: Path to save to
        circuit_breaker: Optional shared circuit breaker section
        trailing_stop: Optional trailing stop section
        strategy_name: Name of the strategy
    """
    full_config: Dict[str, Any] = {
        "strategy": strategy_name,
        "created_at": datetime.now().isoformat(),
        "version": "1.0",
    }
    if circuit_breaker is not None:
        full_config["circuit_breaker"] = circuit_breaker
    if trailing_stop is not None:
        full_config["trailing_stop"] = trailing_stop
    full_config["bots"] = bots

    with open(file_path, 'w') as f:
        yaml.dump(
            full_config,
            f,
            Dumper=DecimalSafeDumper,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
            indent=2
        )


def load_config_from_yaml(file_path: Path) -> Dict[str, Any]:
    """
    Load bot definitions from a YAML file.

    Args:
        file_path: Path to config file

    Returns:
        Dictionary with 'strategy', 'circuit_breaker', 'trailing_stop',
        'bots' and 'metadata' keys

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If config structure is invalid
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r') as f:
        full_config = yaml.load(f, Loader=DecimalSafeLoader)

    if not isinstance(full_config, dict):
        raise ValueError("Invalid config file: must be a YAML dictionary")

    strategy = full_config.get("strategy")
    if strategy is None:
        raise ValueError("Invalid config file: missing 'strategy' field")
    if strategy not in SUPPORTED_STRATEGIES:
        raise ValueError(f"Invalid config file: unknown strategy '{strategy}'")

    bots = full_config.get("bots")
    if not isinstance(bots, list) or not bots:
        raise ValueError("Invalid config file: 'bots' must be a non-empty list")

    for index, bot in enumerate(bots):
        if not isinstance(bot, dict):
            raise ValueError(f"Invalid config file: bot #{index} must be a mapping")
        missing = [field for field in REQUIRED_BOT_FIELDS if not bot.get(field)]
        if missing:
            raise ValueError(f"Invalid config file: bot #{index} missing {', '.join(missing)}")

    ids = [str(bot["id"]) for bot in bots]
    duplicates = sorted({bot_id for bot_id in ids if ids.count(bot_id) > 1})
    if duplicates:
        raise ValueError(f"Invalid config file: duplicate bot ids {', '.join(duplicates)}")

    return {
        "strategy": strategy,
        "circuit_breaker": full_config.get("circuit_breaker") or {},
        "trailing_stop": full_config.get("trailing_stop") or {},
        "bots": bots,
        "metadata": {
            "created_at": full_config.get("created_at"),
            "version": full_config.get("version", "1.0")
        }
    }


def build_bot_states(loaded: Dict[str, Any], default_chain: str = "base") -> List[GridBotState]:
    """
    Turn loaded bot definitions into fresh ``GridBotState`` objects.

    Raises:
        pydantic.ValidationError: a bot's ``config`` mapping is invalid
    """
    states = []
    for bot in loaded["bots"]:
        states.append(
            GridBotState(
                id=str(bot["id"]),
                name=str(bot["name"]),
                token_address=str(bot["token_address"]),
                token_symbol=str(bot["token_symbol"]),
                chain=str(bot.get("chain") or default_chain).lower(),
                wallet_address=str(bot.get("wallet_address") or ""),
                config=GridConfig(**(bot.get("config") or {})),
            )
        )
    return states


def validate_config_file(file_path: Path) -> Tuple[bool, Optional[str]]:
    """
    Validate a config file against the grid schemas.

    Args:
        file_path: Path to config file

    Returns:
        (is_valid, error_message)
    """
    try:
        loaded = load_config_from_yaml(file_path)
        CircuitBreakerConfig(**loaded["circuit_breaker"])
        TrailingStopConfig(**loaded["trailing_stop"])

        errors = []
        for bot in loaded["bots"]:
            try:
                GridConfig(**(bot.get("config") or {}))
            except ValidationError as exc:
                errors.append(f"Bot '{bot['id']}': {exc}")
        if errors:
            return False, "\n".join(errors)

        return True, None

    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        return False, str(e)


def create_example_config(file_path: Path = Path("configs/example_grid.yml")) -> Path:
    """
    Write an example bot definition file.

    Useful for users to see the format and get started quickly.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    save_config_to_yaml(
        bots=[
            {
                "id": "degen-grid",
                "name": "DEGEN grid",
                "token_address": "0x4ed4E862860beD51a9570b96d89aF5E1B0Efefed",
                "token_symbol": "DEGEN",
                "chain": "base",
                "wallet_address": "0x0000000000000000000000000000000000000000",
                "config": {
                    "num_positions": 24,
                    "take_profit_percent": Decimal("8"),
                    "max_active_positions": 4,
                    "use_fixed_buy_amount": True,
                    "buy_amount": Decimal("0.001"),
                    "moon_bag_percent": Decimal("1"),
                    "profit_gate_mode": "strict",
                    "skip_heartbeats": 0,
                },
            }
        ],
        file_path=file_path,
        circuit_breaker={
            "enabled": True,
            "max_daily_loss_percent": Decimal("10"),
            "max_total_loss_percent": Decimal("20"),
            "cooldown_minutes": 60,
        },
        trailing_stop={
            "trailing_percent": Decimal("5"),
            "activation_percent": Decimal("3"),
        },
    )
    return file_path


# ============================================================================
# Main Entry Point (for example generation)
# ============================================================================

if __name__ == "__main__":
    path = create_example_config()
    print(f"Created: {path}")
    print("\nUse it as a template:")
    print(f"  python runbot.py --config {path} --dry-run")
