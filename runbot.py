#!/usr/bin/env python3
"""
Grid Trading Bot - Config-driven launcher.

Usage:
    python runbot.py --config configs/bots.yml [--env-file .env] --dry-run
    python runbot.py --config configs/bots.yml --chain-client mypkg.chain:Web3ChainClient

Generate an example config via:
    python -m trading_config.config_yaml
"""

import argparse
import asyncio
import importlib
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import dotenv
from pydantic import ValidationError

from clients.base import BaseChainClient
from clients.base_models import MissingCredentialsError
from clients.dry_run import DryRunChainClient
from helpers.status_table import print_status
from persistence import JsonStorage
from strategies.implementations.grid.strategy import state_stats
from trading_bot import ChainClientFactory, TradingBot
from trading_config.config_yaml import load_config_from_yaml, validate_config_file
from trading_config.settings import Settings


def parse_arguments(argv=None):
    """Parse command line arguments (config-only workflow)."""
    parser = argparse.ArgumentParser(
        description="Run grid trading bots from a YAML bot definition file."
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to the YAML file defining the bots (required unless --status).",
    )

    parser.add_argument(
        "--env-file",
        type=str,
        default=".env",
        help="Path to the environment file with API keys (default: .env).",
    )

    parser.add_argument(
        "--log-level",
        "-l",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL from the environment, else INFO).",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulate transactions instead of submitting them (quotes are still live).",
    )

    parser.add_argument(
        "--chain-client",
        type=str,
        default=None,
        help="Chain client implementation as 'module:Class'; required for live trading. "
             "It is constructed with rpc_url= and wallet_address= keyword arguments.",
    )

    parser.add_argument(
        "--status",
        action="store_true",
        help="Print the persisted bot status and exit.",
    )

    parser.add_argument(
        "--liquidate",
        action="store_true",
        help="Sell every HOLDING position of every bot (profit gate still applies) and exit.",
    )

    return parser.parse_args(argv)


def setup_logging(log_level: str):
    """Quiet standard-library loggers of dependencies; UnifiedLogger handles its own output."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.getLogger().setLevel(level)

    # Always suppress noisy library debug logs (even in DEBUG mode)
    for name in ("httpx", "httpcore", "urllib3", "requests", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)


def load_chain_client_class(spec: str) -> type:
    """Import ``module:Class`` and check it implements ``BaseChainClient``."""
    module_name, _, class_name = spec.partition(":")
    if not module_name or not class_name:
        raise ValueError(f"Chain client must be given as 'module:Class', got '{spec}'")

    module = importlib.import_module(module_name)
    cls = getattr(module, class_name, None)
    if cls is None:
        raise ValueError(f"Module '{module_name}' has no attribute '{class_name}'")
    if not (isinstance(cls, type) and issubclass(cls, BaseChainClient)):
        raise ValueError(f"{spec} is not a BaseChainClient implementation")
    return cls


def check_credentials(settings: Settings) -> None:
    """Quotes need a 0x API key in every mode."""
    if not settings.zerox_api_key:
        raise MissingCredentialsError("ZEROX_API_KEY is not set")


def build_chain_client_factory(dry_run: bool, chain_client: Optional[str], rpc_url: str) -> ChainClientFactory:
    if dry_run:
        return lambda state: DryRunChainClient(state.wallet_address)

    if not chain_client:
        raise MissingCredentialsError("Live trading requires --chain-client module:Class (or use --dry-run)")

    cls = load_chain_client_class(chain_client)
    return lambda state: cls(rpc_url=rpc_url, wallet_address=state.wallet_address)


async def show_status(storage_path: str, heartbeat_ms: int) -> None:
    storage = JsonStorage(storage_path)
    states = await storage.load_all_strategies()
    stats = await storage.get_global_stats()
    print_status(
        {
            "is_running": False,
            "heartbeat_ms": heartbeat_ms,
            "total_strategies": len(states),
            "strategies": [state_stats(state) for state in states],
        }
    )
    print(
        f"Bots: {stats.get('total_strategies', 0)}  "
        f"Total profit: {stats.get('total_profit_eth', 0)} wei"
    )


async def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    elif args.env_file != ".env":
        print(f"Env file not found: {env_path.resolve()}")
        sys.exit(1)

    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level

    try:
        settings = Settings()
    except ValidationError as exc:
        print(f"Error: Invalid settings: {exc}")
        sys.exit(1)
    if args.dry_run:
        settings = settings.model_copy(update={"dry_run": True})
    setup_logging(os.environ.get("LOG_LEVEL", settings.log_level))

    if args.status:
        await show_status(settings.storage_path, settings.heartbeat_ms)
        return

    if not args.config:
        print("Error: --config is required")
        sys.exit(1)

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}")
        sys.exit(1)

    is_valid, error = validate_config_file(config_path)
    if not is_valid:
        print(f"Error: Invalid config file: {error}")
        sys.exit(1)

    loaded = load_config_from_yaml(config_path)
    print(f"\n✓ Loaded configuration from: {config_path}")
    print(f"  Bots: {', '.join(bot['name'] for bot in loaded['bots'])}")
    print(f"  Created: {loaded['metadata'].get('created_at', 'unknown')}\n")

    try:
        check_credentials(settings)
        factory = build_chain_client_factory(settings.dry_run, args.chain_client, settings.rpc_url)
    except (ImportError, ValueError, MissingCredentialsError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    print("=" * 70)
    print("  Starting Grid Trading Bot")
    print("=" * 70)
    print(f"  Chain:     {settings.chain}")
    print(f"  Mode:      {'DRY RUN' if settings.dry_run else 'LIVE'}")
    print(f"  Heartbeat: {settings.heartbeat_ms}ms")
    print(f"  Storage:   {settings.storage_path}")
    print("=" * 70 + "\n")

    bot = TradingBot(settings, loaded, chain_client_factory=factory)

    if args.liquidate:
        try:
            reports = await bot.liquidate_all()
        finally:
            await bot.graceful_shutdown("Liquidation finished")
        for bot_id, report in reports.items():
            print(
                f"{bot_id}: {report.success} sold, {report.failed} failed, "
                f"profit {report.total_profit_eth} wei"
            )
        return

    try:
        await bot.run()
    except Exception as e:
        print(f"Bot execution failed: {e}")
        return
    print_status(bot.get_status())


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
