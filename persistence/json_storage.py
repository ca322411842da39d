"""
JSON file persistence for strategy state and the circuit breaker.

Layout of the storage file::

    {
      "strategies": {"<strategy id>": {...GridBotState.to_dict()...}},
      "circuit_breaker": {...CircuitBreakerState.to_dict()...}
    }

Writes go to a temporary file that atomically replaces the original. All
file I/O runs in a worker thread and is serialized by one asyncio lock.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from helpers.unified_logger import get_client_logger
from strategies.implementations.grid.models import GridBotState


def _empty_document() -> Dict[str, Any]:
    return {"strategies": {}, "circuit_breaker": None}


class JsonStorage:
    """Async JSON document store for grid bot state."""

    def __init__(self, path: os.PathLike | str = "grid_bots.json") -> None:
        self.path = Path(path)
        self.logger = get_client_logger("json_storage", file=self.path.name)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # File primitives (run in worker threads)
    # ------------------------------------------------------------------ #
    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            return _empty_document()
        with self.path.open("r", encoding="utf-8") as handle:
            document = json.load(handle)
        document.setdefault("strategies", {})
        document.setdefault("circuit_breaker", None)
        return document

    def _write_document(self, document: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(document, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, self.path)

    async def _load(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self._read_document)

    async def _store(self, document: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_document, document)

    # ------------------------------------------------------------------ #
    # Strategies
    # ------------------------------------------------------------------ #
    async def save_strategy_state(self, state: GridBotState) -> None:
        """Insert or replace one strategy's state."""
        async with self._lock:
            document = await self._load()
            document["strategies"][state.id] = state.to_dict()
            await self._store(document)

    async def load_all_strategies(self) -> List[GridBotState]:
        async with self._lock:
            document = await self._load()

        states: List[GridBotState] = []
        for strategy_id, raw in document["strategies"].items():
            try:
                states.append(GridBotState.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                self.logger.log(f"Skipping unreadable strategy '{strategy_id}': {exc}", "ERROR")
        return states

    async def load_strategy(self, strategy_id: str) -> Optional[GridBotState]:
        async with self._lock:
            document = await self._load()
        raw = document["strategies"].get(strategy_id)
        return GridBotState.from_dict(raw) if raw else None

    async def delete_strategy(self, strategy_id: str) -> bool:
        async with self._lock:
            document = await self._load()
            removed = document["strategies"].pop(strategy_id, None) is not None
            if removed:
                await self._store(document)
        return removed

    # ------------------------------------------------------------------ #
    # Circuit breaker
    # ------------------------------------------------------------------ #
    async def load_circuit_breaker_state(self) -> Optional[Dict[str, Any]]:
        async with self._lock:
            document = await self._load()
        return document.get("circuit_breaker")

    async def save_circuit_breaker_state(self, state: Dict[str, Any]) -> None:
        async with self._lock:
            document = await self._load()
            document["circuit_breaker"] = dict(state)
            await self._store(document)

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #
    async def get_global_stats(self) -> Dict[str, Any]:
        states = await self.load_all_strategies()
        return {
            "total_strategies": len(states),
            "running_strategies": sum(1 for s in states if s.is_running),
            "total_profit_eth": sum(s.total_profit_eth for s in states),
            "total_trades": sum(s.total_buys + s.total_sells for s in states),
        }
