"""
Portfolio circuit breaker.

Watches realized profit/loss across every running grid strategy and blocks
new entries portfolio-wide once the daily or total loss limit is reached.

State machine: ARMED -> TRIGGERED -> (cooldown elapses or manual reset) -> ARMED.
Holding positions are never liquidated by the breaker; only buys are blocked.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field

from helpers.unified_logger import get_risk_logger


class PortfolioEntry(Protocol):
    total_profit_eth: int
    invested_eth: int


class CircuitBreakerConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    max_daily_loss_percent: Decimal = Field(Decimal("10"), gt=0)
    max_total_loss_percent: Decimal = Field(Decimal("20"), gt=0)
    cooldown_minutes: int = Field(60, ge=0)
    auto_reset_at_midnight: bool = True
    check_interval_seconds: int = Field(60, ge=0)


def _utc_date(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()


@dataclass
class CircuitBreakerState:
    """Persisted breaker state. Wei amounts are integers."""
    triggered: bool = False
    triggered_at: Optional[float] = None
    reason: Optional[str] = None
    daily_start_value: int = 0
    daily_loss: int = 0
    total_loss: int = 0
    last_reset_date: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("daily_start_value", "daily_loss", "total_loss"):
            data[key] = str(data[key])
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CircuitBreakerState":
        return cls(
            triggered=bool(data.get("triggered", False)),
            triggered_at=data.get("triggered_at"),
            reason=data.get("reason"),
            daily_start_value=int(data.get("daily_start_value", 0)),
            daily_loss=int(data.get("daily_loss", 0)),
            total_loss=int(data.get("total_loss", 0)),
            last_reset_date=data.get("last_reset_date", ""),
        )


@dataclass(frozen=True)
class CircuitBreakerVerdict:
    triggered: bool
    daily_loss_percent: Decimal
    total_loss_percent: Decimal
    reason: Optional[str] = None
    cached: bool = False

    def to_dict(self) -> dict:
        return {
            "triggered": self.triggered,
            "reason": self.reason,
            "daily_loss_percent": str(self.daily_loss_percent),
            "total_loss_percent": str(self.total_loss_percent),
            "cached": self.cached,
        }


def loss_percent(loss: int, base: int) -> Decimal:
    """Loss as a percent of ``base``, truncated to basis points."""
    if base <= 0:
        return Decimal("0")
    return Decimal(loss * 10000 // base) / 100


class CircuitBreaker:
    """
    Shared portfolio kill-switch.

    ``check()`` is the only place losses are recomputed and is rate limited to
    one evaluation per ``check_interval_seconds``; calls inside the window
    return the previous verdict. Mutations run under an ``asyncio.Lock`` since
    ticks of different strategies interleave on the event loop.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        storage=None,
        notifier=None,
        clock: Callable[[], float] = time.time,
        logger=None,
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self.storage = storage
        self.notifier = notifier
        self._clock = clock
        self.logger = logger or get_risk_logger("circuit_breaker")

        self.state = CircuitBreakerState(last_reset_date=_utc_date(clock()))
        self._lock = asyncio.Lock()
        self._last_check_time: Optional[float] = None
        self._last_verdict: Optional[CircuitBreakerVerdict] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def initialize(self) -> None:
        """Restore persisted state, then apply the daily reset if the date moved."""
        if self.storage is not None:
            try:
                saved = await self.storage.load_circuit_breaker_state()
            except Exception as exc:
                self.logger.log(f"Failed to load circuit breaker state: {exc}", "WARNING")
                saved = None
            if saved:
                self.state = CircuitBreakerState.from_dict(saved)
                if not self.state.last_reset_date:
                    self.state.last_reset_date = _utc_date(self._clock())
        if await self._apply_daily_reset():
            await self._save_state()

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def is_triggered(self) -> bool:
        """True while triggered and still inside the cooldown window."""
        if not self.state.triggered:
            return False
        return not self._cooldown_elapsed()

    def get_state(self) -> CircuitBreakerState:
        return replace(self.state)

    def get_status(self) -> dict:
        cooldown_remaining: Optional[int] = None
        if self.state.triggered and self.state.triggered_at is not None:
            remaining = max(0.0, self._cooldown_seconds() - (self._clock() - self.state.triggered_at))
            cooldown_remaining = -(-int(remaining) // 60)
        return {
            "enabled": self.config.enabled,
            "triggered": self.state.triggered,
            "reason": self.state.reason,
            "daily_loss_percent": self._daily_percent(),
            "total_loss_percent": self._total_percent(),
            "cooldown_remaining_minutes": cooldown_remaining,
            "config": self.config.model_dump(),
        }

    # ------------------------------------------------------------------ #
    # Evaluation
    # ------------------------------------------------------------------ #
    async def check(self, portfolio: Sequence[PortfolioEntry]) -> CircuitBreakerVerdict:
        """
        Evaluate the portfolio and return whether new entries are blocked.

        Order of evaluation:
        1. daily reset when the UTC date changed
        2. triggered: auto-reset once the cooldown elapsed, else report triggered
        3. rate limit: reuse the last verdict inside the check interval
        4. recompute daily/total loss against the daily start value
        """
        async with self._lock:
            changed = await self._apply_daily_reset()

            if self.state.triggered:
                if self._cooldown_elapsed():
                    self.logger.log("Circuit breaker cooldown elapsed; re-arming", "INFO")
                    await self._reset_locked()
                else:
                    return CircuitBreakerVerdict(
                        triggered=True,
                        reason=self.state.reason or "Circuit breaker active",
                        daily_loss_percent=self._daily_percent(),
                        total_loss_percent=self._total_percent(),
                    )

            if not self.config.enabled:
                if changed:
                    await self._save_state()
                return CircuitBreakerVerdict(
                    triggered=False,
                    daily_loss_percent=Decimal("0"),
                    total_loss_percent=Decimal("0"),
                )

            now = self._clock()
            if (
                self._last_verdict is not None
                and self._last_check_time is not None
                and now - self._last_check_time < self.config.check_interval_seconds
            ):
                return replace(self._last_verdict, cached=True)

            verdict = await self._evaluate(portfolio)
            self._last_check_time = now
            self._last_verdict = verdict
            return verdict

    async def _evaluate(self, portfolio: Sequence[PortfolioEntry]) -> CircuitBreakerVerdict:
        total_profit = sum(entry.total_profit_eth for entry in portfolio)
        total_invested = sum(entry.invested_eth for entry in portfolio)

        if self.state.daily_start_value == 0 and portfolio:
            self.state.daily_start_value = total_profit + total_invested

        if self.state.daily_start_value > 0:
            self.state.daily_loss = -total_profit if total_profit < 0 else 0
            self.state.total_loss = self.state.daily_loss

        daily_pct = self._daily_percent()
        total_pct = self._total_percent()

        if daily_pct >= self.config.max_daily_loss_percent:
            await self._trigger(
                f"Daily loss limit reached: {daily_pct:.2f}% (limit: {self.config.max_daily_loss_percent}%)"
            )
        elif total_pct >= self.config.max_total_loss_percent:
            await self._trigger(
                f"Total loss limit reached: {total_pct:.2f}% (limit: {self.config.max_total_loss_percent}%)"
            )
        else:
            await self._save_state()

        return CircuitBreakerVerdict(
            triggered=self.state.triggered,
            reason=self.state.reason,
            daily_loss_percent=daily_pct,
            total_loss_percent=total_pct,
        )

    # ------------------------------------------------------------------ #
    # Manual control
    # ------------------------------------------------------------------ #
    async def force_trigger(self, reason: str) -> None:
        """Trip the breaker regardless of thresholds."""
        async with self._lock:
            await self._trigger(reason)

    async def reset(self) -> None:
        """Clear trigger state; notifies only when the breaker was tripped."""
        async with self._lock:
            await self._reset_locked()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _trigger(self, reason: str) -> None:
        self.state.triggered = True
        self.state.triggered_at = self._clock()
        self.state.reason = reason
        self._last_verdict = None
        await self._save_state()

        message = (
            f"CIRCUIT BREAKER TRIGGERED: {reason}. New entries are blocked for "
            f"{self.config.cooldown_minutes} minutes."
        )
        self.logger.log(message, "CRITICAL")
        self._notify(
            "circuit_breaker_triggered",
            "CRITICAL",
            message,
            reason=reason,
            cooldown_minutes=self.config.cooldown_minutes,
            daily_loss_percent=str(self._daily_percent()),
            total_loss_percent=str(self._total_percent()),
        )

    async def _reset_locked(self) -> None:
        was_triggered = self.state.triggered
        self.state.triggered = False
        self.state.triggered_at = None
        self.state.reason = None
        self.state.daily_loss = 0
        self.state.total_loss = 0
        self.state.daily_start_value = 0
        self._last_verdict = None
        self._last_check_time = None
        await self._save_state()

        if was_triggered:
            message = "Circuit breaker has been reset. Trading can resume."
            self.logger.log(message, "WARNING")
            self._notify("circuit_breaker_reset", "WARNING", message)

    async def _apply_daily_reset(self) -> bool:
        if not self.config.auto_reset_at_midnight:
            return False
        today = _utc_date(self._clock())
        if self.state.last_reset_date == today:
            return False
        self.logger.log(f"New trading day {today}; resetting daily loss", "INFO")
        self.state.daily_loss = 0
        self.state.daily_start_value = 0
        self.state.last_reset_date = today
        return True

    def _cooldown_seconds(self) -> float:
        return self.config.cooldown_minutes * 60

    def _cooldown_elapsed(self) -> bool:
        if self.state.triggered_at is None:
            return False
        return self._clock() - self.state.triggered_at >= self._cooldown_seconds()

    def _daily_percent(self) -> Decimal:
        return loss_percent(self.state.daily_loss, self.state.daily_start_value)

    def _total_percent(self) -> Decimal:
        return loss_percent(self.state.total_loss, self.state.daily_start_value)

    async def _save_state(self) -> None:
        if self.storage is None:
            return
        try:
            await self.storage.save_circuit_breaker_state(self.state.to_dict())
        except Exception as exc:
            self.logger.log(f"Failed to persist circuit breaker state: {exc}", "ERROR")

    def _notify(self, event_type: str, level: str, message: str, **payload: Any) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(event_type=event_type, level=level, message=message, payload=payload)
        except Exception as exc:
            self.logger.log(f"Circuit breaker notification failed: {exc}", "WARNING")
