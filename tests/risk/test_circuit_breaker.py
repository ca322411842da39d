from datetime import datetime, timezone
from decimal import Decimal

import pytest

from risk.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, loss_percent
from strategies.implementations.grid.models import PortfolioSnapshot

from stubs import RecordingNotifier, StubStorage


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start.timestamp()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def noon() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


def snapshot(profit: int, invested: int = 0) -> PortfolioSnapshot:
    return PortfolioSnapshot(strategy_id="bot-1", total_profit_eth=profit, invested_eth=invested)


@pytest.mark.asyncio
async def test_daily_loss_limit_triggers():
    notifier = RecordingNotifier()
    breaker = CircuitBreaker(clock=noon(), notifier=notifier)
    breaker.state.daily_start_value = 10**18

    verdict = await breaker.check([snapshot(-11 * 10**16)])

    assert verdict.triggered
    assert verdict.daily_loss_percent == Decimal("11")
    assert "Daily loss limit reached" in verdict.reason
    assert breaker.is_triggered()
    assert notifier.of_type("circuit_breaker_triggered")[0]["level"] == "CRITICAL"


@pytest.mark.asyncio
async def test_loss_below_limit_keeps_breaker_armed():
    breaker = CircuitBreaker(clock=noon())
    breaker.state.daily_start_value = 10**18

    verdict = await breaker.check([snapshot(-5 * 10**16)])

    assert not verdict.triggered
    assert verdict.daily_loss_percent == Decimal("5")
    assert not breaker.is_triggered()


@pytest.mark.asyncio
async def test_first_check_sets_daily_start_value():
    breaker = CircuitBreaker(clock=noon())

    await breaker.check([snapshot(2 * 10**16, 10**18), snapshot(0, 5 * 10**17)])

    assert breaker.state.daily_start_value == 152 * 10**16


@pytest.mark.asyncio
async def test_checks_inside_interval_reuse_last_verdict():
    clock = noon()
    breaker = CircuitBreaker(CircuitBreakerConfig(check_interval_seconds=60), clock=clock)

    first = await breaker.check([snapshot(0, 10**18)])
    cached = await breaker.check([snapshot(-5 * 10**17, 10**18)])

    assert not first.triggered
    assert cached.cached
    assert not cached.triggered

    clock.advance(61)
    fresh = await breaker.check([snapshot(-5 * 10**17, 10**18)])
    assert fresh.triggered
    assert not fresh.cached


@pytest.mark.asyncio
async def test_repeated_checks_while_triggered_are_stable():
    breaker = CircuitBreaker(clock=noon())
    await breaker.force_trigger("manual halt")

    verdicts = [await breaker.check([snapshot(0)]) for _ in range(3)]

    assert all(v.triggered and v.reason == "manual halt" for v in verdicts)


@pytest.mark.asyncio
async def test_cooldown_rearms_breaker():
    clock = noon()
    notifier = RecordingNotifier()
    breaker = CircuitBreaker(CircuitBreakerConfig(cooldown_minutes=60), clock=clock, notifier=notifier)
    await breaker.force_trigger("manual halt")

    clock.advance(59 * 60)
    assert breaker.is_triggered()
    assert breaker.get_status()["cooldown_remaining_minutes"] == 1

    clock.advance(60)
    assert not breaker.is_triggered()
    verdict = await breaker.check([snapshot(0, 10**18)])

    assert not verdict.triggered
    assert not breaker.state.triggered
    assert notifier.of_type("circuit_breaker_reset")


@pytest.mark.asyncio
async def test_manual_reset_clears_state():
    notifier = RecordingNotifier()
    breaker = CircuitBreaker(clock=noon(), notifier=notifier)
    breaker.state.daily_start_value = 10**18
    await breaker.check([snapshot(-2 * 10**17)])
    assert breaker.is_triggered()

    await breaker.reset()

    state = breaker.get_state()
    assert not state.triggered
    assert state.reason is None
    assert state.daily_loss == 0
    assert state.daily_start_value == 0
    assert len(notifier.of_type("circuit_breaker_reset")) == 1


@pytest.mark.asyncio
async def test_reset_when_armed_does_not_notify():
    notifier = RecordingNotifier()
    breaker = CircuitBreaker(clock=noon(), notifier=notifier)

    await breaker.reset()

    assert notifier.events == []


@pytest.mark.asyncio
async def test_new_utc_day_rebases_daily_start():
    clock = noon()
    breaker = CircuitBreaker(CircuitBreakerConfig(check_interval_seconds=0), clock=clock)
    await breaker.check([snapshot(-5 * 10**16, 10**18)])
    assert breaker.state.daily_start_value == 95 * 10**16

    clock.advance(24 * 3600)
    await breaker.check([snapshot(-5 * 10**16, 2 * 10**18)])

    assert breaker.state.last_reset_date == "2026-03-03"
    assert breaker.state.daily_start_value == 195 * 10**16


@pytest.mark.asyncio
async def test_disabled_breaker_never_trips_on_losses():
    breaker = CircuitBreaker(CircuitBreakerConfig(enabled=False), clock=noon())
    breaker.state.daily_start_value = 10**18

    verdict = await breaker.check([snapshot(-9 * 10**17)])

    assert not verdict.triggered


@pytest.mark.asyncio
async def test_state_survives_restart():
    clock = noon()
    storage = StubStorage()
    breaker = CircuitBreaker(clock=clock, storage=storage)
    await breaker.force_trigger("manual halt")
    assert storage.circuit_breaker["triggered"] is True

    restored = CircuitBreaker(clock=clock, storage=storage)
    await restored.initialize()

    assert restored.is_triggered()
    assert restored.state.reason == "manual halt"


def test_loss_percent_truncates_to_basis_points():
    assert loss_percent(1, 3) == Decimal("33.33")
    assert loss_percent(5, 0) == Decimal("0")
