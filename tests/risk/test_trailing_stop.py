from decimal import Decimal

import pytest
from pydantic import ValidationError

from risk.trailing_stop import TrailingStopConfig, TrailingStopTracker
from strategies.implementations.grid.models import GridPosition, PositionStatus


def held_position(position_id: int = 0, stop_loss: str = "0") -> GridPosition:
    return GridPosition(
        id=position_id,
        buy_min=Decimal("0.000001"),
        buy_max=Decimal("0.0000012"),
        sell_price=Decimal("0.000001296"),
        stop_loss_price=Decimal(stop_loss),
        status=PositionStatus.HOLDING,
    )


def tracker(**config) -> TrailingStopTracker:
    params = dict(trailing_percent=Decimal("5"), activation_percent=Decimal("3"))
    params.update(config)
    return TrailingStopTracker(TrailingStopConfig(**params), clock=lambda: 1000.0)


def test_stop_arms_ratchets_and_triggers():
    stops = tracker()
    position = held_position()

    first = stops.update(position, Decimal("0.0000015"))
    assert first.activated
    assert first.profit_percent == Decimal("25")
    assert first.stop_price == Decimal("0.000001425")
    assert not first.triggered

    second = stops.update(position, Decimal("0.0000020"))
    assert second.stop_price == Decimal("0.0000019")
    assert not second.triggered

    third = stops.update(position, Decimal("0.00000188"))
    assert third.triggered


def test_stop_never_moves_down():
    stops = tracker()
    position = held_position()
    stops.update(position, Decimal("0.0000020"))

    observed = []
    for price in ("0.00000195", "0.0000021", "0.00000199", "0.00000205"):
        observed.append(stops.update(position, Decimal(price)).stop_price)

    assert observed == sorted(observed)
    assert observed[-1] == Decimal("0.0000021") * Decimal("0.95")


def test_inactive_stop_does_not_trigger():
    stops = tracker()
    position = held_position()

    small_gain = stops.update(position, Decimal("0.00000122"))
    crash = stops.update(position, Decimal("0.0000005"))

    assert not small_gain.activated
    assert not crash.activated
    assert not crash.triggered


def test_activation_is_one_way():
    stops = tracker()
    position = held_position()
    stops.update(position, Decimal("0.0000013"))

    update = stops.update(position, Decimal("0.00000121"))

    assert update.activated
    assert stops.get_state(0).activated_at == 1000.0


def test_initial_stop_uses_position_stop_loss_when_set():
    stops = tracker()

    with_stop = stops.initialize_position(held_position(0, stop_loss="0.00000095"))
    default = stops.initialize_position(held_position(1))

    assert with_stop.current_stop_price == Decimal("0.00000095")
    assert default.current_stop_price == Decimal("0.000001") * Decimal("0.9")
    assert default.highest_price == Decimal("0.0000012")


def test_dynamic_step_widens_trail_with_profit():
    stops = tracker(use_dynamic_step=True, step_levels=[(10, 3), (20, 8)])
    position = held_position()

    low = stops.update(position, Decimal("0.00000135"))
    assert low.stop_price == Decimal("0.00000135") * Decimal("0.97")

    high = stops.update(position, Decimal("0.0000015"))
    assert high.stop_price == Decimal("0.0000015") * Decimal("0.92")


def test_serialize_restores_state():
    stops = tracker()
    stops.update(held_position(0), Decimal("0.0000015"))
    stops.update(held_position(3), Decimal("0.0000012"))

    data = stops.serialize()
    restored = tracker()
    restored.deserialize(data)

    assert set(data) == {"0", "3"}
    assert len(restored) == 2
    assert restored.get_state(0).current_stop_price == Decimal("0.000001425")
    assert restored.get_state(0).activated
    assert not restored.get_state(3).activated


def test_remove_and_reset():
    stops = tracker()
    stops.update(held_position(0), Decimal("0.0000015"))
    stops.update(held_position(1), Decimal("0.0000015"))

    stops.remove_position(0)
    assert stops.get_state(0) is None
    assert stops.get_summary(1)["activated"] is True

    stops.reset()
    assert len(stops) == 0
    assert stops.get_summary(1) is None


def test_trailing_percent_bounds():
    with pytest.raises(ValidationError):
        TrailingStopConfig(trailing_percent=Decimal("0"))
    with pytest.raises(ValidationError):
        TrailingStopConfig(trailing_percent=Decimal("100"))
