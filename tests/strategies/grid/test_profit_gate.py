from decimal import Decimal

from strategies.implementations.grid.profit_gate import ProfitGateMode, evaluate_profit_gate


def test_strict_gate_example_passes():
    result = evaluate_profit_gate(
        proceeds=1_100_000_000_000_000,
        entry_cost=10**15,
        gas_cost=10**13,
    )

    assert result.passed
    assert result.mode is ProfitGateMode.STRICT
    assert result.required_proceeds == 1_030_200_000_000_000
    assert result.expected_profit == 90_000_000_000_000


def test_strict_gate_boundary_is_inclusive():
    required = (10**15 + 10**13) * 102 // 100
    assert evaluate_profit_gate(required, 10**15, 10**13).passed
    assert not evaluate_profit_gate(required - 1, 10**15, 10**13).passed


def test_strict_gate_ignores_min_profit_percent():
    # 1.5% over cost+gas: fails strict even though min_profit_percent is 1.
    proceeds = (10**15 + 10**13) * 1015 // 1000
    result = evaluate_profit_gate(proceeds, 10**15, 10**13, min_profit_percent=Decimal("1"))
    assert not result.passed


def test_legacy_gate_uses_percent_of_cost():
    entry_cost = 10**15
    gas = 10**13
    # profit after gas exactly 2% of cost
    proceeds = entry_cost + gas + entry_cost * 2 // 100

    assert evaluate_profit_gate(proceeds, entry_cost, gas, ProfitGateMode.LEGACY).passed
    assert not evaluate_profit_gate(proceeds - 1, entry_cost, gas, ProfitGateMode.LEGACY).passed


def test_legacy_and_strict_disagree_on_small_costs():
    # Legacy compares profit to cost only; strict also applies the margin to gas.
    entry_cost = 10**15
    gas = 10**15
    proceeds = entry_cost + gas + entry_cost * 2 // 100

    assert evaluate_profit_gate(proceeds, entry_cost, gas, ProfitGateMode.LEGACY).passed
    assert not evaluate_profit_gate(proceeds, entry_cost, gas, ProfitGateMode.STRICT).passed


def test_legacy_gate_fractional_percent():
    entry_cost = 10**16
    result = evaluate_profit_gate(
        entry_cost + entry_cost * 25 // 1000,
        entry_cost,
        0,
        ProfitGateMode.LEGACY,
        min_profit_percent=Decimal("2.5"),
    )
    assert result.passed
    assert result.expected_profit_percent == Decimal("2.5")


def test_describe_mentions_mode_and_verdict():
    text = evaluate_profit_gate(10, 100, 0).describe()
    assert "strict" in text
    assert "failed" in text
