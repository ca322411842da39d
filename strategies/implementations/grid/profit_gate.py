"""
Sell profitability gate.

Two named rules decide whether a sell quote is worth executing:

- ``STRICT``: ``proceeds >= (entry_cost + gas_cost) * 1.02``
- ``LEGACY``: ``proceeds - gas_cost - entry_cost >= entry_cost * min_profit_percent / 100``

All amounts are wei integers; the comparisons are exact.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


STRICT_MARGIN_PERCENT = 2


class ProfitGateMode(Enum):
    STRICT = "strict"
    LEGACY = "legacy"


@dataclass(frozen=True)
class ProfitGateResult:
    passed: bool
    mode: ProfitGateMode
    proceeds: int
    entry_cost: int
    gas_cost: int
    required_proceeds: int

    @property
    def expected_profit(self) -> int:
        return self.proceeds - self.gas_cost - self.entry_cost

    @property
    def expected_profit_percent(self) -> Decimal:
        if self.entry_cost <= 0:
            return Decimal("0")
        return Decimal(self.expected_profit * 10000 // self.entry_cost) / 100

    def describe(self) -> str:
        verdict = "passed" if self.passed else "failed"
        return (
            f"{self.mode.value} profit gate {verdict}: proceeds={self.proceeds} "
            f"required>={self.required_proceeds} (cost={self.entry_cost}, gas={self.gas_cost})"
        )


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def evaluate_profit_gate(
    proceeds: int,
    entry_cost: int,
    gas_cost: int,
    mode: ProfitGateMode = ProfitGateMode.STRICT,
    min_profit_percent: Decimal = Decimal("2"),
) -> ProfitGateResult:
    """Check a sell quote against the selected profitability rule."""
    if mode == ProfitGateMode.STRICT:
        # proceeds * 100 >= (cost + gas) * 102
        passed = proceeds * 100 >= (entry_cost + gas_cost) * (100 + STRICT_MARGIN_PERCENT)
        required = _ceil_div((entry_cost + gas_cost) * (100 + STRICT_MARGIN_PERCENT), 100)
    else:
        # Fractional percents are scaled to basis points to stay in integers.
        min_bps = int(Decimal(min_profit_percent) * 100)
        passed = (proceeds - gas_cost - entry_cost) * 10000 >= entry_cost * min_bps
        required = entry_cost + gas_cost + _ceil_div(entry_cost * min_bps, 10000)

    return ProfitGateResult(
        passed=passed,
        mode=mode,
        proceeds=proceeds,
        entry_cost=entry_cost,
        gas_cost=gas_cost,
        required_proceeds=required,
    )
