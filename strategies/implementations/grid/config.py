"""
Grid Trading Strategy Configuration

Pydantic model for grid strategy parameters. Instances are frozen: a
strategy swaps in a new config object (see ``GridStrategy.reconfigure``)
instead of mutating the current one mid-cycle.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class GridConfig(BaseModel):
    """Configuration for one grid trading strategy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Grid layout
    num_positions: int = Field(24, description="Number of grid positions", ge=1)
    floor_price: Optional[Decimal] = Field(
        None,
        description="Lowest buy price of the grid (auto: current price / 10)",
        gt=0,
    )
    ceiling_price: Optional[Decimal] = Field(
        None,
        description="Highest buy price of the grid (auto: current price * 4)",
        gt=0,
    )
    take_profit_percent: Decimal = Field(
        Decimal("8"),
        description="Sell target above each position's buy_max",
        ge=0,
    )
    stop_loss_percent: Decimal = Field(
        Decimal("10"),
        description="Stop loss below each position's buy_min (clamped to 0-100 when applied)",
    )
    stop_loss_enabled: bool = Field(False, description="Enable per-position stop loss")

    # Trading switches
    buys_enabled: bool = Field(True, description="Allow new entries")
    sells_enabled: bool = Field(True, description="Allow exits")
    max_active_positions: int = Field(
        4,
        description="Maximum number of concurrently HOLDING positions",
        ge=1,
    )

    # Sizing
    use_fixed_buy_amount: bool = Field(False, description="Use buy_amount instead of auto sizing")
    buy_amount: Decimal = Field(Decimal("0"), description="Fixed buy size in ETH", ge=0)
    gas_reserve_eth: Decimal = Field(
        Decimal("0.0005"),
        description="ETH kept aside for gas when auto sizing",
        ge=0,
    )
    min_buy_amount_eth: Decimal = Field(
        Decimal("0.0001"),
        description="Dust threshold; smaller buys are skipped",
        ge=0,
    )

    # Exits
    moon_bag_enabled: bool = Field(True, description="Keep a slice of tokens on every sell")
    moon_bag_percent: Decimal = Field(
        Decimal("1"),
        description="Percent of held tokens retained on sell",
        ge=0,
        le=50,
    )
    min_profit_percent: Decimal = Field(
        Decimal("2"),
        description="Minimum profit after gas (legacy gate mode only)",
        ge=0,
    )
    profit_gate_mode: str = Field(
        "strict",
        description="'strict' (proceeds >= (cost + gas) * 1.02) or 'legacy' (min_profit_percent)",
    )

    # Price source
    use_price_oracle: bool = Field(False, description="Prefer the price oracle over quote prices")
    min_price_confidence: float = Field(
        0.8,
        description="Oracle readings below this confidence fall back to the next source",
        ge=0,
        le=1,
    )

    # Risk controls
    use_trailing_stop_loss: bool = Field(False, description="Enable trailing stop exits")
    trailing_stop_percent: Decimal = Field(Decimal("5"), description="Trail distance below the high", gt=0, lt=100)
    trailing_stop_activation: Decimal = Field(
        Decimal("3"),
        description="Profit percent that arms the trailing stop",
        ge=0,
    )
    use_circuit_breaker: bool = Field(True, description="Consult the portfolio circuit breaker before buys")
    max_consecutive_errors: int = Field(
        5,
        description="Consecutive execution failures that stop the strategy",
        ge=1,
    )

    # Scheduling
    heartbeat_ms: int = Field(1000, description="Scheduler interval hint in milliseconds", ge=50)
    skip_heartbeats: int = Field(0, description="Scheduler visits to skip between ticks", ge=0)

    @field_validator(
        "floor_price",
        "ceiling_price",
        "take_profit_percent",
        "stop_loss_percent",
        "buy_amount",
        "gas_reserve_eth",
        "min_buy_amount_eth",
        "moon_bag_percent",
        "min_profit_percent",
        "trailing_stop_percent",
        "trailing_stop_activation",
        mode="before",
    )
    @classmethod
    def coerce_decimal(cls, v):
        """Accept floats from YAML without binary float artifacts."""
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @field_validator("profit_gate_mode")
    @classmethod
    def validate_profit_gate_mode(cls, v: str) -> str:
        allowed = {"strict", "legacy"}
        value = v.lower()
        if value not in allowed:
            raise ValueError(f"profit_gate_mode must be one of {', '.join(sorted(allowed))}")
        return value

    @model_validator(mode="after")
    def validate_price_range(self) -> "GridConfig":
        """Floor and ceiling are set together and must form a range."""
        if (self.floor_price is None) != (self.ceiling_price is None):
            raise ValueError("floor_price and ceiling_price must be set together")
        if self.floor_price is not None and self.ceiling_price <= self.floor_price:
            raise ValueError("ceiling_price must be greater than floor_price")
        if self.use_fixed_buy_amount and self.buy_amount <= 0:
            raise ValueError("buy_amount must be positive when use_fixed_buy_amount is set")
        return self
