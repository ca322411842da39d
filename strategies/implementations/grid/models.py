"""
Grid Trading Strategy Data Models

Positions, per-strategy state and the result objects returned by a cycle.
Prices are Decimal (ETH per token); ETH and token amounts are integers in
their smallest unit (wei).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import GridConfig


WEI_PER_ETH = 10**18


class PositionStatus(Enum):
    """Grid position lifecycle: EMPTY -> HOLDING -> SOLD."""
    EMPTY = "EMPTY"
    HOLDING = "HOLDING"
    SOLD = "SOLD"


def _dec(value: Any) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


@dataclass
class GridPosition:
    """One price sub-range of the grid and its execution record."""
    id: int
    buy_min: Decimal
    buy_max: Decimal
    sell_price: Decimal
    stop_loss_price: Decimal = Decimal("0")
    status: PositionStatus = PositionStatus.EMPTY

    # Buy side
    buy_tx_hash: Optional[str] = None
    buy_timestamp: Optional[float] = None
    tokens_received: Optional[int] = None
    eth_cost: Optional[int] = None

    # Sell side
    sell_tx_hash: Optional[str] = None
    sell_timestamp: Optional[float] = None
    eth_received: Optional[int] = None
    tokens_sold: Optional[int] = None
    profit_eth: Optional[int] = None
    profit_percent: Optional[Decimal] = None

    @property
    def buy_price(self) -> Decimal:
        """Reference entry price: the worst case within the range."""
        return self.buy_max

    @property
    def width(self) -> Decimal:
        return self.buy_max - self.buy_min

    def contains(self, price: Decimal, tolerance: Optional[Decimal] = None) -> bool:
        buffer = tolerance if tolerance is not None else self.width * Decimal("0.001")
        return self.buy_min - buffer <= price <= self.buy_max + buffer

    def to_dict(self) -> dict:
        """Convert to dictionary for state storage."""
        return {
            'id': self.id,
            'buy_min': str(self.buy_min),
            'buy_max': str(self.buy_max),
            'sell_price': str(self.sell_price),
            'stop_loss_price': str(self.stop_loss_price),
            'status': self.status.value,
            'buy_tx_hash': self.buy_tx_hash,
            'buy_timestamp': self.buy_timestamp,
            'tokens_received': str(self.tokens_received) if self.tokens_received is not None else None,
            'eth_cost': str(self.eth_cost) if self.eth_cost is not None else None,
            'sell_tx_hash': self.sell_tx_hash,
            'sell_timestamp': self.sell_timestamp,
            'eth_received': str(self.eth_received) if self.eth_received is not None else None,
            'tokens_sold': str(self.tokens_sold) if self.tokens_sold is not None else None,
            'profit_eth': str(self.profit_eth) if self.profit_eth is not None else None,
            'profit_percent': str(self.profit_percent) if self.profit_percent is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'GridPosition':
        """Create from dictionary."""
        return cls(
            id=int(data['id']),
            buy_min=Decimal(str(data['buy_min'])),
            buy_max=Decimal(str(data['buy_max'])),
            sell_price=Decimal(str(data['sell_price'])),
            stop_loss_price=Decimal(str(data.get('stop_loss_price', 0))),
            status=PositionStatus(data.get('status', 'EMPTY')),
            buy_tx_hash=data.get('buy_tx_hash'),
            buy_timestamp=data.get('buy_timestamp'),
            tokens_received=_int(data.get('tokens_received')),
            eth_cost=_int(data.get('eth_cost')),
            sell_tx_hash=data.get('sell_tx_hash'),
            sell_timestamp=data.get('sell_timestamp'),
            eth_received=_int(data.get('eth_received')),
            tokens_sold=_int(data.get('tokens_sold')),
            profit_eth=_int(data.get('profit_eth')),
            profit_percent=_dec(data.get('profit_percent')),
        )


@dataclass
class GridBotState:
    """Persisted state of one grid strategy (one token, one wallet)."""
    id: str
    name: str
    token_address: str
    token_symbol: str
    config: GridConfig
    chain: str = "base"
    wallet_address: str = ""
    positions: List[GridPosition] = field(default_factory=list)
    is_running: bool = False
    total_buys: int = 0
    total_sells: int = 0
    total_profit_eth: int = 0
    current_price: Decimal = Decimal("0")
    last_oracle_price: Optional[Decimal] = None
    consecutive_errors: int = 0
    trailing_stops: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    last_updated: float = field(default_factory=time.time)

    def holding_positions(self) -> List[GridPosition]:
        return [p for p in self.positions if p.status == PositionStatus.HOLDING]

    def invested_eth(self) -> int:
        """ETH currently tied up in HOLDING positions."""
        return sum(p.eth_cost or 0 for p in self.holding_positions())

    def to_dict(self) -> dict:
        """Convert to dictionary for persistence."""
        return {
            'id': self.id,
            'name': self.name,
            'token_address': self.token_address,
            'token_symbol': self.token_symbol,
            'chain': self.chain,
            'wallet_address': self.wallet_address,
            'config': self.config.model_dump(mode='json'),
            'positions': [p.to_dict() for p in self.positions],
            'is_running': self.is_running,
            'total_buys': self.total_buys,
            'total_sells': self.total_sells,
            'total_profit_eth': str(self.total_profit_eth),
            'current_price': str(self.current_price),
            'last_oracle_price': str(self.last_oracle_price) if self.last_oracle_price is not None else None,
            'consecutive_errors': self.consecutive_errors,
            'trailing_stops': self.trailing_stops,
            'created_at': self.created_at,
            'last_updated': self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'GridBotState':
        """Create from dictionary."""
        return cls(
            id=str(data['id']),
            name=data.get('name', str(data['id'])),
            token_address=data['token_address'],
            token_symbol=data.get('token_symbol', 'TOKEN'),
            chain=data.get('chain', 'base'),
            wallet_address=data.get('wallet_address', ''),
            config=GridConfig(**data.get('config', {})),
            positions=[GridPosition.from_dict(p) for p in data.get('positions', [])],
            is_running=bool(data.get('is_running', False)),
            total_buys=int(data.get('total_buys', 0)),
            total_sells=int(data.get('total_sells', 0)),
            total_profit_eth=int(data.get('total_profit_eth', 0)),
            current_price=Decimal(str(data.get('current_price', 0))),
            last_oracle_price=_dec(data.get('last_oracle_price')),
            consecutive_errors=int(data.get('consecutive_errors', 0)),
            trailing_stops=dict(data.get('trailing_stops') or {}),
            created_at=float(data.get('created_at', time.time())),
            last_updated=float(data.get('last_updated', time.time())),
        )


@dataclass
class PortfolioSnapshot:
    """What the circuit breaker needs from one strategy."""
    strategy_id: str
    total_profit_eth: int
    invested_eth: int

    @classmethod
    def from_state(cls, state: GridBotState) -> 'PortfolioSnapshot':
        return cls(
            strategy_id=state.id,
            total_profit_eth=state.total_profit_eth,
            invested_eth=state.invested_eth(),
        )


@dataclass
class CycleSummary:
    """Outcome of one ``GridStrategy.tick()``."""
    strategy_id: str
    price: Decimal = Decimal("0")
    price_source: str = "none"
    bought: Optional[int] = None
    sold: List[int] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    buy_blocked_reason: Optional[str] = None
    stopped: bool = False

    @property
    def action(self) -> str:
        if self.stopped:
            return "stopped"
        if self.bought is not None or self.sold:
            return "trade"
        if self.errors:
            return "error"
        return "wait"

    def to_dict(self) -> dict:
        return {
            'action': self.action,
            'strategy_id': self.strategy_id,
            'price': str(self.price),
            'price_source': self.price_source,
            'bought': self.bought,
            'sold': list(self.sold),
            'skipped': list(self.skipped),
            'errors': list(self.errors),
            'buy_blocked_reason': self.buy_blocked_reason,
            'stopped': self.stopped,
        }


@dataclass
class LiquidationReport:
    """Aggregate result of ``GridStrategy.liquidate_all()``."""
    success: int = 0
    failed: int = 0
    total_profit_eth: int = 0
    sold_ids: List[int] = field(default_factory=list)
    failed_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'failed': self.failed,
            'total_profit_eth': str(self.total_profit_eth),
            'sold_ids': list(self.sold_ids),
            'failed_ids': list(self.failed_ids),
        }


@dataclass
class GridStats:
    """Position counts and realized profit for a grid."""
    total_positions: int
    holding_positions: int
    sold_positions: int
    empty_positions: int
    avg_profit_percent: Decimal
    total_profit_eth: int
