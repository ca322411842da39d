"""In-memory collaborators for grid strategy tests."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from clients.base import BaseChainClient, BasePriceSource, BaseQuoteClient
from clients.base_models import PriceData, SwapQuote, TransactionReceipt, TransactionRequest
from strategies.implementations.grid.config import GridConfig
from strategies.implementations.grid.models import GridBotState


WALLET = "0x1111111111111111111111111111111111111111"
TOKEN = "0x2222222222222222222222222222222222222222"
ROUTER = "0x3333333333333333333333333333333333333333"

# 100k gas at 0.01 gwei: 1e12 wei per swap.
QUOTE_GAS = 100_000
QUOTE_GAS_PRICE = 10**7


class StubQuoteClient(BaseQuoteClient):
    """
    Quotes at ``price`` (ETH per token, both sides in 18-decimal base units).

    ``sell_proceeds`` overrides the sell quote amount; ``buy_quote_none`` /
    ``sell_quote_none`` simulate an unavailable quote.
    """

    def __init__(self, price: Decimal = Decimal("1")):
        self.price = Decimal(price)
        self.sell_proceeds: Optional[int] = None
        self.buy_quote_none = False
        self.sell_quote_none = False
        self.price_none = False
        self.missing_tx_data = False
        self.raise_on_buy: Optional[Exception] = None
        self.gas = QUOTE_GAS
        self.gas_price = QUOTE_GAS_PRICE
        self.buy_requests: List[int] = []
        self.sell_requests: List[int] = []

    def _quote(self, buy_amount: int, sell_amount: int, value: int) -> SwapQuote:
        return SwapQuote(
            buy_amount=buy_amount,
            sell_amount=sell_amount,
            gas=self.gas,
            gas_price=self.gas_price,
            to=None if self.missing_tx_data else ROUTER,
            data=None if self.missing_tx_data else "0xdeadbeef",
            value=value,
            allowance_target=ROUTER,
            price=self.price,
        )

    async def get_buy_quote(self, token: str, eth_amount: int, taker: str) -> Optional[SwapQuote]:
        self.buy_requests.append(eth_amount)
        if self.raise_on_buy is not None:
            raise self.raise_on_buy
        if self.buy_quote_none:
            return None
        return self._quote(int(Decimal(eth_amount) / self.price), eth_amount, eth_amount)

    async def get_sell_quote(self, token: str, token_amount: int, taker: str) -> Optional[SwapQuote]:
        self.sell_requests.append(token_amount)
        if self.sell_quote_none:
            return None
        proceeds = self.sell_proceeds if self.sell_proceeds is not None else int(Decimal(token_amount) * self.price)
        return self._quote(proceeds, token_amount, 0)

    async def get_token_price(self, token: str, taker: str) -> Optional[Decimal]:
        return None if self.price_none else self.price


class StubChainClient(BaseChainClient):
    """
    Chain double: every transaction succeeds unless ``revert_next`` is set
    or ``send_error`` is raised from ``send_transaction``.
    """

    def __init__(self, balance: int = 10**18):
        self.balance = balance
        self.allowances: Dict[tuple, int] = {}
        self.sent: List[TransactionRequest] = []
        self.approvals: List[tuple] = []
        self.revert_next = 0
        self.send_error: Optional[Exception] = None
        self.gas_used = QUOTE_GAS
        self.gas_price = QUOTE_GAS_PRICE
        self.hold = None  # optional asyncio.Event awaited before submitting
        self._reverted: set = set()
        self.closed = False

    async def get_balance(self, address: str) -> int:
        return self.balance

    async def get_token_balance(self, token: str, address: str) -> int:
        return 0

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances.get((token, owner, spender), 0)

    async def approve(self, token: str, spender: str, amount: int) -> str:
        self.approvals.append((token, spender, amount))
        self.allowances[(token, WALLET, spender)] = amount
        return f"0xapprove{len(self.approvals)}"

    async def send_transaction(self, request: TransactionRequest) -> str:
        if self.hold is not None:
            await self.hold.wait()
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(request)
        tx_hash = f"0xtx{len(self.sent)}"
        if self.revert_next > 0:
            self.revert_next -= 1
            self._reverted.add(tx_hash)
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120) -> TransactionReceipt:
        status = 0 if tx_hash in self._reverted else 1
        return TransactionReceipt(
            tx_hash=tx_hash,
            status=status,
            gas_used=self.gas_used,
            effective_gas_price=self.gas_price,
        )

    async def close(self) -> None:
        self.closed = True


class StubPriceSource(BasePriceSource):
    def __init__(self, price: Decimal = Decimal("1"), confidence: float = 0.95):
        self.price = Decimal(price)
        self.confidence = confidence
        self.unavailable = False

    async def get_price(self, token: str) -> Optional[PriceData]:
        if self.unavailable:
            return None
        return PriceData(price=self.price, confidence=self.confidence, source="stub")


class StubStorage:
    """Persistence double keeping ``to_dict`` snapshots in memory."""

    def __init__(self):
        self.saved: Dict[str, Dict[str, Any]] = {}
        self.save_count = 0
        self.fail = False
        self.circuit_breaker: Optional[Dict[str, Any]] = None

    async def save_strategy_state(self, state: GridBotState) -> None:
        if self.fail:
            raise OSError("disk full")
        self.save_count += 1
        self.saved[state.id] = state.to_dict()

    async def load_all_strategies(self) -> List[GridBotState]:
        return [GridBotState.from_dict(data) for data in self.saved.values()]

    async def load_circuit_breaker_state(self) -> Optional[Dict[str, Any]]:
        return self.circuit_breaker

    async def save_circuit_breaker_state(self, state: Dict[str, Any]) -> None:
        self.circuit_breaker = dict(state)


class RecordingNotifier:
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def notify(self, **event):
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["event_type"] == event_type]


def make_grid_config(**overrides) -> GridConfig:
    """Ten positions over [1, 11): width 1, fixed 0.1 ETH buys, no moon bag."""
    params = dict(
        num_positions=10,
        floor_price=Decimal("1"),
        ceiling_price=Decimal("11"),
        take_profit_percent=Decimal("8"),
        use_fixed_buy_amount=True,
        buy_amount=Decimal("0.1"),
        moon_bag_enabled=False,
        max_active_positions=4,
        use_circuit_breaker=False,
    )
    params.update(overrides)
    return GridConfig(**params)


def make_state(config: Optional[GridConfig] = None, **overrides) -> GridBotState:
    params = dict(
        id="bot-1",
        name="Test Bot",
        token_address=TOKEN,
        token_symbol="TKN",
        config=config or make_grid_config(),
        wallet_address=WALLET,
    )
    params.update(overrides)
    return GridBotState(**params)


class RpcChainClient(StubChainClient):
    """Constructible the way the launcher builds live chain clients."""

    def __init__(self, rpc_url: str, wallet_address: str):
        super().__init__()
        self.rpc_url = rpc_url
        self.wallet_address = wallet_address
