"""
Collaborator contracts used by the grid strategy.

The strategy only talks to these abstract interfaces; concrete clients
(HTTP quote API, signer/RPC, oracle) are injected at assembly time.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from .base_models import PriceData, SwapQuote, TransactionReceipt, TransactionRequest


class BaseQuoteClient(ABC):
    """
    Swap quote provider.

    Every query returns ``None`` on failure instead of raising, so the caller
    can treat a missing quote as "skip this cycle".
    """

    chain: str = "base"

    def set_chain(self, chain: str) -> None:
        self.chain = chain

    @abstractmethod
    async def get_buy_quote(self, token: str, eth_amount: int, taker: str) -> Optional[SwapQuote]:
        """Quote spending ``eth_amount`` wei on ``token``."""

    @abstractmethod
    async def get_sell_quote(self, token: str, token_amount: int, taker: str) -> Optional[SwapQuote]:
        """Quote selling ``token_amount`` of ``token`` for ETH."""

    @abstractmethod
    async def get_token_price(self, token: str, taker: str) -> Optional[Decimal]:
        """Indicative price in ETH per whole token."""

    async def close(self) -> None:
        """Release network resources."""


class BaseChainClient(ABC):
    """Signer plus RPC access for one wallet."""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """ETH balance in wei."""

    @abstractmethod
    async def get_token_balance(self, token: str, address: str) -> int:
        """Token balance in base units."""

    @abstractmethod
    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        """Current ERC-20 allowance."""

    @abstractmethod
    async def approve(self, token: str, spender: str, amount: int) -> str:
        """Submit an approval; returns the transaction hash."""

    @abstractmethod
    async def send_transaction(self, request: TransactionRequest) -> str:
        """Sign and submit a transaction; returns the transaction hash."""

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120) -> TransactionReceipt:
        """Block until the transaction is mined."""

    async def close(self) -> None:
        """Release network resources."""


class BasePriceSource(ABC):
    """Oracle-style price feed with a confidence score."""

    @abstractmethod
    async def get_price(self, token: str) -> Optional[PriceData]:
        """Latest price reading, or ``None`` when unavailable."""
