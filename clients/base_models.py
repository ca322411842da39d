"""
Value types and shared helpers for collaborator clients.

Amounts are integers in the smallest unit (wei for ETH, base units for the
token). Prices are Decimal ETH-per-token.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Tuple, Type, Union

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from helpers.unified_logger import get_client_logger


ETH_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"


class ExecutionError(Exception):
    """Transaction rejected or reverted on chain."""


class MissingCredentialsError(Exception):
    """Required API key, RPC endpoint or wallet is not configured."""


_retry_logger = get_client_logger("retry")


def query_retry(
    default_return: Any = None,
    exception_type: Union[Type[Exception], Tuple[Type[Exception], ...]] = (Exception,),
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 5,
    reraise: bool = False,
):
    """
    Retry decorator for read-only queries with exponential backoff.

    Once attempts are exhausted the decorated coroutine returns
    ``default_return`` instead of raising (unless ``reraise`` is set).
    """

    def retry_error_callback(retry_state: RetryCallState):
        _retry_logger.log(
            f"Operation [{retry_state.fn.__name__}] failed after {retry_state.attempt_number} attempts: "
            f"{retry_state.outcome.exception()}",
            "WARNING",
        )
        return default_return

    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exception_type),
        retry_error_callback=None if reraise else retry_error_callback,
        reraise=reraise,
    )


@dataclass
class SwapQuote:
    """
    Executable swap quote.

    For a sell (token -> ETH) ``buy_amount`` is the ETH proceeds; for a buy
    (ETH -> token) it is the token amount received.
    """
    buy_amount: int
    sell_amount: int
    gas: int = 0
    gas_price: int = 0
    to: Optional[str] = None
    data: Optional[str] = None
    value: int = 0
    allowance_target: Optional[str] = None
    price: Optional[Decimal] = None

    @property
    def gas_cost(self) -> int:
        return self.gas * self.gas_price

    @property
    def proceeds(self) -> int:
        return self.buy_amount

    @property
    def has_transaction_data(self) -> bool:
        return bool(self.to) and bool(self.data)


@dataclass
class TransactionRequest:
    to: str
    data: str
    value: int = 0
    gas: Optional[int] = None
    gas_price: Optional[int] = None

    @classmethod
    def from_quote(cls, quote: SwapQuote) -> "TransactionRequest":
        return cls(
            to=quote.to,
            data=quote.data,
            value=quote.value,
            gas=quote.gas or None,
            gas_price=quote.gas_price or None,
        )


@dataclass
class TransactionReceipt:
    tx_hash: str
    status: int
    gas_used: int = 0
    effective_gas_price: int = 0
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @property
    def gas_cost(self) -> int:
        return self.gas_used * self.effective_gas_price


@dataclass
class PriceData:
    price: Decimal
    confidence: float
    source: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class TradeResult:
    """Standardized outcome of a buy or sell execution."""
    success: bool
    tx_hash: Optional[str] = None
    gas_cost: int = 0
    amount_in: int = 0
    amount_out: int = 0
    error_message: Optional[str] = None
    # False for skips (no quote, dust, gate); True for reverts and exceptions.
    execution_failed: bool = False

    @classmethod
    def skipped(cls, reason: str) -> "TradeResult":
        return cls(success=False, error_message=reason)

    @classmethod
    def failed(cls, reason: str, tx_hash: Optional[str] = None) -> "TradeResult":
        return cls(success=False, tx_hash=tx_hash, error_message=reason, execution_failed=True)


__all__ = [
    "ETH_ADDRESS",
    "ExecutionError",
    "MissingCredentialsError",
    "query_retry",
    "SwapQuote",
    "TransactionRequest",
    "TransactionReceipt",
    "PriceData",
    "TradeResult",
]
