"""Collaborator clients: swap quotes, chain access and price sources."""

from .base import BaseChainClient, BasePriceSource, BaseQuoteClient
from .base_models import (
    ETH_ADDRESS,
    ExecutionError,
    MissingCredentialsError,
    PriceData,
    SwapQuote,
    TradeResult,
    TransactionReceipt,
    TransactionRequest,
    query_retry,
)

__all__ = [
    "BaseChainClient",
    "BasePriceSource",
    "BaseQuoteClient",
    "ETH_ADDRESS",
    "ExecutionError",
    "MissingCredentialsError",
    "PriceData",
    "SwapQuote",
    "TradeResult",
    "TransactionReceipt",
    "TransactionRequest",
    "query_retry",
]
