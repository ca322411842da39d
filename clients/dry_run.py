"""
Simulated chain client for dry runs.

Accepts every affordable transaction, returns successful receipts and keeps a rough
ETH balance (value + gas is deducted on submission). Nothing is signed or
broadcast.
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
from typing import Dict, Tuple

from helpers.unified_logger import get_client_logger

from .base import BaseChainClient
from .base_models import ExecutionError, TransactionReceipt, TransactionRequest


DEFAULT_GAS_USED = 150_000
DEFAULT_GAS_PRICE = 10**7  # 0.01 gwei, typical for L2s


class DryRunChainClient(BaseChainClient):

    def __init__(
        self,
        wallet_address: str,
        *,
        eth_balance: int = 10**18,
        gas_used: int = DEFAULT_GAS_USED,
        gas_price: int = DEFAULT_GAS_PRICE,
        confirmation_delay: float = 0.0,
    ) -> None:
        self.wallet_address = wallet_address
        self.gas_used = gas_used
        self.gas_price = gas_price
        self.confirmation_delay = confirmation_delay
        self.logger = get_client_logger("dry_run", wallet=wallet_address[:10])

        self._eth_balance = eth_balance
        self._token_balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._sent: Dict[str, TransactionRequest] = {}
        self._nonce = itertools.count()

    def _next_hash(self, payload: str) -> str:
        digest = hashlib.sha256(f"{next(self._nonce)}:{payload}".encode()).hexdigest()
        return f"0x{digest}"

    async def get_balance(self, address: str) -> int:
        return self._eth_balance

    async def get_token_balance(self, token: str, address: str) -> int:
        return self._token_balances.get(token.lower(), 0)

    def credit_tokens(self, token: str, amount: int) -> None:
        key = token.lower()
        self._token_balances[key] = self._token_balances.get(key, 0) + amount

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return self._allowances.get((token.lower(), owner.lower(), (spender or "").lower()), 0)

    async def approve(self, token: str, spender: str, amount: int) -> str:
        self._allowances[(token.lower(), self.wallet_address.lower(), spender.lower())] = amount
        tx_hash = self._next_hash(f"approve:{token}:{spender}:{amount}")
        self._sent[tx_hash] = TransactionRequest(to=token, data="0x095ea7b3", value=0)
        self.logger.log(f"[DRY RUN] approve {token} for {spender}: {tx_hash}", "INFO")
        return tx_hash

    async def send_transaction(self, request: TransactionRequest) -> str:
        total = request.value + self.gas_used * self.gas_price
        if total > self._eth_balance:
            raise ExecutionError(f"insufficient funds: need {total} wei, have {self._eth_balance}")
        tx_hash = self._next_hash(f"{request.to}:{request.data}:{request.value}")
        self._sent[tx_hash] = request
        self._eth_balance -= total
        self.logger.log(f"[DRY RUN] send to {request.to} value={request.value}: {tx_hash}", "INFO")
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120) -> TransactionReceipt:
        if self.confirmation_delay:
            await asyncio.sleep(self.confirmation_delay)
        status = 1 if tx_hash in self._sent else 0
        return TransactionReceipt(
            tx_hash=tx_hash,
            status=status,
            gas_used=self.gas_used,
            effective_gas_price=self.gas_price,
        )

    @property
    def sent_transactions(self) -> Dict[str, TransactionRequest]:
        return dict(self._sent)
