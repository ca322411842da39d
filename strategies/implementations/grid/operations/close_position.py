"""
Sell-side execution for the grid strategy.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Callable, Optional

from clients.base import BaseChainClient, BaseQuoteClient
from clients.base_models import SwapQuote, TradeResult, TransactionRequest

from ..config import GridConfig
from ..models import GridBotState, GridPosition, PositionStatus
from ..profit_gate import ProfitGateMode, ProfitGateResult, evaluate_profit_gate


LogEventFn = Callable[..., None]

# Used when a quote omits gas figures (values typical for Base).
FALLBACK_GAS_LIMIT = 3_000_000
FALLBACK_GAS_PRICE = 10**7


def estimated_gas_cost(quote: SwapQuote) -> int:
    gas = quote.gas or FALLBACK_GAS_LIMIT
    gas_price = quote.gas_price or FALLBACK_GAS_PRICE
    return gas * gas_price


class GridSellOperator:
    """Quote, gate and submit exit swaps (token -> ETH) for HOLDING positions."""

    def __init__(
        self,
        config: GridConfig,
        state: GridBotState,
        quote_client: BaseQuoteClient,
        chain_client: BaseChainClient,
        logger,
        log_event: LogEventFn,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.state = state
        self.quote_client = quote_client
        self.chain_client = chain_client
        self.logger = logger
        self._log_event = log_event
        self._clock = clock

    def apply_config(self, config: GridConfig) -> None:
        self.config = config

    @property
    def gate_mode(self) -> ProfitGateMode:
        return ProfitGateMode(self.config.profit_gate_mode)

    def sell_amount(self, position: GridPosition) -> int:
        """Tokens to sell after holding back the moon bag."""
        tokens = position.tokens_received or 0
        if not self.config.moon_bag_enabled or self.config.moon_bag_percent <= 0:
            return tokens
        keep = int(Decimal(tokens) * self.config.moon_bag_percent / 100)
        return tokens - keep

    def check_profit_gate(self, position: GridPosition, quote: SwapQuote) -> ProfitGateResult:
        return evaluate_profit_gate(
            proceeds=quote.proceeds,
            entry_cost=position.eth_cost or 0,
            gas_cost=estimated_gas_cost(quote),
            mode=self.gate_mode,
            min_profit_percent=self.config.min_profit_percent,
        )

    async def execute_sell(self, position: GridPosition, reason: str = "take_profit") -> TradeResult:
        """
        Sell ``position`` if the quote clears the profit gate.

        A failed gate or missing quote is a skip: the position stays HOLDING
        and is evaluated again next cycle.
        """
        if position.status != PositionStatus.HOLDING or not position.tokens_received:
            return TradeResult.skipped("Position has no tokens to sell")

        amount = self.sell_amount(position)
        if amount <= 0:
            return TradeResult.skipped("Sell amount is zero after moon bag")

        quote = await self.quote_client.get_sell_quote(
            self.state.token_address, amount, self.state.wallet_address
        )
        if quote is None:
            return TradeResult.skipped("No sell quote available")

        gate = self.check_profit_gate(position, quote)
        if not gate.passed:
            self._log_event(
                "sell_skipped",
                f"Position #{position.id} ({reason}) not sold: {gate.describe()}",
                level="INFO",
                position_id=position.id,
                reason=reason,
                proceeds=gate.proceeds,
                required_proceeds=gate.required_proceeds,
                gas_cost=gate.gas_cost,
                eth_cost=gate.entry_cost,
            )
            return TradeResult.skipped(gate.describe())

        if not quote.has_transaction_data:
            return TradeResult.failed("Sell quote missing transaction data")

        try:
            approval_error = await self._ensure_allowance(quote.allowance_target, amount)
            if approval_error:
                return TradeResult.failed(approval_error)

            tx_hash = await self.chain_client.send_transaction(TransactionRequest.from_quote(quote))
            receipt = await self.chain_client.wait_for_receipt(tx_hash)
        except Exception as exc:
            return TradeResult.failed(f"Sell submission failed: {exc}")

        if not receipt.succeeded:
            return TradeResult.failed("Sell transaction reverted", tx_hash=tx_hash)

        gas_cost = receipt.gas_cost or estimated_gas_cost(quote)
        entry_cost = position.eth_cost or 0
        profit = max(0, quote.proceeds - gas_cost - entry_cost)

        position.status = PositionStatus.SOLD
        position.sell_tx_hash = tx_hash
        position.sell_timestamp = self._clock()
        position.eth_received = quote.proceeds
        position.tokens_sold = amount
        position.profit_eth = profit
        position.profit_percent = (
            Decimal(profit * 10000 // entry_cost) / 100 if entry_cost > 0 else Decimal("0")
        )

        self.logger.log_trade("sell", position.id, amount, position.sell_price, tx_hash)
        return TradeResult(
            success=True,
            tx_hash=tx_hash,
            gas_cost=gas_cost,
            amount_in=amount,
            amount_out=quote.proceeds,
        )

    async def _ensure_allowance(self, spender: Optional[str], amount: int) -> Optional[str]:
        """Approve ``spender`` when the current allowance is short."""
        if not spender:
            return None

        token = self.state.token_address
        owner = self.state.wallet_address
        allowance = await self.chain_client.get_allowance(token, owner, spender)
        if allowance >= amount:
            return None

        self.logger.log(f"Approving {spender} to spend {amount} of {token}", "INFO")
        approve_hash = await self.chain_client.approve(token, spender, amount)
        receipt = await self.chain_client.wait_for_receipt(approve_hash)
        if not receipt.succeeded:
            return f"Token approval reverted ({approve_hash})"
        return None
