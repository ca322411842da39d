"""
Buy-side execution for the grid strategy.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Callable, Tuple

from clients.base import BaseChainClient, BaseQuoteClient
from clients.base_models import TradeResult, TransactionRequest

from ..config import GridConfig
from ..grid_engine import GridEngine
from ..models import WEI_PER_ETH, GridBotState, GridPosition, PositionStatus


def eth_to_wei(amount: Decimal) -> int:
    return int(Decimal(amount) * WEI_PER_ETH)


class GridBuyOperator:
    """Size and submit entry swaps (ETH -> token) for grid positions."""

    def __init__(
        self,
        config: GridConfig,
        state: GridBotState,
        quote_client: BaseQuoteClient,
        chain_client: BaseChainClient,
        logger,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.state = state
        self.quote_client = quote_client
        self.chain_client = chain_client
        self.logger = logger
        self._clock = clock

    def apply_config(self, config: GridConfig) -> None:
        self.config = config

    async def determine_buy_amount(self) -> Tuple[int, str]:
        """
        ETH (wei) to spend on the next entry, plus a description.

        Fixed mode uses ``buy_amount``. Auto mode spreads the wallet balance
        net of the gas reserve over the empty slots not already covered by
        active positions. Returns 0 when the result is below the dust limit.
        """
        if self.config.use_fixed_buy_amount:
            amount = eth_to_wei(self.config.buy_amount)
            source = "fixed"
        else:
            balance = await self.chain_client.get_balance(self.state.wallet_address)
            available = balance - eth_to_wei(self.config.gas_reserve_eth)
            positions = self.state.positions
            slots = max(
                1,
                GridEngine.count_empty_positions(positions) - GridEngine.count_active_positions(positions),
            )
            amount = max(0, available) // slots
            source = f"auto (balance={balance}, slots={slots})"

        if amount < eth_to_wei(self.config.min_buy_amount_eth):
            return 0, f"{source}: {amount} wei is below the {self.config.min_buy_amount_eth} ETH minimum"
        return amount, source

    async def execute_buy(self, position: GridPosition) -> TradeResult:
        """
        Buy into ``position``. Mutates it to HOLDING only after a successful
        on-chain confirmation; any other outcome leaves it EMPTY.
        """
        amount, sizing = await self.determine_buy_amount()
        if amount <= 0:
            self.logger.log(f"Skipping buy for position #{position.id}: {sizing}", "INFO")
            return TradeResult.skipped(f"Buy amount too small ({sizing})")

        quote = await self.quote_client.get_buy_quote(
            self.state.token_address, amount, self.state.wallet_address
        )
        if quote is None:
            return TradeResult.skipped("No buy quote available")
        if not quote.has_transaction_data:
            return TradeResult.failed("Buy quote missing transaction data")

        try:
            request = TransactionRequest.from_quote(quote)
            if not request.value:
                request.value = amount
            tx_hash = await self.chain_client.send_transaction(request)
            receipt = await self.chain_client.wait_for_receipt(tx_hash)
        except Exception as exc:
            return TradeResult.failed(f"Buy submission failed: {exc}")

        if not receipt.succeeded:
            return TradeResult.failed("Buy transaction reverted", tx_hash=tx_hash)

        position.status = PositionStatus.HOLDING
        position.buy_tx_hash = tx_hash
        position.buy_timestamp = self._clock()
        position.tokens_received = quote.buy_amount
        position.eth_cost = amount

        self.logger.log_trade("buy", position.id, amount, position.buy_price, tx_hash)
        return TradeResult(
            success=True,
            tx_hash=tx_hash,
            gas_cost=receipt.gas_cost,
            amount_in=amount,
            amount_out=quote.buy_amount,
        )
