"""
Paper Swap Backend - in-memory quotes, balances and receipts.

Used in ``paper`` mode and by the test-suite. Prices are fixed per pair,
balances live in a dict, and swaps mutate them the way a real venue would.
"""

from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Tuple

from astroswap.core.logger import get_logger
from astroswap.exchange.exceptions import (
    InsufficientBalanceError,
    InvalidSwapError,
    PairNotFoundError,
    SlippageExceededError,
)
from astroswap.execution.executor import Quote

logger = get_logger("paper_backend")


class PaperSwapBackend:
    """
    Simulated swap venue.

    ``price`` is units of the output token per unit of the input token.
    ``price_drift`` is applied between quote and fill (e.g. -0.1 fills 10%
    below the quote), which is how tests exercise the slippage guard.
    """

    def __init__(
        self,
        token_in: str,
        token_out: str,
        price: float = 0.02,
        balances: Optional[Dict[str, float]] = None,
        fee_tier: int = 500,
        price_drift: float = 0.0,
    ):
        self.token_in = token_in
        self.token_out = token_out
        self.prices: Dict[Tuple[str, str], float] = {(token_in, token_out): float(price)}
        self.balances: Dict[str, float] = dict(balances or {})
        self.fee_tier = fee_tier
        self.price_drift = price_drift
        self.swaps: List[Dict[str, Any]] = []
        self.quote_calls = 0
        self._failures: Deque[Tuple[str, BaseException]] = deque()

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fail_next(self, operation: str, error: BaseException) -> None:
        """Queue ``error`` for the next call of ``operation`` (quote, swap, balance)."""
        self._failures.append((operation, error))

    def set_balance(self, token: str, amount: float) -> None:
        self.balances[token] = float(amount)

    def _maybe_fail(self, operation: str) -> None:
        if self._failures and self._failures[0][0] == operation:
            _, error = self._failures.popleft()
            raise error

    def _price(self, token_in: str, token_out: str) -> float:
        price = self.prices.get((token_in, token_out))
        if price is None:
            raise PairNotFoundError(f"No pool for {token_in} -> {token_out}")
        return price

    # ------------------------------------------------------------------
    # SwapBackend interface
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        logger.info(
            "Paper backend ready",
            token_in=self.token_in,
            token_out=self.token_out,
            balance=self.balances.get(self.token_in, 0.0),
        )

    async def close(self) -> None:
        return None

    async def quote_exact_input(self, token_in: str, token_out: str, amount: float) -> Quote:
        self.quote_calls += 1
        self._maybe_fail("quote")
        if amount <= 0:
            raise InvalidSwapError(f"Quote amount must be positive, got {amount}")
        price = self._price(token_in, token_out)
        return Quote(
            amount_in=amount,
            out_amount=amount * price,
            fee_tier=self.fee_tier,
            raw={"price": price, "simulated": True},
        )

    async def swap(
        self,
        token_in: str,
        token_out: str,
        fee_tier: int,
        amount_in: float,
        amount_out_minimum: float,
        wallet_address: str,
    ) -> Dict[str, Any]:
        self._maybe_fail("swap")
        price = self._price(token_in, token_out)
        available = self.balances.get(token_in, 0.0)
        if available < amount_in:
            raise InsufficientBalanceError(
                f"Insufficient {token_in} balance: {available} < {amount_in}",
                balance=available,
                required=amount_in,
            )
        filled_out = amount_in * price * (1.0 + self.price_drift)
        if filled_out < amount_out_minimum:
            raise SlippageExceededError(
                f"Slippage exceeded: fill {filled_out:.8f} below minimum {amount_out_minimum:.8f}"
            )

        self.balances[token_in] = available - amount_in
        self.balances[token_out] = self.balances.get(token_out, 0.0) + filled_out
        receipt = {
            "transaction_id": f"paper-{uuid.uuid4().hex[:16]}",
            "status": "FILLED",
            "amount_in": amount_in,
            "amount_out": filled_out,
            "fee_tier": fee_tier,
            "wallet": wallet_address,
            "simulated": True,
            "filled_at": datetime.now(timezone.utc).isoformat(),
        }
        self.swaps.append(receipt)
        return receipt

    async def get_balance(self, wallet_address: str, token: str) -> float:
        self._maybe_fail("balance")
        return self.balances.get(token, 0.0)
