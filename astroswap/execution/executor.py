"""
Trade Executor - quote, guard and submit a single swap.

Wraps a swap backend (paper or gateway) behind one call. The executor never
decides *whether* to trade; the engine does that. It only turns an amount
into a quote, a slippage-guarded swap and an immutable ``TradeRecord``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from astroswap.core.logger import get_logger
from astroswap.exchange.exceptions import InvalidSwapError
from astroswap.strategies.astrology import AnalysisResult

logger = get_logger("executor")


class TradeKind(str, Enum):
    IMMEDIATE_TEST = "immediate_test"
    TEST = "test"
    LIVE = "live"
    DEFENSIVE_SWAP = "defensive_swap"

    @property
    def is_diagnostic(self) -> bool:
        return self in (TradeKind.IMMEDIATE_TEST, TradeKind.TEST)


@dataclass(frozen=True)
class Quote:
    """Expected output for an exact input amount."""
    amount_in: float
    out_amount: float
    fee_tier: int
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TradeRecord:
    """One executed swap. Only successful swaps ever become records."""
    timestamp: datetime
    kind: TradeKind
    amount_in: float
    token_in: str
    amount_out: float
    token_out: str
    amount_out_minimum: float
    fee_tier: int
    receipt: Dict[str, Any]
    score: Optional[int] = None
    recommendation: str = ""
    reserve_kept: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "type": self.kind.value,
            "amount_in": self.amount_in,
            "token_in": self.token_in,
            "amount_out": self.amount_out,
            "token_out": self.token_out,
            "amount_out_minimum": self.amount_out_minimum,
            "fee_tier": self.fee_tier,
            "score": self.score,
            "recommendation": self.recommendation,
            "reserve_kept": self.reserve_kept,
            "receipt": self.receipt,
        }


class SwapBackend(Protocol):
    """What the executor needs from a venue adapter."""

    async def quote_exact_input(self, token_in: str, token_out: str, amount: float) -> Quote: ...

    async def swap(
        self,
        token_in: str,
        token_out: str,
        fee_tier: int,
        amount_in: float,
        amount_out_minimum: float,
        wallet_address: str,
    ) -> Dict[str, Any]: ...

    async def get_balance(self, wallet_address: str, token: str) -> float: ...


class TradeExecutor:
    """
    Executes sells of ``token_in`` for ``token_out`` on a backend.

    ``amount_out_minimum`` is always ``quote * (1 - slippage_tolerance)``.
    """

    def __init__(
        self,
        backend: SwapBackend,
        token_in: str,
        token_out: str,
        wallet_address: str = "",
        slippage_tolerance: float = 0.05,
    ):
        self.backend = backend
        self.token_in = token_in
        self.token_out = token_out
        self.wallet_address = wallet_address
        self.slippage_tolerance = slippage_tolerance

    async def get_balance(self) -> float:
        balance = await self.backend.get_balance(self.wallet_address, self.token_in)
        return float(balance)

    async def get_quote(self, amount: float) -> Quote:
        return await self.backend.quote_exact_input(self.token_in, self.token_out, amount)

    def minimum_out(self, quoted_out: float) -> float:
        return quoted_out * (1.0 - self.slippage_tolerance)

    async def execute(
        self,
        kind: TradeKind,
        amount: float,
        analysis: Optional[AnalysisResult] = None,
        reserve_kept: Optional[float] = None,
    ) -> TradeRecord:
        """
        Quote ``amount`` and submit the swap.

        Raises whatever the backend raises; nothing is recorded on failure.
        """
        if amount <= 0:
            raise InvalidSwapError(f"Swap amount must be positive, got {amount}")

        quote = await self.get_quote(amount)
        minimum = self.minimum_out(quote.out_amount)
        logger.info(
            "Submitting swap",
            kind=kind.value,
            amount_in=amount,
            token_in=self.token_in,
            expected_out=quote.out_amount,
            amount_out_minimum=minimum,
            fee_tier=quote.fee_tier,
        )

        receipt = await self.backend.swap(
            self.token_in,
            self.token_out,
            quote.fee_tier,
            amount,
            minimum,
            self.wallet_address,
        )

        if kind is TradeKind.DEFENSIVE_SWAP:
            recommendation = "DEFENSIVE_SWAP"
        elif kind.is_diagnostic or analysis is None:
            recommendation = ""
        else:
            recommendation = analysis.recommendation

        record = TradeRecord(
            timestamp=datetime.now(timezone.utc),
            kind=kind,
            amount_in=amount,
            token_in=self.token_in,
            amount_out=quote.out_amount,
            token_out=self.token_out,
            amount_out_minimum=minimum,
            fee_tier=quote.fee_tier,
            receipt=dict(receipt or {}),
            score=None if kind.is_diagnostic or analysis is None else analysis.score,
            recommendation=recommendation,
            reserve_kept=reserve_kept,
        )
        logger.info(
            "Swap executed",
            kind=kind.value,
            amount_in=amount,
            amount_out=quote.out_amount,
            receipt_id=record.receipt.get("transaction_id"),
        )
        return record
