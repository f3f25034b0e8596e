"""
Risk Management - trade authorization and reserve-aware sizing.

Two independent pieces:
  TradeGate            minimum interval between live trades
  ReserveSizingPolicy  how much may be sold without dipping below the reserve

Neither performs I/O. Refusals are returned as results, not raised.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from astroswap.core.logger import get_logger

logger = get_logger("risk_manager")


@dataclass
class SizingResult:
    """Result of a sizing decision."""
    allowed: bool = False
    amount: float = 0.0
    reason: str = ""
    balance: float = 0.0

    @property
    def projected_balance(self) -> float:
        return self.balance - self.amount if self.allowed else self.balance

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TradeGate:
    """
    Rate limit for live trades.

    ``clock`` returns monotonic seconds; tests inject their own. Only the
    orchestrator calls ``record_trade`` and only after a live trade succeeds.
    """

    def __init__(
        self,
        min_interval_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval_seconds = float(min_interval_seconds)
        self._clock = clock
        self.last_trade_at: Optional[float] = None

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def can_trade(self, now: Optional[float] = None) -> bool:
        if self.last_trade_at is None:
            return True
        return self._now(now) - self.last_trade_at >= self.min_interval_seconds

    def seconds_until_next_trade(self, now: Optional[float] = None) -> float:
        if self.last_trade_at is None:
            return 0.0
        remaining = self.min_interval_seconds - (self._now(now) - self.last_trade_at)
        return max(0.0, remaining)

    def time_until_next_trade(self, now: Optional[float] = None) -> str:
        """``"now"`` when allowed, otherwise ``"{m}m {s}s"``."""
        if self.can_trade(now):
            return "now"
        remaining = int(self.seconds_until_next_trade(now))
        minutes, seconds = divmod(remaining, 60)
        return f"{minutes}m {seconds}s"

    def record_trade(self, now: Optional[float] = None) -> None:
        self.last_trade_at = self._now(now)
        logger.debug("Trade gate armed", next_trade_in=self.min_interval_seconds)


class ReserveSizingPolicy:
    """
    Sizes sells of the held asset while keeping ``reserve_floor`` untouched.

    Every allowed result satisfies ``balance - amount >= reserve_floor``.
    """

    def __init__(
        self,
        max_per_trade: float = 1.0,
        reserve_floor: float = 5.0,
        min_defensive_amount: float = 0.1,
    ):
        if max_per_trade <= 0:
            raise ValueError("max_per_trade must be positive")
        if reserve_floor < 0:
            raise ValueError("reserve_floor must be non-negative")
        self.max_per_trade = float(max_per_trade)
        self.reserve_floor = float(reserve_floor)
        self.min_defensive_amount = float(min_defensive_amount)

    def size_normal_trade(self, balance: float) -> SizingResult:
        return self.size_fixed_trade(balance, self.max_per_trade)

    def size_fixed_trade(self, balance: float, amount: float) -> SizingResult:
        """Fixed ``amount``, refused when it would breach the reserve."""
        required = amount + self.reserve_floor
        if balance < required:
            return SizingResult(
                allowed=False,
                balance=balance,
                reason=(
                    f"Insufficient balance: {balance:g} available, "
                    f"{required:g} required ({amount:g} + {self.reserve_floor:g} reserve)"
                ),
            )
        return SizingResult(allowed=True, amount=amount, balance=balance, reason="ok")

    def size_defensive_trade(self, balance: float) -> SizingResult:
        """Everything above the reserve, unless that is too little to bother."""
        if balance <= self.reserve_floor:
            return SizingResult(
                allowed=False,
                balance=balance,
                reason=(
                    f"Insufficient balance for defensive swap: {balance:g} "
                    f"<= {self.reserve_floor:g} reserve"
                ),
            )
        amount = balance - self.reserve_floor
        if amount <= self.min_defensive_amount:
            return SizingResult(
                allowed=False,
                balance=balance,
                reason=f"Defensive amount {amount:g} below minimum {self.min_defensive_amount:g}",
            )
        return SizingResult(allowed=True, amount=amount, balance=balance, reason="ok")
