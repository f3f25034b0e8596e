"""
Bot Engine - decision cycle orchestrator.

Each cycle scores the current instant, publishes the analysis and then takes
at most one action:

  STRONG_BUY, gate open    live swap of ``max_per_trade``
  STRONG_BUY, gate closed  status update with the remaining wait
  score < 30               defensive swap of everything above the reserve
  WEAK_BUY                 informational only
  HOLD                     nothing

Cycles are serialized by a lock. Trade-path failures are classified, logged
and pushed to observers; they never stop the scheduler, never arm the gate
and never reach the trade history.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from astroswap.core.config import BotConfig, ConfigurationMissingError, get_config
from astroswap.core.error_handler import SizingNoop, TradeErrorHandler
from astroswap.core.events import EventBroadcaster
from astroswap.core.logger import get_logger, log_performance
from astroswap.core.scheduler import CycleScheduler
from astroswap.exchange.exceptions import InsufficientBalanceError, SwapError
from astroswap.execution.executor import SwapBackend, TradeExecutor, TradeKind, TradeRecord
from astroswap.execution.risk_manager import ReserveSizingPolicy, TradeGate
from astroswap.strategies.astrology import (
    AnalysisResult,
    AstrologyScorer,
    RecommendationTier,
    format_breakdown,
)

logger = get_logger("engine")


class PairVerificationError(RuntimeError):
    """The configured token pair could not be quoted at boot."""


class CycleAction(str, Enum):
    LIVE_TRADE = "live_trade"
    LIVE_NOOP = "live_noop"
    GATED = "gated"
    DEFENSIVE_SWAP = "defensive_swap"
    DEFENSIVE_NOOP = "defensive_noop"
    WEAK_BUY_WAIT = "weak_buy_wait"
    HOLD = "hold"
    FAILED = "failed"


@dataclass(frozen=True)
class CycleOutcome:
    action: CycleAction
    analysis: AnalysisResult
    record: Optional[TradeRecord] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "score": self.analysis.score,
            "recommendation": self.analysis.recommendation,
            "trade": self.record.to_dict() if self.record else None,
            "reason": self.reason,
        }


class BotEngine:
    """
    Owns the decision state: latest analysis, trade history and gate.

    Lifecycle:
    1. ``initialize()`` verifies the token pair (fatal on failure)
    2. optional ``execute_immediate_test()``
    3. ``start()`` runs one cycle right away and arms the scheduler
    4. ``stop()`` disarms it; an in-flight cycle finishes normally
    """

    def __init__(
        self,
        backend: SwapBackend,
        config: Optional[BotConfig] = None,
        broadcaster: Optional[EventBroadcaster] = None,
        scorer: Optional[AstrologyScorer] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
        gate: Optional[TradeGate] = None,
        sizing: Optional[ReserveSizingPolicy] = None,
    ):
        self.config = config or get_config()
        trading = self.config.trading
        self.mode = self.config.app.mode
        self.backend = backend
        self.token_in = trading.token_in
        self.token_out = trading.token_out

        self.executor = TradeExecutor(
            backend,
            token_in=self.token_in,
            token_out=self.token_out,
            wallet_address=self.config.wallet.address,
            slippage_tolerance=trading.slippage_tolerance,
        )
        self.gate = gate or TradeGate(min_interval_seconds=trading.min_seconds_between_trades)
        self.sizing = sizing or ReserveSizingPolicy(
            max_per_trade=trading.max_per_trade,
            reserve_floor=trading.min_reserve,
            min_defensive_amount=trading.min_defensive_amount,
        )
        self.scorer = scorer or AstrologyScorer(self.config.scoring.retrograde_windows())
        if now_fn is None:
            tz = ZoneInfo(self.config.scoring.timezone)
            now_fn = lambda: datetime.now(tz)  # noqa: E731
        self._now_fn = now_fn

        self.broadcaster = broadcaster or EventBroadcaster()
        self.broadcaster.set_snapshot_fn(self.build_snapshot)
        self.error_handler = TradeErrorHandler(
            notify_fn=lambda payload: self.broadcaster.broadcast("error", payload),
        )

        self._cycle_lock = asyncio.Lock()
        self.scheduler = CycleScheduler(
            self.run_decision_cycle,
            interval_seconds=trading.check_interval_ms / 1000.0,
            is_busy=self._cycle_lock.locked,
        )

        # State
        self.history: List[TradeRecord] = []
        self.latest_analysis: Optional[AnalysisResult] = None
        self.pair_verified = False
        self.cycle_count = 0
        self._start_time = 0.0
        self._last_trade_time: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _require_tokens(self) -> None:
        if not self.token_in or not self.token_out:
            raise ConfigurationMissingError(
                "Token identifiers are not configured (trading.token_in / trading.token_out)"
            )

    async def initialize(self) -> None:
        """Resolve the pair with a one-unit quote. Raises on failure."""
        self._require_tokens()
        init = getattr(self.backend, "initialize", None)
        if init is not None:
            await init()
        try:
            quote = await self.executor.get_quote(1.0)
        except (SwapError, OSError, asyncio.TimeoutError) as e:
            raise PairVerificationError(
                f"Could not verify {self.token_in} -> {self.token_out}: {e}"
            ) from e
        self.pair_verified = True
        logger.info(
            "Token pair verified",
            token_in=self.token_in,
            token_out=self.token_out,
            quote_for_one=quote.out_amount,
            fee_tier=quote.fee_tier,
            mode=self.mode,
        )

    async def start(self) -> Dict[str, Any]:
        if self.is_running:
            logger.warning("Start requested but bot is already running")
            return {"success": False, "message": "Bot is already running"}
        self._require_tokens()
        if not self.pair_verified:
            raise ConfigurationMissingError(
                f"Token pair {self.token_in} -> {self.token_out} is unresolved; call initialize() first"
            )

        self.scheduler.start()
        self._start_time = time.time()
        logger.info(
            "Bot started",
            token_in=self.token_in,
            token_out=self.token_out,
            max_per_trade=self.sizing.max_per_trade,
            reserve=self.sizing.reserve_floor,
            interval_ms=self.config.trading.check_interval_ms,
        )
        await self.broadcaster.broadcast("bot_started", {"timestamp": _utcnow_iso()})
        outcome = await self.run_decision_cycle()
        return {"success": True, "message": "Bot started", "first_cycle": outcome.action.value}

    async def stop(self) -> Dict[str, Any]:
        if not self.is_running:
            logger.warning("Stop requested but bot is not running")
            return {"success": False, "message": "Bot is not running"}
        self.scheduler.stop()
        logger.info("Bot stopped", cycles=self.cycle_count, trades=len(self.history))
        await self.broadcaster.broadcast("bot_stopped", {"timestamp": _utcnow_iso()})
        return {"success": True, "message": "Bot stopped"}

    async def shutdown(self) -> None:
        """Stop, let an in-flight cycle finish, release the backend."""
        if self.is_running:
            await self.stop()
        await self.scheduler.wait_stopped()
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Decision cycle
    # ------------------------------------------------------------------

    async def run_decision_cycle(self) -> CycleOutcome:
        async with self._cycle_lock:
            self.cycle_count += 1
            with log_performance(logger, "Decision cycle", cycle=self.cycle_count):
                return await self._decide()

    def _analyze(self) -> AnalysisResult:
        analysis = self.scorer.evaluate(self._now_fn())
        self.latest_analysis = analysis
        logger.info(
            "Celestial analysis",
            score=analysis.score,
            recommendation=analysis.recommendation,
            confidence=analysis.confidence.value,
            moon_phase=analysis.moon_phase,
        )
        for line in format_breakdown(analysis):
            logger.debug(line)
        return analysis

    async def _decide(self) -> CycleOutcome:
        analysis = self._analyze()
        await self.broadcaster.broadcast("analysis", analysis.to_dict())

        if analysis.buy_immediately:
            if self.gate.can_trade():
                return await self._live_trade(analysis)
            wait = self.gate.time_until_next_trade()
            logger.info("Strong buy but trade gate closed", next_trade_in=wait)
            await self.broadcaster.broadcast("status", self.build_status())
            return CycleOutcome(CycleAction.GATED, analysis, reason=f"Next trade in {wait}")

        if analysis.is_defensive:
            return await self._defensive_swap(analysis)

        if analysis.tier is RecommendationTier.WEAK_BUY:
            logger.info("Mixed signals, waiting for clearer alignment", score=analysis.score)
            return CycleOutcome(CycleAction.WEAK_BUY_WAIT, analysis)

        logger.info("Holding, conditions not favorable", score=analysis.score)
        return CycleOutcome(CycleAction.HOLD, analysis)

    async def _live_trade(self, analysis: AnalysisResult) -> CycleOutcome:
        try:
            balance = await self.executor.get_balance()
        except Exception as e:
            await self.error_handler.handle(e, context="trade_preparation")
            return CycleOutcome(CycleAction.FAILED, analysis, reason=str(e))

        sizing = self.sizing.size_normal_trade(balance)
        if not sizing.allowed:
            required = self.sizing.max_per_trade + self.sizing.reserve_floor
            err = InsufficientBalanceError(
                f"Insufficient balance: {balance:g} / {required:g} needed",
                balance=balance,
                required=required,
            )
            await self.error_handler.handle(
                err,
                context="trade_preparation",
                current_balance=balance,
                required_balance=required,
                reserve=self.sizing.reserve_floor,
            )
            return CycleOutcome(CycleAction.LIVE_NOOP, analysis, reason=sizing.reason)

        try:
            record = await self.executor.execute(
                TradeKind.LIVE, sizing.amount, analysis, reserve_kept=self.sizing.reserve_floor,
            )
        except Exception as e:
            await self.error_handler.handle(e, context="trade_execution", amount=sizing.amount)
            return CycleOutcome(CycleAction.FAILED, analysis, reason=str(e))

        self.gate.record_trade()
        self._last_trade_time = record.timestamp
        self.history.append(record)
        await self.broadcaster.broadcast("trade", record.to_dict())
        await self.broadcaster.broadcast("status", self.build_status())
        return CycleOutcome(CycleAction.LIVE_TRADE, analysis, record=record)

    async def _defensive_swap(self, analysis: AnalysisResult) -> CycleOutcome:
        logger.warning("Weak celestial signals, defensive swap required", score=analysis.score)
        reserve = self.sizing.reserve_floor
        try:
            balance = await self.executor.get_balance()
        except Exception as e:
            await self.error_handler.handle(e, context="defensive_swap", reserve_required=reserve)
            return CycleOutcome(CycleAction.FAILED, analysis, reason=str(e))

        sizing = self.sizing.size_defensive_trade(balance)
        if not sizing.allowed:
            await self.error_handler.handle(
                SizingNoop(sizing.reason),
                context="defensive_swap",
                balance=balance,
                reserve=reserve,
                available=max(0.0, balance - reserve),
            )
            return CycleOutcome(CycleAction.DEFENSIVE_NOOP, analysis, reason=sizing.reason)

        try:
            record = await self.executor.execute(
                TradeKind.DEFENSIVE_SWAP, sizing.amount, analysis, reserve_kept=reserve,
            )
        except Exception as e:
            await self.error_handler.handle(
                e,
                context="defensive_swap",
                action="Protect assets during weak signals",
                reserve_required=reserve,
            )
            return CycleOutcome(CycleAction.FAILED, analysis, reason=str(e))

        self.history.append(record)
        await self.broadcaster.broadcast("trade", record.to_dict())
        await self.broadcaster.broadcast("defensive_action", {
            "action": "DEFENSIVE_SWAP_EXECUTED",
            "reason": "Weak cosmic signals",
            "amount": sizing.amount,
            "reserve_kept": reserve,
            "score": analysis.score,
            "final_balance": sizing.projected_balance,
        })
        return CycleOutcome(CycleAction.DEFENSIVE_SWAP, analysis, record=record)

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    async def force_analysis(self) -> AnalysisResult:
        """Score and publish now. Never trades."""
        analysis = self._analyze()
        await self.broadcaster.broadcast("analysis", analysis.to_dict())
        return analysis

    async def force_test_trade(self) -> TradeRecord:
        """Diagnostic swap of ``test_trade_amount``. Ignores the gate, keeps the reserve."""
        return await self._diagnostic_trade(
            TradeKind.TEST, self.config.trading.test_trade_amount, context="test_trade",
        )

    async def execute_immediate_test(self) -> TradeRecord:
        """Boot-time diagnostic swap of ``max_per_trade``."""
        return await self._diagnostic_trade(
            TradeKind.IMMEDIATE_TEST, self.sizing.max_per_trade, context="immediate_test",
        )

    async def _diagnostic_trade(self, kind: TradeKind, amount: float, context: str) -> TradeRecord:
        async with self._cycle_lock:
            try:
                balance = await self.executor.get_balance()
                sizing = self.sizing.size_fixed_trade(balance, amount)
                if not sizing.allowed:
                    raise InsufficientBalanceError(
                        sizing.reason, balance=balance, required=amount + self.sizing.reserve_floor,
                    )
                record = await self.executor.execute(
                    kind, amount, reserve_kept=self.sizing.reserve_floor,
                )
            except Exception as e:
                await self.error_handler.handle(e, context=context, amount=amount)
                raise
        self.history.append(record)
        await self.broadcaster.broadcast("trade", record.to_dict())
        logger.info("Diagnostic trade succeeded", kind=kind.value, amount=amount)
        return record

    # ------------------------------------------------------------------
    # Status payloads
    # ------------------------------------------------------------------

    def recent_trades(self, limit: int = 10) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        return [r.to_dict() for r in self.history[-limit:]]

    def build_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "mode": self.mode,
            "can_trade": self.gate.can_trade(),
            "next_trade_in": self.gate.time_until_next_trade(),
            "last_trade_time": self._last_trade_time.isoformat() if self._last_trade_time else None,
            "token_in": self.token_in,
            "token_out": self.token_out,
            "check_interval_ms": self.config.trading.check_interval_ms,
            "cycle_count": self.cycle_count,
            "trade_count": len(self.history),
            "uptime_seconds": time.time() - self._start_time if self._start_time else 0.0,
        }

    def build_snapshot(self) -> Dict[str, Any]:
        """Payload a newly connected observer receives first."""
        return {
            "is_running": self.is_running,
            "current_analysis": self.latest_analysis.to_dict() if self.latest_analysis else None,
            "trade_history": self.recent_trades(self.config.dashboard.history_limit),
        }


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
