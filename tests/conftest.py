"""Shared test fixtures and stubs for AstroSwap tests.

Provides a fixed-score scorer, recording observers, a manual clock and an
engine factory wired to the in-memory paper backend.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from astroswap.core.config import BotConfig, ConfigManager
from astroswap.core.engine import BotEngine
from astroswap.exchange.paper import PaperSwapBackend
from astroswap.execution.risk_manager import TradeGate
from astroswap.strategies.astrology import AnalysisResult, Factor, FactorKind

TOKEN_IN = "GALA|Unit|none|none"
TOKEN_OUT = "GUSDC|Unit|none|none"
FIXED_NOW = datetime(2025, 1, 6, 6, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Stub classes
# ---------------------------------------------------------------------------


class ManualClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 10_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FixedScorer:
    """Scorer stub returning a single-factor analysis with ``score`` points.

    ``score`` can be changed between cycles.
    """

    def __init__(self, score: int) -> None:
        self.score = score
        self.calls = 0

    def evaluate(self, now: datetime) -> AnalysisResult:
        self.calls += 1
        return make_analysis(self.score, now)


class SlowSwapBackend(PaperSwapBackend):
    """Paper backend whose swaps take ``delay`` seconds to settle."""

    def __init__(self, *args: Any, delay: float = 0.1, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.delay = delay

    async def swap(self, *args: Any, **kwargs: Any) -> Dict[str, Any]:
        await asyncio.sleep(self.delay)
        return await super().swap(*args, **kwargs)


class RecordingObserver:
    """Observer that keeps every message it receives."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.messages.append(data)

    @property
    def types(self) -> List[str]:
        return [m["type"] for m in self.messages]

    def of_type(self, kind: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["type"] == kind]


class FailingObserver:
    """Observer whose sends fail after ``ok_sends`` successes."""

    def __init__(self, ok_sends: int = 0) -> None:
        self.ok_sends = ok_sends
        self.attempts = 0

    async def send_json(self, data: Any) -> None:
        self.attempts += 1
        if self.attempts > self.ok_sends:
            raise ConnectionError("socket closed")


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_analysis(score: int, now: Optional[datetime] = None) -> AnalysisResult:
    kind = FactorKind.POSITIVE if score >= 0 else FactorKind.NEGATIVE
    factor = Factor(kind, "Fixed", "test factor", score)
    return AnalysisResult.from_factors([factor], timestamp=now or FIXED_NOW, moon_phase="New Moon")


def make_config(mode: str = "paper", dashboard: Optional[Dict[str, Any]] = None, **trading: Any) -> BotConfig:
    data: Dict[str, Any] = {
        "app": {"mode": mode},
        "trading": {
            "token_in": TOKEN_IN,
            "token_out": TOKEN_OUT,
            "check_interval_ms": 60_000,
            "max_per_trade": 1.0,
            "min_reserve": 5.0,
            **trading,
        },
        "dashboard": {"rate_limit_enabled": False, **(dashboard or {})},
    }
    if mode == "live":
        data["wallet"] = {"address": "eth|0000000000000000000000000000000000000001"}
    return BotConfig(**data)


def make_backend(balance: float = 10.0, **kwargs: Any) -> PaperSwapBackend:
    return PaperSwapBackend(
        token_in=TOKEN_IN,
        token_out=TOKEN_OUT,
        price=0.02,
        balances={TOKEN_IN: balance},
        **kwargs,
    )


def make_engine(
    score: int = 50,
    balance: float = 10.0,
    config: Optional[BotConfig] = None,
    backend: Optional[PaperSwapBackend] = None,
    clock: Optional[ManualClock] = None,
) -> BotEngine:
    config = config or make_config()
    clock = clock or ManualClock()
    return BotEngine(
        backend or make_backend(balance),
        config=config,
        scorer=FixedScorer(score),
        now_fn=lambda: FIXED_NOW,
        gate=TradeGate(config.trading.min_seconds_between_trades, clock=clock),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


# ---------------------------------------------------------------------------
# Auto-use fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_config_singleton():
    """Prevent ConfigManager singleton state from leaking between tests."""
    saved_instance = ConfigManager._instance
    saved_config = ConfigManager._config
    yield
    ConfigManager._instance = saved_instance
    ConfigManager._config = saved_config
