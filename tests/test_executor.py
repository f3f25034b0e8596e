"""Tests for TradeExecutor on the paper backend."""

from __future__ import annotations

import pytest

from astroswap.exchange.exceptions import (
    InsufficientBalanceError,
    InvalidSwapError,
    PairNotFoundError,
)
from astroswap.execution.executor import TradeExecutor, TradeKind

from tests.conftest import TOKEN_IN, TOKEN_OUT, make_analysis, make_backend


def _executor(backend, slippage=0.05) -> TradeExecutor:
    return TradeExecutor(
        backend,
        token_in=TOKEN_IN,
        token_out=TOKEN_OUT,
        wallet_address="eth|abc",
        slippage_tolerance=slippage,
    )


def test_minimum_out_applies_slippage():
    executor = _executor(make_backend())
    assert executor.minimum_out(100.0) == pytest.approx(95.0)


@pytest.mark.asyncio
async def test_live_execution_builds_record():
    backend = make_backend(balance=10.0)
    executor = _executor(backend)

    record = await executor.execute(TradeKind.LIVE, 1.0, make_analysis(65), reserve_kept=5.0)

    assert record.kind is TradeKind.LIVE
    assert record.amount_out == pytest.approx(0.02)
    assert record.amount_out_minimum == pytest.approx(0.019)
    assert record.fee_tier == 500
    assert record.score == 65
    assert record.recommendation == "BUY - COSMIC ALIGNMENT"
    assert record.receipt["transaction_id"].startswith("paper-")
    assert backend.swaps[0]["wallet"] == "eth|abc"
    payload = record.to_dict()
    assert payload["type"] == "live"
    assert payload["reserve_kept"] == 5.0


@pytest.mark.asyncio
async def test_diagnostic_record_has_no_score():
    executor = _executor(make_backend())
    record = await executor.execute(TradeKind.IMMEDIATE_TEST, 1.0, make_analysis(65))
    assert record.score is None
    assert record.recommendation == ""


@pytest.mark.asyncio
async def test_non_positive_amount_rejected():
    backend = make_backend()
    with pytest.raises(InvalidSwapError):
        await _executor(backend).execute(TradeKind.LIVE, 0.0)
    assert backend.quote_calls == 0


@pytest.mark.asyncio
async def test_backend_errors_propagate():
    backend = make_backend(balance=0.5)
    with pytest.raises(InsufficientBalanceError) as exc:
        await _executor(backend).execute(TradeKind.LIVE, 1.0)
    assert exc.value.balance == 0.5
    assert exc.value.required == 1.0
    assert backend.swaps == []


@pytest.mark.asyncio
async def test_paper_backend_unknown_pair():
    backend = make_backend()
    with pytest.raises(PairNotFoundError):
        await backend.quote_exact_input(TOKEN_OUT, TOKEN_IN, 1.0)


@pytest.mark.asyncio
async def test_paper_backend_balances_and_failures():
    backend = make_backend(balance=3.0)
    backend.set_balance(TOKEN_OUT, 1.0)
    assert await backend.get_balance("eth|abc", TOKEN_OUT) == 1.0

    backend.fail_next("balance", RuntimeError("flaky"))
    with pytest.raises(RuntimeError):
        await backend.get_balance("eth|abc", TOKEN_IN)
    assert await backend.get_balance("eth|abc", TOKEN_IN) == 3.0
