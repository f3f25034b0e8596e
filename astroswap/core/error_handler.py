"""
Trade Error Handler - classify trade-path failures and push them out.

A failed quote, balance read or swap never stops the scheduler. The error is
classified, logged at the level its kind deserves and pushed to observers as
an ``error`` event; the caller then carries on with the next cycle.
"""

from __future__ import annotations

import asyncio
import enum
import traceback
from typing import Any, Awaitable, Callable, Dict, Optional

from astroswap.core.config import ConfigurationMissingError
from astroswap.core.logger import get_logger
from astroswap.exchange.exceptions import (
    InsufficientBalanceError,
    SlippageExceededError,
    TransientSwapError,
)

logger = get_logger("error_handler")

NotifyFn = Callable[[Dict[str, Any]], Awaitable[None]]


class ErrorKind(str, enum.Enum):
    INSUFFICIENT_BALANCE = "insufficient_balance"
    SLIPPAGE_EXCEEDED = "slippage_exceeded"
    EXTERNAL_SERVICE_FAILURE = "external_service_failure"
    SIZING_NOOP = "sizing_noop"
    CONFIGURATION_MISSING = "configuration_missing"


# Kinds that are expected operating conditions rather than faults.
_EXPECTED_KINDS = frozenset({
    ErrorKind.INSUFFICIENT_BALANCE,
    ErrorKind.SLIPPAGE_EXCEEDED,
})


class SizingNoop(Exception):
    """Sizing refused the trade; carries the refusal reason. Logged, never pushed."""


def classify_error(error: BaseException) -> ErrorKind:
    """Typed exceptions first, then message substrings."""
    if isinstance(error, InsufficientBalanceError):
        return ErrorKind.INSUFFICIENT_BALANCE
    if isinstance(error, SlippageExceededError):
        return ErrorKind.SLIPPAGE_EXCEEDED
    if isinstance(error, SizingNoop):
        return ErrorKind.SIZING_NOOP
    if isinstance(error, ConfigurationMissingError):
        return ErrorKind.CONFIGURATION_MISSING

    message = str(error).lower()
    if "insufficient" in message:
        return ErrorKind.INSUFFICIENT_BALANCE
    if "slippage" in message:
        return ErrorKind.SLIPPAGE_EXCEEDED
    return ErrorKind.EXTERNAL_SERVICE_FAILURE


class TradeErrorHandler:
    """
    Centralized handling for trade-path errors.

    Usage::

        handler = TradeErrorHandler(notify_fn=lambda p: broadcaster.broadcast("error", p))
        await handler.handle(err, context="trade_execution", amount=1.0)
    """

    def __init__(self, notify_fn: Optional[NotifyFn] = None):
        self._notify_fn = notify_fn

    def set_notify_fn(self, fn: NotifyFn) -> None:
        self._notify_fn = fn

    @staticmethod
    def build_payload(error: BaseException, kind: ErrorKind, context: str, **extra: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "message": str(error) or type(error).__name__,
            "error_type": kind.value,
            "exception": type(error).__name__,
            "context": context,
        }
        payload.update(extra)
        return payload

    async def handle(self, error: BaseException, *, context: str = "", **extra: Any) -> ErrorKind:
        """
        Classify, log and notify. Returns the kind so callers can branch.
        """
        kind = classify_error(error)
        if kind is ErrorKind.SIZING_NOOP:
            logger.info(f"{context or 'trade'} skipped: {error}", error_type=kind.value, **extra)
            return kind

        msg = f"{context or 'trade'} failed: {type(error).__name__}: {error}"

        if kind in _EXPECTED_KINDS:
            logger.warning(msg, error_type=kind.value, **extra)
        else:
            tb = traceback.format_exception(type(error), error, error.__traceback__)
            logger.error(
                msg,
                error_type=kind.value,
                transient=isinstance(error, (TransientSwapError, asyncio.TimeoutError, ConnectionError)),
                traceback="".join(tb[-3:]),
                **extra,
            )

        if self._notify_fn is not None:
            payload = self.build_payload(error, kind, context, **extra)
            try:
                await self._notify_fn(payload)
            except Exception as notify_err:
                logger.warning("Error notification failed", error=str(notify_err))

        return kind
