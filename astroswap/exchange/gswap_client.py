"""
GalaSwap Gateway Client - async HTTP adapter for live mode.

Talks to a small signing gateway that wraps the GalaSwap SDK and holds the
wallet key, so this process never sees it:

    POST /v1/quote                   {tokenIn, tokenOut, amountIn}
    POST /v1/swap                    {tokenIn, tokenOut, fee, amountIn,
                                      amountOutMinimum, walletAddress}
    GET  /v1/balances/{wallet}?token=...

Quotes and balance reads are retried with exponential backoff on transient
failures. Swap submissions are never retried.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from astroswap.core.logger import get_logger
from astroswap.exchange.exceptions import (
    AuthenticationError,
    InsufficientBalanceError,
    InvalidSwapError,
    PairNotFoundError,
    PermanentSwapError,
    RateLimitError,
    ServiceUnavailableError,
    SlippageExceededError,
    SwapError,
    TransientSwapError,
)
from astroswap.execution.executor import Quote

logger = get_logger("gswap_client")

T = TypeVar("T")


class GSwapGatewayClient:
    """Minimal async client for the GalaSwap signing gateway."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:3000",
        api_key: str = "",
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "http://127.0.0.1:3000").rstrip("/")
        self.api_key = (api_key or "").strip()
        self.timeout_seconds = float(timeout_seconds)
        self.max_retries = max(0, int(max_retries))
        self.retry_base_delay = float(retry_base_delay)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def initialize(self) -> None:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["X-API-Key"] = self.api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                headers=headers,
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # SwapBackend interface
    # ------------------------------------------------------------------

    async def quote_exact_input(self, token_in: str, token_out: str, amount: float) -> Quote:
        async def _call() -> Quote:
            data = await self._request(
                "POST",
                "/v1/quote",
                json={"tokenIn": token_in, "tokenOut": token_out, "amountIn": str(amount)},
            )
            try:
                return Quote(
                    amount_in=amount,
                    out_amount=float(data["amountOut"]),
                    fee_tier=int(data["feeTier"]),
                    raw=data,
                )
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidSwapError(f"Malformed quote response: {data!r}") from e

        return await self._with_retries("quote", _call)

    async def swap(
        self,
        token_in: str,
        token_out: str,
        fee_tier: int,
        amount_in: float,
        amount_out_minimum: float,
        wallet_address: str,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/v1/swap",
            json={
                "tokenIn": token_in,
                "tokenOut": token_out,
                "fee": fee_tier,
                "amountIn": str(amount_in),
                "amountOutMinimum": str(amount_out_minimum),
                "walletAddress": wallet_address,
            },
        )

    async def get_balance(self, wallet_address: str, token: str) -> float:
        async def _call() -> float:
            data = await self._request(
                "GET", f"/v1/balances/{wallet_address}", params={"token": token},
            )
            try:
                return float(data.get("balance", 0.0))
            except (TypeError, ValueError) as e:
                raise InvalidSwapError(f"Malformed balance response: {data!r}") from e

        return await self._with_retries("balance", _call)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _with_retries(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await call()
            except TransientSwapError as e:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_base_delay * (2 ** attempt)
                if isinstance(e, RateLimitError) and e.retry_after > 0:
                    delay = max(delay, e.retry_after)
                attempt += 1
                logger.warning(
                    "Gateway call failed, retrying",
                    operation=operation,
                    attempt=attempt,
                    retry_in=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        if self._client is None:
            await self.initialize()
        try:
            resp = await self._client.request(method, path, **kwargs)
        except (httpx.ConnectError, httpx.TimeoutException, httpx.RemoteProtocolError) as e:
            raise ServiceUnavailableError(f"Gateway unreachable: {e!r}") from e

        if resp.status_code >= 400:
            raise self._map_error(resp)

        try:
            payload = resp.json()
        except ValueError as e:
            raise InvalidSwapError(f"Gateway returned non-JSON body: {resp.text[:200]}") from e
        if not isinstance(payload, dict):
            raise InvalidSwapError(f"Gateway returned unexpected body: {payload!r}")
        return payload

    @staticmethod
    def _map_error(resp: httpx.Response) -> SwapError:
        status = resp.status_code
        try:
            body = resp.json()
            message = str(body.get("error") or body.get("message") or body)
        except ValueError:
            message = resp.text[:200]
        lowered = message.lower()

        if status == 429:
            try:
                retry_after = float(resp.headers.get("Retry-After", 0) or 0)
            except ValueError:
                retry_after = 0.0
            return RateLimitError(message or "Rate limit exceeded", retry_after=retry_after)
        if "insufficient" in lowered:
            return InsufficientBalanceError(message)
        if "slippage" in lowered:
            return SlippageExceededError(message)
        if status in (401, 403):
            return AuthenticationError(message or "Gateway rejected credentials")
        if status == 404:
            return PairNotFoundError(message or "Pair not found")
        if status >= 500:
            return ServiceUnavailableError(f"Gateway error {status}: {message}")
        if status in (400, 422):
            return InvalidSwapError(message)
        return PermanentSwapError(f"Gateway error {status}: {message}")
