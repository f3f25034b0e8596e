"""Tests for the GalaSwap gateway client against httpx.MockTransport."""

from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest

from astroswap.exchange.exceptions import (
    AuthenticationError,
    InsufficientBalanceError,
    InvalidSwapError,
    PairNotFoundError,
    RateLimitError,
    ServiceUnavailableError,
    SlippageExceededError,
)
from astroswap.exchange.gswap_client import GSwapGatewayClient

TOKEN_IN = "GALA|Unit|none|none"
TOKEN_OUT = "GUSDC|Unit|none|none"
WALLET = "eth|abc"


def _client(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> GSwapGatewayClient:
    kwargs.setdefault("retry_base_delay", 0.0)
    return GSwapGatewayClient(
        base_url="http://gateway.test",
        api_key="gw-secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_quote_request_and_parse():
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"amountOut": "0.0195", "feeTier": 3000})

    client = _client(handler)
    quote = await client.quote_exact_input(TOKEN_IN, TOKEN_OUT, 1.0)
    await client.close()

    assert quote.out_amount == pytest.approx(0.0195)
    assert quote.fee_tier == 3000
    request = seen[0]
    assert request.url.path == "/v1/quote"
    assert request.headers["X-API-Key"] == "gw-secret"
    assert json.loads(request.content) == {"tokenIn": TOKEN_IN, "tokenOut": TOKEN_OUT, "amountIn": "1.0"}


@pytest.mark.asyncio
async def test_swap_payload():
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"transaction_id": "tx-1", "status": "FILLED"})

    client = _client(handler)
    receipt = await client.swap(TOKEN_IN, TOKEN_OUT, 500, 1.0, 0.019, WALLET)
    await client.close()

    assert receipt["transaction_id"] == "tx-1"
    body = json.loads(seen[0].content)
    assert body == {
        "tokenIn": TOKEN_IN,
        "tokenOut": TOKEN_OUT,
        "fee": 500,
        "amountIn": "1.0",
        "amountOutMinimum": "0.019",
        "walletAddress": WALLET,
    }


@pytest.mark.asyncio
async def test_balance_query():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/v1/balances/{WALLET}"
        assert request.url.params["token"] == TOKEN_IN
        return httpx.Response(200, json={"balance": "12.5"})

    client = _client(handler)
    assert await client.get_balance(WALLET, TOKEN_IN) == 12.5
    await client.close()


@pytest.mark.asyncio
async def test_transient_quote_failure_is_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) < 3:
            return httpx.Response(503, json={"error": "upstream busy"})
        return httpx.Response(200, json={"amountOut": 0.02, "feeTier": 500})

    client = _client(handler, max_retries=3)
    quote = await client.quote_exact_input(TOKEN_IN, TOKEN_OUT, 1.0)
    await client.close()

    assert len(calls) == 3
    assert quote.out_amount == 0.02


@pytest.mark.asyncio
async def test_retries_exhausted_raise():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        raise httpx.ConnectError("refused", request=request)

    client = _client(handler, max_retries=2)
    with pytest.raises(ServiceUnavailableError):
        await client.get_balance(WALLET, TOKEN_IN)
    await client.close()
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_swap_is_never_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(502, text="bad gateway")

    client = _client(handler, max_retries=3)
    with pytest.raises(ServiceUnavailableError):
        await client.swap(TOKEN_IN, TOKEN_OUT, 500, 1.0, 0.019, WALLET)
    await client.close()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(404, json={"error": "no pool"})

    client = _client(handler, max_retries=3)
    with pytest.raises(PairNotFoundError):
        await client.quote_exact_input(TOKEN_IN, TOKEN_OUT, 1.0)
    await client.close()
    assert len(calls) == 1


@pytest.mark.parametrize(
    "status,body,headers,expected",
    [
        (429, {"error": "slow down"}, {"Retry-After": "2"}, RateLimitError),
        (400, {"error": "Insufficient GALA balance"}, {}, InsufficientBalanceError),
        (409, {"message": "Slippage tolerance exceeded"}, {}, SlippageExceededError),
        (401, {"error": "bad key"}, {}, AuthenticationError),
        (403, {"error": "forbidden"}, {}, AuthenticationError),
        (422, {"error": "fee tier invalid"}, {}, InvalidSwapError),
        (500, {"error": "boom"}, {}, ServiceUnavailableError),
    ],
)
def test_error_mapping(status, body, headers, expected):
    response = httpx.Response(status, json=body, headers=headers)
    error = GSwapGatewayClient._map_error(response)
    assert isinstance(error, expected)
    if expected is RateLimitError:
        assert error.retry_after == 2.0


@pytest.mark.asyncio
async def test_non_json_body_is_invalid():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    client = _client(handler, max_retries=0)
    with pytest.raises(InvalidSwapError):
        await client.get_balance(WALLET, TOKEN_IN)
    await client.close()


@pytest.mark.asyncio
async def test_malformed_quote_is_invalid():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    client = _client(handler)
    with pytest.raises(InvalidSwapError):
        await client.quote_exact_input(TOKEN_IN, TOKEN_OUT, 1.0)
    await client.close()
