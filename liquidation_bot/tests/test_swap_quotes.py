from __future__ import annotations

import asyncio

import httpx
import pytest

from liquidation_bot.errors import SubmissionError
from liquidation_bot.swap_quotes import SwapQuoteClient

ASSET = "0x" + "a1" * 20
BASE = "0x" + "ba" * 20
FROM = "0x" + "1d" * 20


def _client(handler) -> SwapQuoteClient:
    return SwapQuoteClient(
        "https://api.example/v5.0",
        1,
        client=httpx.AsyncClient(base_url="https://api.example/v5.0", transport=httpx.MockTransport(handler)),
    )


class TestSwapQuoteClient:
    def test_quote_request_and_route(self) -> None:
        seen: dict[str, httpx.Request] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, json={"tx": {"to": "0x" + "5a" * 20, "data": "0xabcdef"}})

        leg = asyncio.run(_client(handler).quote(ASSET, BASE, 999, FROM))

        request = seen["request"]
        assert request.url.path == "/v5.0/1/swap"
        params = request.url.params
        assert params["fromTokenAddress"] == ASSET
        assert params["toTokenAddress"] == BASE
        assert params["amount"] == "999"
        assert params["fromAddress"] == FROM
        assert params["disableEstimate"] == "true"
        assert params["allowPartialFill"] == "false"
        assert leg.target == "0x" + "5a" * 20
        assert leg.call_data == "0xabcdef"
        assert leg.amount == 999

    def test_http_error(self) -> None:
        client = _client(lambda request: httpx.Response(500, json={"error": "down"}))
        with pytest.raises(SubmissionError):
            asyncio.run(client.quote(ASSET, BASE, 1, FROM))

    def test_missing_route(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"statusCode": 400}))
        with pytest.raises(SubmissionError, match="no route"):
            asyncio.run(client.quote(ASSET, BASE, 1, FROM))
