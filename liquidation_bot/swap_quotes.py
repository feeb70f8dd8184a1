from __future__ import annotations

import logging
from typing import Any

import httpx

from liquidation_bot.errors import SubmissionError
from liquidation_bot.models import SwapLeg

LOGGER = logging.getLogger(__name__)


class SwapQuoteClient:
    """Client for a 1inch-style aggregator ``/swap`` endpoint.

    The returned route's ``tx.to`` and ``tx.data`` are handed to the v2
    liquidator, which executes them inside the flash-loan callback.
    """

    def __init__(
        self,
        api_url: str,
        chain_id: int,
        *,
        slippage_pct: float = 2.0,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._chain_id = chain_id
        self._slippage_pct = slippage_pct
        self._client = client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            timeout=timeout_seconds,
        )

    async def quote(self, asset: str, base_token: str, amount: int, from_address: str) -> SwapLeg:
        params: dict[str, Any] = {
            "fromTokenAddress": asset,
            "toTokenAddress": base_token,
            "amount": str(amount),
            "fromAddress": from_address,
            "slippage": self._slippage_pct,
            "disableEstimate": "true",
            "allowPartialFill": "false",
        }
        try:
            response = await self._client.get(f"/{self._chain_id}/swap", params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SubmissionError(f"swap quote for {asset} failed: {exc}") from exc

        tx = payload.get("tx") if isinstance(payload, dict) else None
        if not isinstance(tx, dict) or not tx.get("to") or not tx.get("data"):
            raise SubmissionError(f"swap quote for {asset} has no route: {payload!r}")
        LOGGER.debug("swap quote asset=%s amount=%d target=%s", asset, amount, tx["to"])
        return SwapLeg(asset=asset, target=tx["to"], call_data=tx["data"], amount=amount)

    async def aclose(self) -> None:
        await self._client.aclose()
