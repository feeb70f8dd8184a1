"""Async read adapter over the Comet ledger contract.

All reads are pure ``eth_call``s. Failures, including node timeouts, are
re-raised as ``LedgerError`` so the main loop can abort the iteration and
retry on the next one.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable, Protocol, TypeVar

from web3 import AsyncWeb3

from liquidation_bot.abis import COMET_ABI
from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.errors import LedgerError
from liquidation_bot.models import Asset

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerReader(Protocol):
    address: str

    async def num_assets(self) -> int: ...

    async def get_asset_info(self, index: int) -> Asset: ...

    async def is_liquidatable(self, account: str) -> bool: ...

    async def get_collateral_reserves(self, asset: str) -> int: ...

    async def get_price(self, price_feed: str) -> int: ...

    async def base_token(self) -> str: ...

    async def withdraw_sources(
        self,
        from_block: int = 0,
        to_block: int | None = None,
        chunk_size: int = 0,
    ) -> list[str]: ...


def _block_ranges(start: int, end: int, chunk_size: int) -> Iterable[tuple[int, int]]:
    if chunk_size <= 0:
        yield start, end
        return
    cursor = start
    while cursor <= end:
        upper = min(cursor + chunk_size - 1, end)
        yield cursor, upper
        cursor = upper + 1


class CometLedger:
    def __init__(self, w3: AsyncWeb3, address: str) -> None:
        self._w3 = w3
        self.address = AsyncWeb3.to_checksum_address(address)
        self._contract = w3.eth.contract(address=self.address, abi=COMET_ABI)

    async def _call(self, name: str, *args: Any) -> Any:
        try:
            return await getattr(self._contract.functions, name)(*args).call()
        except Exception as exc:
            raise LedgerError(f"{name}{args!r} failed: {exc}") from exc

    async def num_assets(self) -> int:
        return int(await self._call("numAssets"))

    async def get_asset_info(self, index: int) -> Asset:
        info = await self._call("getAssetInfo", index)
        # (offset, asset, priceFeed, scale, ...)
        return Asset(address=info[1], price_feed=info[2], scale=int(info[3]))

    async def is_liquidatable(self, account: str) -> bool:
        return bool(await self._call("isLiquidatable", account))

    async def get_collateral_reserves(self, asset: str) -> int:
        return int(await self._call("getCollateralReserves", asset))

    async def get_price(self, price_feed: str) -> int:
        return int(await self._call("getPrice", price_feed))

    async def base_token(self) -> str:
        return str(await self._call("baseToken"))

    async def withdraw_sources(
        self,
        from_block: int = 0,
        to_block: int | None = None,
        chunk_size: int = 0,
    ) -> list[str]:
        """Return the ``src`` of every Withdraw event, in log order.

        ``chunk_size`` splits the replay into several ``eth_getLogs`` requests
        for nodes that cap the block span of a single query.
        """
        try:
            if to_block is None:
                to_block = await self._w3.eth.block_number
            sources: list[str] = []
            for start, end in _block_ranges(from_block, to_block, chunk_size):
                logs = await self._contract.events.Withdraw.get_logs(from_block=start, to_block=end)
                sources.extend(entry["args"]["src"] for entry in logs)
                LOGGER.debug("withdraw replay blocks=%d..%d events=%d", start, end, len(logs))
        except Exception as exc:
            raise LedgerError(f"withdraw event replay failed: {exc}") from exc
        return sources


async def bounded_read(
    token: CancellationToken,
    awaitable: Awaitable[T],
    timeout: float | None,
    what: str,
) -> T:
    """Run a ledger read under ``token``; a timeout becomes ``LedgerError``."""
    try:
        return await token.run(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise LedgerError(f"{what} timed out after {timeout}s") from exc
