from __future__ import annotations

import logging
from datetime import datetime, timezone

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.events import EventSink, LoggingEventSink
from liquidation_bot.ledger import LedgerReader, bounded_read
from liquidation_bot.models import ZERO_ADDRESS, Asset, DirectorySnapshot

LOGGER = logging.getLogger(__name__)


class PositionDirectory:
    """Discovers the accounts and collateral assets the loop works over.

    Every refresh is a full replay: the Withdraw log from ``start_block``
    is read again and a fresh ``DirectorySnapshot`` is returned. Failures
    propagate as ``LedgerError``; the caller aborts the iteration.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        *,
        token: CancellationToken | None = None,
        sink: EventSink | None = None,
        start_block: int = 0,
        chunk_size: int = 0,
        read_timeout: float | None = None,
    ) -> None:
        self._ledger = ledger
        self._token = token or CancellationToken()
        self._sink = sink or LoggingEventSink()
        self._start_block = start_block
        self._chunk_size = chunk_size
        self._read_timeout = read_timeout

    async def discover_addresses(self) -> tuple[str, ...]:
        sources = await bounded_read(
            self._token,
            self._ledger.withdraw_sources(from_block=self._start_block, chunk_size=self._chunk_size),
            self._read_timeout,
            "withdraw replay",
        )
        seen: dict[str, None] = {}
        for source in sources:
            if source and source != ZERO_ADDRESS:
                seen.setdefault(source, None)
        return tuple(seen)

    async def discover_assets(self) -> tuple[Asset, ...]:
        count = await bounded_read(self._token, self._ledger.num_assets(), self._read_timeout, "numAssets")
        assets: list[Asset] = []
        for index in range(count):
            asset = await bounded_read(
                self._token,
                self._ledger.get_asset_info(index),
                self._read_timeout,
                f"getAssetInfo({index})",
            )
            assets.append(asset)
        return tuple(assets)

    async def refresh(self) -> DirectorySnapshot:
        addresses = await self.discover_addresses()
        assets = await self.discover_assets()
        snapshot = DirectorySnapshot(
            addresses=addresses,
            assets=assets,
            refreshed_at=datetime.now(timezone.utc),
        )
        self._sink.info(
            "working set refreshed",
            addresses=len(addresses),
            assets=len(assets),
        )
        return snapshot
