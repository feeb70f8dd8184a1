from __future__ import annotations

from typing import Iterable

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.events import EventSink, LoggingEventSink
from liquidation_bot.ledger import LedgerReader, bounded_read


class SolvencyScanner:
    """Partitions tracked addresses using the ledger's ``isLiquidatable``.

    Nothing is cached: every call re-reads live state, one address at a time,
    in the order the addresses were given.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        *,
        token: CancellationToken | None = None,
        sink: EventSink | None = None,
        read_timeout: float | None = None,
    ) -> None:
        self._ledger = ledger
        self._token = token or CancellationToken()
        self._sink = sink or LoggingEventSink()
        self._read_timeout = read_timeout

    async def is_liquidatable(self, address: str) -> bool:
        return await bounded_read(
            self._token,
            self._ledger.is_liquidatable(address),
            self._read_timeout,
            f"isLiquidatable({address})",
        )

    async def classify(self, addresses: Iterable[str]) -> list[str]:
        liquidatable: list[str] = []
        checked = 0
        for address in addresses:
            checked += 1
            if await self.is_liquidatable(address):
                self._sink.info("address classified", address=address, liquidatable=True)
                liquidatable.append(address)
        self._sink.info(
            "classification complete",
            checked=checked,
            liquidatable=len(liquidatable),
        )
        return liquidatable
