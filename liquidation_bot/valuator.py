from __future__ import annotations

from typing import Sequence

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.events import EventSink, LoggingEventSink
from liquidation_bot.ledger import LedgerReader, bounded_read
from liquidation_bot.models import Asset

# Ledger prices carry 8 decimals.
PRICE_DECIMALS = 8


def usd_threshold(min_usd_value: float) -> int:
    """Express a USD amount in the ledger's 8-decimal price unit."""
    return int(round(min_usd_value * 10**PRICE_DECIMALS))


class CollateralValuator:
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

    async def reserve_value(self, asset: Asset) -> int:
        """Value of the ledger's surplus reserve of ``asset``, 8-decimal USD."""
        reserves = await bounded_read(
            self._token,
            self._ledger.get_collateral_reserves(asset.address),
            self._read_timeout,
            f"getCollateralReserves({asset.address})",
        )
        price = await bounded_read(
            self._token,
            self._ledger.get_price(asset.price_feed),
            self._read_timeout,
            f"getPrice({asset.price_feed})",
        )
        return reserves * price // asset.scale

    async def has_purchaseable_collateral(self, assets: Sequence[Asset], min_usd_value: float) -> bool:
        threshold = usd_threshold(min_usd_value)
        total = 0
        for asset in assets:
            total += await self.reserve_value(asset)
            if total >= threshold:
                self._sink.info(
                    "arbitrage check",
                    purchaseable=True,
                    total_value=total,
                    threshold=threshold,
                )
                return True
        self._sink.info(
            "arbitrage check",
            purchaseable=False,
            total_value=total,
            threshold=threshold,
        )
        return False
