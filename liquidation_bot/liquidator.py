"""Transaction builders for the flash-loan liquidation contracts.

A liquidator turns "absorb these accounts and sell surplus collateral" into
an unsigned ``TransactionRequest``. Gas is estimated up front, so a call
that would revert fails here with ``TransactionReverted`` before anything
is broadcast.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Sequence

from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractCustomError, ContractLogicError

from liquidation_bot.abis import LIQUIDATOR_ABI, LIQUIDATOR_V2_ABI
from liquidation_bot.errors import SubmissionError, TransactionReverted, UnauthorizedError
from liquidation_bot.ledger import LedgerReader
from liquidation_bot.models import AssetConfig, FlashLoanPool, SwapLeg, TransactionRequest
from liquidation_bot.swap_quotes import SwapQuoteClient

LOGGER = logging.getLogger(__name__)

UNAUTHORIZED_SELECTOR = Web3.to_hex(Web3.keccak(text="Unauthorized()")[:4])


def _is_unauthorized(exc: ContractLogicError) -> bool:
    data = getattr(exc, "data", None)
    if isinstance(data, bytes):
        data = Web3.to_hex(data)
    return isinstance(data, str) and data.lower().startswith(UNAUTHORIZED_SELECTOR)


def _scaled(value: int, multiplier: float) -> int:
    return int(math.ceil(value * multiplier))


class Liquidator(ABC):
    version: str
    abi: list[dict[str, Any]]

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        comet_address: str,
        sender: str,
        *,
        gas_multiplier: float = 1.1,
    ) -> None:
        self._w3 = w3
        self.address = AsyncWeb3.to_checksum_address(address)
        self.comet_address = AsyncWeb3.to_checksum_address(comet_address)
        self.sender = AsyncWeb3.to_checksum_address(sender)
        self._gas_multiplier = gas_multiplier
        self._contract = w3.eth.contract(address=self.address, abi=self.abi)

    @abstractmethod
    async def build_liquidation(self, accounts: Sequence[str], pool: FlashLoanPool) -> TransactionRequest:
        """Build the atomic absorb-and-arbitrage call.

        An empty ``accounts`` list means arbitrage only: buy surplus
        collateral from the ledger without absorbing anyone.
        """
        raise NotImplementedError

    async def _prepare(self, name: str, *args: Any) -> TransactionRequest:
        fn = getattr(self._contract.functions, name)(*args)
        try:
            gas = await fn.estimate_gas({"from": self.sender})
        except ContractCustomError as exc:
            if _is_unauthorized(exc):
                raise UnauthorizedError(f"{name} rejected: caller {self.sender} is not authorized") from exc
            raise TransactionReverted(f"{name} would revert: {exc}") from exc
        except ContractLogicError as exc:
            raise TransactionReverted(f"{name} would revert: {exc}") from exc
        except Exception as exc:
            raise SubmissionError(f"{name} gas estimation failed: {exc}") from exc

        try:
            gas_price = await self._w3.eth.gas_price
            tx = await fn.build_transaction(
                {
                    "from": self.sender,
                    "gas": _scaled(gas, self._gas_multiplier),
                    "gasPrice": _scaled(gas_price, self._gas_multiplier),
                    "value": 0,
                }
            )
        except Exception as exc:
            raise SubmissionError(f"{name} could not be built: {exc}") from exc

        return TransactionRequest(
            to=tx["to"],
            data=tx["data"],
            sender=self.sender,
            function_name=name,
            args=args,
            gas=int(tx["gas"]),
            gas_price=int(tx["gasPrice"]),
            value=int(tx.get("value", 0)),
            chain_id=tx.get("chainId"),
        )


class FlashLiquidator(Liquidator):
    """v1 contract: ``initFlash`` absorbs and swaps inside a Uniswap flash loan."""

    version = "v1"
    abi = LIQUIDATOR_ABI

    async def build_liquidation(self, accounts: Sequence[str], pool: FlashLoanPool) -> TransactionRequest:
        params = (list(accounts), pool.pair_token, pool.pool_fee, pool.reversed_pair)
        return await self._prepare("initFlash", params)


class FlashLiquidatorV2(Liquidator):
    """v2 contract: ``absorbAndArbitrage`` with aggregator swap routes.

    Routes are quoted off-chain per collateral asset before the call is
    built, sized by what the contract reports as available and capped by
    the admin-set per-asset purchase limit.
    """

    version = "v2"
    abi = LIQUIDATOR_V2_ABI

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        comet_address: str,
        sender: str,
        *,
        ledger: LedgerReader,
        quotes: SwapQuoteClient,
        min_base_value: int = 1_000_000,
        gas_multiplier: float = 1.1,
    ) -> None:
        super().__init__(w3, address, comet_address, sender, gas_multiplier=gas_multiplier)
        self._ledger = ledger
        self._quotes = quotes
        self._min_base_value = min_base_value
        self._base_token: str | None = None

    async def _base(self) -> str:
        if self._base_token is None:
            self._base_token = await self._ledger.base_token()
        return self._base_token

    async def admin(self) -> str:
        return str(await self._contract.functions.admin().call())

    async def asset_config(self, asset: str) -> AssetConfig:
        max_collateral, is_set = await self._contract.functions.assetConfigs(self.comet_address, asset).call()
        return AssetConfig(max_collateral_to_purchase=int(max_collateral), is_set=bool(is_set))

    async def available_collateral(self, accounts: Sequence[str]) -> list[tuple[str, int, int]]:
        """``(asset, reserve, reserve_in_base)`` the call could purchase."""
        try:
            assets, reserves, in_base = await self._contract.functions.availableCollateral(
                self.comet_address, list(accounts)
            ).call({"from": self.sender})
        except Exception as exc:
            raise SubmissionError(f"availableCollateral failed: {exc}") from exc
        return [(asset, int(reserve), int(value)) for asset, reserve, value in zip(assets, reserves, in_base)]

    async def swap_legs(self, accounts: Sequence[str]) -> list[SwapLeg]:
        base_token = await self._base()
        legs: list[SwapLeg] = []
        for asset, reserve, value in await self.available_collateral(accounts):
            if value <= self._min_base_value:
                LOGGER.debug("skip asset=%s value_in_base=%d below minimum", asset, value)
                continue
            amount = reserve
            config = await self.asset_config(asset)
            if config.is_set:
                amount = min(reserve, config.max_collateral_to_purchase)
            if amount <= 1:
                LOGGER.debug("skip asset=%s purchase amount=%d", asset, amount)
                continue
            # Quote one unit less than the reserve to leave room for rounding.
            legs.append(await self._quotes.quote(asset, base_token, amount - 1, self.address))
        return legs

    async def build_liquidation(self, accounts: Sequence[str], pool: FlashLoanPool) -> TransactionRequest:
        legs = await self.swap_legs(accounts)
        return await self._prepare(
            "absorbAndArbitrage",
            self.comet_address,
            list(accounts),
            [leg.asset for leg in legs],
            [leg.target for leg in legs],
            [Web3.to_bytes(hexstr=leg.call_data) for leg in legs],
            pool.pair_token,
            pool.pool_fee,
        )

    async def set_asset_config(self, asset: str, max_collateral: int, enabled: bool) -> TransactionRequest:
        admin = await self.admin()
        if admin.lower() != self.sender.lower():
            raise UnauthorizedError(f"setAssetConfig is admin-only: admin={admin} caller={self.sender}")
        return await self._prepare("setAssetConfig", self.comet_address, asset, max_collateral, enabled)
