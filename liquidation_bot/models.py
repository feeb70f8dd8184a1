from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class Asset:
    """A collateral type the ledger accepts.

    ``scale`` is the fixed-point unit of the asset (``10 ** decimals``).
    """

    address: str
    price_feed: str
    scale: int


@dataclass(frozen=True)
class DirectorySnapshot:
    """Working set of tracked addresses and supported assets.

    Produced whole by each directory refresh; never mutated in place.
    """

    addresses: tuple[str, ...] = ()
    assets: tuple[Asset, ...] = ()
    refreshed_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return not self.assets


@dataclass(frozen=True)
class FlashLoanPool:
    """Venue pool that funds a liquidation: pairing token and fee tier."""

    pair_token: str
    pool_fee: int
    reversed_pair: bool = False


@dataclass(frozen=True)
class AssetConfig:
    max_collateral_to_purchase: int = 0
    is_set: bool = False


class SubmissionOutcome(str, Enum):
    INCLUDED = "included"
    NOT_INCLUDED_THIS_BLOCK = "not_included_this_block"
    NONCE_TOO_HIGH = "nonce_too_high"
    PUBLICLY_CONFIRMED = "publicly_confirmed"
    PUBLICLY_REVERTED = "publicly_reverted"
    TIMED_OUT = "timed_out"


_SUCCESS_OUTCOMES = frozenset({SubmissionOutcome.INCLUDED, SubmissionOutcome.PUBLICLY_CONFIRMED})
_RETRYABLE_OUTCOMES = frozenset({
    SubmissionOutcome.NOT_INCLUDED_THIS_BLOCK,
    SubmissionOutcome.PUBLICLY_REVERTED,
    SubmissionOutcome.TIMED_OUT,
})


@dataclass(frozen=True)
class SubmissionResult:
    outcome: SubmissionOutcome
    strategy: str
    tx_hash: str | None = None
    target_block: int | None = None
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.outcome in _SUCCESS_OUTCOMES

    @property
    def retryable(self) -> bool:
        return self.outcome in _RETRYABLE_OUTCOMES

    @property
    def needs_operator(self) -> bool:
        return self.outcome is SubmissionOutcome.NONCE_TOO_HIGH


@dataclass(frozen=True)
class TransactionRequest:
    """Unsigned contract call, ready for a submitter to sign and deliver.

    ``function_name`` and ``args`` describe the call for logging; ``data``
    is the ABI-encoded calldata that actually goes on chain.
    """

    to: str
    data: str
    sender: str
    function_name: str
    args: tuple[Any, ...] = ()
    gas: int = 0
    gas_price: int = 0
    value: int = 0
    chain_id: int | None = None

    def to_tx(self, nonce: int | None = None) -> Dict[str, Any]:
        tx: Dict[str, Any] = {
            "from": self.sender,
            "to": self.to,
            "data": self.data,
            "value": self.value,
        }
        if self.gas:
            tx["gas"] = self.gas
        if self.gas_price:
            tx["gasPrice"] = self.gas_price
        if self.chain_id is not None:
            tx["chainId"] = self.chain_id
        if nonce is not None:
            tx["nonce"] = nonce
        return tx


@dataclass(frozen=True)
class SwapLeg:
    """Aggregator route that sells ``amount`` of ``asset`` for the base token."""

    asset: str
    target: str
    call_data: str
    amount: int


@dataclass(frozen=True)
class LiquidationAttempt:
    accounts: tuple[str, ...]
    pool: FlashLoanPool
    success: bool
    result: SubmissionResult | None = None
    error: str = ""
    skipped: bool = False
    attempted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_arbitrage_only(self) -> bool:
        return not self.accounts
