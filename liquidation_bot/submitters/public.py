from __future__ import annotations

import asyncio
import logging
from typing import Any

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.errors import LoopCancelled, SubmissionError
from liquidation_bot.models import SubmissionOutcome, SubmissionResult, TransactionRequest
from liquidation_bot.submitters.base import TransactionSubmitter

LOGGER = logging.getLogger(__name__)


class PublicSubmitter(TransactionSubmitter):
    """Broadcasts to the public mempool and waits for a receipt.

    With a local ``account`` the transaction is signed here and sent raw;
    without one it is handed to the node's own unlocked account.
    """

    strategy = "public"

    def __init__(
        self,
        w3: AsyncWeb3,
        *,
        account: LocalAccount | None = None,
        token: CancellationToken | None = None,
        timeout_seconds: float = 180.0,
        poll_seconds: float = 2.0,
    ) -> None:
        self._w3 = w3
        self._account = account
        self._token = token or CancellationToken()
        self._timeout = timeout_seconds
        self._poll = poll_seconds

    async def _send(self, request: TransactionRequest) -> str:
        if self._account is None:
            tx_hash = await self._w3.eth.send_transaction(request.to_tx())
            return Web3.to_hex(tx_hash)
        nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
        tx: dict[str, Any] = request.to_tx(nonce=nonce)
        if "chainId" not in tx:
            tx["chainId"] = await self._w3.eth.chain_id
        signed = self._account.sign_transaction(tx)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def submit(self, request: TransactionRequest) -> SubmissionResult:
        try:
            tx_hash = await self._token.run(self._send(request), timeout=self._timeout)
        except LoopCancelled:
            raise
        except asyncio.TimeoutError:
            return SubmissionResult(
                outcome=SubmissionOutcome.TIMED_OUT,
                strategy=self.strategy,
                detail="broadcast timed out",
            )
        except Exception as exc:
            raise SubmissionError(f"{request.function_name} broadcast failed: {exc}") from exc

        LOGGER.debug("broadcast %s tx=%s", request.function_name, tx_hash)
        try:
            receipt = await self._token.run(
                self._w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self._timeout, poll_latency=self._poll
                ),
                timeout=self._timeout + self._poll,
            )
        except (TimeExhausted, asyncio.TimeoutError):
            return SubmissionResult(
                outcome=SubmissionOutcome.TIMED_OUT,
                strategy=self.strategy,
                tx_hash=tx_hash,
                detail=f"no receipt after {self._timeout}s",
            )

        if int(receipt["status"]) == 1:
            outcome = SubmissionOutcome.PUBLICLY_CONFIRMED
        else:
            outcome = SubmissionOutcome.PUBLICLY_REVERTED
        return SubmissionResult(
            outcome=outcome,
            strategy=self.strategy,
            tx_hash=tx_hash,
            target_block=receipt.get("blockNumber"),
        )
