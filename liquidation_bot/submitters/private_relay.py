"""Private-relay submission (Flashbots-style bundles).

Each transaction goes out as a one-transaction bundle valid only for the
next block. The relay never tells us directly whether it landed, so the
outcome is inferred from the chain: a receipt once the target block is
reached means it was included, and an account nonce that moves past ours
before then means the nonce was consumed some other way.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Sequence

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.errors import LoopCancelled, RelayError, SubmissionError
from liquidation_bot.models import SubmissionOutcome, SubmissionResult, TransactionRequest
from liquidation_bot.submitters.base import TransactionSubmitter

LOGGER = logging.getLogger(__name__)


class FlashbotsRelay:
    """JSON-RPC client for a bundle relay.

    Requests are authenticated with ``auth_account``: a throwaway identity
    that only signs request bodies and never holds funds.
    """

    def __init__(
        self,
        url: str,
        *,
        auth_account: LocalAccount | None = None,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self.auth_account = auth_account or Account.create()
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._request_id = 0

    def _signature_header(self, body: str) -> str:
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        signed = Account.sign_message(message, private_key=self.auth_account.key)
        return f"{self.auth_account.address}:{Web3.to_hex(signed.signature)}"

    async def send_bundle(self, raw_transactions: Sequence[bytes], target_block: int) -> Any:
        self._request_id += 1
        body = json.dumps(
            {
                "jsonrpc": "2.0",
                "id": self._request_id,
                "method": "eth_sendBundle",
                "params": [
                    {
                        "txs": [Web3.to_hex(raw) for raw in raw_transactions],
                        "blockNumber": hex(target_block),
                    }
                ],
            }
        )
        headers = {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": self._signature_header(body),
        }
        try:
            response = await self._client.post(self._url, content=body, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RelayError(f"relay request failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise RelayError(f"unexpected relay response: {payload!r}")
        if payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise RelayError(f"relay rejected bundle: {message}")
        return payload.get("result")

    async def aclose(self) -> None:
        await self._client.aclose()


class PrivateRelaySubmitter(TransactionSubmitter):
    strategy = "private_relay"

    def __init__(
        self,
        w3: AsyncWeb3,
        account: LocalAccount,
        relay: FlashbotsRelay,
        *,
        token: CancellationToken | None = None,
        timeout_seconds: float = 180.0,
        poll_seconds: float = 2.0,
    ) -> None:
        self._w3 = w3
        self._account = account
        self._relay = relay
        self._token = token or CancellationToken()
        self._timeout = timeout_seconds
        self._poll = poll_seconds

    async def _sign(self, request: TransactionRequest) -> tuple[bytes, str, int]:
        nonce = await self._w3.eth.get_transaction_count(self._account.address)
        tx: dict[str, Any] = request.to_tx(nonce=nonce)
        if "chainId" not in tx:
            tx["chainId"] = await self._w3.eth.chain_id
        signed = self._account.sign_transaction(tx)
        return signed.raw_transaction, Web3.to_hex(signed.hash), nonce

    async def submit(self, request: TransactionRequest) -> SubmissionResult:
        try:
            raw, tx_hash, nonce = await self._token.run(self._sign(request), timeout=self._timeout)
            target_block = await self._token.run(self._w3.eth.block_number, timeout=self._timeout) + 1
        except LoopCancelled:
            raise
        except asyncio.TimeoutError as exc:
            raise SubmissionError(f"{request.function_name} could not be prepared in time") from exc
        except Exception as exc:
            raise SubmissionError(f"{request.function_name} could not be signed: {exc}") from exc

        # Relay errors propagate: they need an operator, not a retry.
        await self._token.run(self._relay.send_bundle([raw], target_block), timeout=self._timeout)
        LOGGER.debug("bundle sent tx=%s target_block=%d", tx_hash, target_block)

        outcome = await self.wait_for_resolution(tx_hash, nonce, target_block)
        return SubmissionResult(
            outcome=outcome,
            strategy=self.strategy,
            tx_hash=tx_hash,
            target_block=target_block,
        )

    async def wait_for_resolution(self, tx_hash: str, nonce: int, target_block: int) -> SubmissionOutcome:
        """Poll the chain until the bundle's target block resolves it.

        Cancellation abandons the wait; the bundle itself cannot be recalled.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        while True:
            head = await self._token.run(self._w3.eth.block_number, timeout=self._timeout)
            if head >= target_block:
                if await self._has_receipt(tx_hash):
                    return SubmissionOutcome.INCLUDED
                return SubmissionOutcome.NOT_INCLUDED_THIS_BLOCK

            account_nonce = await self._token.run(
                self._w3.eth.get_transaction_count(self._account.address, head),
                timeout=self._timeout,
            )
            if account_nonce > nonce:
                # The target block may have landed after ``head`` was read.
                if await self._has_receipt(tx_hash):
                    return SubmissionOutcome.INCLUDED
                return SubmissionOutcome.NONCE_TOO_HIGH

            if loop.time() >= deadline:
                return SubmissionOutcome.TIMED_OUT
            if await self._token.sleep(self._poll):
                raise LoopCancelled(self._token.reason)

    async def _has_receipt(self, tx_hash: str) -> bool:
        try:
            await self._token.run(self._w3.eth.get_transaction_receipt(tx_hash), timeout=self._timeout)
        except TransactionNotFound:
            return False
        return True

    async def aclose(self) -> None:
        await self._relay.aclose()
