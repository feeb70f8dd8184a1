from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.config import SubmissionSettings
from liquidation_bot.errors import ConfigError, LoopCancelled, RelayError
from liquidation_bot.models import SubmissionOutcome, TransactionRequest
from liquidation_bot.submitters import (
    FlashbotsRelay,
    PrivateRelaySubmitter,
    PublicSubmitter,
    build_submitter,
)
from liquidation_bot.tests.fakes import LIQUIDATOR, FakeEth, FakeRelay, FakeWeb3, Ready

SIGNER = Account.create()


def _request(sender: str = SIGNER.address) -> TransactionRequest:
    return TransactionRequest(
        to=LIQUIDATOR,
        data="0x",
        sender=sender,
        function_name="initFlash",
        gas=500_000,
        gas_price=30_000_000_000,
        chain_id=1,
    )


# ---------------------------------------------------------------------------
# Public strategy
# ---------------------------------------------------------------------------


class TestPublicSubmitter:
    def test_confirmed_receipt(self) -> None:
        eth = FakeEth()
        submitter = PublicSubmitter(FakeWeb3(eth), account=SIGNER)

        result = asyncio.run(submitter.submit(_request()))

        assert result.outcome is SubmissionOutcome.PUBLICLY_CONFIRMED
        assert result.succeeded is True
        assert len(eth.sent_raw) == 1

    def test_reverted_receipt_is_a_result_not_an_exception(self) -> None:
        eth = FakeEth()
        eth.receipts["0x" + "ab" * 32] = {"status": 0, "blockNumber": 101}
        submitter = PublicSubmitter(FakeWeb3(eth), account=SIGNER)

        result = asyncio.run(submitter.submit(_request()))

        assert result.outcome is SubmissionOutcome.PUBLICLY_REVERTED
        assert result.retryable is True
        assert result.target_block == 101

    def test_node_managed_account_without_local_key(self) -> None:
        eth = FakeEth()
        submitter = PublicSubmitter(FakeWeb3(eth))
        node_account = "0x" + "42" * 20

        result = asyncio.run(submitter.submit(_request(sender=node_account)))

        assert eth.sent_raw == []
        assert eth.sent[0]["from"] == node_account
        assert result.tx_hash == "0x" + "cd" * 32

    def test_timeout_waiting_for_receipt(self) -> None:
        class SlowEth(FakeEth):
            async def wait_for_transaction_receipt(self, tx_hash, timeout=120, poll_latency=0.1):
                await asyncio.sleep(10)

        submitter = PublicSubmitter(FakeWeb3(SlowEth()), account=SIGNER, timeout_seconds=0.2, poll_seconds=0.01)

        result = asyncio.run(submitter.submit(_request()))

        assert result.outcome is SubmissionOutcome.TIMED_OUT


# ---------------------------------------------------------------------------
# Private-relay strategy
# ---------------------------------------------------------------------------


def _relay_submitter(eth: FakeEth, relay: FakeRelay, token: CancellationToken | None = None) -> PrivateRelaySubmitter:
    return PrivateRelaySubmitter(
        FakeWeb3(eth),
        SIGNER,
        relay,
        token=token,
        timeout_seconds=5,
        poll_seconds=0,
    )


class TestPrivateRelaySubmitter:
    def test_bundle_targets_next_block(self) -> None:
        eth = FakeEth(start_block=100)
        relay = FakeRelay()

        result = asyncio.run(_relay_submitter(eth, relay).submit(_request()))

        ((txs, target),) = relay.bundles
        assert target == 101
        assert len(txs) == 1
        assert result.target_block == 101

    def test_block_passed_without_inclusion(self) -> None:
        eth = FakeEth(start_block=100)

        result = asyncio.run(_relay_submitter(eth, FakeRelay()).submit(_request()))

        assert result.outcome is SubmissionOutcome.NOT_INCLUDED_THIS_BLOCK
        assert result.succeeded is False
        assert result.retryable is True
        assert result.needs_operator is False

    def test_bundle_included(self) -> None:
        class IncludingEth(FakeEth):
            async def get_transaction_receipt(self, tx_hash):
                return {"status": 1, "transactionHash": tx_hash}

        result = asyncio.run(_relay_submitter(IncludingEth(), FakeRelay()).submit(_request()))

        assert result.outcome is SubmissionOutcome.INCLUDED
        assert result.succeeded is True

    def test_nonce_consumed_elsewhere(self) -> None:
        class StalledEth(FakeEth):
            """Head never reaches the target; the nonce moves on after signing."""

            reads = 0

            @property
            def block_number(self):
                return Ready(self.head)

            async def get_transaction_count(self, address, block_identifier="latest"):
                self.reads += 1
                return 0 if self.reads == 1 else 1

        result = asyncio.run(_relay_submitter(StalledEth(start_block=100), FakeRelay()).submit(_request()))

        assert result.outcome is SubmissionOutcome.NONCE_TOO_HIGH
        assert result.needs_operator is True

    def test_nonce_moved_by_own_bundle_is_included(self) -> None:
        class RacingEth(FakeEth):
            """The target block lands between the head read and the nonce read."""

            reads = 0
            nonce_blocks: list = []

            @property
            def block_number(self):
                return Ready(self.head)

            async def get_transaction_count(self, address, block_identifier="latest"):
                self.reads += 1
                self.nonce_blocks.append(block_identifier)
                return 0 if self.reads == 1 else 1

            async def get_transaction_receipt(self, tx_hash):
                return {"status": 1, "transactionHash": tx_hash}

        eth = RacingEth(start_block=100)

        result = asyncio.run(_relay_submitter(eth, FakeRelay()).submit(_request()))

        assert result.outcome is SubmissionOutcome.INCLUDED
        assert result.target_block == 101
        assert eth.nonce_blocks[-1] == 100

    def test_relay_error_propagates(self) -> None:
        relay = FakeRelay(error=RelayError("relay rejected bundle: bad signature"))

        with pytest.raises(RelayError):
            asyncio.run(_relay_submitter(FakeEth(), relay).submit(_request()))

    def test_cancelled_wait_raises(self) -> None:
        token = CancellationToken()
        token.cancel("shutdown")

        with pytest.raises(LoopCancelled):
            asyncio.run(_relay_submitter(FakeEth(), FakeRelay(), token=token).submit(_request()))


# ---------------------------------------------------------------------------
# Relay client
# ---------------------------------------------------------------------------


class TestFlashbotsRelay:
    def test_signed_send_bundle_request(self) -> None:
        auth = Account.create()
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content.decode()
            seen["signature"] = request.headers["X-Flashbots-Signature"]
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"bundleHash": "0x01"}})

        relay = FlashbotsRelay(
            "https://relay.example",
            auth_account=auth,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        result = asyncio.run(relay.send_bundle([b"\x01\x02"], 0x1234))

        assert result == {"bundleHash": "0x01"}
        body = json.loads(seen["body"])
        assert body["method"] == "eth_sendBundle"
        assert body["params"] == [{"txs": ["0x0102"], "blockNumber": "0x1234"}]

        address, signature = str(seen["signature"]).split(":")
        assert address == auth.address
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=seen["body"])))
        assert Account.recover_message(message, signature=signature) == auth.address

    def test_relay_reported_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"message": "nonce too low"}})

        relay = FlashbotsRelay("https://relay.example", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(RelayError, match="nonce too low"):
            asyncio.run(relay.send_bundle([b"\x01"], 1))

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        relay = FlashbotsRelay("https://relay.example", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(RelayError):
            asyncio.run(relay.send_bundle([b"\x01"], 1))

    def test_default_auth_identity_is_fresh(self) -> None:
        first = FlashbotsRelay("https://relay.example")
        second = FlashbotsRelay("https://relay.example")
        assert first.auth_account.address != second.auth_account.address


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


class TestBuildSubmitter:
    def test_public_by_default(self) -> None:
        submitter = build_submitter(SubmissionSettings(), FakeWeb3(), CancellationToken())
        assert submitter.strategy == "public"

    def test_private_relay_when_enabled(self) -> None:
        settings = SubmissionSettings(use_flashbots=True, private_key=Web3.to_hex(SIGNER.key))
        submitter = build_submitter(settings, FakeWeb3(), CancellationToken())
        assert submitter.strategy == "private_relay"

    def test_private_relay_needs_key(self) -> None:
        with pytest.raises(ConfigError):
            build_submitter(SubmissionSettings(use_flashbots=True), FakeWeb3(), CancellationToken())

    def test_auth_identity_must_not_be_signing_key(self) -> None:
        settings = SubmissionSettings(
            use_flashbots=True,
            private_key=Web3.to_hex(SIGNER.key),
            relay_auth_key=Web3.to_hex(SIGNER.key),
        )
        with pytest.raises(ConfigError):
            build_submitter(settings, FakeWeb3(), CancellationToken())
