from __future__ import annotations

from eth_account import Account
from web3 import AsyncWeb3

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.config import SubmissionSettings
from liquidation_bot.errors import ConfigError
from liquidation_bot.submitters.base import TransactionSubmitter
from liquidation_bot.submitters.private_relay import FlashbotsRelay, PrivateRelaySubmitter
from liquidation_bot.submitters.public import PublicSubmitter


def build_submitter(
    settings: SubmissionSettings,
    w3: AsyncWeb3,
    token: CancellationToken,
) -> TransactionSubmitter:
    """Pick the delivery strategy once, for the lifetime of the process."""
    account = Account.from_key(settings.private_key) if settings.private_key else None
    if not settings.use_flashbots:
        return PublicSubmitter(
            w3,
            account=account,
            token=token,
            timeout_seconds=settings.submission_timeout_seconds,
            poll_seconds=settings.bundle_poll_seconds,
        )
    if account is None:
        raise ConfigError("private relay submission needs ETH_PK")
    auth_account = Account.from_key(settings.relay_auth_key) if settings.relay_auth_key else None
    relay = FlashbotsRelay(settings.relay_url, auth_account=auth_account)
    if auth_account is not None and auth_account.address == account.address:
        raise ConfigError("LIQ_FLASHBOTS_AUTH_KEY must differ from ETH_PK")
    return PrivateRelaySubmitter(
        w3,
        account,
        relay,
        token=token,
        timeout_seconds=settings.submission_timeout_seconds,
        poll_seconds=settings.bundle_poll_seconds,
    )
