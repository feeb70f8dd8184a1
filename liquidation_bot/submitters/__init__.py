from .base import TransactionSubmitter
from .factory import build_submitter
from .private_relay import FlashbotsRelay, PrivateRelaySubmitter
from .public import PublicSubmitter

__all__ = [
    "FlashbotsRelay",
    "PrivateRelaySubmitter",
    "PublicSubmitter",
    "TransactionSubmitter",
    "build_submitter",
]
