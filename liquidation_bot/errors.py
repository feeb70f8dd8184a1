"""Exception taxonomy for the liquidation bot.

Startup problems (``ConfigError``, ``StartupError``) are fatal and surface
before the main loop starts. Everything else is caught somewhere inside the
loop: ``LedgerError`` at the iteration boundary, ``SubmissionError`` and
``RelayError`` at the granularity of a single liquidation attempt.
"""

from __future__ import annotations


class LiquidationBotError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(LiquidationBotError):
    """A required option is missing or malformed."""


class StartupError(LiquidationBotError):
    """The process could not reach a required collaborator at startup."""


class LedgerError(LiquidationBotError):
    """A read against the ledger failed or timed out."""


class SubmissionError(LiquidationBotError):
    """A transaction could not be built, signed or broadcast."""


class TransactionReverted(SubmissionError):
    """The transaction reverts (at gas estimation or on chain)."""


class UnauthorizedError(SubmissionError):
    """An admin-only call was attempted from a non-admin account."""


class RelayError(LiquidationBotError):
    """The private relay rejected a bundle or could not be reached."""


class LoopCancelled(LiquidationBotError):
    """Cancellation was requested while waiting at a suspension point."""
