from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.errors import LedgerError, LoopCancelled, RelayError, SubmissionError
from liquidation_bot.events import EventSink, LoggingEventSink, Severity
from liquidation_bot.kill_switch import SubmissionGuard
from liquidation_bot.liquidator import Liquidator
from liquidation_bot.models import (
    Asset,
    FlashLoanPool,
    LiquidationAttempt,
    SubmissionOutcome,
    SubmissionResult,
)
from liquidation_bot.scanner import SolvencyScanner
from liquidation_bot.submitters.base import TransactionSubmitter
from liquidation_bot.valuator import CollateralValuator

LOGGER = logging.getLogger(__name__)

OUTCOME_SEVERITY: dict[SubmissionOutcome, Severity] = {
    SubmissionOutcome.INCLUDED: Severity.INFO,
    SubmissionOutcome.PUBLICLY_CONFIRMED: Severity.INFO,
    SubmissionOutcome.NOT_INCLUDED_THIS_BLOCK: Severity.WARNING,
    SubmissionOutcome.PUBLICLY_REVERTED: Severity.WARNING,
    SubmissionOutcome.TIMED_OUT: Severity.WARNING,
    SubmissionOutcome.NONCE_TOO_HIGH: Severity.ALERT,
}


@dataclass(frozen=True)
class ExecutionReport:
    attempted: bool
    liquidatable: tuple[str, ...] = ()
    attempts: tuple[LiquidationAttempt, ...] = ()
    arbitrage_checked: bool = False
    arbitrage_attempted: bool = False

    @property
    def succeeded(self) -> tuple[LiquidationAttempt, ...]:
        return tuple(attempt for attempt in self.attempts if attempt.success)


class LiquidationExecutor:
    """Liquidation pass, then (only if nothing was attempted) arbitrage pass.

    Every submission is awaited before the next one starts. A failed
    attempt is logged and recorded; it never aborts the rest of the pass.
    """

    def __init__(
        self,
        scanner: SolvencyScanner,
        valuator: CollateralValuator,
        liquidator: Liquidator,
        submitter: TransactionSubmitter,
        pool: FlashLoanPool,
        *,
        token: CancellationToken | None = None,
        sink: EventSink | None = None,
        guard: SubmissionGuard | None = None,
        min_arbitrage_usd: float = 100.0,
        batch_accounts: bool = False,
        build_timeout: float | None = None,
    ) -> None:
        self._scanner = scanner
        self._valuator = valuator
        self._liquidator = liquidator
        self._submitter = submitter
        self._pool = pool
        self._token = token or CancellationToken()
        self._sink = sink or LoggingEventSink()
        self._guard = guard
        self._min_arbitrage_usd = min_arbitrage_usd
        self._batch_accounts = batch_accounts
        self._build_timeout = build_timeout

    def _batches(self, liquidatable: Sequence[str]) -> list[tuple[str, ...]]:
        if not liquidatable:
            return []
        if self._batch_accounts:
            return [tuple(liquidatable)]
        return [(address,) for address in liquidatable]

    async def run(self, addresses: Sequence[str], assets: Sequence[Asset]) -> ExecutionReport:
        liquidatable = await self._scanner.classify(addresses)

        attempts: list[LiquidationAttempt] = []
        for accounts in self._batches(liquidatable):
            attempts.append(await self.attempt(accounts))
        attempted = any(not attempt.skipped for attempt in attempts)

        arbitrage_attempted = False
        if not attempted:
            if await self._valuator.has_purchaseable_collateral(assets, self._min_arbitrage_usd):
                arbitrage = await self.attempt(())
                attempts.append(arbitrage)
                arbitrage_attempted = not arbitrage.skipped

        return ExecutionReport(
            attempted=attempted,
            liquidatable=tuple(liquidatable),
            attempts=tuple(attempts),
            arbitrage_checked=not attempted,
            arbitrage_attempted=arbitrage_attempted,
        )

    async def attempt(self, accounts: Sequence[str]) -> LiquidationAttempt:
        """Build and submit one flash-loan call for ``accounts``.

        Empty ``accounts`` is an arbitrage-only call.
        """
        accounts = tuple(accounts)
        kind = "liquidation" if accounts else "arbitrage"
        if self._guard is not None:
            state = self._guard.check()
            if state.paused:
                self._sink.warning("submissions paused", kind=kind, accounts=accounts, reason=state.reason)
                return LiquidationAttempt(
                    accounts=accounts, pool=self._pool, success=False, error=state.reason, skipped=True
                )

        self._sink.info(
            f"{kind} attempt",
            accounts=accounts,
            pair_token=self._pool.pair_token,
            pool_fee=self._pool.pool_fee,
            strategy=self._submitter.strategy,
        )
        try:
            request = await self._token.run(
                self._liquidator.build_liquidation(accounts, self._pool),
                timeout=self._build_timeout,
            )
            result = await self._submitter.submit(request)
        except LoopCancelled:
            raise
        except RelayError as exc:
            self._sink.alert("relay error", kind=kind, accounts=accounts, error=str(exc))
            if self._guard is not None:
                self._guard.record_anomaly(f"relay error: {exc}")
            return self._failed(accounts, str(exc))
        except (SubmissionError, LedgerError) as exc:
            self._sink.warning("liquidation outcome", kind=kind, accounts=accounts, success=False, error=str(exc))
            return self._failed(accounts, str(exc))
        except asyncio.TimeoutError:
            error = f"timed out after {self._build_timeout}s"
            self._sink.warning("liquidation outcome", kind=kind, accounts=accounts, success=False, error=error)
            return self._failed(accounts, error)
        except Exception as exc:
            LOGGER.exception("unexpected failure during %s attempt", kind)
            self._sink.error("liquidation outcome", kind=kind, accounts=accounts, success=False, error=str(exc))
            return self._failed(accounts, str(exc))

        self._report(kind, accounts, result)
        return LiquidationAttempt(
            accounts=accounts,
            pool=self._pool,
            success=result.succeeded,
            result=result,
            error="" if result.succeeded else result.outcome.value,
        )

    def _report(self, kind: str, accounts: tuple[str, ...], result: SubmissionResult) -> None:
        self._sink.log(
            OUTCOME_SEVERITY[result.outcome],
            "submission outcome",
            kind=kind,
            accounts=accounts,
            outcome=result.outcome.value,
            strategy=result.strategy,
            tx_hash=result.tx_hash,
            target_block=result.target_block,
        )
        if result.needs_operator and self._guard is not None:
            self._guard.record_anomaly(f"{result.outcome.value} on {result.tx_hash}")
        self._sink.log(
            Severity.INFO if result.succeeded else Severity.WARNING,
            "liquidation outcome",
            kind=kind,
            accounts=accounts,
            success=result.succeeded,
        )

    def _failed(self, accounts: tuple[str, ...], error: str) -> LiquidationAttempt:
        return LiquidationAttempt(accounts=accounts, pool=self._pool, success=False, error=error)
