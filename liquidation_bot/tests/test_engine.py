from __future__ import annotations

import asyncio

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.directory import PositionDirectory
from liquidation_bot.engine import LiquidationEngine
from liquidation_bot.events import Severity
from liquidation_bot.executor import LiquidationExecutor
from liquidation_bot.models import SubmissionOutcome
from liquidation_bot.scanner import SolvencyScanner
from liquidation_bot.tests.fakes import (
    POOL,
    FakeLedger,
    FakeLiquidator,
    LedgerSubmitter,
    RecordingSink,
    addr,
)
from liquidation_bot.valuator import CollateralValuator


def _engine(
    ledger: FakeLedger,
    *,
    submitter: LedgerSubmitter | None = None,
    sink: RecordingSink | None = None,
    token: CancellationToken | None = None,
    refresh_every: int = 1000,
    delay_seconds: float = 0,
    closers=(),
) -> LiquidationEngine:
    sink = sink or RecordingSink()
    token = token or CancellationToken()
    executor = LiquidationExecutor(
        SolvencyScanner(ledger, token=token, sink=sink),
        CollateralValuator(ledger, token=token, sink=sink),
        FakeLiquidator(),
        submitter or LedgerSubmitter(ledger),
        POOL,
        token=token,
        sink=sink,
    )
    return LiquidationEngine(
        PositionDirectory(ledger, token=token, sink=sink),
        executor,
        token=token,
        sink=sink,
        delay_seconds=delay_seconds,
        refresh_every=refresh_every,
        closers=closers,
    )


def _market() -> FakeLedger:
    ledger = FakeLedger()
    asset = ledger.add_asset(0, price_usd=1.0)
    ledger.supply(addr(1), asset, 120)
    ledger.borrow(addr(1), 50)
    return ledger


class TestRunIteration:
    def test_first_iteration_always_refreshes(self) -> None:
        engine = _engine(_market(), refresh_every=1000)

        report = asyncio.run(engine.run_iteration())

        assert report.refreshed is True
        assert engine.snapshot.addresses == (addr(1),)

    def test_refresh_cadence(self) -> None:
        ledger = _market()
        engine = _engine(ledger, refresh_every=3)

        async def run(n: int) -> list[bool]:
            return [(await engine.run_iteration()).refreshed for _ in range(n)]

        assert asyncio.run(run(7)) == [True, False, False, True, False, False, True]
        assert ledger.calls.count("numAssets") == 3

    def test_empty_working_set_forces_refresh(self) -> None:
        ledger = FakeLedger()
        engine = _engine(ledger, refresh_every=1000)

        async def run() -> list[bool]:
            return [(await engine.run_iteration()).refreshed for _ in range(3)]

        # No assets yet: every iteration retries discovery.
        assert asyncio.run(run()) == [True, True, True]

    def test_new_borrower_discovered_on_refresh(self) -> None:
        ledger = _market()
        engine = _engine(ledger, refresh_every=2)

        async def run() -> None:
            await engine.run_iteration()
            ledger.supply(addr(2), ledger.assets[0], 1)
            ledger.borrow(addr(2), 500)
            second = await engine.run_iteration()
            assert second.liquidatable == ()
            third = await engine.run_iteration()
            assert third.refreshed is True
            assert third.liquidatable == (addr(2),)

        asyncio.run(run())

    def test_failed_iteration_is_reported_and_next_one_recovers(self) -> None:
        ledger = _market()
        ledger.fail_on.add("withdrawSources")
        sink = RecordingSink()
        engine = _engine(ledger, sink=sink)

        async def run() -> None:
            failed = await engine.run_iteration()
            assert failed.ok is False
            assert "withdrawSources" in failed.error
            ledger.fail_on.clear()
            recovered = await engine.run_iteration()
            assert recovered.ok is True
            assert recovered.refreshed is True

        asyncio.run(run())
        (event,) = sink.named("iteration failed")
        assert event.severity is Severity.ERROR

    def test_liquidation_then_no_arbitrage_in_same_iteration(self) -> None:
        ledger = _market()
        ledger.set_price(ledger.assets[0], 0.1)
        engine = _engine(ledger)

        report = asyncio.run(engine.run_iteration())

        assert [attempt.accounts for attempt in report.attempts] == [(addr(1),)]
        assert report.arbitrage_attempted is False
        assert ledger.liquidatable_now(addr(1)) is False


class TestRunForever:
    def test_bounded_run(self) -> None:
        sink = RecordingSink()
        engine = _engine(_market(), sink=sink)

        completed = asyncio.run(engine.run_forever(max_iterations=3))

        assert completed == 3
        assert len(sink.named("loop heartbeat")) == 3
        (shutdown,) = sink.named("shutdown")
        assert shutdown.fields == {"iterations": 3, "reason": "completed"}

    def test_missed_bundle_does_not_stop_the_loop(self) -> None:
        ledger = _market()
        ledger.set_price(ledger.assets[0], 0.1)
        submitter = LedgerSubmitter(ledger, outcomes=[SubmissionOutcome.NOT_INCLUDED_THIS_BLOCK])
        engine = _engine(ledger, submitter=submitter)

        completed = asyncio.run(engine.run_forever(max_iterations=2))

        assert completed == 2
        # Retried on the second iteration and landed.
        assert len(submitter.submitted) == 2
        assert ledger.liquidatable_now(addr(1)) is False

    def test_cancellation_stops_loop_and_closes_resources(self) -> None:
        closed: list[str] = []

        async def close() -> None:
            closed.append("submitter")

        token = CancellationToken()
        sink = RecordingSink()
        engine = _engine(_market(), token=token, sink=sink, delay_seconds=30, closers=[close])

        async def run() -> int:
            task = asyncio.ensure_future(engine.run_forever())
            await asyncio.sleep(0.05)
            token.cancel("SIGTERM")
            return await asyncio.wait_for(task, timeout=5)

        completed = asyncio.run(run())

        assert completed == 1
        assert closed == ["submitter"]
        assert sink.named("shutdown")[0].fields["reason"] == "SIGTERM"

    def test_cancelled_before_start_runs_nothing(self) -> None:
        token = CancellationToken()
        token.cancel("stop")
        ledger = _market()
        engine = _engine(ledger, token=token)

        assert asyncio.run(engine.run_forever()) == 0
        assert ledger.calls == []
