from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.directory import PositionDirectory
from liquidation_bot.errors import LoopCancelled
from liquidation_bot.events import EventSink, LoggingEventSink
from liquidation_bot.executor import LiquidationExecutor
from liquidation_bot.models import DirectorySnapshot, LiquidationAttempt

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class IterationReport:
    iteration: int
    started_at: datetime
    ended_at: datetime
    refreshed: bool = False
    liquidatable: tuple[str, ...] = ()
    attempts: tuple[LiquidationAttempt, ...] = field(default_factory=tuple)
    arbitrage_attempted: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LiquidationEngine:
    """The main loop: refresh, liquidate or arbitrage, sleep, repeat.

    The working set is an immutable ``DirectorySnapshot`` owned here and
    replaced on refresh. Any error escaping an iteration is logged and the
    loop carries on; only cancellation ends it.
    """

    def __init__(
        self,
        directory: PositionDirectory,
        executor: LiquidationExecutor,
        *,
        token: CancellationToken | None = None,
        sink: EventSink | None = None,
        delay_seconds: float = 20.0,
        refresh_every: int = 1000,
        closers: Sequence[Callable[[], Awaitable[None]]] = (),
    ) -> None:
        self._directory = directory
        self._executor = executor
        self._token = token or CancellationToken()
        self._sink = sink or LoggingEventSink()
        self._delay_seconds = delay_seconds
        self._refresh_every = max(1, refresh_every)
        self._closers = tuple(closers)
        self._snapshot = DirectorySnapshot()
        self._iteration = 0
        self._since_refresh = 0

    @property
    def snapshot(self) -> DirectorySnapshot:
        return self._snapshot

    @property
    def iteration(self) -> int:
        return self._iteration

    def _refresh_due(self) -> bool:
        return self._snapshot.is_empty or self._since_refresh >= self._refresh_every

    async def run_iteration(self) -> IterationReport:
        started_at = datetime.now(timezone.utc)
        index = self._iteration
        refreshed = False
        try:
            if self._refresh_due():
                self._snapshot = await self._directory.refresh()
                self._since_refresh = 0
                refreshed = True
            report = await self._executor.run(self._snapshot.addresses, self._snapshot.assets)
        except LoopCancelled:
            raise
        except Exception as exc:
            LOGGER.debug("iteration %d failed", index, exc_info=True)
            self._sink.error("iteration failed", iteration=index, error=f"{type(exc).__name__}: {exc}")
            return IterationReport(
                iteration=index,
                started_at=started_at,
                ended_at=datetime.now(timezone.utc),
                refreshed=refreshed,
                error=str(exc) or type(exc).__name__,
            )
        finally:
            self._iteration += 1
            self._since_refresh += 1

        return IterationReport(
            iteration=index,
            started_at=started_at,
            ended_at=datetime.now(timezone.utc),
            refreshed=refreshed,
            liquidatable=report.liquidatable,
            attempts=report.attempts,
            arbitrage_attempted=report.arbitrage_attempted,
        )

    async def run_forever(self, max_iterations: int | None = None) -> int:
        """Loop until cancelled or ``max_iterations`` have run.

        Returns the number of iterations completed.
        """
        completed = 0
        try:
            while max_iterations is None or completed < max_iterations:
                self._token.raise_if_cancelled()
                self._sink.info(
                    "loop heartbeat",
                    iteration=self._iteration,
                    addresses=len(self._snapshot.addresses),
                    assets=len(self._snapshot.assets),
                )
                await self.run_iteration()
                completed += 1
                if max_iterations is not None and completed >= max_iterations:
                    break
                if await self._token.sleep(self._delay_seconds):
                    break
        except LoopCancelled:
            pass
        finally:
            self._sink.info(
                "shutdown",
                iterations=completed,
                reason=self._token.reason if self._token.cancelled else "completed",
            )
            await self.aclose()
        return completed

    async def aclose(self) -> None:
        for close in self._closers:
            try:
                await close()
            except Exception:
                LOGGER.warning("error while closing resources", exc_info=True)
