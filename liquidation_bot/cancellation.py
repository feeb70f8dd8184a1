"""Cooperative cancellation for the main loop.

Every suspension point (ledger reads, broadcasts, the relay wait and the
inter-iteration sleep) goes through a ``CancellationToken`` so a shutdown
request or a timeout interrupts it instead of leaving the process hung.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Awaitable, TypeVar

from liquidation_bot.errors import LoopCancelled

T = TypeVar("T")


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise LoopCancelled(self._reason)

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns True if woken by cancellation."""
        if seconds <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def run(self, awaitable: Awaitable[T], timeout: float | None = None) -> T:
        """Await ``awaitable`` unless cancelled first or ``timeout`` expires.

        Raises ``LoopCancelled`` on cancellation and ``asyncio.TimeoutError``
        on timeout; in both cases the pending operation is cancelled.
        """
        if self._event.is_set():
            # Drop an un-awaited coroutine cleanly.
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise LoopCancelled(self._reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        if self._event.is_set():
            raise LoopCancelled(self._reason)
        raise asyncio.TimeoutError(f"operation exceeded {timeout}s")
