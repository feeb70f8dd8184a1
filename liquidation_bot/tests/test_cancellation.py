from __future__ import annotations

import asyncio

import pytest

from liquidation_bot.cancellation import CancellationToken
from liquidation_bot.errors import LoopCancelled


class TestCancellationToken:
    def test_run_returns_result(self) -> None:
        async def answer() -> int:
            return 42

        assert asyncio.run(CancellationToken().run(answer(), timeout=1)) == 42

    def test_run_times_out(self) -> None:
        async def main() -> None:
            await CancellationToken().run(asyncio.sleep(10), timeout=0.01)

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(main())

    def test_cancel_interrupts_pending_call(self) -> None:
        token = CancellationToken()
        finished: list[bool] = []

        async def slow() -> None:
            try:
                await asyncio.sleep(10)
            finally:
                finished.append(True)

        async def main() -> None:
            asyncio.get_running_loop().call_later(0.01, token.cancel, "SIGINT")
            await token.run(slow())

        with pytest.raises(LoopCancelled, match="SIGINT"):
            asyncio.run(main())
        assert finished == [True]

    def test_already_cancelled_does_not_start_call(self) -> None:
        token = CancellationToken()
        token.cancel()
        started: list[bool] = []

        async def call() -> None:
            started.append(True)

        async def main() -> None:
            await token.run(call())

        with pytest.raises(LoopCancelled):
            asyncio.run(main())
        assert started == []

    def test_sleep_wakes_on_cancel(self) -> None:
        token = CancellationToken()

        async def main() -> bool:
            asyncio.get_running_loop().call_later(0.01, token.cancel)
            return await token.sleep(10)

        assert asyncio.run(main()) is True
        assert token.cancelled is True

    def test_sleep_elapses(self) -> None:
        assert asyncio.run(CancellationToken().sleep(0.01)) is False

    def test_first_reason_wins(self) -> None:
        token = CancellationToken()
        token.cancel("SIGTERM")
        token.cancel("SIGINT")
        assert token.reason == "SIGTERM"
        with pytest.raises(LoopCancelled):
            token.raise_if_cancelled()
