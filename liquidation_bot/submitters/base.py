from __future__ import annotations

from abc import ABC, abstractmethod

from liquidation_bot.models import SubmissionResult, TransactionRequest


class TransactionSubmitter(ABC):
    """Delivers one transaction and classifies what happened to it.

    A reverted or unincluded transaction is a normal ``SubmissionResult``;
    only failures to build, sign or transmit raise.
    """

    strategy: str

    @abstractmethod
    async def submit(self, request: TransactionRequest) -> SubmissionResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
