"""Submission guard: operator pause and anomaly pause.

The guard is consulted before every liquidation or arbitrage submission.
It never stops the loop itself; scanning and logging continue while
submissions are held back.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

from liquidation_bot.config import GuardSettings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardState:
    """Snapshot of all guard checks."""

    paused: bool
    reason: str
    file_pause: bool = False
    env_pause: bool = False
    anomaly_pause: bool = False


class SubmissionGuard:
    """Decides whether submissions may go out right now.

    Parameters
    ----------
    pause_file:
        Sentinel file. While it exists, submissions are paused.
    pause_env_var:
        Env var name. A truthy value pauses submissions.
    ack_file:
        Acknowledgement file. An anomaly pause lifts once this file is
        modified after the anomaly was recorded.
    pause_on_anomaly:
        Whether nonce desyncs and relay errors pause submissions at all.
    """

    def __init__(
        self,
        pause_file: str | Path = ".liquidator_pause",
        pause_env_var: str = "LIQ_PAUSE_SUBMISSIONS",
        ack_file: str | Path = ".liquidator_ack",
        pause_on_anomaly: bool = False,
    ) -> None:
        self._pause_file = Path(pause_file)
        self._pause_env_var = pause_env_var
        self._ack_file = Path(ack_file)
        self._pause_on_anomaly = pause_on_anomaly
        self._anomaly_reason = ""
        self._anomaly_at: float | None = None

    @classmethod
    def from_settings(cls, settings: GuardSettings) -> "SubmissionGuard":
        return cls(
            pause_file=settings.pause_file,
            pause_env_var=settings.pause_env_var,
            ack_file=settings.ack_file,
            pause_on_anomaly=settings.pause_on_anomaly,
        )

    # ------------------------------------------------------------------
    # Anomalies
    # ------------------------------------------------------------------

    def record_anomaly(self, reason: str) -> None:
        if not self._pause_on_anomaly:
            return
        self._anomaly_reason = reason
        self._anomaly_at = time.time()
        LOGGER.warning("submissions paused until acknowledged (%s): touch %s", reason, self._ack_file)

    def clear_anomaly(self) -> None:
        if self._anomaly_at is not None:
            LOGGER.info("anomaly pause cleared")
        self._anomaly_reason = ""
        self._anomaly_at = None

    def _acknowledged(self) -> bool:
        if self._anomaly_at is None:
            return True
        try:
            return self._ack_file.stat().st_mtime > self._anomaly_at
        except FileNotFoundError:
            return False

    @property
    def anomaly_active(self) -> bool:
        if self._anomaly_at is not None and self._acknowledged():
            self.clear_anomaly()
        return self._anomaly_at is not None

    # ------------------------------------------------------------------
    # Core check
    # ------------------------------------------------------------------

    def check(self) -> GuardState:
        reasons: list[str] = []

        file_pause = self._pause_file.exists()
        if file_pause:
            reasons.append(f"pause file exists ({self._pause_file})")

        env_pause = _is_truthy(os.environ.get(self._pause_env_var))
        if env_pause:
            reasons.append(f"pause env var {self._pause_env_var} is set")

        anomaly_pause = self.anomaly_active
        if anomaly_pause:
            reasons.append(f"unacknowledged anomaly ({self._anomaly_reason})")

        return GuardState(
            paused=bool(reasons),
            reason="; ".join(reasons) if reasons else "ok",
            file_pause=file_pause,
            env_pause=env_pause,
            anomaly_pause=anomaly_pause,
        )

    def is_paused(self) -> bool:
        return self.check().paused


def _is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}
