"""Structured log events.

Components describe what happened as a ``LogEvent`` and hand it to an
injected ``EventSink``; the sink decides how it is rendered and shipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict

ALERT_LEVEL = 45
logging.addLevelName(ALERT_LEVEL, "ALERT")


class Severity(IntEnum):
    # Values double as stdlib logging levels.
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    ALERT = ALERT_LEVEL


@dataclass(frozen=True)
class LogEvent:
    severity: Severity
    message: str
    fields: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventSink:
    """Receives events. Subclasses override ``emit``."""

    def emit(self, event: LogEvent) -> None:
        raise NotImplementedError

    def log(self, severity: Severity, message: str, **fields: Any) -> LogEvent:
        event = LogEvent(severity=severity, message=message, fields=fields)
        self.emit(event)
        return event

    def info(self, message: str, **fields: Any) -> LogEvent:
        return self.log(Severity.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> LogEvent:
        return self.log(Severity.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> LogEvent:
        return self.log(Severity.ERROR, message, **fields)

    def alert(self, message: str, **fields: Any) -> LogEvent:
        return self.log(Severity.ALERT, message, **fields)


class LoggingEventSink(EventSink):
    """Forwards events to stdlib logging.

    The structured payload rides along on the record as ``event_message`` and
    ``event_fields`` so a JSON formatter can emit it without re-parsing.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("liquidation_bot.events")

    def emit(self, event: LogEvent) -> None:
        rendered = " ".join(f"{key}={_render(value)}" for key, value in event.fields.items())
        self._logger.log(
            int(event.severity),
            "%s%s",
            event.message,
            f" | {rendered}" if rendered else "",
            extra={"event_message": event.message, "event_fields": dict(event.fields)},
        )


def _render(value: Any) -> str:
    if isinstance(value, (list, tuple, set, frozenset)):
        return "[" + ",".join(str(item) for item in value) + "]"
    return str(value)
