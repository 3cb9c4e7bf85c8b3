"""Run-scoped event channel.

Components never log run progress through a global logger. They publish
``ArchiveEvent`` values through the ``RunReporter`` they were given, and the
reporter fans each event out to its sinks (stdlib logging, the database log
buffer, test recorders).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from archiver.services.datetime_service import now_utc

if TYPE_CHECKING:
    from datetime import datetime

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class EventLevel(StrEnum):
    """Severity of a run event."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def logging_level(self) -> int:
        return _LOG_LEVELS[self.value]


@dataclass(frozen=True)
class ArchiveEvent:
    """A single progress or error notification."""

    level: EventLevel
    message: str
    exception: BaseException | None = None
    log_to_db: bool = False


@runtime_checkable
class EventSink(Protocol):
    """Observer that receives every event published during a run."""

    def emit(self, event: ArchiveEvent) -> None:
        """Handle one event."""
        ...


class LoggingSink:
    """Forward events to a stdlib logger."""

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    def emit(self, event: ArchiveEvent) -> None:
        self.logger.log(
            event.level.logging_level,
            event.message,
            exc_info=event.exception if event.level is EventLevel.ERROR else None,
        )


@dataclass(frozen=True)
class PendingLogEntry:
    """A database-bound event stamped with the time it was raised."""

    level: EventLevel
    message: str
    posted_at: datetime


class DatabaseLogSink:
    """Buffer events flagged ``log_to_db`` until the runner writes them to the store."""

    def __init__(self) -> None:
        self._pending: list[PendingLogEntry] = []

    def emit(self, event: ArchiveEvent) -> None:
        if not event.log_to_db:
            return
        self._pending.append(
            PendingLogEntry(level=event.level, message=event.message.strip(), posted_at=now_utc())
        )

    def drain(self) -> list[PendingLogEntry]:
        """Return and clear the buffered entries."""
        pending, self._pending = self._pending, []
        return pending


class RunReporter:
    """Publishes run events to the registered sinks.

    Also remembers the most recent error message so the command line can
    show why a run failed.
    """

    def __init__(self, sinks: list[EventSink] | None = None) -> None:
        self.sinks: list[EventSink] = list(sinks or [])
        self.error_message = ""

    def subscribe(self, sink: EventSink) -> None:
        self.sinks.append(sink)

    def publish(self, event: ArchiveEvent) -> None:
        if event.level is EventLevel.ERROR:
            self.error_message = event.message
        for sink in self.sinks:
            sink.emit(event)

    def debug(self, message: str) -> None:
        self.publish(ArchiveEvent(EventLevel.DEBUG, message))

    def info(self, message: str, *, log_to_db: bool = False) -> None:
        self.publish(ArchiveEvent(EventLevel.INFO, message, log_to_db=log_to_db))

    def warning(
        self,
        message: str,
        *,
        exception: BaseException | None = None,
        log_to_db: bool = False,
    ) -> None:
        self.publish(ArchiveEvent(EventLevel.WARNING, message, exception, log_to_db))

    def error(
        self,
        message: str,
        *,
        exception: BaseException | None = None,
        log_to_db: bool = False,
    ) -> None:
        self.publish(ArchiveEvent(EventLevel.ERROR, message, exception, log_to_db))
