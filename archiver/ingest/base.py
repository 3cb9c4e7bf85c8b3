"""Ingest status protocol and result type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

FAILED_STATE = "failed"


@dataclass(frozen=True)
class IngestStatus:
    """Progress of one submission through the archive's ingest pipeline.

    ``valid`` is False when the status could not be read at all (transport
    error, empty or malformed response); ``error_message`` then says why.
    """

    valid: bool
    state: str = ""
    percent_complete: float = 0.0
    current_task: str = ""
    error_message: str = ""

    @classmethod
    def unreadable(cls, error_message: str) -> IngestStatus:
        return cls(valid=False, error_message=error_message)

    @property
    def failed(self) -> bool:
        return self.state.casefold() == FAILED_STATE or bool(self.error_message.strip())

    @property
    def complete(self) -> bool:
        return self.percent_complete >= 100


@runtime_checkable
class IngestStatusService(Protocol):
    """Reports ingest progress for a status handle returned at submission."""

    async def get_ingest_status(self, status_handle: str) -> IngestStatus:
        """Poll the status. Unreadable responses yield ``valid=False``."""
        ...
