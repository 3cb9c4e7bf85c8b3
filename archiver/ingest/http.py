"""Ingest status service over HTTP: the status handle is the URL to poll."""

from __future__ import annotations

import logging

import httpx

from archiver.ingest.base import IngestStatus
from archiver.schemas.ingest import IngestStatusSchema

logger = logging.getLogger(__name__)


class HttpIngestStatusService:
    """Reads the JSON status document at a submission's status URL."""

    def __init__(self, timeout: float = 60.0, client: httpx.AsyncClient | None = None) -> None:
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> HttpIngestStatusService:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def get_ingest_status(self, status_handle: str) -> IngestStatus:
        try:
            resp = await self.client.get(status_handle)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            return IngestStatus.unreadable(f"Error looking up ingest status: {exc}")

        if not resp.content.strip():
            return IngestStatus.unreadable("Empty server response")

        try:
            payload = IngestStatusSchema.model_validate(resp.json())
        except ValueError as exc:
            logger.debug("Unreadable ingest status from %s: %s", status_handle, exc)
            return IngestStatus.unreadable("Malformed ingest status response")

        return IngestStatus(
            valid=True,
            state=payload.state,
            percent_complete=payload.task_percent,
            current_task=payload.task,
            error_message=payload.exception,
        )
