"""Ingest status response schema."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class IngestStatusSchema(BaseModel):
    """Status document served at an upload's status URL."""

    model_config = ConfigDict(extra="ignore")

    job_id: int | None = None
    state: str = Field(min_length=1)
    task: str = ""
    task_percent: float = Field(default=0.0, ge=0, le=100)
    exception: str = ""
