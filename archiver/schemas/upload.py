"""Upload request and response schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ManifestFileSchema(BaseModel):
    """One file to transfer."""

    local_path: str
    archive_subpath: str
    sha1: str | None = None


class UploadRequestSchema(BaseModel):
    """Body of ``POST /upload``."""

    package_id: int
    subdirectory: str
    transfer_directory: str
    operator_id: int
    project_id: str
    instrument_id: int
    instrument_name: str
    files: list[ManifestFileSchema]


class UploadResponseSchema(BaseModel):
    """Response body of ``POST /upload``."""

    model_config = ConfigDict(extra="ignore")

    status_url: str = Field(min_length=1)
    job_id: int | None = None
