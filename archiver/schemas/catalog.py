"""Catalog query response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CatalogFileSchema(BaseModel):
    """One archived file revision as returned by the catalog service."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    filename: str = Field(min_length=1)
    subdir: str = ""
    package_id: int
    size: int = Field(ge=0)
    hashsum: str = ""
    submitted: datetime


class CatalogFilesResponse(BaseModel):
    """Response body of ``GET /files``."""

    model_config = ConfigDict(extra="ignore")

    files: list[CatalogFileSchema] = Field(default_factory=list)
