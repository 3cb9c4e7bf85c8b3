"""Catalog protocol and entry type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime


@dataclass(frozen=True)
class ArchiveEntry:
    """One archived revision of a file, as reported by the catalog."""

    filename: str
    subpath: str
    package_id: int
    size: int
    content_hash: str
    submitted_at: datetime

    @property
    def relative_path(self) -> str:
        if not self.subpath:
            return self.filename
        return f"{self.subpath}/{self.filename}"


@runtime_checkable
class ArchiveCatalog(Protocol):
    """Service of record for what has already been archived."""

    async def fetch_entries(self, package_ids: Sequence[int]) -> list[ArchiveEntry]:
        """Return every archived revision of every file in the given packages.

        Raises CatalogQueryError when the catalog cannot be queried.
        """
        ...
