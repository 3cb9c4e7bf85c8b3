"""Catalog client over the metadata service's HTTP JSON API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from archiver.catalog.base import ArchiveEntry
from archiver.catalog.cache import normalize_subpath
from archiver.exceptions import CatalogQueryError
from archiver.schemas.catalog import CatalogFilesResponse
from archiver.services.datetime_service import ensure_utc

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


class HttpArchiveCatalog:
    """Queries ``GET /files`` for every revision of every file in a set of packages."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> HttpArchiveCatalog:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def fetch_entries(self, package_ids: Sequence[int]) -> list[ArchiveEntry]:
        if not package_ids:
            return []

        params = [("package_id", str(package_id)) for package_id in package_ids]
        params.append(("include_all_revisions", "true"))
        logger.debug("Querying catalog for packages %s", ", ".join(map(str, package_ids)))
        try:
            resp = await self.client.get("/files", params=params)
            resp.raise_for_status()
            payload = CatalogFilesResponse.model_validate(resp.json())
        except httpx.HTTPError as exc:
            msg = f"Catalog query failed for packages {list(package_ids)}: {exc}"
            raise CatalogQueryError(msg) from exc
        except ValueError as exc:  # bad JSON or schema mismatch
            msg = f"Catalog returned an unreadable response for packages {list(package_ids)}"
            raise CatalogQueryError(msg) from exc

        return [
            ArchiveEntry(
                filename=item.filename,
                subpath=normalize_subpath(item.subdir),
                package_id=item.package_id,
                size=item.size,
                content_hash=item.hashsum.lower(),
                submitted_at=ensure_utc(item.submitted),
            )
            for item in payload.files
        ]
