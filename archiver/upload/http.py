"""Upload coordinator that hands the manifest to the ingest service over HTTP."""

from __future__ import annotations

import logging

import httpx

from archiver.schemas.upload import ManifestFileSchema, UploadRequestSchema, UploadResponseSchema
from archiver.services.marker_service import write_marker
from archiver.upload.base import ManifestEntry, PackageMetadata, UploadResult

logger = logging.getLogger(__name__)


def build_upload_request(
    manifest: list[ManifestEntry], metadata: PackageMetadata
) -> UploadRequestSchema:
    """Build the ``POST /upload`` body for a manifest."""
    return UploadRequestSchema(
        package_id=metadata.package_id,
        subdirectory=metadata.subdirectory,
        transfer_directory=str(metadata.transfer_directory),
        operator_id=metadata.operator_id,
        project_id=metadata.project_id,
        instrument_id=metadata.instrument_id,
        instrument_name=metadata.instrument_name,
        files=[
            ManifestFileSchema(
                local_path=str(entry.local_path),
                archive_subpath=entry.archive_subpath,
                sha1=entry.content_hash,
            )
            for entry in manifest
        ],
    )


class HttpUploadCoordinator:
    """Submits manifests to the ingest service and writes the package marker file.

    The ingest service reads the listed files from the transfer directory,
    hashes anything without a precomputed SHA-1, and answers with the status
    URL to poll.
    """

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

    async def __aenter__(self) -> HttpUploadCoordinator:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def submit(self, manifest: list[ManifestEntry], metadata: PackageMetadata) -> UploadResult:
        request = build_upload_request(manifest, metadata)
        try:
            resp = await self.client.post("/upload", json=request.model_dump(mode="json"))
        except httpx.HTTPError as exc:
            return UploadResult(success=False, error_message=f"Upload request failed: {exc}")

        if resp.status_code >= 400:
            detail = resp.text.strip()[:500] or "empty server response"
            return UploadResult(
                success=False,
                error_message=f"Upload rejected (HTTP {resp.status_code}): {detail}",
            )

        try:
            payload = UploadResponseSchema.model_validate(resp.json())
        except ValueError:
            return UploadResult(
                success=False,
                error_message="Upload response did not include a status URL",
            )

        logger.info("Upload complete: %s", payload.status_url)
        try:
            write_marker(metadata.transfer_directory, metadata.package_id, payload.status_url)
        except OSError as exc:
            logger.warning(
                "Could not write marker file for data package %d: %s", metadata.package_id, exc
            )
        return UploadResult(success=True, status_handle=payload.status_url)
