"""Upload coordinator protocol and data classes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path

# Fallbacks used when a package lacks archive metadata
DEFAULT_OPERATOR_ID = 43428
DEFAULT_PROJECT_ID = "17797"
UNKNOWN_INSTRUMENT_ID = 34127
UNKNOWN_INSTRUMENT_NAME = "Unknown_Instrument"


@dataclass(frozen=True)
class ManifestEntry:
    """A file to transfer, with its SHA-1 when reconciliation already computed it."""

    local_path: Path
    archive_subpath: str
    content_hash: str | None = None


@dataclass(frozen=True)
class PackageMetadata:
    """Archive metadata attached to one package's submission."""

    package_id: int
    subdirectory: str
    transfer_directory: Path
    operator_id: int
    project_id: str
    instrument_id: int
    instrument_name: str
    warnings: list[str] = field(default_factory=list, compare=False)


@dataclass(frozen=True)
class UploadResult:
    """Result of a submission."""

    success: bool
    status_handle: str = ""
    error_message: str = ""


@runtime_checkable
class UploadCoordinator(Protocol):
    """External component that moves the bytes into the archive."""

    async def submit(
        self, manifest: list[ManifestEntry], metadata: PackageMetadata
    ) -> UploadResult:
        """Submit the manifest. Failure is reported in the result, not raised."""
        ...
