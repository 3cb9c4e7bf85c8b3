"""Shared test fixtures for the archive manager."""

from __future__ import annotations

import hashlib
import os
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import pytest

from archiver.catalog.base import ArchiveEntry
from archiver.config import Settings
from archiver.database import create_engine
from archiver.exceptions import CatalogQueryError
from archiver.ingest.base import IngestStatus
from archiver.services.events import ArchiveEvent, EventLevel, RunReporter
from archiver.services.store_service import ArchiveStore, PackageRecord
from archiver.upload.base import UploadResult

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Sequence
    from pathlib import Path

    from archiver.upload.base import ManifestEntry, PackageMetadata

# Fixed "now" for tests that depend on file and submission ages
NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def sha1_of(content: bytes) -> str:
    return hashlib.sha1(content).hexdigest()


class RecordingSink:
    """Event sink that keeps every event for assertions."""

    def __init__(self) -> None:
        self.events: list[ArchiveEvent] = []

    def emit(self, event: ArchiveEvent) -> None:
        self.events.append(event)

    def messages(self, level: EventLevel | None = None) -> list[str]:
        return [event.message for event in self.events if level is None or event.level is level]

    def db_messages(self) -> list[str]:
        return [event.message for event in self.events if event.log_to_db]


class FakeCatalog:
    """In-memory catalog; records every query."""

    def __init__(self, entries: Sequence[ArchiveEntry] = ()) -> None:
        self.entries: list[ArchiveEntry] = list(entries)
        self.queries: list[list[int]] = []
        self.error: str | None = None

    async def fetch_entries(self, package_ids: Sequence[int]) -> list[ArchiveEntry]:
        self.queries.append(list(package_ids))
        if self.error is not None:
            raise CatalogQueryError(self.error)
        wanted = set(package_ids)
        return [entry for entry in self.entries if entry.package_id in wanted]

    def add_file(
        self,
        package_id: int,
        subpath: str,
        filename: str,
        content: bytes,
        submitted_at: datetime,
    ) -> ArchiveEntry:
        entry = ArchiveEntry(
            filename=filename,
            subpath=subpath,
            package_id=package_id,
            size=len(content),
            content_hash=sha1_of(content),
            submitted_at=submitted_at,
        )
        self.entries.append(entry)
        return entry


class FakeUploader:
    """Upload coordinator that records submissions.

    With ``catalog`` set, successful submissions are published to it the way
    the real archive would make them visible after ingestion.
    """

    def __init__(
        self,
        catalog: FakeCatalog | None = None,
        *,
        fail_with: str = "",
        submitted_at: datetime = NOW,
    ) -> None:
        self.catalog = catalog
        self.fail_with = fail_with
        self.submitted_at = submitted_at
        self.submissions: list[tuple[list[ManifestEntry], PackageMetadata]] = []

    async def submit(
        self, manifest: list[ManifestEntry], metadata: PackageMetadata
    ) -> UploadResult:
        self.submissions.append((list(manifest), metadata))
        if self.fail_with:
            return UploadResult(success=False, error_message=self.fail_with)
        if self.catalog is not None:
            for entry in manifest:
                self.catalog.add_file(
                    metadata.package_id,
                    entry.archive_subpath,
                    entry.local_path.name,
                    entry.local_path.read_bytes(),
                    self.submitted_at,
                )
        handle = f"https://ingest.test/status/{metadata.package_id}/{len(self.submissions)}"
        return UploadResult(success=True, status_handle=handle)


class FakeStatusService:
    """Status service answering from a handle -> status (or exception) map."""

    def __init__(self, statuses: dict[str, IngestStatus | Exception] | None = None) -> None:
        self.statuses: dict[str, IngestStatus | Exception] = dict(statuses or {})
        self.polled: list[str] = []

    async def get_ingest_status(self, status_handle: str) -> IngestStatus:
        self.polled.append(status_handle)
        status = self.statuses.get(status_handle)
        if status is None:
            return IngestStatus.unreadable("Unknown status handle")
        if isinstance(status, Exception):
            raise status
        return status


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database and no retry delays."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_url=f"sqlite+aiosqlite:///{db_path}",
        db_retry_delay_seconds=0,
        post_upload_delay_seconds=0,
        known_archive_files={},
    )


@pytest.fixture
async def store(test_settings: Settings) -> AsyncGenerator[ArchiveStore]:
    """An archive store over a fresh SQLite database."""
    engine, session_factory = create_engine(test_settings)
    archive_store = ArchiveStore(
        engine,
        session_factory,
        read_retries=test_settings.db_read_retries,
        stats_write_retries=test_settings.db_stats_write_retries,
        status_write_retries=test_settings.db_status_write_retries,
        retry_delay_seconds=test_settings.db_retry_delay_seconds,
    )
    await archive_store.create_schema()
    yield archive_store
    await archive_store.close()


@pytest.fixture
def recorder() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def reporter(recorder: RecordingSink) -> RunReporter:
    return RunReporter([recorder])


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def uploader(catalog: FakeCatalog) -> FakeUploader:
    """Uploader whose successful submissions become visible in ``catalog``."""
    return FakeUploader(catalog)


@pytest.fixture
def status_service() -> FakeStatusService:
    return FakeStatusService()


@pytest.fixture
def write_file() -> Callable[..., Path]:
    """Return a helper that writes a file and sets its modification time."""

    def _write(path: Path, content: bytes = b"data", modified: datetime | None = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        if modified is not None:
            timestamp = modified.timestamp()
            os.utime(path, (timestamp, timestamp))
        return path

    return _write


@pytest.fixture
def make_package(tmp_path: Path) -> Callable[..., PackageRecord]:
    """Return a factory for package records whose directory lives under ``tmp_path``."""

    def _make(
        package_id: int,
        *,
        create_dir: bool = True,
        archive_uploads: int = 0,
        owner_archive_id: int = 1001,
        project_id: str = "5000",
        instrument_id: int = 42,
        instrument_name: str = "Orbitrap",
    ) -> PackageRecord:
        name = f"{package_id}_Package"
        local_dir = tmp_path / "packages" / "2024" / name
        if create_dir:
            local_dir.mkdir(parents=True, exist_ok=True)
        return PackageRecord(
            id=package_id,
            name=name,
            owner="D3L243",
            local_path=str(local_dir),
            share_path=str(tmp_path / "share" / "2024" / name),
            subdirectory=f"2024/{name}",
            created=NOW - timedelta(days=365),
            archive_uploads=archive_uploads,
            owner_archive_id=owner_archive_id,
            project_id=project_id,
            instrument_id=instrument_id,
            instrument_name=instrument_name,
        )

    return _make
