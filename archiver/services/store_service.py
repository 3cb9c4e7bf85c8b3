"""Backing store: package metadata, upload history and the operator log."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from archiver.models import ArchiveLogEntry, ArchiveUpload, Base, DataPackage
from archiver.services.datetime_service import ensure_utc, now_utc

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from archiver.services.events import PendingLogEntry
    from archiver.services.package_ids import IdRange

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_OK = 0
STATUS_NOT_FOUND = 1
STATUS_DB_ERROR = -1


@dataclass(frozen=True)
class PackageRecord:
    """Identity and location of one data package, as loaded at the start of a run."""

    id: int
    name: str
    owner: str
    local_path: str
    share_path: str
    subdirectory: str
    created: datetime
    archive_uploads: int = 0
    owner_archive_id: int = 0
    project_id: str = ""
    instrument_id: int = 0
    instrument_name: str = ""

    def __str__(self) -> str:
        return str(self.id)


@dataclass(frozen=True)
class UploadSession:
    """Outcome of one attempt to submit a package's new and changed files."""

    subdirectory: str
    file_count_new: int = 0
    file_count_updated: int = 0
    total_bytes: int = 0
    upload_time_seconds: float = 0.0
    status_handle: str = ""
    error_code: int = 0

    def __str__(self) -> str:
        return (
            f"{self.file_count_new} new files, {self.file_count_updated} updated files, "
            f"{self.total_bytes:,} total bytes"
        )


@dataclass(frozen=True)
class VerificationRecord:
    """A submission that has not yet been confirmed as available and verified."""

    entry_id: int
    package_id: int
    owner: str
    entered: datetime
    status_handle: str
    local_path: str
    share_path: str
    available: bool = False
    verified: bool = False

    def __str__(self) -> str:
        return f"Data package {self.package_id}: {self.status_handle}"


def _range_clause(id_range: IdRange):  # type: ignore[no-untyped-def]
    if id_range.end is None:
        return DataPackage.id >= id_range.start
    if id_range.start == id_range.end:
        return DataPackage.id == id_range.start
    return DataPackage.id.between(id_range.start, id_range.end)


class ArchiveStore:
    """Async access to the archive tables with fixed-delay retries.

    Reads raise after the retry budget is spent. The two status-returning
    writes report failure as a code instead: 0 on success, 1 when the target
    row does not exist and -1 for a database error.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        read_retries: int = 2,
        stats_write_retries: int = 4,
        status_write_retries: int = 2,
        retry_delay_seconds: float = 5.0,
        posted_by: str = "archive-manager",
    ) -> None:
        self.engine = engine
        self.session_factory = session_factory
        self.read_retries = read_retries
        self.stats_write_retries = stats_write_retries
        self.status_write_retries = status_write_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.posted_by = posted_by

    async def create_schema(self) -> None:
        """Create any missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def _with_retries(
        self,
        description: str,
        attempts: int,
        operation: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        for attempt in range(attempts):
            try:
                async with self.session_factory() as session:
                    return await operation(session)
            except SQLAlchemyError as exc:
                if attempt >= attempts - 1:
                    raise
                logger.warning(
                    "%s failed (attempt %d of %d): %s; retrying in %.1f seconds",
                    description,
                    attempt + 1,
                    attempts,
                    exc,
                    self.retry_delay_seconds,
                )
                await asyncio.sleep(self.retry_delay_seconds)
        raise RuntimeError(f"{description}: no attempts made")

    async def lookup_packages(self, id_ranges: Sequence[IdRange]) -> list[PackageRecord]:
        """Load packages matching any of the ranges (all packages for an empty list)."""
        stmt = select(DataPackage).order_by(DataPackage.id)
        if id_ranges:
            stmt = stmt.where(or_(*(_range_clause(id_range) for id_range in id_ranges)))

        async def _query(session: AsyncSession) -> list[PackageRecord]:
            result = await session.execute(stmt)
            return [
                PackageRecord(
                    id=row.id,
                    name=row.name,
                    owner=row.owner,
                    local_path=row.local_path,
                    share_path=row.share_path,
                    subdirectory=row.package_directory,
                    created=ensure_utc(row.created),
                    archive_uploads=row.archive_uploads,
                    owner_archive_id=row.owner_archive_id,
                    project_id=row.project_id or "",
                    instrument_id=row.instrument_id,
                    instrument_name=row.instrument_name or "",
                )
                for row in result.scalars().all()
            ]

        return await self._with_retries("Package lookup", self.read_retries, _query)

    async def get_outstanding_uploads(
        self, lookback_days: int, now: datetime | None = None
    ) -> list[VerificationRecord]:
        """Load successful submissions that are not yet available and verified."""
        cutoff = (now or now_utc()) - timedelta(days=lookback_days)
        stmt = (
            select(ArchiveUpload, DataPackage)
            .join(DataPackage, DataPackage.id == ArchiveUpload.package_id)
            .where(
                and_(
                    ArchiveUpload.error_code == 0,
                    or_(ArchiveUpload.available.is_(False), ArchiveUpload.verified.is_(False)),
                    ArchiveUpload.status_uri != "",
                    ArchiveUpload.entered >= cutoff,
                )
            )
            .order_by(ArchiveUpload.entry_id)
        )

        async def _query(session: AsyncSession) -> list[VerificationRecord]:
            result = await session.execute(stmt)
            return [
                VerificationRecord(
                    entry_id=upload.entry_id,
                    package_id=upload.package_id,
                    owner=package.owner,
                    entered=ensure_utc(upload.entered),
                    status_handle=upload.status_uri,
                    local_path=package.local_path,
                    share_path=package.share_path,
                    available=upload.available,
                    verified=upload.verified,
                )
                for upload, package in result.all()
            ]

        return await self._with_retries("Outstanding upload lookup", self.read_retries, _query)

    async def record_upload_statistics(self, package_id: int, upload: UploadSession) -> int:
        """Persist one submission attempt. Returns a status code (0 = success)."""

        async def _write(session: AsyncSession) -> int:
            session.add(
                ArchiveUpload(
                    package_id=package_id,
                    subdirectory=upload.subdirectory,
                    file_count_new=upload.file_count_new,
                    file_count_updated=upload.file_count_updated,
                    total_bytes=upload.total_bytes,
                    upload_time_seconds=upload.upload_time_seconds,
                    status_uri=upload.status_handle,
                    error_code=upload.error_code,
                    entered=now_utc(),
                    available=False,
                    verified=False,
                )
            )
            if upload.error_code == 0 and upload.file_count_new + upload.file_count_updated > 0:
                await session.execute(
                    update(DataPackage)
                    .where(DataPackage.id == package_id)
                    .values(archive_uploads=DataPackage.archive_uploads + 1)
                )
            await session.commit()
            return STATUS_OK

        try:
            return await self._with_retries(
                f"Storing upload stats for data package {package_id}",
                self.stats_write_retries,
                _write,
            )
        except SQLAlchemyError as exc:
            logger.error("Exception storing the upload stats for data package %d: %s", package_id, exc)
            return STATUS_DB_ERROR

    async def set_upload_status(
        self, entry_id: int, package_id: int, *, available: bool, verified: bool
    ) -> int:
        """Update the available/verified flags of an upload entry. Returns a status code."""

        async def _write(session: AsyncSession) -> int:
            result = await session.execute(
                update(ArchiveUpload)
                .where(
                    ArchiveUpload.entry_id == entry_id,
                    ArchiveUpload.package_id == package_id,
                )
                .values(available=available, verified=verified)
            )
            await session.commit()
            return STATUS_OK if result.rowcount else STATUS_NOT_FOUND

        try:
            return await self._with_retries(
                f"Setting upload status for entry {entry_id}", self.status_write_retries, _write
            )
        except SQLAlchemyError as exc:
            logger.error("Exception setting upload status for entry %d: %s", entry_id, exc)
            return STATUS_DB_ERROR

    async def write_log_entries(self, entries: Sequence[PendingLogEntry]) -> None:
        """Append operator-facing events to the log table."""
        if not entries:
            return

        async def _write(session: AsyncSession) -> None:
            session.add_all(
                ArchiveLogEntry(
                    posted_by=self.posted_by,
                    posting_time=entry.posted_at,
                    level=entry.level.value,
                    message=entry.message,
                )
                for entry in entries
            )
            await session.commit()

        await self._with_retries("Writing log entries", self.read_retries, _write)

    async def add_package(self, record: PackageRecord) -> None:
        """Insert or replace a package row."""

        async def _write(session: AsyncSession) -> None:
            await session.merge(
                DataPackage(
                    id=record.id,
                    name=record.name,
                    owner=record.owner,
                    owner_archive_id=record.owner_archive_id,
                    project_id=record.project_id or None,
                    instrument_id=record.instrument_id,
                    instrument_name=record.instrument_name or None,
                    created=record.created,
                    package_directory=record.subdirectory,
                    share_path=record.share_path,
                    local_path=record.local_path,
                    archive_uploads=record.archive_uploads,
                )
            )
            await session.commit()

        await self._with_retries(f"Saving data package {record.id}", 1, _write)
