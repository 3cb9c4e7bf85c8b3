"""Ingestion verification: confirm that submitted packages reached the archive."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from archiver.catalog.cache import CatalogCache
from archiver.exceptions import ArchiverError
from archiver.services.batch_service import chunk_ids
from archiver.services.candidate_filter import resolve_package_dir
from archiver.services.datetime_service import now_utc
from archiver.services.marker_service import marker_filename, marker_path
from archiver.services.store_service import STATUS_OK

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from archiver.catalog.base import ArchiveCatalog
    from archiver.ingest.base import IngestStatusService
    from archiver.services.events import RunReporter
    from archiver.services.store_service import ArchiveStore, VerificationRecord

logger = logging.getLogger(__name__)

UNKNOWN_SUBMITTER_ERROR = "Invalid values for submitter"
RESET_ERROR_CODE = 101


class VerificationOutcome(StrEnum):
    """Result of checking one outstanding submission."""

    PENDING = "pending"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"
    CRITICAL_ERROR = "critical_error"
    VERIFIED = "verified"


@dataclass
class PollRound:
    """Mutable state shared by the records checked against one catalog cache."""

    exception_count: int = 0


def dedupe_status_handles(
    records: list[VerificationRecord], reporter: RunReporter
) -> list[VerificationRecord]:
    """Drop entries whose status handle was already listed for another entry."""
    seen: dict[str, VerificationRecord] = {}
    unique: list[VerificationRecord] = []
    for record in records:
        first = seen.get(record.status_handle)
        if first is not None:
            reporter.error(
                f"Error, status URL {record.status_handle} is defined for multiple uploads "
                f"(entry {first.entry_id} and entry {record.entry_id})",
                log_to_db=True,
            )
            continue
        seen[record.status_handle] = record
        unique.append(record)
    return unique


class IngestionVerifier:
    """Polls status handles of earlier submissions and records confirmed ingestion.

    Records are checked in groups of packages; each group shares one catalog
    cache and one exception counter. Reaching ``exception_threshold``
    exceptions within a group aborts the whole pass, leaving the remaining
    records for the next run.
    """

    def __init__(
        self,
        store: ArchiveStore,
        catalog: ArchiveCatalog,
        status_service: IngestStatusService,
        reporter: RunReporter,
        *,
        preview: bool = False,
        group_size: int = 5,
        exception_threshold: int = 3,
        lookback_days: int = 45,
        warning_age: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.status_service = status_service
        self.reporter = reporter
        self.preview = preview
        self.group_size = group_size
        self.exception_threshold = exception_threshold
        self.lookback_days = lookback_days
        self.warning_age = warning_age
        self.clock = clock

    async def verify_uploads(self) -> bool:
        """Check every outstanding submission. Returns False if the pass was cut short."""
        try:
            records = await self.store.get_outstanding_uploads(self.lookback_days, self.clock())
        except SQLAlchemyError as exc:
            self.reporter.error(f"Error loading outstanding uploads: {exc}", exception=exc)
            return False

        records = dedupe_status_handles(records, self.reporter)
        if not records:
            return True

        self.reporter.debug(f"Verifying {len(records)} outstanding upload(s)")
        package_ids = list(dict.fromkeys(record.package_id for record in records))

        try:
            for group in chunk_ids(package_ids, self.group_size):
                cache = CatalogCache(group)
                await cache.refresh(self.catalog)

                poll_round = PollRound()
                in_group = set(group)
                for record in records:
                    if record.package_id not in in_group:
                        continue
                    outcome = await self.verify_record(record, cache, poll_round)
                    if outcome is VerificationOutcome.CRITICAL_ERROR:
                        return False
        except ArchiverError as exc:
            self.reporter.error(
                f"Exception verifying data package upload status: {exc}",
                exception=exc,
                log_to_db=True,
            )
            return False

        return True

    async def verify_record(
        self,
        record: VerificationRecord,
        cache: CatalogCache,
        poll_round: PollRound | None = None,
    ) -> VerificationOutcome:
        """Poll one submission and advance its stored flags."""
        poll_round = poll_round if poll_round is not None else PollRound()
        try:
            return await self._verify(record, cache)
        except Exception as exc:
            message = (
                f"Exception verifying archive status for data package {record.package_id}, "
                f"entry {record.entry_id}: {exc}"
            )
            poll_round.exception_count += 1
            if poll_round.exception_count < self.exception_threshold:
                self.reporter.warning(message, exception=exc)
                return VerificationOutcome.FAILED

            self.reporter.error(message, exception=exc, log_to_db=True)
            return VerificationOutcome.CRITICAL_ERROR

    async def _verify(self, record: VerificationRecord, cache: CatalogCache) -> VerificationOutcome:
        label = f"data package {record.package_id}, entry {record.entry_id}"
        status = await self.status_service.get_ingest_status(record.status_handle)

        if not status.valid:
            self.reporter.error(
                f"Error looking up archive status for {label}; "
                f"{status.error_message or 'empty or malformed server response'}; "
                f"see {record.status_handle}"
            )
            return VerificationOutcome.FAILED

        if status.failed:
            error_message = status.error_message.strip()
            if not error_message:
                error_message = "Ingest failed; unknown reason"
            self.reporter.error(f"Ingest failed for {label}: {error_message}")
            if UNKNOWN_SUBMITTER_ERROR in error_message:
                self.reporter.error(self._unknown_submitter_message(record), log_to_db=True)
            return VerificationOutcome.FAILED

        if not status.complete:
            elapsed = self.clock() - record.entered
            if elapsed > self.warning_age:
                hours = self.warning_age.total_seconds() / 3600
                self.reporter.warning(
                    f"Data package {record.package_id} is not available in the archive after "
                    f"{hours:g} hours ({status.percent_complete:g}% complete, current task is "
                    f"'{status.current_task}'). To ignore this upload, set its error code to "
                    f"{RESET_ERROR_CODE}; see {record.status_handle}",
                    log_to_db=True,
                )
            return VerificationOutcome.PENDING

        if not cache.find_files("*", "", record.package_id):
            self.reporter.debug(f"Data package {record.package_id} is not yet visible in the catalog")
            await self._update_status(record, available=True, verified=False)
            return VerificationOutcome.UNAVAILABLE

        self.reporter.debug(f"Data package {record.package_id} is visible in the catalog")

        package_dir = resolve_package_dir(record.local_path, record.share_path)
        if package_dir is None:
            self.reporter.error(
                f"Data package directory not found while verifying {label}; "
                f"tried {record.local_path} and {record.share_path}"
            )
            await self._update_status(record, available=True, verified=False)
            return VerificationOutcome.UNAVAILABLE

        marker = marker_path(package_dir, record.package_id)
        if marker.is_file():
            message = (
                f"Deleting marker file for data package {record.package_id} since it is now "
                f"available and verified: {marker}"
            )
            if self.preview:
                self.reporter.info(f"SIMULATE: {message}")
            else:
                self.reporter.info(message)
                marker.unlink()

        await self._update_status(record, available=True, verified=True)
        return VerificationOutcome.VERIFIED

    async def _update_status(
        self, record: VerificationRecord, *, available: bool, verified: bool
    ) -> VerificationRecord:
        updated = replace(record, available=available, verified=verified)
        if self.preview:
            self.reporter.info(
                f"SIMULATE: set upload status for entry {updated.entry_id}, data package "
                f"{updated.package_id}: available={updated.available}, verified={updated.verified}"
            )
            return updated

        self.reporter.debug(f"  Updating upload status for data package {updated.package_id}")
        code = await self.store.set_upload_status(
            updated.entry_id,
            updated.package_id,
            available=updated.available,
            verified=updated.verified,
        )
        if code != STATUS_OK:
            logger.error(
                "Error %d updating upload status for entry %d, data package %d",
                code,
                updated.entry_id,
                updated.package_id,
            )
        return updated

    @staticmethod
    def _unknown_submitter_message(record: VerificationRecord) -> str:
        return (
            "Data package owner is not recognized by the archive (or the user has two archive "
            "accounts and only the first one is recognized). "
            f"Have user {record.owner} log in to the archive portal, then wait 24 hours, "
            f"then change the error code to {RESET_ERROR_CODE} for entry {record.entry_id} of "
            f"data package {record.package_id}. You must also delete file "
            f"{marker_filename(record.package_id)} from beside the package directory."
        )
