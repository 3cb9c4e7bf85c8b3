"""Archive run orchestration: look up packages, reconcile, submit, then verify."""

from __future__ import annotations

import asyncio
import getpass
import logging
import time
import zlib
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from archiver.catalog.cache import CatalogCache
from archiver.exceptions import ArchiverError
from archiver.services.batch_service import count_package_files, plan_batches
from archiver.services.candidate_filter import ScanStatus, resolve_package_dir, select_candidates
from archiver.services.datetime_service import now_utc
from archiver.services.marker_service import MarkerState, check_marker
from archiver.services.reconcile_service import (
    HashPolicy,
    ReconciliationResult,
    hash_file,
    reconcile_package,
)
from archiver.services.store_service import STATUS_OK, UploadSession
from archiver.services.verify_service import IngestionVerifier
from archiver.upload.base import (
    DEFAULT_OPERATOR_ID,
    DEFAULT_PROJECT_ID,
    UNKNOWN_INSTRUMENT_ID,
    UNKNOWN_INSTRUMENT_NAME,
    PackageMetadata,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from datetime import datetime
    from pathlib import Path

    from archiver.catalog.base import ArchiveCatalog
    from archiver.config import Settings
    from archiver.ingest.base import IngestStatusService
    from archiver.services.events import DatabaseLogSink, RunReporter
    from archiver.services.package_ids import IdRange
    from archiver.services.store_service import ArchiveStore, PackageRecord
    from archiver.upload.base import UploadCoordinator

logger = logging.getLogger(__name__)

_COUNT_PROGRESS_SECONDS = 20.0


def error_code_for(message: str) -> int:
    """Stable, non-zero error code derived from an error message."""
    return (zlib.crc32(message.encode("utf-8")) & 0x7FFFFFFF) or 1


def hash_policy_from_settings(settings: Settings) -> HashPolicy:
    return HashPolicy(
        grace_window=timedelta(days=settings.grace_window_days),
        min_age_months=settings.hash_skip_min_age_months,
        very_old_months=settings.hash_skip_very_old_months,
        large_file_bytes=settings.hash_skip_large_file_bytes,
    )


@dataclass(frozen=True)
class RunOptions:
    """Flags that shape a single run."""

    preview: bool = False
    skip_check_existing: bool = False
    disable_verify: bool = False


class ArchiveRunner:
    """Drives one archive run against injected collaborators.

    Every collaborator is awaited in turn; there is no concurrency inside a
    run. Events flagged for the operator log are buffered by the
    ``DatabaseLogSink`` and written to the store when the run ends.
    """

    def __init__(
        self,
        settings: Settings,
        store: ArchiveStore,
        catalog: ArchiveCatalog,
        uploader: UploadCoordinator,
        status_service: IngestStatusService,
        reporter: RunReporter,
        options: RunOptions | None = None,
        *,
        db_log_sink: DatabaseLogSink | None = None,
        clock: Callable[[], datetime] = now_utc,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        hasher: Callable[[Path], str] = hash_file,
    ) -> None:
        self.settings = settings
        self.store = store
        self.catalog = catalog
        self.uploader = uploader
        self.status_service = status_service
        self.reporter = reporter
        self.options = options or RunOptions()
        self.db_log_sink = db_log_sink
        self.clock = clock
        self.sleep = sleep
        self.hasher = hasher
        self.policy = hash_policy_from_settings(settings)
        if db_log_sink is not None:
            reporter.subscribe(db_log_sink)

    @property
    def preview(self) -> bool:
        return self.options.preview

    async def start_processing(
        self, id_ranges: Sequence[IdRange], date_threshold: datetime | None = None
    ) -> bool:
        """Archive the selected packages, then verify outstanding uploads.

        Verification runs even when archiving failed, unless disabled.
        """
        try:
            success = await self.process_packages(id_ranges, date_threshold)
            if not self.options.disable_verify:
                await self._verify()
            return success
        finally:
            await self.flush_log()

    async def verify_uploads(self) -> bool:
        """Run only the verification pass."""
        try:
            return await self._verify()
        finally:
            await self.flush_log()

    async def _verify(self) -> bool:
        verifier = IngestionVerifier(
            self.store,
            self.catalog,
            self.status_service,
            self.reporter,
            preview=self.preview,
            group_size=self.settings.verify_group_size,
            exception_threshold=self.settings.verify_exception_threshold,
            lookback_days=self.settings.verify_lookback_days,
            warning_age=timedelta(hours=self.settings.ingest_warning_hours),
            clock=self.clock,
        )
        return await verifier.verify_uploads()

    async def flush_log(self) -> None:
        """Write buffered operator-log events to the store."""
        if self.db_log_sink is None:
            return
        entries = self.db_log_sink.drain()
        if not entries:
            return
        if self.preview:
            logger.debug("Preview mode: not writing %d operator log entries", len(entries))
            return
        try:
            await self.store.write_log_entries(entries)
        except SQLAlchemyError as exc:
            logger.error("Failed to write %d operator log entries: %s", len(entries), exc)

    async def process_packages(
        self, id_ranges: Sequence[IdRange], date_threshold: datetime | None = None
    ) -> bool:
        """Archive every package matching ``id_ranges``. Returns True if all succeeded."""
        try:
            packages = await self.store.lookup_packages(id_ranges)
        except SQLAlchemyError as exc:
            self.reporter.error(f"Error looking up data packages: {exc}", exception=exc)
            return False

        if not packages:
            self.reporter.error(
                "None of the requested package IDs corresponded to a known data package"
            )
            return False

        if not self.preview:
            self.reporter.info(f"Pushing data into the archive as user {getpass.getuser()}")

        success_count = 0
        try:
            groups = self._plan_groups(packages)
            by_id = {package.id: package for package in packages}
            last_sentinel_check: float | None = None

            for group_number, group in enumerate(groups, start=1):
                if self._sentinel_check_due(last_sentinel_check):
                    if not await self.verify_known_catalog_results():
                        self.reporter.info(
                            "Aborting processing of data packages since the catalog is not available"
                        )
                        return False
                    last_sentinel_check = time.monotonic()

                cache = CatalogCache(group)
                self.reporter.info(
                    f"Querying the catalog for {len(group)} data packages in group "
                    f"{group_number} of {len(groups)}"
                )
                await cache.refresh(self.catalog)

                for package_id in group:
                    if await self.process_package(by_id[package_id], date_threshold, cache):
                        success_count += 1
        except ArchiverError as exc:
            self.reporter.error(
                f"Error processing data packages: {exc}", exception=exc, log_to_db=True
            )
            return False

        if success_count == len(packages):
            if success_count == 1:
                self.reporter.info(f"Processing complete for data package {packages[0].id}")
            else:
                self.reporter.info(f"Processed {success_count} data packages")
            if not self.preview and self.settings.post_upload_delay_seconds:
                # Small uploads are often fully ingested after a short pause
                await self.sleep(self.settings.post_upload_delay_seconds)
            return True

        if self.preview:
            return True

        if len(packages) == 1:
            self.reporter.error(f"Failed to archive data package {packages[0].id}")
        elif success_count == 0:
            self.reporter.error(
                f"Failed to archive any of the {len(packages)} candidate data packages",
                log_to_db=True,
            )
        else:
            self.reporter.error(
                f"Failed to archive {len(packages) - success_count} data package(s); "
                f"successfully archived {success_count} data package(s)",
                log_to_db=True,
            )
        return False

    def _plan_groups(self, packages: Sequence[PackageRecord]) -> list[list[int]]:
        self.reporter.info(f"Finding data package files for {len(packages)} data packages")
        file_counts: list[tuple[int, int]] = []
        last_progress = time.monotonic()
        for index, package in enumerate(packages):
            file_counts.append(
                (package.id, count_package_files(package.local_path, package.share_path))
            )
            if time.monotonic() - last_progress >= _COUNT_PROGRESS_SECONDS:
                last_progress = time.monotonic()
                self.reporter.info(
                    f"Finding data package files; examined {index} of {len(packages)} data packages"
                )
        return plan_batches(
            file_counts,
            max_files=self.settings.batch_max_files,
            max_packages=self.settings.batch_max_packages,
        )

    def _sentinel_check_due(self, last_check: float | None) -> bool:
        if self.preview:
            return False
        if last_check is None:
            return True
        return time.monotonic() - last_check > self.settings.sentinel_recheck_minutes * 60

    async def verify_known_catalog_results(self) -> bool:
        """Confirm the catalog still returns files for packages known to be archived.

        An empty or incomplete answer means the catalog is down or
        misconfigured, and submitting now would re-upload data that is
        already stored.
        """
        if self.options.skip_check_existing:
            self.reporter.warning("Skipping check for known data package files")
            return True

        known = self.settings.known_archive_files
        if not known:
            self.reporter.warning(
                "No known archived data packages are configured; skipping the catalog check"
            )
            return True

        package_ids = list(known)
        cache = CatalogCache(package_ids)
        try:
            await cache.refresh(self.catalog)
        except ArchiverError as exc:
            self.reporter.error(
                f"Exception verifying known catalog search results: {exc}",
                exception=exc,
                log_to_db=True,
            )
            return False

        if not cache.find_files("*"):
            self.reporter.error(
                "The catalog did not return any files for the known data packages "
                f"({package_ids[0]}-{package_ids[-1]}); the catalog service is likely "
                "disabled or broken at present.",
                log_to_db=True,
            )
            return False

        missing: dict[int, list[str]] = {}
        for package_id, expected in known.items():
            found = {entry.filename for entry in cache.find_files("*", "", package_id)}
            absent = [name for name in expected if name not in found]
            if absent:
                missing[package_id] = absent

        if not missing:
            return True

        if len(missing) == len(known):
            self.reporter.error(
                "The catalog did not return the expected files for any of the known data "
                "packages; some search results were returned but none of the expected files "
                "were found",
                log_to_db=True,
            )
            return False

        self.reporter.error(
            "The catalog did not return all of the expected files for the known data packages; "
            "files were missing for data packages: "
            + ", ".join(str(package_id) for package_id in missing),
            log_to_db=True,
        )
        return False

    async def process_package(
        self,
        package: PackageRecord,
        date_threshold: datetime | None,
        cache: CatalogCache,
    ) -> bool:
        """Reconcile one package and submit its delta.

        Returns True when the package needs no further attention this run,
        including when it was skipped behind a recent marker file.
        """
        start = time.monotonic()
        persisted = False
        result: ReconciliationResult | None = None
        try:
            package_dir = resolve_package_dir(package.local_path, package.share_path)
            if package_dir is None:
                self.reporter.warning(
                    "Data package directory not found (also tried remote share path): "
                    f"{package.local_path}"
                )
                return False

            marker = check_marker(
                package_dir,
                package.id,
                recent_age=timedelta(hours=self.settings.marker_recent_hours),
                stale_age=timedelta(days=self.settings.marker_stale_days),
                now=self.clock(),
            )
            if marker.state is MarkerState.RECENT:
                self.reporter.warning(
                    f"Data package {package.id} has an existing marker file less than "
                    f"{self.settings.marker_recent_hours:g} hours old in {package_dir.parent}; "
                    "skipping this data package"
                )
                self.reporter.debug(f"  {marker.path}")
                return True
            if marker.state is MarkerState.AGING:
                self.reporter.error(
                    f"Data package {package.id} has an existing marker file between "
                    f"{self.settings.marker_recent_hours:g} hours and "
                    f"{self.settings.marker_stale_days:g} days old: {marker.path}",
                    log_to_db=True,
                )
                return False
            if marker.state is MarkerState.STALE:
                self.reporter.error(
                    f"Data package {package.id} has an existing marker file over "
                    f"{self.settings.marker_stale_days:g} days old; deleting file: {marker.path}",
                    log_to_db=True,
                )
                marker.path.unlink(missing_ok=True)

            scan = select_candidates(
                package_dir,
                package.id,
                package.subdirectory,
                date_threshold,
                max_files=self.settings.max_files_per_package,
                freshness_window=timedelta(hours=self.settings.auto_job_freshness_hours),
                now=self.clock(),
            )
            for directory in scan.quarantined_directories:
                self.reporter.info(
                    f"Skipping files in {directory} since it has recently modified files"
                )
            if scan.is_error:
                self.reporter.error(scan.message, log_to_db=True)
                return False
            if scan.status is not ScanStatus.READY:
                self.reporter.info(scan.message)
                return True

            result = reconcile_package(
                package.id,
                scan.candidates,
                cache,
                self.policy,
                self.reporter,
                now=self.clock(),
                hasher=self.hasher,
            )
            if not result.manifest:
                self.reporter.debug(
                    f"Data package {package.id}: all {len(result.decisions)} files are "
                    "already archived"
                )
                return True

            if package.archive_uploads > 0 and not cache.find_files("*", "", package.id):
                self.reporter.error(
                    f"Data package {package.id} was previously uploaded to the archive, yet the "
                    "catalog did not return any files for it. Skipping this data package to "
                    "prevent the addition of duplicate files. To allow this upload, set the "
                    "error code of its earlier uploads to 101",
                    log_to_db=not self.preview,
                )
                return False

            if self.preview:
                self.reporter.info(
                    f"Need to upload {len(result.manifest)} file(s) for data package {package.id}"
                )
                for entry in result.manifest:
                    self.reporter.info(f"  {entry.archive_subpath}/{entry.local_path.name}")
                return True

            self.reporter.info(
                f"Uploading {len(result.manifest)} new/changed files for data package {package.id}"
            )
            metadata = self.build_package_metadata(package, package_dir.parent)
            for warning in metadata.warnings:
                self.reporter.warning(warning)

            outcome = await self.uploader.submit(result.manifest, metadata)
            elapsed = time.monotonic() - start

            if outcome.success:
                upload = UploadSession(
                    subdirectory=package.subdirectory,
                    file_count_new=result.file_count_new,
                    file_count_updated=result.file_count_updated,
                    total_bytes=result.total_bytes,
                    upload_time_seconds=elapsed,
                    status_handle=outcome.status_handle,
                )
                self.reporter.info(
                    f"Upload of changed files for data package {package.id} completed in "
                    f"{elapsed:.1f} seconds: {upload}"
                )
                self.reporter.debug(f"  status URL => {outcome.status_handle}")
                self.reporter.info(
                    f"Archive metadata: instrument ID {metadata.instrument_id}, "
                    f"project ID {metadata.project_id}, operator ID {metadata.operator_id}"
                )
            else:
                self.reporter.error(
                    f"Upload of changed files for data package {package.id} failed: "
                    f"{outcome.error_message}",
                    log_to_db=True,
                )
                upload = UploadSession(
                    subdirectory=package.subdirectory,
                    file_count_new=result.file_count_new,
                    file_count_updated=result.file_count_updated,
                    total_bytes=result.total_bytes,
                    upload_time_seconds=elapsed,
                    status_handle=outcome.status_handle,
                    error_code=error_code_for(outcome.error_message),
                )

            persisted = True
            await self._store_upload_stats(package, upload)
            return outcome.success
        except Exception as exc:
            self.reporter.error(
                f"Error processing data package {package.id}: {exc}",
                exception=exc,
                log_to_db=True,
            )
            if not persisted and not self.preview:
                result = result or ReconciliationResult()
                failed = UploadSession(
                    subdirectory=package.subdirectory,
                    file_count_new=result.file_count_new,
                    file_count_updated=result.file_count_updated,
                    total_bytes=result.total_bytes,
                    upload_time_seconds=time.monotonic() - start,
                    error_code=error_code_for(str(exc)),
                )
                await self._store_upload_stats(package, failed)
            return False

    async def _store_upload_stats(self, package: PackageRecord, upload: UploadSession) -> None:
        code = await self.store.record_upload_statistics(package.id, upload)
        if code != STATUS_OK:
            self.reporter.error(
                f"Error {code} storing the upload stats for data package {package.id}"
            )

    def build_package_metadata(
        self, package: PackageRecord, transfer_directory: Path
    ) -> PackageMetadata:
        """Archive metadata for a submission, with defaults for missing values."""
        warnings: list[str] = []

        operator_id = package.owner_archive_id
        if operator_id <= 0:
            warnings.append(
                f"Data package owner ({package.owner}) does not have an archive user ID; "
                f"using {DEFAULT_OPERATOR_ID}"
            )
            operator_id = DEFAULT_OPERATOR_ID

        project_id = package.project_id.strip()
        if not project_id:
            warnings.append(
                f"Data package does not have an associated project; using {DEFAULT_PROJECT_ID}"
            )
            project_id = DEFAULT_PROJECT_ID

        instrument_id = package.instrument_id
        if instrument_id <= 0:
            warnings.append(
                "Data package does not have an associated archive instrument ID; "
                f"using {UNKNOWN_INSTRUMENT_ID}"
            )
            instrument_id = UNKNOWN_INSTRUMENT_ID

        instrument_name = package.instrument_name.strip()
        if not instrument_name:
            warnings.append(
                "Data package does not have an associated instrument name; "
                f"using {UNKNOWN_INSTRUMENT_NAME}"
            )
            instrument_name = UNKNOWN_INSTRUMENT_NAME

        return PackageMetadata(
            package_id=package.id,
            subdirectory=package.subdirectory,
            transfer_directory=transfer_directory,
            operator_id=operator_id,
            project_id=project_id,
            instrument_id=instrument_id,
            instrument_name=instrument_name,
            warnings=warnings,
        )
