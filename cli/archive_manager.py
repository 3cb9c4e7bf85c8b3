"""Command line entry point for the data package archive manager."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from archiver.catalog.http import HttpArchiveCatalog
from archiver.config import Settings
from archiver.database import create_engine
from archiver.exceptions import InvalidPackageIdError
from archiver.ingest.http import HttpIngestStatusService
from archiver.services.archive_service import ArchiveRunner, RunOptions
from archiver.services.datetime_service import format_date, parse_datetime
from archiver.services.events import DatabaseLogSink, LoggingSink, RunReporter
from archiver.services.package_ids import parse_package_id_list
from archiver.services.store_service import ArchiveStore
from archiver.upload.http import HttpUploadCoordinator

if TYPE_CHECKING:
    from datetime import datetime

    from archiver.services.package_ids import IdRange

logger = logging.getLogger("archiver.cli")

EXIT_OK = 0
EXIT_INVALID_ARGUMENTS = 1
EXIT_EMPTY_ID_LIST = 2
EXIT_RUN_FAILED = 3

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(debug: bool, log_file: Path | None = None, trace: bool = False) -> None:
    """Configure logging to stdout, plus a rotating log file when one is set."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        stream=sys.stdout,
        force=True,
    )
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
    if trace and not debug:
        logging.getLogger("archiver").setLevel(logging.DEBUG)
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="archive-manager",
        description=(
            "Push new and changed data package files into the archive, "
            "then verify that earlier uploads were ingested"
        ),
    )
    parser.add_argument(
        "ids",
        nargs="?",
        default="",
        help=(
            "Data package ID list: a single ID, a comma-separated list of IDs, or * for all "
            "packages. Items can be ranges such as 880-885 or 892-"
        ),
    )
    parser.add_argument(
        "--date",
        "-d",
        default="",
        help=(
            "Date threshold; packages without any file modified on or after this date "
            "are not uploaded"
        ),
    )
    parser.add_argument(
        "--preview", action="store_true", help="Preview the files that would be uploaded"
    )
    parser.add_argument(
        "--verify-only",
        "-v",
        action="store_true",
        help="Only verify recently uploaded data packages",
    )
    parser.add_argument("--db", help="Override the database URL")
    parser.add_argument(
        "--skip-check-existing",
        action="store_true",
        help=(
            "Skip the check for files known to exist in the archive; "
            "risks pushing duplicate files"
        ),
    )
    parser.add_argument(
        "--disable-verify",
        "--no-verify",
        dest="disable_verify",
        action="store_true",
        help="Skip verifying uploads that are not yet confirmed",
    )
    parser.add_argument("--trace", action="store_true", help="Show additional log messages")
    parser.add_argument(
        "--debug", action="store_true", help="Show debug messages; implies --trace"
    )
    return parser


def _ensure_sqlite_directory(database_url: str) -> None:
    if database_url.startswith("sqlite") and "///" in database_url:
        db_path = database_url.split("///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)


async def run(
    settings: Settings,
    options: RunOptions,
    id_ranges: list[IdRange] | None,
    date_threshold: datetime | None,
) -> int:
    """Run the archive manager once. ``id_ranges`` of None means verify only."""
    _ensure_sqlite_directory(settings.database_url)
    engine, session_factory = create_engine(settings)
    store = ArchiveStore(
        engine,
        session_factory,
        read_retries=settings.db_read_retries,
        stats_write_retries=settings.db_stats_write_retries,
        status_write_retries=settings.db_status_write_retries,
        retry_delay_seconds=settings.db_retry_delay_seconds,
    )
    reporter = RunReporter([LoggingSink(logging.getLogger("archiver.run"))])

    try:
        await store.create_schema()
        async with (
            HttpArchiveCatalog(settings.catalog_url, settings.request_timeout_seconds) as catalog,
            HttpUploadCoordinator(settings.upload_url, settings.request_timeout_seconds) as uploader,
            HttpIngestStatusService(settings.request_timeout_seconds) as status_service,
        ):
            runner = ArchiveRunner(
                settings,
                store,
                catalog,
                uploader,
                status_service,
                reporter,
                options,
                db_log_sink=DatabaseLogSink(),
            )
            if id_ranges is None:
                success = await runner.verify_uploads()
            else:
                success = await runner.start_processing(id_ranges, date_threshold)
    finally:
        await store.close()

    if not success:
        print(f"Error archiving the data packages: {reporter.error_message}", file=sys.stderr)
        return EXIT_RUN_FAILED
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings()
    if args.db:
        settings = settings.model_copy(update={"database_url": args.db})
    debug = args.debug or settings.debug
    trace = args.trace or debug

    try:
        settings.validate_runtime()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EXIT_INVALID_ARGUMENTS)

    date_threshold = None
    if args.date.strip():
        try:
            date_threshold = parse_datetime(args.date)
        except ValueError:
            print(f'Error: Invalid date specified with --date: "{args.date}"', file=sys.stderr)
            sys.exit(EXIT_INVALID_ARGUMENTS)

    id_ranges: list[IdRange] | None = None
    if not args.verify_only:
        try:
            id_ranges = parse_package_id_list(args.ids)
        except InvalidPackageIdError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(EXIT_INVALID_ARGUMENTS)
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(EXIT_EMPTY_ID_LIST)

    configure_logging(debug, settings.log_file, trace=trace)
    if date_threshold is None:
        logger.warning("No --date given; the date threshold will not be used")
    else:
        logger.info("Date threshold: %s", format_date(date_threshold))

    options = RunOptions(
        preview=args.preview,
        skip_check_existing=args.skip_check_existing,
        disable_verify=args.disable_verify,
    )
    sys.exit(asyncio.run(run(settings, options, id_ranges, date_threshold)))


if __name__ == "__main__":
    main()
