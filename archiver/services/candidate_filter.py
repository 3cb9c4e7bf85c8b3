"""Candidate filter: which files under a package directory may be archived."""

from __future__ import annotations

import os
import re
import stat
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from archiver.services.datetime_service import format_date, from_timestamp, now_utc

if TYPE_CHECKING:
    from datetime import datetime

# OS and editor artifacts, compared case-insensitively by exact name
SKIPPED_FILE_NAMES = frozenset({"thumbs.db", ".ds_store", ".rproj.user"})

# Raw instrument formats that must never be archived this way
BLOCKED_EXTENSIONS = frozenset({".raw", ".mzxml", ".mzml"})
BLOCKED_SUFFIXES = (".mzml.gz",)

TEMP_EDITOR_PREFIX = "~$"

# Output directories of automated analysis jobs, e.g. "MSG202405011234_Auto1234567"
AUTO_JOB_DIRECTORY_RE = re.compile(r"^[A-Z].{1,5}\d{12}_Auto\d+", re.IGNORECASE)

DEFAULT_MAX_FILES = 600
DEFAULT_FRESHNESS_WINDOW = timedelta(hours=4)


class ScanStatus(StrEnum):
    """Outcome of scanning one package directory."""

    READY = "ready"
    NO_FILES = "no_files"
    ALL_SKIPPED = "all_skipped"
    TOO_MANY_FILES = "too_many_files"
    BEFORE_DATE_THRESHOLD = "before_date_threshold"


@dataclass(frozen=True)
class CandidateFile:
    """A local file considered for archival."""

    path: Path
    size: int
    modified: datetime
    relative_path: str
    archive_subpath: str

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class CandidateScan:
    """Result of filtering a package directory."""

    status: ScanStatus
    candidates: list[CandidateFile] = field(default_factory=list)
    total_files: int = 0
    quarantined_directories: list[Path] = field(default_factory=list)
    message: str = ""

    @property
    def is_error(self) -> bool:
        return self.status is ScanStatus.TOO_MANY_FILES


def resolve_package_dir(local_path: str, share_path: str) -> Path | None:
    """Return the local package directory, falling back to the share path."""
    for candidate in (local_path, share_path):
        if candidate and Path(candidate).is_dir():
            return Path(candidate)
    return None


def _is_hidden(file_stat: os.stat_result) -> bool:
    attributes = getattr(file_stat, "st_file_attributes", None)
    if attributes is None:
        # No hidden attribute outside Windows; "~$" lock files are always transient
        return True
    return bool(attributes & stat.FILE_ATTRIBUTE_HIDDEN)


def file_passes_filters(path: Path, file_stat: os.stat_result) -> bool:
    """Apply the zero-byte, skip-list, blocked-extension and temp-file rules."""
    if file_stat.st_size == 0:
        return False

    name = path.name
    folded = name.casefold()
    if folded in SKIPPED_FILE_NAMES:
        return False
    if path.suffix.casefold() in BLOCKED_EXTENSIONS:
        return False
    if name.startswith(TEMP_EDITOR_PREFIX) and _is_hidden(file_stat):
        return False
    if name.startswith("SyncToy_") and name.endswith(".dat"):
        return False
    return not folded.endswith(BLOCKED_SUFFIXES)


def _walk_files(root: Path) -> list[tuple[Path, os.stat_result]]:
    files: list[tuple[Path, os.stat_result]] = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            full = Path(dirpath) / filename
            files.append((full, full.stat()))
    return files


def find_quarantined_directories(
    package_dir: Path,
    now: datetime,
    freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
) -> list[Path]:
    """Return auto-job directories holding a file modified within the freshness window."""
    quarantined: list[Path] = []
    for dirpath, dirnames, _filenames in os.walk(package_dir):
        for dirname in dirnames:
            if not AUTO_JOB_DIRECTORY_RE.match(dirname):
                continue
            directory = Path(dirpath) / dirname
            for _file, file_stat in _walk_files(directory):
                if now - from_timestamp(file_stat.st_mtime) < freshness_window:
                    quarantined.append(directory)
                    break
    return quarantined


def _archive_subpath(subdirectory: str, relative_dir: str) -> str:
    if relative_dir in ("", "."):
        return subdirectory
    return f"{subdirectory}/{relative_dir}"


def select_candidates(
    package_dir: Path,
    package_id: int,
    subdirectory: str,
    date_threshold: datetime | None = None,
    *,
    max_files: int = DEFAULT_MAX_FILES,
    freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
    now: datetime | None = None,
) -> CandidateScan:
    """Walk a package directory and return the files eligible for archival.

    Files are dropped when empty, on the skip list, carrying a blocked
    extension, hidden editor temp files, or inside an auto-job directory that
    was written to within ``freshness_window``. Too many surviving files is an
    error status; no surviving file on/after ``date_threshold`` is an
    informational one.
    """
    now = now or now_utc()
    all_files = _walk_files(package_dir)
    if not all_files:
        return CandidateScan(
            status=ScanStatus.NO_FILES,
            message=f"Data package {package_id} does not have any files; nothing to archive",
        )

    quarantined = find_quarantined_directories(package_dir, now, freshness_window)

    candidates: list[CandidateFile] = []
    for path, file_stat in all_files:
        if not file_passes_filters(path, file_stat):
            continue
        if any(path.is_relative_to(directory) for directory in quarantined):
            continue
        relative = path.relative_to(package_dir)
        relative_dir = relative.parent.as_posix()
        candidates.append(
            CandidateFile(
                path=path,
                size=file_stat.st_size,
                modified=from_timestamp(file_stat.st_mtime),
                relative_path=relative.as_posix(),
                archive_subpath=_archive_subpath(subdirectory, relative_dir),
            )
        )

    total = len(all_files)

    if len(candidates) > max_files:
        return CandidateScan(
            status=ScanStatus.TOO_MANY_FILES,
            total_files=total,
            quarantined_directories=quarantined,
            message=(
                f"Data package {package_id} has {len(candidates)} files; the maximum number of "
                f"files allowed in the archive per data package is {max_files}; zip groups of "
                f"files to reduce the total file count; see {package_dir}"
            ),
        )

    if not candidates:
        reason = (
            "due to recently modified files in auto-job result directories"
            if quarantined
            else "since they are system or temporary files"
        )
        return CandidateScan(
            status=ScanStatus.ALL_SKIPPED,
            total_files=total,
            quarantined_directories=quarantined,
            message=(
                f"Data package {package_id} has {total} files, but all have been skipped "
                f"{reason}; nothing to archive"
            ),
        )

    if date_threshold is not None and not any(
        candidate.modified >= date_threshold for candidate in candidates
    ):
        if total == 1:
            detail = "has 1 file, but it was modified before"
        else:
            detail = f"has {total} files, but all were modified before"
        return CandidateScan(
            status=ScanStatus.BEFORE_DATE_THRESHOLD,
            total_files=total,
            quarantined_directories=quarantined,
            message=(
                f"Data package {package_id} {detail} {format_date(date_threshold)}; "
                "nothing to archive"
            ),
        )

    candidates.sort(key=lambda candidate: candidate.relative_path)
    return CandidateScan(
        status=ScanStatus.READY,
        candidates=candidates,
        total_files=total,
        quarantined_directories=quarantined,
    )
