"""Marker files: the cooperative lock between a submission and its verification.

After a successful submission a marker named after the package is written
beside the package directory. While it exists, later runs leave the package
alone; the verifier deletes it once the archive confirms ingestion, and very
old markers are removed by policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from archiver.services.datetime_service import from_timestamp, now_utc

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

MARKER_FILENAME_TEMPLATE = "archive_metadata_package_{package_id}.txt"

DEFAULT_RECENT_AGE = timedelta(hours=48)
DEFAULT_STALE_AGE = timedelta(days=6.5)


class MarkerState(StrEnum):
    """Age class of a package's marker file."""

    ABSENT = "absent"
    RECENT = "recent"
    AGING = "aging"
    STALE = "stale"


@dataclass(frozen=True)
class MarkerCheck:
    state: MarkerState
    path: Path
    age: timedelta | None = None

    @property
    def blocks_submission(self) -> bool:
        return self.state in (MarkerState.RECENT, MarkerState.AGING)


def marker_filename(package_id: int) -> str:
    return MARKER_FILENAME_TEMPLATE.format(package_id=package_id)


def marker_path(package_dir: Path, package_id: int) -> Path:
    """Marker location for a package: a file in the package directory's parent."""
    return package_dir.parent / marker_filename(package_id)


def check_marker(
    package_dir: Path,
    package_id: int,
    *,
    recent_age: timedelta = DEFAULT_RECENT_AGE,
    stale_age: timedelta = DEFAULT_STALE_AGE,
    now: datetime | None = None,
) -> MarkerCheck:
    """Classify the package's marker file by age."""
    path = marker_path(package_dir, package_id)
    if not path.is_file():
        return MarkerCheck(MarkerState.ABSENT, path)

    age = (now or now_utc()) - from_timestamp(path.stat().st_mtime)
    if age < recent_age:
        return MarkerCheck(MarkerState.RECENT, path, age)
    if age > stale_age:
        return MarkerCheck(MarkerState.STALE, path, age)
    return MarkerCheck(MarkerState.AGING, path, age)


def write_marker(transfer_directory: Path, package_id: int, status_handle: str) -> Path:
    """Write the marker for an in-flight submission into the transfer directory.

    The transfer directory is the parent of the package directory, so this is
    the file ``marker_path`` points at.
    """
    path = transfer_directory / marker_filename(package_id)
    path.write_text(
        f"package_id={package_id}\nstatus_url={status_handle}\nwritten={now_utc().isoformat()}\n",
        encoding="utf-8",
    )
    return path
