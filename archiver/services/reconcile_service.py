"""Reconciliation: classify local files against the catalog as new, updated or unchanged."""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from archiver.services.datetime_service import months_before, now_utc
from archiver.upload.base import ManifestEntry

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import datetime
    from pathlib import Path

    from archiver.catalog.base import ArchiveEntry
    from archiver.catalog.cache import CatalogCache
    from archiver.services.candidate_filter import CandidateFile
    from archiver.services.events import RunReporter

THRESHOLD_50_MB = 50 * 1024 * 1024

_PROGRESS_DETAIL_SECONDS = 5.0
_PROGRESS_INFO_SECONDS = 30.0


class UploadAction(StrEnum):
    """Classification of a local file against the catalog."""

    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class UploadDecision:
    """Classification of one candidate, with its hash when one was computed."""

    action: UploadAction
    candidate: CandidateFile
    content_hash: str | None = None

    @property
    def needs_upload(self) -> bool:
        return self.action is not UploadAction.UNCHANGED


@dataclass(frozen=True)
class HashPolicy:
    """When to trust a size match without hashing the local file.

    A file last modified more than ``min_age_months`` ago that is also either
    more than ``very_old_months`` old or at least ``large_file_bytes`` in size
    is assumed equal to a same-size archived revision. This trades a small
    risk of missing an in-place edit that kept the size for not re-reading
    large or long-settled files on every run.

    Entries submitted within ``grace_window`` are never re-examined.
    """

    grace_window: timedelta = timedelta(days=6.75)
    min_age_months: int = 1
    very_old_months: int = 6
    large_file_bytes: int = THRESHOLD_50_MB

    def within_grace_window(self, entry: ArchiveEntry, now: datetime) -> bool:
        return now - entry.submitted_at < self.grace_window

    def assumes_equal_by_size(self, candidate: CandidateFile, now: datetime) -> bool:
        if candidate.modified > months_before(now, self.min_age_months):
            return False
        very_old = candidate.modified <= months_before(now, self.very_old_months)
        return very_old or candidate.size >= self.large_file_bytes


def hash_file(file_path: Path) -> str:
    """Compute the SHA-1 hash of a file (the catalog's hash algorithm)."""
    sha = hashlib.sha1()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            sha.update(chunk)
    return sha.hexdigest()


def classify_file(
    candidate: CandidateFile,
    matches: Sequence[ArchiveEntry],
    policy: HashPolicy,
    now: datetime | None = None,
    hasher: Callable[[Path], str] = hash_file,
) -> UploadDecision:
    """Decide whether a local file must be uploaded.

    Matches are all archived revisions with the same name, subpath and
    package. The first revision inside the grace window, or whose hash equals
    the local file's, makes the file unchanged. Otherwise a revision whose
    size matches under the hash-skip policy also counts as unchanged, and
    any remaining mismatch makes the file updated.
    """
    if not matches:
        return UploadDecision(UploadAction.NEW, candidate)

    now = now or now_utc()
    assumed_matches = 0
    mismatches = 0
    content_hash: str | None = None

    for entry in matches:
        if policy.within_grace_window(entry, now):
            return UploadDecision(UploadAction.UNCHANGED, candidate, content_hash)

        if candidate.size != entry.size:
            mismatches += 1
            continue

        if policy.assumes_equal_by_size(candidate, now):
            # Keep looking; a later revision may confirm equality by hash
            assumed_matches += 1
            continue

        if content_hash is None:
            content_hash = hasher(candidate.path)

        if content_hash == entry.content_hash.lower():
            return UploadDecision(UploadAction.UNCHANGED, candidate, content_hash)

        mismatches += 1

    if assumed_matches > 0 or mismatches == 0:
        return UploadDecision(UploadAction.UNCHANGED, candidate, content_hash)

    return UploadDecision(UploadAction.UPDATED, candidate, content_hash)


@dataclass
class ReconciliationResult:
    """Decisions for one package, folded into an upload manifest."""

    decisions: list[UploadDecision] = field(default_factory=list)
    manifest: list[ManifestEntry] = field(default_factory=list)
    file_count_new: int = 0
    file_count_updated: int = 0
    total_bytes: int = 0

    @property
    def file_count_unchanged(self) -> int:
        return len(self.decisions) - self.file_count_new - self.file_count_updated

    def add(self, decision: UploadDecision) -> None:
        self.decisions.append(decision)
        if decision.action is UploadAction.UNCHANGED:
            return
        if decision.action is UploadAction.NEW:
            self.file_count_new += 1
        else:
            self.file_count_updated += 1
        self.total_bytes += decision.candidate.size
        self.manifest.append(
            ManifestEntry(
                local_path=decision.candidate.path,
                archive_subpath=decision.candidate.archive_subpath,
                content_hash=decision.content_hash,
            )
        )


def reconcile_package(
    package_id: int,
    candidates: Sequence[CandidateFile],
    cache: CatalogCache,
    policy: HashPolicy,
    reporter: RunReporter,
    *,
    now: datetime | None = None,
    hasher: Callable[[Path], str] = hash_file,
) -> ReconciliationResult:
    """Classify every candidate of a package against the cached catalog entries."""
    now = now or now_utc()
    result = ReconciliationResult()

    # Start the info clock in the past so the first progress line is at info level
    last_progress_info = time.monotonic() - 60
    last_progress_detail = time.monotonic()

    for index, candidate in enumerate(candidates, start=1):
        matches = cache.find_exact(candidate.name, candidate.archive_subpath, package_id)
        result.add(classify_file(candidate, matches, policy, now, hasher))

        current = time.monotonic()
        if current - last_progress_detail < _PROGRESS_DETAIL_SECONDS:
            continue
        last_progress_detail = current
        progress = (
            f"Finding files to archive for data package {package_id}: "
            f"{index} / {len(candidates)}"
        )
        if current - last_progress_info >= _PROGRESS_INFO_SECONDS:
            last_progress_info = current
            reporter.info(progress)
        else:
            reporter.debug(progress)

    return result
