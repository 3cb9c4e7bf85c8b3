"""Tests for the candidate filter."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import pytest

from archiver.services.candidate_filter import (
    ScanStatus,
    file_passes_filters,
    find_quarantined_directories,
    resolve_package_dir,
    select_candidates,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
LONG_AGO = NOW - timedelta(days=90)


@pytest.fixture
def package_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "2024" / "1500_Test_Package"
    directory.mkdir(parents=True)
    return directory


class TestFilePassesFilters:
    @pytest.mark.parametrize(
        "name",
        ["Thumbs.db", ".DS_Store", ".Rproj.user", "scan.RAW", "run.mzXML", "run.mzML", "run.mzML.gz"],
    )
    def test_rejects_system_and_raw_files(
        self, package_dir: Path, write_file: Callable[..., Path], name: str
    ) -> None:
        path = write_file(package_dir / name)
        assert not file_passes_filters(path, path.stat())

    def test_rejects_empty_files(self, package_dir: Path, write_file: Callable[..., Path]) -> None:
        path = write_file(package_dir / "empty.txt", b"")
        assert not file_passes_filters(path, path.stat())

    def test_rejects_editor_lock_files(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(package_dir / "~$report.xlsx")
        assert not file_passes_filters(path, path.stat())

    def test_accepts_regular_files(self, package_dir: Path, write_file: Callable[..., Path]) -> None:
        path = write_file(package_dir / "results.txt")
        assert file_passes_filters(path, path.stat())

    def test_mzml_inside_name_is_not_blocked(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(package_dir / "run.mzML.summary.txt")
        assert file_passes_filters(path, path.stat())


class TestResolvePackageDir:
    def test_prefers_local_path(self, tmp_path: Path) -> None:
        local = tmp_path / "local"
        share = tmp_path / "share"
        local.mkdir()
        share.mkdir()
        assert resolve_package_dir(str(local), str(share)) == local

    def test_falls_back_to_share_path(self, tmp_path: Path) -> None:
        share = tmp_path / "share"
        share.mkdir()
        assert resolve_package_dir(str(tmp_path / "missing"), str(share)) == share

    def test_returns_none_when_neither_exists(self, tmp_path: Path) -> None:
        assert resolve_package_dir(str(tmp_path / "a"), str(tmp_path / "b")) is None

    def test_empty_paths_are_ignored(self) -> None:
        assert resolve_package_dir("", "") is None


class TestQuarantine:
    def test_recent_auto_job_directory_is_quarantined(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        job_dir = package_dir / "MSG202405011234_Auto1234567"
        write_file(job_dir / "output.txt", modified=NOW - timedelta(hours=1))
        assert find_quarantined_directories(package_dir, NOW) == [job_dir]

    def test_settled_auto_job_directory_is_not_quarantined(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        write_file(
            package_dir / "MSG202405011234_Auto1234567" / "output.txt",
            modified=NOW - timedelta(hours=5),
        )
        assert find_quarantined_directories(package_dir, NOW) == []

    def test_ordinary_directory_with_recent_files_is_not_quarantined(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        write_file(package_dir / "Analysis" / "output.txt", modified=NOW - timedelta(minutes=5))
        assert find_quarantined_directories(package_dir, NOW) == []


class TestSelectCandidates:
    def test_empty_directory(self, package_dir: Path) -> None:
        scan = select_candidates(package_dir, 1500, "2024/1500_Test_Package", now=NOW)
        assert scan.status is ScanStatus.NO_FILES
        assert scan.candidates == []
        assert "does not have any files" in scan.message

    def test_builds_archive_subpaths(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        write_file(package_dir / "summary.txt", modified=LONG_AGO)
        write_file(package_dir / "Results" / "Run1" / "psm.tsv", modified=LONG_AGO)

        scan = select_candidates(package_dir, 1500, "2024/1500_Test_Package", now=NOW)

        assert scan.status is ScanStatus.READY
        by_name = {candidate.name: candidate for candidate in scan.candidates}
        assert by_name["summary.txt"].archive_subpath == "2024/1500_Test_Package"
        assert by_name["psm.tsv"].archive_subpath == "2024/1500_Test_Package/Results/Run1"
        assert by_name["psm.tsv"].relative_path == "Results/Run1/psm.tsv"
        assert by_name["psm.tsv"].size == len(b"data")

    def test_candidates_are_sorted_by_relative_path(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        for name in ["c.txt", "a.txt", "sub/b.txt"]:
            write_file(package_dir / name)
        scan = select_candidates(package_dir, 1500, "sub", now=NOW)
        assert [c.relative_path for c in scan.candidates] == ["a.txt", "c.txt", "sub/b.txt"]

    def test_all_files_skipped(self, package_dir: Path, write_file: Callable[..., Path]) -> None:
        write_file(package_dir / "Thumbs.db")
        write_file(package_dir / "run.raw")

        scan = select_candidates(package_dir, 1500, "2024/1500_Test_Package", now=NOW)

        assert scan.status is ScanStatus.ALL_SKIPPED
        assert scan.total_files == 2
        assert "system or temporary files" in scan.message

    def test_all_files_quarantined(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        write_file(
            package_dir / "MSG202405011234_Auto1234567" / "output.txt",
            modified=NOW - timedelta(minutes=30),
        )

        scan = select_candidates(package_dir, 1500, "2024/1500_Test_Package", now=NOW)

        assert scan.status is ScanStatus.ALL_SKIPPED
        assert "auto-job" in scan.message
        assert len(scan.quarantined_directories) == 1

    def test_too_many_files(self, package_dir: Path, write_file: Callable[..., Path]) -> None:
        for index in range(6):
            write_file(package_dir / f"file{index}.txt")

        scan = select_candidates(package_dir, 1500, "x", max_files=5, now=NOW)

        assert scan.status is ScanStatus.TOO_MANY_FILES
        assert scan.is_error
        assert scan.candidates == []
        assert "6 files" in scan.message

    def test_file_count_at_ceiling_is_allowed(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        for index in range(5):
            write_file(package_dir / f"file{index}.txt")
        scan = select_candidates(package_dir, 1500, "x", max_files=5, now=NOW)
        assert scan.status is ScanStatus.READY
        assert len(scan.candidates) == 5

    def test_date_threshold_excludes_old_packages(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        write_file(package_dir / "old.txt", modified=LONG_AGO)

        scan = select_candidates(
            package_dir, 1500, "x", date_threshold=NOW - timedelta(days=30), now=NOW
        )

        assert scan.status is ScanStatus.BEFORE_DATE_THRESHOLD
        assert "has 1 file, but it was modified before" in scan.message

    def test_date_threshold_keeps_all_files_when_one_is_recent(
        self, package_dir: Path, write_file: Callable[..., Path]
    ) -> None:
        write_file(package_dir / "old.txt", modified=LONG_AGO)
        write_file(package_dir / "new.txt", modified=NOW - timedelta(days=1))

        scan = select_candidates(
            package_dir, 1500, "x", date_threshold=NOW - timedelta(days=30), now=NOW
        )

        assert scan.status is ScanStatus.READY
        assert {c.name for c in scan.candidates} == {"old.txt", "new.txt"}
