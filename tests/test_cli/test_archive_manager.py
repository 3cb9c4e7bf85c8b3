"""Tests for the archive manager command line."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from archiver.services.archive_service import RunOptions
from archiver.services.package_ids import IdRange
from cli.archive_manager import (
    EXIT_EMPTY_ID_LIST,
    EXIT_INVALID_ARGUMENTS,
    EXIT_OK,
    EXIT_RUN_FAILED,
    build_parser,
    configure_logging,
    main,
)

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def db_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    """Isolate the run from any .env file and point it at a fresh SQLite database."""
    monkeypatch.chdir(tmp_path)
    return f"sqlite+aiosqlite:///{tmp_path / 'db' / 'archiver.db'}"


def _exit_code(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return int(exc_info.value.code or 0)


class TestParser:
    def test_defaults(self) -> None:
        args = build_parser().parse_args(["880-885,892"])
        assert args.ids == "880-885,892"
        assert args.date == ""
        assert not args.preview
        assert not args.verify_only
        assert not args.disable_verify

    def test_flags(self) -> None:
        args = build_parser().parse_args(
            ["*", "-d", "2024-05-01", "--preview", "--skip-check-existing", "--no-verify"]
        )
        assert args.ids == "*"
        assert args.date == "2024-05-01"
        assert args.preview
        assert args.skip_check_existing
        assert args.disable_verify

    def test_verify_only_without_ids(self) -> None:
        args = build_parser().parse_args(["-v"])
        assert args.verify_only
        assert args.ids == ""


class TestMain:
    def test_invalid_ids(self, db_url: str, capsys: pytest.CaptureFixture[str]) -> None:
        assert _exit_code(["12,abc,x-y", "--db", db_url]) == EXIT_INVALID_ARGUMENTS
        err = capsys.readouterr().err
        assert "'abc'" in err
        assert "'x-y'" in err

    def test_empty_id_list(self, db_url: str) -> None:
        assert _exit_code([" ", "--db", db_url]) == EXIT_EMPTY_ID_LIST

    def test_invalid_date(self, db_url: str, capsys: pytest.CaptureFixture[str]) -> None:
        assert _exit_code(["5", "--date", "not a date", "--db", db_url]) == EXIT_INVALID_ARGUMENTS
        assert "Invalid date specified" in capsys.readouterr().err

    def test_inconsistent_settings(
        self, db_url: str, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("MARKER_RECENT_HOURS", "72")
        monkeypatch.setenv("MARKER_STALE_DAYS", "1")
        assert _exit_code(["5", "--db", db_url]) == EXIT_INVALID_ARGUMENTS
        assert "MARKER_STALE_DAYS" in capsys.readouterr().err

    def test_verify_only_with_nothing_outstanding(self, db_url: str, tmp_path: Path) -> None:
        assert _exit_code(["--verify-only", "--db", db_url]) == EXIT_OK
        assert (tmp_path / "db" / "archiver.db").exists()

    def test_unknown_packages_fail_the_run(
        self, db_url: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert _exit_code(["*", "--db", db_url, "--no-verify"]) == EXIT_RUN_FAILED
        err = capsys.readouterr().err
        assert err.startswith("Error archiving the data packages: None of the requested")

    def test_flags_become_run_options(
        self, db_url: str, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        calls: list[tuple[object, ...]] = []

        async def _run(*args: object) -> int:
            calls.append(args)
            return EXIT_OK

        monkeypatch.setattr("cli.archive_manager.run", _run)

        argv = ["100-", "--db", db_url, "--preview", "--skip-check-existing", "--trace"]
        assert _exit_code(argv) == EXIT_OK

        ((_settings, options, id_ranges, date_threshold),) = calls
        assert options == RunOptions(preview=True, skip_check_existing=True)
        assert id_ranges == [IdRange(100, None)]
        assert date_threshold is None


class TestConfigureLogging:
    def test_trace_enables_debug_for_the_package(self) -> None:
        configure_logging(debug=False, trace=True)
        assert logging.getLogger("archiver").level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
        logging.getLogger("archiver").setLevel(logging.NOTSET)

    def test_log_file(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "archive.log"
        configure_logging(debug=False, log_file=log_file)
        logging.getLogger("archiver.test").info("hello from the archive manager")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "hello from the archive manager" in log_file.read_text(encoding="utf-8")
