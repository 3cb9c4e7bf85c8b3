"""Archive manager configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Packages known to be stored in the archive, with a few of their files.
# Used to confirm that the catalog answers queries before pushing new data.
_DEFAULT_KNOWN_ARCHIVE_FILES: dict[int, list[str]] = {
    593: ["PX_Submission_2015-10-09_16-01.px"],
    721: ["AScore_AnalysisSummary.txt", "JobParameters_995425.xml", "T_Filtered_Results.txt"],
    1034: ["MasterWorkflowSyn.xml", "T_Reporter_Ions_Typed.txt"],
    1376: ["Concatenated_msgfdb_syn_plus_ascore.txt", "AScore_CID_0.5Da_ETD_0.5Da_HCD_0.05Da.xml"],
    1512: ["AScore_CID_0.5Da_ETD_0.5Da_HCD_0.05Da.xml", "Job_to_Dataset_Map.txt"],
}


class Settings(BaseSettings):
    """Archive manager settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    log_file: Path | None = None

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/archiver.db"
    db_read_retries: int = Field(default=2, ge=1)
    db_stats_write_retries: int = Field(default=4, ge=1)
    db_status_write_retries: int = Field(default=2, ge=1)
    db_retry_delay_seconds: float = Field(default=5.0, ge=0)

    # Remote services
    catalog_url: str = "https://metadata.archive.example.org"
    upload_url: str = "https://ingest.archive.example.org"
    request_timeout_seconds: float = Field(default=60.0, gt=0)

    # Candidate filter
    max_files_per_package: int = Field(default=600, ge=1)
    auto_job_freshness_hours: float = Field(default=4.0, ge=0)

    # Reconciliation hash policy
    grace_window_days: float = Field(default=6.75, ge=0)
    hash_skip_min_age_months: int = Field(default=1, ge=0)
    hash_skip_very_old_months: int = Field(default=6, ge=0)
    hash_skip_large_file_bytes: int = Field(default=50 * 1024 * 1024, ge=0)

    # Batch planner
    batch_max_files: int = Field(default=5000, ge=1)
    batch_max_packages: int = Field(default=30, ge=1)

    # Marker file aging
    marker_recent_hours: float = Field(default=48.0, ge=0)
    marker_stale_days: float = Field(default=6.5, ge=0)

    # Catalog sentinel check
    known_archive_files: dict[int, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in _DEFAULT_KNOWN_ARCHIVE_FILES.items()}
    )
    sentinel_recheck_minutes: float = Field(default=15.0, ge=0)

    # Ingestion verifier
    verify_group_size: int = Field(default=5, ge=1)
    verify_exception_threshold: int = Field(default=3, ge=1)
    verify_lookback_days: int = Field(default=45, ge=1)
    ingest_warning_hours: float = Field(default=24.0, ge=0)
    post_upload_delay_seconds: float = Field(default=3.0, ge=0)

    def validate_runtime(self) -> None:
        """Validate settings that depend on each other."""
        violations: list[str] = []
        if self.marker_stale_days * 24 < self.marker_recent_hours:
            violations.append("MARKER_STALE_DAYS must not be shorter than MARKER_RECENT_HOURS")
        if self.hash_skip_very_old_months < self.hash_skip_min_age_months:
            violations.append(
                "HASH_SKIP_VERY_OLD_MONTHS must not be less than HASH_SKIP_MIN_AGE_MONTHS"
            )

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid archive manager configuration: {joined}")
