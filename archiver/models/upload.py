"""Archive upload history model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Float, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from archiver.models.base import STORE_SCHEMA, Base


class ArchiveUpload(Base):
    """One attempted submission of a package's new and changed files."""

    __tablename__ = "archive_uploads"

    entry_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_id: Mapped[int] = mapped_column(Integer, nullable=False)
    subdirectory: Mapped[str] = mapped_column(Text, nullable=False)
    file_count_new: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_count_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_bytes: Mapped[int] = mapped_column("bytes", BigInteger, nullable=False, default=0)
    upload_time_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status_uri: Mapped[str] = mapped_column(Text, nullable=False, default="")
    error_code: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    entered: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_archive_uploads_package_id", "package_id"),
        Index("idx_archive_uploads_entered", "entered"),
        {"schema": STORE_SCHEMA},
    )
