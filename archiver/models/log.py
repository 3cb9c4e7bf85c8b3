"""Operator-facing log model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from archiver.models.base import STORE_SCHEMA, Base


class ArchiveLogEntry(Base):
    """A message an operator must act on (persistent mismatches, stuck ingests)."""

    __tablename__ = "archive_log"
    __table_args__ = {"schema": STORE_SCHEMA}

    entry_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    posted_by: Mapped[str] = mapped_column(Text, nullable=False)
    posting_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    level: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
