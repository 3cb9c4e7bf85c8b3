"""Data package model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from archiver.models.base import STORE_SCHEMA, Base


class DataPackage(Base):
    """A data package: a numbered directory tree archived as one unit."""

    __tablename__ = "data_packages"
    __table_args__ = {"schema": STORE_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    owner: Mapped[str] = mapped_column(Text, nullable=False, default="")
    owner_archive_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    project_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    instrument_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    instrument_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    package_directory: Mapped[str] = mapped_column(Text, nullable=False)
    share_path: Mapped[str] = mapped_column(Text, nullable=False, default="")
    local_path: Mapped[str] = mapped_column(Text, nullable=False, default="")
    archive_uploads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
