"""SQLAlchemy ORM models for the archive store."""

from archiver.models.base import Base
from archiver.models.log import ArchiveLogEntry
from archiver.models.package import DataPackage
from archiver.models.upload import ArchiveUpload

__all__ = [
    "ArchiveLogEntry",
    "ArchiveUpload",
    "Base",
    "DataPackage",
]
