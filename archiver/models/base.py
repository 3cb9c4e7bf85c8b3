"""Declarative base for archive store models."""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase

# Schema holding the archive tables on PostgreSQL; translated away on SQLite.
STORE_SCHEMA = "dpkg"


class Base(DeclarativeBase):
    """Base class for all ORM models."""
