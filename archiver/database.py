"""Database engine and session management."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from archiver.models.base import STORE_SCHEMA

if TYPE_CHECKING:
    from archiver.config import Settings


@dataclass(frozen=True)
class StoreBackend:
    """Dialect family of the backing store.

    PostgreSQL keeps the archive tables in the ``dpkg`` schema; SQLite has no
    schemas, so the tables live in the default one.
    """

    name: str
    schema: str | None

    @classmethod
    def from_url(cls, database_url: str) -> StoreBackend:
        backend_name = make_url(database_url).get_backend_name()
        if backend_name == "postgresql":
            return cls(name=backend_name, schema=STORE_SCHEMA)
        if backend_name == "sqlite":
            return cls(name=backend_name, schema=None)
        msg = f"Unsupported database URL (expected SQLite or PostgreSQL): {backend_name}"
        raise ValueError(msg)

    @property
    def schema_translate_map(self) -> dict[str | None, str | None]:
        return {STORE_SCHEMA: self.schema}


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory.

    Returns (engine, session_factory) tuple.
    """
    backend = StoreBackend.from_url(settings.database_url)
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        execution_options={"schema_translate_map": backend.schema_translate_map},
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory
