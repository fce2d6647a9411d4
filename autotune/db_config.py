"""Database engine configuration.

SQLite is the default store (``DATABASE_URL`` unset). Any other SQLAlchemy URL
is passed through with a conventional connection pool; the matching DBAPI
driver must be installed separately.
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./autotune.db"


class DatabaseBackend(Enum):
    """Supported database backends."""

    SQLITE = "sqlite"
    OTHER = "other"


def get_database_url() -> str:
    """Get the database URL from ``DATABASE_URL`` or the SQLite default."""
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def detect_database_backend(database_url: str) -> DatabaseBackend:
    if database_url.startswith("sqlite"):
        return DatabaseBackend.SQLITE
    return DatabaseBackend.OTHER


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def create_engine_for_url(database_url: str | None = None) -> "Engine":
    """Create a SQLAlchemy engine for the given URL.

    Args:
        database_url: SQLAlchemy URL. Defaults to :func:`get_database_url`.

    Returns:
        Configured SQLAlchemy engine.
    """
    from sqlalchemy import create_engine, event
    from sqlalchemy.pool import StaticPool

    database_url = database_url or get_database_url()
    backend = detect_database_backend(database_url)

    if backend == DatabaseBackend.SQLITE:
        connect_args = {
            "check_same_thread": False,
            "timeout": 60,
        }

        if _is_memory_sqlite(database_url):
            # One shared connection so every session sees the same in-memory schema
            engine = create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=False,
            )
        else:
            engine = create_engine(
                database_url,
                connect_args=connect_args,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=3600,
                pool_pre_ping=True,
                echo=False,
            )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=60000")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    logger.info("Using non-SQLite database backend")
    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=False,
    )
