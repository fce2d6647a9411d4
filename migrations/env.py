"""Alembic environment script.

For SQLite, most ALTER operations require Alembic "batch mode" ("move and copy").
We enable that via render_as_batch=True.
See: https://alembic.sqlalchemy.org/en/latest/batch.html
"""

from __future__ import annotations

import os

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

from autotune.database import Base
from autotune.db_config import DEFAULT_DATABASE_URL

config = context.config

# Alembic configuration lives in pyproject.toml; there is no alembic.ini, so
# logging is left to the caller.

target_metadata = Base.metadata


def _get_database_url() -> str:
    """Command-line override first, then DATABASE_URL, then the SQLite default."""
    return config.get_main_option("sqlalchemy.url") or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    url = _get_database_url()
    connect_args = {"check_same_thread": False, "timeout": 30} if url.startswith("sqlite") else {}

    engine = create_engine(url, connect_args=connect_args, poolclass=NullPool)

    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,  # Required for SQLite, safe elsewhere
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


# Online-only; offline SQL rendering is not used.
run_migrations_online()
