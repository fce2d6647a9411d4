import pytest
from sqlalchemy import text
from sqlalchemy.pool import StaticPool

from autotune.db_config import DEFAULT_DATABASE_URL, DatabaseBackend, create_engine_for_url, detect_database_backend, get_database_url


@pytest.mark.unit
def test_database_url_defaults_to_sqlite(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert get_database_url() == DEFAULT_DATABASE_URL

    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://u:p@db/autotune")
    assert get_database_url() == "postgresql+psycopg://u:p@db/autotune"


@pytest.mark.unit
@pytest.mark.parametrize(
    "url,expected",
    [
        ("sqlite:///./autotune.db", DatabaseBackend.SQLITE),
        ("sqlite://", DatabaseBackend.SQLITE),
        ("postgresql+psycopg://u:p@db/autotune", DatabaseBackend.OTHER),
        ("mysql+pymysql://u:p@db/autotune", DatabaseBackend.OTHER),
    ],
)
def test_detect_backend(url, expected):
    assert detect_database_backend(url) == expected


@pytest.mark.unit
def test_memory_sqlite_uses_single_connection():
    engine = create_engine_for_url("sqlite://")
    try:
        assert isinstance(engine.pool, StaticPool)
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
    finally:
        engine.dispose()


@pytest.mark.unit
def test_file_sqlite_enables_wal(tmp_path):
    engine = create_engine_for_url(f"sqlite:///{tmp_path / 'autotune.db'}")
    try:
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"
            assert conn.execute(text("PRAGMA busy_timeout")).scalar() == 60000
    finally:
        engine.dispose()
