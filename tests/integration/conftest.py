"""Integration fixtures: a real file-backed SQLite database per test.

Cycles commit through their own sessions, so each test gets a fresh database
file instead of transaction-rollback isolation.
"""

import inspect

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.orm import sessionmaker

from autotune.database import create_tables
from autotune.db_config import create_engine_for_url


@pytest.fixture()
def integration_engine(tmp_path):
    engine = create_engine_for_url(f"sqlite:///{tmp_path / 'autotune.db'}")
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def integration_session_factory(integration_engine):
    return sessionmaker(bind=integration_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def integration_db(integration_session_factory):
    session = integration_session_factory()
    yield session
    session.close()


@pytest.fixture()
def integration_app(integration_session_factory):
    """FastAPI app with get_db overridden to open sessions on the test database."""
    from autotune.app import app
    from autotune.database import get_db

    def _override_get_db():
        db = integration_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    yield app
    app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture()
async def client(integration_app):
    """Async HTTP client that talks to the real app + real DB."""
    transport_kwargs = {"app": integration_app}
    if "lifespan" in inspect.signature(httpx.ASGITransport).parameters:
        transport_kwargs["lifespan"] = "off"

    transport = httpx.ASGITransport(**transport_kwargs)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
