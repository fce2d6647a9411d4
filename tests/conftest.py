import inspect
import time
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from autotune.database import Base
from autotune.models import ToolCallRecord, TraceEvent


@pytest.fixture(scope="session")
def app():
    # Import lazily so test collection doesn't accidentally trigger app startup.
    from autotune.app import app as fastapi_app

    return fastapi_app


@pytest.fixture()
def mock_db_session():
    # Session-like mock used for dependency overrides in router tests.
    db = MagicMock(name="db_session")
    db.rollback = MagicMock(name="rollback")
    db.close = MagicMock(name="close")
    return db


@pytest.fixture()
def override_get_db(app, mock_db_session):
    """
    Override FastAPI's `get_db` dependency so route tests don't touch a real DB.
    """
    from autotune.database import get_db

    def _override():
        yield mock_db_session

    app.dependency_overrides[get_db] = _override
    try:
        yield mock_db_session
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture()
async def async_client(app):
    """
    ASGI test client (async) with lifespan disabled so startup doesn't create tables or timers.
    """
    transport_kwargs = {"app": app}
    if "lifespan" in inspect.signature(httpx.ASGITransport).parameters:
        transport_kwargs["lifespan"] = "off"

    transport = httpx.ASGITransport(**transport_kwargs)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# Real in-memory database, one per test
# ---------------------------------------------------------------------------


@pytest.fixture()
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(sqlite_engine):
    return sessionmaker(bind=sqlite_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def db_service(db_session):
    from autotune.services.database_service import DatabaseService

    return DatabaseService(db_session)


# ---------------------------------------------------------------------------
# Trace and LLM helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_trace():
    """Factory fixture: build a TraceEvent with sensible defaults."""
    counter = {"n": 0}

    def _create(
        trace_id=None,
        input_text="remind me to call mom tomorrow at 5pm",
        output_text="I'll remind you tomorrow at 5pm.",
        versions=None,
        error_code=None,
        tool_calls=None,
        created_at=None,
        **kwargs,
    ):
        counter["n"] += 1
        now_ms = int(time.time() * 1000)
        return TraceEvent(
            trace_id=trace_id or f"trace-{counter['n']}",
            timestamp="2026-01-01T00:00:00Z",
            created_at=created_at if created_at is not None else now_ms - counter["n"],
            chat_id="chat-1",
            group_folder="main",
            input_text=input_text,
            output_text=output_text,
            model_id="test-model",
            prompt_pack_versions=versions or {},
            error_code=error_code,
            tool_calls=[ToolCallRecord(**c) if isinstance(c, dict) else c for c in (tool_calls or [])],
            **kwargs,
        )

    return _create


class ScriptedLLM:
    """Stand-in for LLMService that answers via a handler and records every call."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def invoke(self, model, messages, temperature=0.0, max_output_tokens=None):
        self.calls.append(
            {"model": model, "messages": messages, "temperature": temperature, "max_output_tokens": max_output_tokens}
        )
        return self.handler(model, messages)


@pytest.fixture()
def scripted_llm():
    """Factory fixture: ``scripted_llm(handler)`` where handler(model, messages) -> str."""
    return ScriptedLLM
