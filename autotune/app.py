"""FastAPI application exposing the autotune engine."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from autotune.config import ServerConfig
from autotune.database import create_tables
from autotune.routers import router
from autotune.routers.autotune import get_config
from autotune.services.llm_service import LLMService
from autotune.services.scheduler import is_cycle_timer_running, start_cycle_timer, stop_cycle_timer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and, when enabled, start the background cycle timer."""
    logger.info("Application startup")
    create_tables()

    config = get_config()
    timer_started = False
    if config.scheduler_enabled:
        try:
            timer_started = start_cycle_timer(config, LLMService(config.openrouter))
        except ValueError as e:
            logger.warning(f"Scheduled cycles disabled: {e}")
    else:
        logger.info("AUTOTUNE_SCHEDULER_ENABLED is off - cycles run only on request")

    yield

    logger.info("Application shutting down")
    if timer_started:
        stop_cycle_timer()


class ProcessTimeMiddleware(BaseHTTPMiddleware):
    """Add process time header to responses for monitoring."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response


class DatabaseErrorMiddleware(BaseHTTPMiddleware):
    """Turn SQLite lock contention into a retryable 503."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            if "database is locked" in str(e).lower():
                return JSONResponse(
                    status_code=503,
                    content={
                        "detail": "Database is busy, likely with a running autotune cycle. Please retry shortly.",
                        "error_type": "database_locked",
                    },
                )
            raise


app = FastAPI(
    title="Autotune API",
    description="Prompt-pack optimization, judging and canary rollout",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(DatabaseErrorMiddleware)
app.add_middleware(ProcessTimeMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ServerConfig.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, tags=["api"])


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/detailed")
async def detailed_health():
    """Health check including database connectivity and scheduler status."""
    from sqlalchemy import text

    from autotune.database import engine

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "database": "connected",
            "scheduler_running": is_cycle_timer_running(),
            "timestamp": time.time(),
        }
    except Exception as e:
        return {"status": "unhealthy", "database": "disconnected", "error": str(e), "timestamp": time.time()}
