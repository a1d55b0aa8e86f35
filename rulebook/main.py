"""Rulebook API entry point."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from rulebook.config import settings
from rulebook.core.database import async_session_factory, engine
from rulebook.core.middleware import RequestLoggingMiddleware

logger = structlog.get_logger()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    logger.info("Starting Rulebook API", env=settings.app_env)
    yield
    logger.info("Shutting down Rulebook API")
    await engine.dispose()


app = FastAPI(
    title="Rulebook API",
    description="Categorization rule engine for restaurant bank transactions and POS sales",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    redirect_slashes=False,
)

# ── Middleware ─────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


# ── Health Check ──────────────────────────────────
@app.get("/health", tags=["system"])
async def health_check():
    """Liveness probe: healthy whenever the process is up."""
    return {"status": "healthy", "version": VERSION}


@app.get("/ready", tags=["system"])
async def readiness_check():
    """Readiness probe: checks DB connectivity."""
    checks = {"database": "unknown", "api": "ok"}
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"
        return {"status": "degraded", "checks": checks}

    return {"status": "ready", "checks": checks}


# ── API Routes ────────────────────────────────────
from rulebook.api.v1 import categorization_rules, records  # noqa: E402

app.include_router(
    categorization_rules.router,
    prefix="/api/v1/restaurants/{restaurant_id}/categorization-rules",
    tags=["categorization-rules"],
)
app.include_router(
    records.router,
    prefix="/api/v1/restaurants/{restaurant_id}/records",
    tags=["records"],
)
