"""
yieldvault.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn yieldvault.api.main:app --port 8000

Set ``YIELDVAULT_SCHEDULER_ENABLED=1`` on exactly the processes that should
run the periodic accrual / snapshot jobs.  Running it on several is safe
(the accrual lease admits one batch at a time) but wasteful.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from yieldvault.api.deps import get_config, get_engine  # noqa: E402
from yieldvault.api.routes.admin import router as admin_router  # noqa: E402
from yieldvault.api.routes.public import router as public_router  # noqa: E402
from yieldvault.api.routes.rewards import router as rewards_router  # noqa: E402
from yieldvault.errors import (  # noqa: E402
    ClaimRejected,
    NotFoundError,
    PaymentExecutorError,
    ValidationError,
)
from yieldvault.scheduler import PeriodicTasks  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


def _scheduler_enabled() -> bool:
    return os.getenv("YIELDVAULT_SCHEDULER_ENABLED", "").strip().lower() in {"1", "true", "yes"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine, start periodic jobs."""
    engine = get_engine()
    tasks: PeriodicTasks | None = None
    if _scheduler_enabled():
        tasks = PeriodicTasks(engine, get_config())
        tasks.start()
    logger.info("YieldVault API started — engine ready (%s)", engine.url.database)
    yield
    if tasks is not None:
        tasks.stop()
    logger.info("YieldVault API shutting down")


app = FastAPI(
    title="YieldVault API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Domain error → HTTP status
# ---------------------------------------------------------------------------
@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ClaimRejected)
async def _claim_rejected(request: Request, exc: ClaimRejected):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(PaymentExecutorError)
async def _payment_failed(request: Request, exc: PaymentExecutorError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


app.include_router(public_router, prefix="/api")
app.include_router(rewards_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
