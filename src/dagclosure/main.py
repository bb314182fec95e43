# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from dagclosure import __version__
from dagclosure.api.router import v1_router
from dagclosure.config import get_settings
from dagclosure.db.session import get_engine
from dagclosure.exceptions import (
    ClosureIntegrityError,
    LinkNotFoundError,
    LinkValidationError,
    PropagationLimitExceeded,
)
from dagclosure.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: startup and shutdown hooks."""
    settings = get_settings()
    configure_logging(settings)

    # Startup: auto-migrate in development mode
    if settings.environment == "development":
        import subprocess

        subprocess.run(["alembic", "upgrade", "head"], check=True)

    logger.info("dagclosure %s started (environment=%s)", __version__, settings.environment)
    yield

    await get_engine().dispose()


app = FastAPI(
    title="dagclosure",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(v1_router, prefix="/v1")


@app.exception_handler(LinkValidationError)
async def link_validation_error_handler(
    request: Request, exc: LinkValidationError
) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.messages})


@app.exception_handler(LinkNotFoundError)
async def link_not_found_handler(request: Request, exc: LinkNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PropagationLimitExceeded)
async def propagation_limit_handler(
    request: Request, exc: PropagationLimitExceeded
) -> JSONResponse:
    return JSONResponse(status_code=413, content={"detail": str(exc)})


@app.exception_handler(ClosureIntegrityError)
async def closure_integrity_handler(
    request: Request, exc: ClosureIntegrityError
) -> JSONResponse:
    logger.error("Closure integrity failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Closure table is inconsistent"})


@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe. Returns 200 if the process is running."""
    return {"status": "healthy"}


@app.get("/ready")
async def ready() -> dict[str, str]:
    """Readiness probe. Checks database connectivity."""
    engine = get_engine()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return {"status": "ready"}
