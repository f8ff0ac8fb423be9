"""FastAPI application entry-point."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from script_runner import __version__
from script_runner.routers import commands, health
from script_runner.services.command_service import get_command_service
from script_runner.utils.logging import get_logger, setup_logging

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    setup_logging()
    service = get_command_service()
    # Creates the schema and resumes promoters for queued commands
    await service.start()
    yield
    # Shutdown: stop running scripts and release the store
    await service.close()


app = FastAPI(
    title="Script Runner API",
    description="Run shell scripts with a bounded-concurrency queue",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    log.info(
        "http.request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        latency_ms=round((time.perf_counter() - started) * 1000, 2),
        client=request.client.host if request.client else None,
    )
    return response


app.include_router(health.router)
app.include_router(commands.router)
