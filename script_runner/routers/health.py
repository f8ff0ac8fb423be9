"""Health-check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from script_runner import __version__
from script_runner.config import settings
from script_runner.models.responses import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def service_health() -> HealthResponse:
    """Basic liveness probe (no auth required)."""
    return HealthResponse(
        status="ok",
        version=__version__,
        max_concurrent=settings.runner_max_concurrent,
    )
