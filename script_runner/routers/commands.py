"""Script submission, inspection, stop and force-start endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from script_runner.auth import require_api_key
from script_runner.errors import (
    CommandNotFoundError,
    CommandValidationError,
    ScriptRunnerError,
)
from script_runner.models.command import (
    Command,
    ForceStartResponse,
    QueueEntry,
    ScriptRequest,
    StopResponse,
    SubmitResponse,
)
from script_runner.models.responses import ErrorResponse
from script_runner.services.command_service import CommandService, get_command_service
from script_runner.utils.logging import get_logger

log = get_logger(__name__)

router = APIRouter(
    prefix="/api/commands",
    tags=["commands"],
    dependencies=[Depends(require_api_key)],
    responses={500: {"model": ErrorResponse}},
)


def _http_error(exc: ScriptRunnerError) -> HTTPException:
    if isinstance(exc, CommandValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, CommandNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    log.error("api.request_failed", error=str(exc), kind=type(exc).__name__)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Command store unavailable",
    )


# ── Submit ────────────────────────────────────────────────────────────────


@router.post(
    "/",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": ErrorResponse}},
)
async def create_command(
    req: ScriptRequest,
    service: CommandService = Depends(get_command_service),
) -> SubmitResponse:
    """Submit a script; scripts containing ``sudo`` are rejected here."""
    try:
        return await service.submit(req.script)
    except ScriptRunnerError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/sudo",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": ErrorResponse}},
)
async def create_sudo_command(
    req: ScriptRequest,
    service: CommandService = Depends(get_command_service),
) -> SubmitResponse:
    """Submit a script that may use ``sudo``."""
    try:
        return await service.submit(req.script, allow_sudo=True)
    except ScriptRunnerError as exc:
        raise _http_error(exc) from exc


# ── Read ──────────────────────────────────────────────────────────────────


@router.get("/", response_model=list[Command])
async def list_commands(
    service: CommandService = Depends(get_command_service),
) -> list[Command]:
    try:
        return await service.list_commands()
    except ScriptRunnerError as exc:
        raise _http_error(exc) from exc


@router.get("/queue", response_model=list[QueueEntry])
async def list_queue(
    service: CommandService = Depends(get_command_service),
) -> list[QueueEntry]:
    """Commands waiting for a free slot, oldest first."""
    try:
        return await service.list_queue()
    except ScriptRunnerError as exc:
        raise _http_error(exc) from exc


@router.get(
    "/{command_id}",
    response_model=Command,
    responses={404: {"model": ErrorResponse}},
)
async def get_command(
    command_id: int,
    service: CommandService = Depends(get_command_service),
) -> Command:
    try:
        return await service.get_command(command_id)
    except ScriptRunnerError as exc:
        raise _http_error(exc) from exc


# ── Control ───────────────────────────────────────────────────────────────


@router.post(
    "/{command_id}/stop",
    response_model=StopResponse,
    responses={404: {"model": ErrorResponse}},
)
async def stop_command(
    command_id: int,
    service: CommandService = Depends(get_command_service),
) -> StopResponse:
    """Send SIGINT to the command's process and mark it stopped."""
    try:
        return await service.stop(command_id)
    except ScriptRunnerError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/{command_id}/fstart",
    response_model=ForceStartResponse,
    responses={404: {"model": ErrorResponse}},
)
async def force_start_command(
    command_id: int,
    service: CommandService = Depends(get_command_service),
) -> ForceStartResponse:
    """Start a command immediately, bypassing the concurrency limit."""
    try:
        return await service.force_start(command_id)
    except ScriptRunnerError as exc:
        raise _http_error(exc) from exc
