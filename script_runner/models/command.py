"""Command and queue data structures exposed by the service and the API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CommandStatus(str, Enum):
    waiting = "waiting"
    running = "running"
    completed = "completed"
    error = "error"
    stopped = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[CommandStatus] = frozenset(
    {CommandStatus.completed, CommandStatus.error, CommandStatus.stopped},
)

QUEUE_STATUS_WAITING = "waiting"


class Command(BaseModel):
    """One submitted script and the state of its (latest) run."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    script: str
    status: CommandStatus
    pid: Optional[int] = None
    output: str = ""
    created_at: datetime
    updated_at: datetime


class QueueEntry(BaseModel):
    """A command waiting for admission."""

    model_config = ConfigDict(from_attributes=True)

    queue_id: int
    command_id: int
    status: str = QUEUE_STATUS_WAITING


class ScriptRequest(BaseModel):
    """Request body for the submit endpoints."""

    script: str = Field(description="Shell script, run as `<shell> -c <script>`")


class SubmitResponse(BaseModel):
    status: Literal["queued", "executing"]
    id: int
    message: str


class StopResponse(BaseModel):
    id: int
    message: str
    signal_delivered: bool


class ForceStartResponse(BaseModel):
    id: int
    message: str
    started: bool
