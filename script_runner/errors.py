"""Exception hierarchy shared by the store, the services and the routers."""

from __future__ import annotations


class ScriptRunnerError(Exception):
    """Base class for every error raised by this package."""


class CommandValidationError(ScriptRunnerError):
    """The submitted script was rejected before anything was stored."""


class CommandNotFoundError(ScriptRunnerError):
    def __init__(self, command_id: int, message: str | None = None) -> None:
        self.command_id = command_id
        super().__init__(message or f"Command {command_id} not found")


class CommandNotStartedError(CommandNotFoundError):
    """The command exists but no process was ever recorded for it."""

    def __init__(self, command_id: int) -> None:
        super().__init__(
            command_id,
            f"No PID found for command {command_id}; "
            "it may not have been started yet",
        )


class StoreError(ScriptRunnerError):
    """A command store operation failed; the cause is chained."""
