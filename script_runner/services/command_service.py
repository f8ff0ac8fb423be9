"""Command service: submit, inspect, stop and force-start scripts.

The only component that knows about all the others: it composes the store,
the admission controller, the queue promoters and the process executor, and
owns every background task it starts.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Optional

from script_runner.config import Settings, settings
from script_runner.errors import (
    CommandNotStartedError,
    CommandValidationError,
    ScriptRunnerError,
    StoreError,
)
from script_runner.models.command import (
    Command,
    CommandStatus,
    ForceStartResponse,
    QueueEntry,
    StopResponse,
    SubmitResponse,
)
from script_runner.services.admission import AdmissionController, CapacityNotifier
from script_runner.services.executor import ProcessExecutor, signal_process
from script_runner.services.promoter import QueuePromoter
from script_runner.storage.store import CommandStore
from script_runner.utils.logging import get_logger

log = get_logger(__name__)

_FORCE_START_REFUSED = (CommandStatus.running, CommandStatus.completed)


class CommandService:
    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        store: CommandStore | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self.store = store or CommandStore(self._cfg)
        self.notifier = CapacityNotifier()
        self.admission = AdmissionController(self.store, self._cfg)
        self._executor = ProcessExecutor(self.store, self._cfg, notifier=self.notifier)
        self._executions: set[asyncio.Task] = set()
        self._promoters: dict[int, asyncio.Task] = {}
        self._closed = False

    # ── lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        """Create the schema and pick up commands left in the queue."""
        await self.store.create_schema()
        resumed = await self.resume_queued()
        log.info(
            "service.started",
            max_concurrent=self._cfg.runner_max_concurrent,
            resumed=resumed,
        )

    async def resume_queued(self) -> int:
        entries = await self.store.list_queue()
        started = 0
        for entry in entries:
            if self._start_promoter(entry.command_id):
                started += 1
        return started

    async def close(self) -> None:
        """Cancel promoters, stop running commands and release the store."""
        if self._closed:
            return
        self._closed = True

        promoters = list(self._promoters.values())
        for task in promoters:
            task.cancel()
        await asyncio.gather(*promoters, return_exceptions=True)

        try:
            await self.stop_all_running()
        except ScriptRunnerError as exc:
            log.error("service.stop_all_failed", error=str(exc))

        if not await self.wait_for_executions(self._cfg.runner_shutdown_grace_seconds):
            pending = list(self._executions)
            log.warning("service.cancelling_executions", count=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        self.store.close()
        log.info("service.closed")

    async def wait_for_executions(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight executions; False if some were still running."""
        pending = list(self._executions)
        if not pending:
            return True
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        return not still_running

    # ── submission ────────────────────────────────────────────────────

    async def submit(self, script: str, *, allow_sudo: bool = False) -> SubmitResponse:
        """Run *script* now if a slot is free, otherwise queue it."""
        if not script or not script.strip():
            raise CommandValidationError("Script is required")
        if "\x00" in script:
            raise CommandValidationError("Script cannot contain NUL bytes")
        if not allow_sudo and "sudo" in script:
            raise CommandValidationError("Non-sudo command cannot contain 'sudo'")

        async with self.admission.guard() as must_queue:
            if must_queue:
                command_id = await self.store.enqueue_command(script)
            else:
                command_id = await self.store.insert_command(
                    script, CommandStatus.running,
                )

        if must_queue:
            self._start_promoter(command_id)
            log.info("command.queued", command_id=command_id, sudo=allow_sudo)
            return SubmitResponse(
                status="queued", id=command_id, message="Command is being queued",
            )

        self._launch(command_id, script)
        log.info("command.executing", command_id=command_id, sudo=allow_sudo)
        return SubmitResponse(
            status="executing", id=command_id, message="Command is being executed",
        )

    # ── reads ─────────────────────────────────────────────────────────

    async def list_commands(self) -> list[Command]:
        return await self.store.list_commands()

    async def get_command(self, command_id: int) -> Command:
        return await self.store.get_command(command_id)

    async def list_queue(self) -> list[QueueEntry]:
        return await self.store.list_queue()

    # ── stop / force-start ────────────────────────────────────────────

    async def stop(self, command_id: int) -> StopResponse:
        """Interrupt a command's process and mark it stopped.

        The stopped status is written as soon as the signal has been sent (or
        could not be sent); the store may say ``stopped`` before the process
        has actually exited.
        """
        command = await self.store.get_command(command_id)
        if command.pid is None:
            raise CommandNotStartedError(command_id)

        if command.status.is_terminal:
            # the recorded pid may belong to an unrelated process by now
            return StopResponse(
                id=command_id,
                message=f"Command is already {command.status.value}",
                signal_delivered=False,
            )

        delivered = True
        try:
            signal_process(
                command.pid,
                signal.SIGINT,
                group=self._cfg.runner_signal_process_group,
            )
        except OSError as exc:
            delivered = False
            log.warning(
                "command.signal_failed",
                command_id=command_id,
                pid=command.pid,
                error=str(exc),
            )

        await self.store.update_status(command_id, CommandStatus.stopped)
        self.notifier.publish()
        log.info(
            "command.stopped",
            command_id=command_id,
            pid=command.pid,
            signal_delivered=delivered,
        )
        return StopResponse(
            id=command_id,
            message="Command stopped successfully",
            signal_delivered=delivered,
        )

    async def force_start(self, command_id: int) -> ForceStartResponse:
        """Start a command now, ignoring the concurrency ceiling."""
        command = await self.store.get_command(command_id)
        if command.status in _FORCE_START_REFUSED:
            return ForceStartResponse(
                id=command_id,
                message=f"Command is already {command.status.value}",
                started=False,
            )

        if not await self.store.force_running(command_id):
            # raced with a promoter or another force-start
            current = await self.store.get_command(command_id)
            return ForceStartResponse(
                id=command_id,
                message=f"Command is already {current.status.value}",
                started=False,
            )

        self._cancel_promoter(command_id)
        self._launch(command_id, command.script)
        log.info("command.force_started", command_id=command_id)
        return ForceStartResponse(
            id=command_id,
            message="Command is being forcibly started",
            started=True,
        )

    async def stop_all_running(self) -> list[int]:
        """Best-effort stop of every running command; returns the stopped ids."""
        stopped: list[int] = []
        for command_id in await self.store.list_running_ids():
            try:
                await self.stop(command_id)
            except ScriptRunnerError as exc:
                log.error(
                    "command.stop_failed",
                    command_id=command_id,
                    error=str(exc),
                )
                continue
            stopped.append(command_id)
        return stopped

    # ── background tasks ──────────────────────────────────────────────

    def _launch(self, command_id: int, script: str) -> None:
        task = asyncio.create_task(
            self._executor.run(command_id, script), name=f"executor-{command_id}",
        )
        self._executions.add(task)
        task.add_done_callback(lambda t: self._on_execution_done(command_id, t))

    def _start_promoter(self, command_id: int) -> bool:
        existing = self._promoters.get(command_id)
        if existing is not None and not existing.done():
            log.warning("promoter.already_running", command_id=command_id)
            return False

        promoter = QueuePromoter(
            command_id,
            self.store,
            self.admission,
            self.notifier,
            self._launch,
            self._cfg,
        )
        task = asyncio.create_task(promoter.run(), name=f"promoter-{command_id}")
        self._promoters[command_id] = task
        task.add_done_callback(lambda t: self._on_promoter_done(command_id, t))
        return True

    def _on_execution_done(self, command_id: int, task: asyncio.Task) -> None:
        self._executions.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        log.error(
            "executor.crashed",
            command_id=command_id,
            error=repr(exc),
            exc_info=exc,
        )
        cleanup = asyncio.create_task(
            self._mark_crashed(command_id), name=f"crash-{command_id}",
        )
        self._executions.add(cleanup)
        cleanup.add_done_callback(self._executions.discard)

    async def _mark_crashed(self, command_id: int) -> None:
        try:
            await self.store.update_status(command_id, CommandStatus.error)
        except StoreError as exc:
            log.error(
                "executor.crash_status_failed",
                command_id=command_id,
                error=str(exc),
            )
        self.notifier.publish()

    def _on_promoter_done(self, command_id: int, task: asyncio.Task) -> None:
        if self._promoters.get(command_id) is task:
            del self._promoters[command_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        # the command stays queued; resume_queued() picks it up again
        log.error(
            "promoter.crashed",
            command_id=command_id,
            error=repr(exc),
            exc_info=exc,
        )

    def _cancel_promoter(self, command_id: int) -> None:
        task = self._promoters.get(command_id)
        if task is not None and not task.done():
            task.cancel()


_service: CommandService | None = None


def get_command_service() -> CommandService:
    """FastAPI dependency returning the process-wide service."""
    global _service
    if _service is None:
        _service = CommandService()
    return _service
