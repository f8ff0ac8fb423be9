"""Process executor: run one script as a child process and record the result.

Per command the sequence is strictly

    spawn -> persist pid -> start streamer -> wait for exit
          -> signal streamer -> terminal status write -> join streamer

Results are only observable through the command store; ``run`` never raises
for execution failures.
"""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Optional

from script_runner.config import Settings, settings
from script_runner.errors import StoreError
from script_runner.models.command import CommandStatus
from script_runner.services.admission import CapacityNotifier
from script_runner.services.streamer import OutputBuffer, OutputStreamer
from script_runner.storage.store import CommandStore
from script_runner.utils.logging import get_logger

log = get_logger(__name__)


def signal_process(pid: int, sig: int, *, group: bool) -> None:
    """Send *sig* to *pid*, or to its process group when *group* is set.

    Raises ``OSError`` (``ProcessLookupError``, ``PermissionError``) when the
    signal cannot be delivered.
    """
    if group:
        os.killpg(pid, sig)
    else:
        os.kill(pid, sig)


class ProcessExecutor:
    def __init__(
        self,
        store: CommandStore,
        cfg: Settings | None = None,
        *,
        notifier: CapacityNotifier | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._store = store
        self._notifier = notifier

    async def run(self, command_id: int, script: str) -> None:
        buffer = OutputBuffer()

        # ── 1. spawn ──────────────────────────────────────────────────
        try:
            proc = await asyncio.create_subprocess_exec(
                self._cfg.runner_shell, "-c", script,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            # ValueError: arguments the OS cannot take, e.g. a NUL byte
            log.error(
                "executor.spawn_failed",
                command_id=command_id,
                shell=self._cfg.runner_shell,
                error=str(exc),
            )
            await self._finish(command_id, CommandStatus.error, buffer, pid=None)
            return

        # ── 2. persist pid ────────────────────────────────────────────
        pid: Optional[int] = None
        try:
            if await self._store.update_pid(command_id, proc.pid):
                pid = proc.pid
            else:
                log.warning(
                    "executor.pid_not_recorded",
                    command_id=command_id,
                    pid=proc.pid,
                )
        except StoreError as exc:
            log.error(
                "executor.pid_persist_failed",
                command_id=command_id,
                pid=proc.pid,
                error=str(exc),
            )
        log.info("executor.started", command_id=command_id, pid=proc.pid)

        # ── 3. stream output while waiting ────────────────────────────
        streamer = OutputStreamer(
            self._store,
            command_id,
            buffer,
            self._cfg.runner_output_flush_interval_seconds,
            pid=pid,
        )
        stream_task = asyncio.create_task(
            streamer.run(), name=f"streamer-{command_id}",
        )

        try:
            returncode = await self._wait(command_id, proc, buffer)
        except asyncio.CancelledError:
            self._kill(proc)
            streamer.stop()
            stream_task.cancel()
            raise

        # ── 4. stop streamer, record terminal status, join ────────────
        streamer.stop()
        if returncode == 0:
            status = CommandStatus.completed
            log.info("executor.completed", command_id=command_id, bytes=len(buffer))
        else:
            status = CommandStatus.error
            log.warning(
                "executor.failed",
                command_id=command_id,
                returncode=returncode,
                bytes=len(buffer),
            )
        await self._finish(command_id, status, buffer, pid=pid)
        await stream_task

    async def _wait(
        self,
        command_id: int,
        proc: asyncio.subprocess.Process,
        buffer: OutputBuffer,
    ) -> Optional[int]:
        """Drain the output pipe and wait for exit; None if waiting failed."""
        try:
            await buffer.pump(proc.stdout)
            return await proc.wait()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("executor.wait_failed", command_id=command_id, error=str(exc))
            return None

    async def _finish(
        self,
        command_id: int,
        status: CommandStatus,
        buffer: OutputBuffer,
        *,
        pid: Optional[int],
    ) -> None:
        try:
            written = await self._store.update_status(
                command_id, status, buffer.snapshot(), pid=pid,
            )
            if not written:
                # stopped (or re-run) meanwhile; terminal states are kept
                log.info(
                    "executor.status_kept",
                    command_id=command_id,
                    status=status.value,
                )
        except StoreError as exc:
            log.error(
                "executor.status_write_failed",
                command_id=command_id,
                status=status.value,
                error=str(exc),
            )
        if self._notifier is not None:
            self._notifier.publish()

    def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            signal_process(
                proc.pid, signal.SIGKILL, group=self._cfg.runner_signal_process_group,
            )
        except OSError as exc:
            log.warning("executor.kill_failed", pid=proc.pid, error=str(exc))
