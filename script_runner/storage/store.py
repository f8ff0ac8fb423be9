"""Command store: durable commands and queue entries.

SQLAlchemy work is synchronous, so every public coroutine hands its body to a
dedicated thread-pool executor and the event loop is never blocked by the
database.

Writes made on behalf of a run are guarded in the UPDATE's WHERE clause:
terminal statuses are never overwritten, and a write scoped to a ``pid`` only
lands while that pid is still the one recorded for the command.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from script_runner.config import Settings, settings
from script_runner.errors import CommandNotFoundError
from script_runner.models.command import (
    QUEUE_STATUS_WAITING,
    TERMINAL_STATUSES,
    Command,
    CommandStatus,
    QueueEntry,
)
from script_runner.storage.database import Database
from script_runner.storage.tables import CommandRow, QueueRow
from script_runner.utils.logging import get_logger

log = get_logger(__name__)

_TERMINAL = [s.value for s in TERMINAL_STATUSES]


class CommandStore:
    """Async facade over the ``commands`` and ``command_queue`` tables."""

    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        database: Database | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._db = database or Database(self._cfg.runner_database_url)
        self._executor = ThreadPoolExecutor(
            max_workers=self._cfg.runner_store_workers,
            thread_name_prefix="store",
        )

    # ── helpers ───────────────────────────────────────────────────────

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    # ── lifecycle ─────────────────────────────────────────────────────

    async def create_schema(self) -> None:
        await self._run(self._db.create_schema)
        log.info("store.ready", url=self._db.engine.url.render_as_string())

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._db.dispose()

    # ── inserts ───────────────────────────────────────────────────────

    async def insert_command(self, script: str, status: CommandStatus) -> int:
        return await self._run(self._insert_command_sync, script, status)

    async def enqueue_command(self, script: str) -> int:
        """Create a waiting command and its queue entry in one transaction."""
        return await self._run(self._enqueue_command_sync, script)

    # ── updates ───────────────────────────────────────────────────────

    async def update_status(
        self,
        command_id: int,
        status: CommandStatus,
        output: Optional[str] = None,
        *,
        pid: Optional[int] = None,
    ) -> bool:
        """Move a non-terminal command to *status*; False if nothing changed."""
        return await self._run(
            self._update_status_sync, command_id, status, output, pid,
        )

    async def update_output(
        self,
        command_id: int,
        output: str,
        *,
        pid: Optional[int] = None,
    ) -> bool:
        """Replace the output snapshot of a running command."""
        return await self._run(self._update_output_sync, command_id, output, pid)

    async def update_pid(self, command_id: int, pid: int) -> bool:
        """Record the pid of a running command that has none yet."""
        return await self._run(self._update_pid_sync, command_id, pid)

    async def delete_queue_entry(self, command_id: int) -> bool:
        return await self._run(self._delete_queue_entry_sync, command_id)

    async def promote(self, command_id: int) -> Optional[str]:
        """Dequeue a waiting command and mark it running, atomically.

        Returns the script to execute, or None when the command was no longer
        waiting (already promoted, force-started or gone).
        """
        return await self._run(self._promote_sync, command_id)

    async def force_running(self, command_id: int) -> bool:
        """Start a fresh run regardless of the queue, atomically.

        Clears pid and output of any previous run and removes the queue
        entry. Refused (False) when the command is running or completed.
        """
        return await self._run(self._force_running_sync, command_id)

    # ── reads ─────────────────────────────────────────────────────────

    async def get_command(self, command_id: int) -> Command:
        return await self._run(self._get_command_sync, command_id)

    async def list_commands(self) -> list[Command]:
        return await self._run(self._list_commands_sync)

    async def count_running(self) -> int:
        return await self._run(self._count_running_sync)

    async def list_queue(self) -> list[QueueEntry]:
        return await self._run(self._list_queue_sync)

    async def list_running_ids(self) -> list[int]:
        return await self._run(self._list_running_ids_sync)

    # ── sync bodies (run on the store executor) ───────────────────────

    def _insert_command_sync(self, script: str, status: CommandStatus) -> int:
        with self._db.session_scope() as session:
            return self._insert_command(session, script, status)

    def _enqueue_command_sync(self, script: str) -> int:
        with self._db.session_scope() as session:
            command_id = self._insert_command(session, script, CommandStatus.waiting)
            self._insert_queue_entry(session, command_id)
            return command_id

    @staticmethod
    def _insert_command(session: Session, script: str, status: CommandStatus) -> int:
        row = CommandRow(script=script, status=status.value, output="")
        session.add(row)
        session.flush()
        return row.id

    @staticmethod
    def _insert_queue_entry(session: Session, command_id: int) -> None:
        session.add(QueueRow(command_id=command_id, status=QUEUE_STATUS_WAITING))
        session.flush()

    def _update_status_sync(
        self,
        command_id: int,
        status: CommandStatus,
        output: Optional[str],
        pid: Optional[int],
    ) -> bool:
        values: dict = {"status": status.value}
        if output is not None:
            values["output"] = output
        stmt = (
            update(CommandRow)
            .where(CommandRow.id == command_id)
            .where(CommandRow.status.not_in(_TERMINAL))
            .values(**values)
        )
        if pid is not None:
            stmt = stmt.where(CommandRow.pid == pid)
        with self._db.session_scope() as session:
            return session.execute(stmt).rowcount > 0

    def _update_output_sync(
        self, command_id: int, output: str, pid: Optional[int],
    ) -> bool:
        stmt = (
            update(CommandRow)
            .where(CommandRow.id == command_id)
            .where(CommandRow.status == CommandStatus.running.value)
            .values(output=output)
        )
        if pid is not None:
            stmt = stmt.where(CommandRow.pid == pid)
        with self._db.session_scope() as session:
            return session.execute(stmt).rowcount > 0

    def _update_pid_sync(self, command_id: int, pid: int) -> bool:
        stmt = (
            update(CommandRow)
            .where(CommandRow.id == command_id)
            .where(CommandRow.status == CommandStatus.running.value)
            .where(CommandRow.pid.is_(None))
            .values(pid=pid)
        )
        with self._db.session_scope() as session:
            return session.execute(stmt).rowcount > 0

    def _delete_queue_entry_sync(self, command_id: int) -> bool:
        with self._db.session_scope() as session:
            result = session.execute(
                delete(QueueRow).where(QueueRow.command_id == command_id),
            )
            return result.rowcount > 0

    def _promote_sync(self, command_id: int) -> Optional[str]:
        with self._db.session_scope() as session:
            moved = session.execute(
                update(CommandRow)
                .where(CommandRow.id == command_id)
                .where(CommandRow.status == CommandStatus.waiting.value)
                .values(status=CommandStatus.running.value),
            ).rowcount
            if not moved:
                return None
            session.execute(delete(QueueRow).where(QueueRow.command_id == command_id))
            return session.execute(
                select(CommandRow.script).where(CommandRow.id == command_id),
            ).scalar_one()

    def _force_running_sync(self, command_id: int) -> bool:
        with self._db.session_scope() as session:
            moved = session.execute(
                update(CommandRow)
                .where(CommandRow.id == command_id)
                .where(
                    CommandRow.status.not_in(
                        [CommandStatus.running.value, CommandStatus.completed.value],
                    ),
                )
                .values(status=CommandStatus.running.value, pid=None, output=""),
            ).rowcount
            if not moved:
                return False
            session.execute(delete(QueueRow).where(QueueRow.command_id == command_id))
            return True

    def _get_command_sync(self, command_id: int) -> Command:
        with self._db.session_scope() as session:
            row = session.get(CommandRow, command_id)
            if row is None:
                raise CommandNotFoundError(command_id)
            return Command.model_validate(row)

    def _list_commands_sync(self) -> list[Command]:
        with self._db.session_scope() as session:
            rows = session.scalars(select(CommandRow).order_by(CommandRow.id)).all()
            return [Command.model_validate(r) for r in rows]

    def _count_running_sync(self) -> int:
        with self._db.session_scope() as session:
            return session.execute(
                select(func.count())
                .select_from(CommandRow)
                .where(CommandRow.status == CommandStatus.running.value),
            ).scalar_one()

    def _list_queue_sync(self) -> list[QueueEntry]:
        with self._db.session_scope() as session:
            rows = session.scalars(select(QueueRow).order_by(QueueRow.queue_id)).all()
            return [QueueEntry.model_validate(r) for r in rows]

    def _list_running_ids_sync(self) -> list[int]:
        with self._db.session_scope() as session:
            return list(
                session.scalars(
                    select(CommandRow.id)
                    .where(CommandRow.status == CommandStatus.running.value)
                    .order_by(CommandRow.id),
                ).all(),
            )
