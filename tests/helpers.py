"""Polling helpers and store doubles shared by the test modules."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

from script_runner.config import Settings
from script_runner.errors import StoreError
from script_runner.models.command import Command, CommandStatus
from script_runner.storage.store import CommandStore


def make_settings(tmp_path: Path, **overrides) -> Settings:
    """Settings on a temp SQLite file with fast poll / flush intervals."""
    values = dict(
        runner_database_url=f"sqlite:///{tmp_path / 'commands.db'}",
        runner_max_concurrent=2,
        runner_queue_poll_interval_seconds=0.2,
        runner_output_flush_interval_seconds=0.05,
        runner_shutdown_grace_seconds=3.0,
        runner_api_key="",
    )
    values.update(overrides)
    return Settings(**values)


async def wait_for_command(
    store: CommandStore,
    command_id: int,
    predicate: Callable[[Command], bool],
    timeout: float = 10.0,
) -> Command:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        command = await store.get_command(command_id)
        if predicate(command):
            return command
        if loop.time() > deadline:
            raise AssertionError(f"timed out waiting on command: {command!r}")
        await asyncio.sleep(0.02)


async def wait_for_status(
    store: CommandStore,
    command_id: int,
    *statuses: CommandStatus,
    timeout: float = 10.0,
) -> Command:
    return await wait_for_command(
        store, command_id, lambda c: c.status in statuses, timeout,
    )


async def wait_for_pid(store: CommandStore, command_id: int) -> Command:
    return await wait_for_command(store, command_id, lambda c: c.pid is not None)


class CountFailingStore(CommandStore):
    """Store whose running-count query always fails."""

    async def count_running(self) -> int:
        raise StoreError("database is down")


class PidCrashStore(CommandStore):
    """Store whose pid write fails with an unexpected error."""

    async def update_pid(self, command_id: int, pid: int) -> bool:
        raise RuntimeError("pid column unavailable")


class ReadCrashStore(CommandStore):
    """Store whose single-command read fails with an unexpected error."""

    async def get_command(self, command_id: int) -> Command:
        raise RuntimeError("row could not be decoded")
