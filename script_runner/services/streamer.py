"""Live output capture and periodic flushing into the command store."""

from __future__ import annotations

import asyncio
from typing import Optional

from script_runner.errors import StoreError
from script_runner.storage.store import CommandStore
from script_runner.utils.logging import get_logger

log = get_logger(__name__)

_READ_CHUNK = 65536


class OutputBuffer:
    """Combined stdout/stderr of one run.

    Fed by ``pump()`` and read through ``snapshot()``; both run on the event
    loop thread, so a snapshot is always a prefix of the final output.
    """

    def __init__(self) -> None:
        self._chunks: list[bytes] = []
        self._size = 0

    def append(self, chunk: bytes) -> None:
        self._chunks.append(chunk)
        self._size += len(chunk)

    def __len__(self) -> int:
        return self._size

    def snapshot(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")

    async def pump(self, stream: asyncio.StreamReader) -> None:
        """Read *stream* until EOF."""
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            self.append(chunk)


class OutputStreamer:
    """Companion task that flushes a running command's output periodically.

    ``stop()`` asks it to finish; ``done`` is set once it has returned. A stop
    that arrives while waiting ends the loop without another write, since the
    executor's terminal write carries the complete output.
    """

    def __init__(
        self,
        store: CommandStore,
        command_id: int,
        buffer: OutputBuffer,
        interval: float,
        *,
        pid: Optional[int] = None,
    ) -> None:
        self._store = store
        self._command_id = command_id
        self._buffer = buffer
        self._interval = interval
        self._pid = pid
        self._stop = asyncio.Event()
        self.done = asyncio.Event()
        self.flushes = 0

    def stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        try:
            while True:
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
                    return
                except asyncio.TimeoutError:
                    pass

                await self._flush()

                if self._stop.is_set():
                    return
        finally:
            self.done.set()

    async def _flush(self) -> None:
        try:
            await self._store.update_output(
                self._command_id, self._buffer.snapshot(), pid=self._pid,
            )
            self.flushes += 1
        except StoreError as exc:
            log.error(
                "streamer.flush_failed",
                command_id=self._command_id,
                error=str(exc),
            )
