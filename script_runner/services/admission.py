"""Admission control: may a new job run now, or must it wait?

The decision compares the number of running commands with
``runner_max_concurrent``. ``guard()`` holds a process-wide lock while the
caller acts on the decision, so two submissions in the same service can never
both take the last free slot.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from script_runner.config import Settings, settings
from script_runner.errors import StoreError
from script_runner.storage.store import CommandStore
from script_runner.utils.logging import get_logger

log = get_logger(__name__)


class AdmissionController:
    def __init__(self, store: CommandStore, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._store = store
        self._lock = asyncio.Lock()

    @property
    def max_concurrent(self) -> int:
        return self._cfg.runner_max_concurrent

    async def should_queue(self) -> bool:
        """True when the caller must queue; also True if the count is unknown."""
        try:
            running = await self._store.count_running()
        except StoreError as exc:
            log.error("admission.count_failed", error=str(exc))
            return True
        return running >= self.max_concurrent

    @asynccontextmanager
    async def guard(self) -> AsyncIterator[bool]:
        """Yield the queue decision while holding the admission lock.

        The state transition that follows the decision (insert running,
        enqueue, promote) must happen inside the ``async with`` block.
        """
        async with self._lock:
            yield await self.should_queue()


class CapacityNotifier:
    """Broadcast "a slot may have been freed" to every waiting promoter.

    Each publish wakes all current waiters; waiters that arrive afterwards
    wait for the next publish.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def publish(self) -> None:
        event, self._event = self._event, asyncio.Event()
        event.set()

    async def wait(self, timeout: float) -> bool:
        """Wait for a publish or *timeout* seconds; True if woken by a publish."""
        event = self._event
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True
