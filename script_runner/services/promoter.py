"""Queue promoter: one background loop per waiting command."""

from __future__ import annotations

from typing import Callable

from script_runner.config import Settings, settings
from script_runner.errors import CommandNotFoundError, StoreError
from script_runner.models.command import CommandStatus
from script_runner.services.admission import AdmissionController, CapacityNotifier
from script_runner.storage.store import CommandStore
from script_runner.utils.logging import get_logger

log = get_logger(__name__)

Launcher = Callable[[int, str], None]


class QueuePromoter:
    """Promote one queued command to running once admission allows it.

    Each tick waits for a capacity notification or the poll interval,
    whichever comes first, then re-checks admission. Store failures skip the
    tick; the loop ends once the command is launched or is no longer waiting.
    """

    def __init__(
        self,
        command_id: int,
        store: CommandStore,
        admission: AdmissionController,
        notifier: CapacityNotifier,
        launch: Launcher,
        cfg: Settings | None = None,
    ) -> None:
        self.command_id = command_id
        self._cfg = cfg or settings
        self._store = store
        self._admission = admission
        self._notifier = notifier
        self._launch = launch
        self.ticks = 0

    async def run(self) -> None:
        log.info("promoter.started", command_id=self.command_id)
        while True:
            await self._notifier.wait(self._cfg.runner_queue_poll_interval_seconds)
            self.ticks += 1
            try:
                if await self._tick():
                    return
            except StoreError as exc:
                log.error(
                    "promoter.tick_failed",
                    command_id=self.command_id,
                    error=str(exc),
                )

    async def _tick(self) -> bool:
        """One admission attempt; True when the loop should end."""
        try:
            command = await self._store.get_command(self.command_id)
        except CommandNotFoundError:
            log.warning("promoter.command_gone", command_id=self.command_id)
            return True
        if command.status is not CommandStatus.waiting:
            log.info(
                "promoter.no_longer_waiting",
                command_id=self.command_id,
                status=command.status.value,
            )
            return True

        async with self._admission.guard() as must_queue:
            if must_queue:
                return False
            script = await self._store.promote(self.command_id)

        if script is None:
            log.info("promoter.already_promoted", command_id=self.command_id)
            return True
        log.info("promoter.promoted", command_id=self.command_id, ticks=self.ticks)
        self._launch(self.command_id, script)
        return True
