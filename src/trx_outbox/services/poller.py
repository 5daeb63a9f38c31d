from __future__ import annotations

import asyncio
import logging

from trx_outbox.application.ports.bridge import TriggerFn
from trx_outbox.domain.value_objects.enums import TriggerEvent

logger = logging.getLogger(__name__)


class Poller:
    """Interval timer feeding ``poll`` events to the coordinator."""

    def __init__(self, interval_ms: int) -> None:
        self._interval = interval_ms / 1000
        self._task: asyncio.Task[None] | None = None

    async def start(self, trigger: TriggerFn) -> None:
        self._task = asyncio.create_task(self._tick(trigger), name="trx-outbox-poller")
        logger.info("Outbox poller started (interval=%.3fs)", self._interval)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Outbox poller stopped")

    async def _tick(self, trigger: TriggerFn) -> None:
        while True:
            await asyncio.sleep(self._interval)
            trigger(TriggerEvent.POLL)
