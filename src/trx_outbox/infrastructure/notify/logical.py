"""Change-data-capture bridge over a pgoutput logical replication slot.

The slot is consumed with ``pg_logical_slot_get_binary_changes``; only the
message kind byte is looked at (``I`` = insert). Any insert into a table of
the publication since the previous poll wakes the coordinator once.
"""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from trx_outbox.application.options import ErrorCallback, log_error
from trx_outbox.application.ports.bridge import TriggerFn
from trx_outbox.config import validate_identifier
from trx_outbox.domain.value_objects.enums import TriggerEvent

logger = logging.getLogger(__name__)

PLUGIN = "pgoutput"
INSERT_MESSAGE = 73  # ord("I")

_CONSUME_CHANGES = text(
    """
    SELECT count(*) FILTER (WHERE get_byte(data, 0) = :insert_message) AS inserts
    FROM pg_logical_slot_get_binary_changes(
        :slot, NULL, NULL,
        'proto_version', '1',
        'publication_names', :publication
    )
    """
)

_ENSURE_SLOT = text(
    """
    SELECT pg_create_logical_replication_slot(:slot, :plugin)
    WHERE NOT EXISTS (SELECT 1 FROM pg_replication_slots WHERE slot_name = :slot)
    """
)


class LogicalReplicationBridge:
    def __init__(
        self,
        engine: AsyncEngine,
        slot: str = "pg_trx_outbox",
        publication: str = "pg_trx_outbox",
        *,
        interval_ms: int = 100,
        create_slot: bool = True,
        on_error: ErrorCallback = log_error,
    ) -> None:
        self._engine = engine
        self._slot = validate_identifier(slot)
        self._publication = validate_identifier(publication)
        self._interval = interval_ms / 1000
        self._create_slot = create_slot
        self._on_error = on_error
        self._task: asyncio.Task[None] | None = None

    async def start(self, trigger: TriggerFn) -> None:
        if self._create_slot:
            await self.ensure_slot()
        self._task = asyncio.create_task(self._consume(trigger), name="trx-outbox-logical")
        logger.info(
            "Logical replication bridge started: slot=%s publication=%s",
            self._slot,
            self._publication,
        )

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Logical replication bridge stopped")

    async def ensure_slot(self) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(_ENSURE_SLOT, {"slot": self._slot, "plugin": PLUGIN})

    async def poll_once(self) -> int:
        """Consume pending changes from the slot. Returns the number of inserts seen."""
        async with self._engine.begin() as conn:
            result = await conn.execute(
                _CONSUME_CHANGES,
                {
                    "slot": self._slot,
                    "publication": self._publication,
                    "insert_message": INSERT_MESSAGE,
                },
            )
            return int(result.scalar_one() or 0)

    async def _consume(self, trigger: TriggerFn) -> None:
        while True:
            try:
                inserts = await self.poll_once()
            except Exception as exc:
                self._report(exc)
            else:
                if inserts:
                    logger.debug("Slot %s reported %d inserts", self._slot, inserts)
                    trigger(TriggerEvent.LOGICAL)
            await asyncio.sleep(self._interval)

    def _report(self, exc: BaseException) -> None:
        try:
            self._on_error(exc)
        except Exception:
            logger.exception("on_error callback failed")
