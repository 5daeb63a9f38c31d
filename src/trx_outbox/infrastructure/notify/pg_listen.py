"""LISTEN/NOTIFY bridge: a notification on the outbox channel wakes the coordinator."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from trx_outbox.application.options import ErrorCallback, log_error
from trx_outbox.application.ports.bridge import TriggerFn
from trx_outbox.config import validate_identifier
from trx_outbox.domain.value_objects.enums import TriggerEvent

logger = logging.getLogger(__name__)


class PgNotifyBridge:
    """Holds one pooled connection out of the engine for the LISTEN session.

    The payload of a notification is ignored; the cycle reads the table
    anyway.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        channel: str = "pg_trx_outbox",
        *,
        on_error: ErrorCallback = log_error,
    ) -> None:
        self._engine = engine
        self._channel = validate_identifier(channel)
        self._on_error = on_error
        self._conn: AsyncConnection | None = None
        self._driver: Any = None
        self._trigger: TriggerFn | None = None
        self.notifications = 0

    async def start(self, trigger: TriggerFn) -> None:
        self._trigger = trigger
        self._conn = await self._engine.connect()
        raw = await self._conn.get_raw_connection()
        self._driver = raw.driver_connection
        await self._driver.add_listener(self._channel, self._on_notification)
        self._driver.add_termination_listener(self._on_terminated)
        logger.info("Listening for outbox notifications on channel=%s", self._channel)

    async def stop(self) -> None:
        if self._driver is not None:
            self._driver.remove_termination_listener(self._on_terminated)
            try:
                await self._driver.remove_listener(self._channel, self._on_notification)
            except Exception:
                logger.warning("UNLISTEN %s failed", self._channel, exc_info=True)
            self._driver = None
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("Outbox notification listener stopped")

    def _on_notification(self, _conn: Any, _pid: int, channel: str, _payload: str) -> None:
        self.notifications += 1
        logger.debug("Notification received on %s", channel)
        if self._trigger is not None:
            self._trigger(TriggerEvent.NOTIFY)

    def _on_terminated(self, _conn: Any) -> None:
        self._report(ConnectionError(f"LISTEN connection for {self._channel} was terminated"))

    def _report(self, exc: BaseException) -> None:
        try:
            self._on_error(exc)
        except Exception:
            logger.exception("on_error callback failed")
