"""Outbox facade: wires the engine, coordinator, triggers and responder together."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from types import TracebackType
from typing import Any, Self

from sqlalchemy.ext.asyncio import AsyncEngine

from trx_outbox.application.exceptions import NotStartedError
from trx_outbox.application.options import OutboxOptions
from trx_outbox.application.ports.adapter import DispatchAdapter
from trx_outbox.application.ports.bridge import TriggerSource
from trx_outbox.application.uow import UnitOfWorkFactory
from trx_outbox.config import Settings
from trx_outbox.domain.value_objects.enums import OutboxMode, TriggerEvent, TriggerState
from trx_outbox.services.coordinator import TriggerCoordinator
from trx_outbox.services.event_cursor import EventCursor
from trx_outbox.services.poller import Poller
from trx_outbox.services.responder import Responder
from trx_outbox.services.transfer import TransferEngine

logger = logging.getLogger(__name__)


class Outbox:
    """One running outbox over one table (or partition).

    ``sources`` replaces the trigger sources that ``mode`` would select; it is
    mostly useful in tests. ``db_engine``, when given, is disposed on stop.
    """

    def __init__(
        self,
        adapter: DispatchAdapter,
        uow_factory: UnitOfWorkFactory,
        options: OutboxOptions | None = None,
        *,
        sources: Sequence[TriggerSource] | None = None,
        db_engine: AsyncEngine | None = None,
    ) -> None:
        self.options = options or OutboxOptions()
        self.adapter = adapter
        self._uow_factory = uow_factory
        self._db_engine = db_engine
        self.cursor = EventCursor(self.options.initial_event_id)
        self.engine = TransferEngine(uow_factory, adapter, self.options, self.cursor)
        self.coordinator = TriggerCoordinator(self.engine.run_cycle, self.options.on_error)
        self.responder = Responder(
            uow_factory,
            interval_ms=self.options.respond_interval_ms,
            on_error=self.options.on_error,
        )
        self.sources: list[TriggerSource] = (
            list(sources) if sources is not None else self._default_sources()
        )
        self._started = False

    @classmethod
    def from_settings(
        cls,
        adapter: DispatchAdapter,
        settings: Settings,
        **overrides: Any,
    ) -> Outbox:
        """Build engine, session factory and options from environment settings."""
        from trx_outbox.infrastructure.db.session import create_engine, create_session_factory
        from trx_outbox.infrastructure.db.uow import make_uow_factory

        options = OutboxOptions.from_settings(settings, **overrides)
        db_engine = create_engine(settings)
        uow_factory = make_uow_factory(create_session_factory(db_engine), options.table_name)
        return cls(adapter, uow_factory, options, db_engine=db_engine)

    @property
    def db_engine(self) -> AsyncEngine | None:
        return self._db_engine

    @property
    def started(self) -> bool:
        return self._started

    @property
    def coordinator_state(self) -> TriggerState:
        return self.coordinator.state

    async def start(self) -> None:
        await self.adapter.start()
        await self.cursor.sync(
            self._uow_factory,
            self.adapter,
            batch_size=self.options.init_sync_batch_size,
            topics=self.options.topic_filter,
        )
        await self.responder.start()
        for source in self.sources:
            await source.start(self.coordinator.trigger)
        self._started = True
        logger.info(
            "Outbox started (table=%s, mode=%s, limit=%d)",
            self.options.table_name,
            self.options.mode,
            self.options.limit,
        )

    async def stop(self) -> None:
        for source in reversed(self.sources):
            await source.stop()
        await self.coordinator.close()
        await self.responder.stop()
        await self.adapter.stop()
        if self._db_engine is not None:
            await self._db_engine.dispose()
        self._started = False
        logger.info("Outbox stopped")

    async def wait_for(self, message_id: int | str, key: str | None = None) -> Any:
        return await self.responder.wait_for(message_id, key)

    def trigger_manual_fetch(self) -> bool:
        """Ask for a cycle now. Returns True if one was started immediately."""
        if not self._started:
            raise NotStartedError("Outbox is not started")
        return self.coordinator.trigger(TriggerEvent.MANUAL)

    def get_last_event_id(self) -> int:
        return self.cursor.last_event_id

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    def _default_sources(self) -> list[TriggerSource]:
        opts = self.options
        sources: list[TriggerSource] = []
        if opts.mode in (OutboxMode.SHORT_POLLING, OutboxMode.NOTIFY):
            sources.append(Poller(opts.poll_interval_ms))
        if opts.mode is OutboxMode.NOTIFY:
            from trx_outbox.infrastructure.notify.pg_listen import PgNotifyBridge

            sources.append(
                PgNotifyBridge(self._require_engine(), opts.notify_channel, on_error=opts.on_error)
            )
        if opts.mode is OutboxMode.LOGICAL:
            from trx_outbox.infrastructure.notify.logical import LogicalReplicationBridge

            sources.append(
                LogicalReplicationBridge(
                    self._require_engine(),
                    opts.logical_slot,
                    opts.logical_publication,
                    interval_ms=opts.logical_interval_ms,
                    on_error=opts.on_error,
                )
            )
        return sources

    def _require_engine(self) -> AsyncEngine:
        if self._db_engine is None:
            raise ValueError(f"mode={self.options.mode} needs db_engine")
        return self._db_engine
