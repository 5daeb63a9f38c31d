"""Position of this process in the event log.

Event rows are never written by the engine; each process tracks how far it
has read with an in-memory id. A fresh process starts from
``initial_event_id`` (0 unless the application persisted a position) and
replays everything after it.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from trx_outbox.application.ports.adapter import DispatchAdapter
from trx_outbox.application.uow import UnitOfWorkFactory
from trx_outbox.domain.entities.outbox_message import OutboxMessage

logger = logging.getLogger(__name__)


class EventCursor:
    def __init__(self, initial_event_id: int = 0) -> None:
        self._last_event_id = initial_event_id

    @property
    def last_event_id(self) -> int:
        return self._last_event_id

    def advance(self, messages: Iterable[OutboxMessage]) -> int:
        """Move past the highest event id in ``messages``; never moves back."""
        for message in messages:
            if message.is_event and message.id > self._last_event_id:
                self._last_event_id = message.id
        return self._last_event_id

    async def sync(
        self,
        uow_factory: UnitOfWorkFactory,
        adapter: DispatchAdapter,
        *,
        batch_size: int = 100,
        topics: Sequence[str] | None = None,
    ) -> int:
        """Replay every event after the current position through the adapter.

        Returns the number of events dispatched.
        """
        total = 0
        while True:
            async with uow_factory() as uow:
                batch = await uow.outbox.fetch_events(
                    self._last_event_id, batch_size, topics=topics,
                )
                await uow.commit()
            if not batch:
                break
            await adapter.send(batch)
            self.advance(batch)
            total += len(batch)

        if total:
            logger.info("Event log synced: %d events, last_event_id=%d", total, self._last_event_id)
        return total
