"""Transfer engine: one fetch -> lock -> dispatch -> update transaction."""
from __future__ import annotations

import asyncio
import heapq
import logging
from collections.abc import Sequence
from itertools import islice

from trx_outbox.application.exceptions import AdapterContractError, LockNotAvailableError
from trx_outbox.application.options import OutboxOptions
from trx_outbox.application.ports.adapter import DispatchAdapter
from trx_outbox.application.uow import UnitOfWork, UnitOfWorkFactory
from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.services.event_cursor import EventCursor
from trx_outbox.services.settle import build_outcome, normalize_error

logger = logging.getLogger(__name__)


class TransferEngine:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        adapter: DispatchAdapter,
        options: OutboxOptions,
        cursor: EventCursor,
    ) -> None:
        self._uow_factory = uow_factory
        self._adapter = adapter
        self._options = options
        self._cursor = cursor
        self._lock = asyncio.Lock()

    async def run_cycle(self) -> list[OutboxMessage]:
        """Drain one batch. Returns the rows that were dispatched.

        Lock contention ends the cycle quietly with an empty result. Any
        other failure marks the fetched command rows as failed and is
        re-raised.
        """
        async with self._lock:
            messages = await self._transfer()
        if messages:
            await self._notify_handled(messages)
        return messages

    async def _transfer(self) -> list[OutboxMessage]:
        messages: list[OutboxMessage] = []
        async with self._uow_factory() as uow:
            try:
                messages = await self._fetch_commands(uow)
                messages = await self._merge_events(uow, messages)
                if not messages:
                    await uow.commit()
                    return []

                results = await self._adapter.send(messages)
                if len(results) != len(messages):
                    raise AdapterContractError(
                        f"Adapter returned {len(results)} results for {len(messages)} messages"
                    )

                outcomes = [
                    build_outcome(message, result, self._options)
                    for message, result in zip(messages, results)
                    if not message.is_event
                ]
                if outcomes:
                    await uow.outbox.save_outcomes(
                        outcomes,
                        retry_delay_seconds=self._options.retry_delay_seconds,
                        clear_error_on_success=self._options.clear_error_on_success,
                    )
                await uow.commit()
            except LockNotAvailableError:
                await uow.rollback()
                logger.debug("Outbox rows are locked by another transaction, skipping cycle")
                return []
            except Exception as exc:
                await uow.rollback()
                await self._fail_commands(messages, exc)
                raise

        self._cursor.advance(messages)
        retried = sum(1 for o in outcomes if o.retry)
        logger.debug(
            "Transferred %d outbox messages (%d events, %d scheduled for retry)",
            len(messages),
            len(messages) - len(outcomes),
            retried,
        )
        return messages

    async def _fetch_commands(self, uow: UnitOfWork) -> list[OutboxMessage]:
        return await uow.outbox.fetch_commands(
            self._options.limit,
            topics=self._options.topic_filter,
            skip_locked=self._options.concurrency,
        )

    async def _merge_events(
        self, uow: UnitOfWork, commands: list[OutboxMessage],
    ) -> list[OutboxMessage]:
        limit = self._options.limit
        topics = self._options.topic_filter
        events = await uow.outbox.fetch_events(
            self._cursor.last_event_id, limit, topics=topics,
        )
        merged = heapq.merge(commands, events, key=lambda m: m.id)
        return list(islice(merged, limit))

    async def _fail_commands(self, messages: Sequence[OutboxMessage], exc: BaseException) -> None:
        ids = [m.id for m in messages if not m.is_event]
        if not ids:
            return
        try:
            async with self._uow_factory() as uow:
                await uow.outbox.mark_failed(ids, normalize_error(exc))
                await uow.commit()
        except Exception:
            logger.exception("Failed to mark %d outbox messages as failed", len(ids))
        else:
            logger.warning("Marked %d outbox messages as failed after cycle error: %s", len(ids), exc)

    async def _notify_handled(self, messages: Sequence[OutboxMessage]) -> None:
        try:
            await self._adapter.on_handled(messages)
        except Exception:
            logger.exception("Adapter on_handled hook failed")
