from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from trx_outbox.application.dispatch.base import HandlerAdapter
from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.domain.value_objects.settle import SettleResult

logger = logging.getLogger(__name__)

_Job = tuple[OutboxMessage, "asyncio.Future[SettleResult]"]


@dataclass(slots=True)
class _KeyQueue:
    jobs: asyncio.Queue[_Job] = field(default_factory=asyncio.Queue)
    worker: asyncio.Task[None] | None = None


class GroupedAsyncAdapter(HandlerAdapter):
    """Per-key work queues with a single consumer each.

    A queue is created the first time its key shows up and dropped as soon
    as it drains, so high-cardinality, short-lived keys do not pile up.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._queues: dict[str | None, _KeyQueue] = {}

    @property
    def active_keys(self) -> int:
        return len(self._queues)

    async def send(self, messages: Sequence[OutboxMessage]) -> list[SettleResult]:
        loop = asyncio.get_running_loop()
        futures: list[asyncio.Future[SettleResult]] = []
        for message in messages:
            queue = self._queues.get(message.key)
            if queue is None:
                queue = _KeyQueue()
                self._queues[message.key] = queue
                queue.worker = asyncio.create_task(
                    self._drain(message.key, queue), name=f"trx-outbox-key-{message.key}",
                )
            future: asyncio.Future[SettleResult] = loop.create_future()
            queue.jobs.put_nowait((message, future))
            futures.append(future)
        return list(await asyncio.gather(*futures))

    async def stop(self) -> None:
        workers = [q.worker for q in self._queues.values() if q.worker is not None]
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._queues.clear()
        await super().stop()

    async def _drain(self, key: str | None, queue: _KeyQueue) -> None:
        current: asyncio.Future[SettleResult] | None = None
        try:
            while True:
                try:
                    message, current = queue.jobs.get_nowait()
                except asyncio.QueueEmpty:
                    break
                result = await self._settle(message)
                if not current.done():
                    current.set_result(result)
        finally:
            if self._queues.get(key) is queue:
                del self._queues[key]
            if current is not None and not current.done():
                current.cancel()
            while not queue.jobs.empty():
                _, future = queue.jobs.get_nowait()
                future.cancel()
            logger.debug("Key queue %r drained", key)
