"""Lets callers await the terminal state of a specific outbox row."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from trx_outbox.application.exceptions import MessageFailedError, NotStartedError
from trx_outbox.application.options import ErrorCallback, log_error
from trx_outbox.application.uow import UnitOfWorkFactory

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Waiter:
    future: asyncio.Future[Any]
    key: str | None


class Responder:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        *,
        interval_ms: int = 100,
        on_error: ErrorCallback = log_error,
    ) -> None:
        self._uow_factory = uow_factory
        self._interval = interval_ms / 1000
        self._on_error = on_error
        self._waiters: dict[int, list[_Waiter]] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return sum(len(ws) for ws in self._waiters.values())

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name="trx-outbox-responder")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for waiters in self._waiters.values():
            for waiter in waiters:
                waiter.future.cancel()
        self._waiters.clear()

    async def wait_for(self, message_id: int | str, key: str | None = None) -> Any:
        """Wait until the row is processed.

        Returns the stored ``response`` or raises ``MessageFailedError``
        with the stored ``error``. A row that failed once and later succeeded
        on retry keeps its old ``error`` unless ``clear_error_on_success`` is
        set, so it is still reported as failed. There is no timeout; wrap the
        call in ``asyncio.wait_for`` when one is needed.
        """
        if self._task is None:
            raise NotStartedError("Responder is not started")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(int(message_id), []).append(_Waiter(future, key))
        return await future

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.respond()
            except Exception as exc:
                try:
                    self._on_error(exc)
                except Exception:
                    logger.exception("on_error callback failed")

    async def respond(self) -> int:
        """Resolve every waiter whose row is settled. Returns how many were resolved."""
        self._prune()
        if not self._waiters:
            return 0

        ids = list(self._waiters)
        keys = self._key_filter()
        async with self._uow_factory() as uow:
            settled = await uow.outbox.fetch_settled(ids, keys=keys)
            await uow.commit()

        resolved = 0
        for row in settled:
            for waiter in self._waiters.pop(row.id, []):
                if waiter.future.done():
                    continue
                if row.error:
                    waiter.future.set_exception(MessageFailedError(row.id, row.error))
                else:
                    waiter.future.set_result(row.response)
                resolved += 1
        return resolved

    def _key_filter(self) -> list[str] | None:
        # narrowing by key only works when every waiter supplied one
        keys: set[str] = set()
        for waiters in self._waiters.values():
            for waiter in waiters:
                if waiter.key is None:
                    return None
                keys.add(waiter.key)
        return sorted(keys)

    def _prune(self) -> None:
        for message_id in list(self._waiters):
            alive = [w for w in self._waiters[message_id] if not w.future.done()]
            if alive:
                self._waiters[message_id] = alive
            else:
                del self._waiters[message_id]
