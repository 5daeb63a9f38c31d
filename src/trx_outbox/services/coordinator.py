"""Serialises transfer cycles coming from timers, notifications and callers.

At most one cycle runs at a time. A notification, replication or manual
trigger that arrives while a cycle runs is remembered and causes exactly
one more cycle afterwards, however many of them arrived. Poll ticks during
a cycle are dropped: the next tick polls anyway.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from trx_outbox.application.exceptions import InvalidTransitionError
from trx_outbox.application.options import ErrorCallback, log_error
from trx_outbox.domain.value_objects.enums import TriggerEvent, TriggerState

logger = logging.getLogger(__name__)

CycleFn = Callable[[], Awaitable[Any]]

_TRANSITIONS: dict[TriggerState, frozenset[TriggerState]] = {
    TriggerState.IDLE: frozenset({TriggerState.PROCESSING}),
    TriggerState.PROCESSING: frozenset({TriggerState.IDLE, TriggerState.IDLE_BUT_REPEAT_QUEUED}),
    TriggerState.IDLE_BUT_REPEAT_QUEUED: frozenset({TriggerState.PROCESSING}),
}

_COALESCED = frozenset({TriggerEvent.NOTIFY, TriggerEvent.LOGICAL, TriggerEvent.MANUAL})


class TriggerCoordinator:
    def __init__(self, cycle: CycleFn, on_error: ErrorCallback = log_error) -> None:
        self._cycle = cycle
        self._on_error = on_error
        self._state = TriggerState.IDLE
        self._repeat_requested = False
        self._closed = False
        self._task: asyncio.Task[None] | None = None
        self.cycles = 0

    @property
    def state(self) -> TriggerState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def trigger(self, event: TriggerEvent | str) -> bool:
        """Feed an event into the machine. Returns True if a cycle was started."""
        event = TriggerEvent(event)
        if self._closed:
            logger.debug("Ignoring %s trigger, coordinator is closed", event)
            return False

        if self._state is TriggerState.IDLE:
            self._transition(TriggerState.PROCESSING)
            self._task = asyncio.create_task(self._run(), name=f"trx-outbox-cycle-{event}")
            return True

        if event in _COALESCED:
            self._repeat_requested = True
        return False

    async def wait_idle(self) -> None:
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def close(self) -> None:
        """Stop accepting triggers and let the in-flight cycle finish."""
        self._closed = True
        self._repeat_requested = False
        await self.wait_idle()

    def _transition(self, target: TriggerState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state} -> {target}")
        self._state = target

    async def _run(self) -> None:
        try:
            while True:
                try:
                    await self._cycle()
                except Exception as exc:
                    self._report(exc)
                finally:
                    self.cycles += 1

                if self._repeat_requested and not self._closed:
                    self._repeat_requested = False
                    self._transition(TriggerState.IDLE_BUT_REPEAT_QUEUED)
                    self._transition(TriggerState.PROCESSING)
                    continue
                break
        finally:
            self._repeat_requested = False
            self._state = TriggerState.IDLE

    def _report(self, exc: BaseException) -> None:
        try:
            self._on_error(exc)
        except Exception:
            logger.exception("on_error callback failed")
