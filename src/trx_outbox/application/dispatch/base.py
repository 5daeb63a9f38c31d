"""Shared plumbing of the built-in dispatch strategies.

A strategy turns a per-row ``handler(message, context)`` into a
``DispatchAdapter``. The handler returns a plain value or a
``HandlerResult`` carrying meta; raising marks the row as failed.
Raising ``HandlerRejection`` also sets the row's meta, error text or
approved flag.
"""
from __future__ import annotations

import abc
import asyncio
import dataclasses
import logging
import resource
import statistics
import sys
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from trx_outbox.application.exceptions import HandlerRejection
from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.domain.value_objects.settle import (
    Fulfilled,
    HandlerResult,
    Rejected,
    SettleResult,
)

logger = logging.getLogger(__name__)

_handler_logger = logging.getLogger("trx_outbox.handler")
_PROCESS_STARTED = time.monotonic()

DIAGNOSTICS_META_KEY = "trx_outbox"


@dataclass(frozen=True, slots=True)
class HandlerContext:
    """Per-row values handed to the handler, and only to it."""

    message_id: int
    context_id: float
    attempt: int
    logger: logging.LoggerAdapter[logging.Logger]

    @classmethod
    def for_message(cls, message: OutboxMessage) -> HandlerContext:
        extra = {"message_id": message.id, "context_id": message.context_id}
        return cls(
            message_id=message.id,
            context_id=message.context_id,
            attempt=message.attempts,
            logger=logging.LoggerAdapter(_handler_logger, extra),
        )


Handler = Callable[[OutboxMessage, HandlerContext], Awaitable[Any]]
Settler = Callable[[OutboxMessage], Awaitable[SettleResult]]
Hook = Callable[[], Awaitable[None]]
HandledHook = Callable[[Sequence[OutboxMessage]], Awaitable[None]]


def settler(handler: Handler) -> Settler:
    """Run ``handler`` for one row and turn its outcome into a settle result."""

    async def settle(message: OutboxMessage) -> SettleResult:
        context = HandlerContext.for_message(message)
        try:
            outcome = await handler(message, context)
        except HandlerRejection as rejection:
            context.logger.debug("Handler rejected outbox message %d: %r", message.id, rejection.reason)
            return Rejected(
                reason=rejection.reason,
                meta=rejection.meta,
                error=rejection.error,
                error_approved=rejection.approved,
            )
        except Exception as exc:
            context.logger.debug("Handler failed for outbox message %d: %r", message.id, exc)
            return Rejected(reason=exc)
        if isinstance(outcome, HandlerResult):
            return Fulfilled(value=outcome.value, meta=outcome.meta)
        return Fulfilled(value=outcome)

    return settle


class _LoopLagMonitor:
    """Samples event-loop scheduling lag while a handler runs."""

    def __init__(self, resolution: float = 0.01) -> None:
        self._resolution = resolution
        self._samples: list[float] = []
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._sample())

    async def stop(self) -> dict[str, float | None]:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if not self._samples:
            return {"max": None, "min": None, "mean": None, "stddev": None}
        return {
            "max": max(self._samples),
            "min": min(self._samples),
            "mean": statistics.fmean(self._samples),
            "stddev": statistics.pstdev(self._samples),
        }

    async def _sample(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            await asyncio.sleep(self._resolution)
            lag = loop.time() - started - self._resolution
            self._samples.append(max(lag, 0.0) * 1000)


def _memory_snapshot() -> dict[str, int]:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return {
        "max_rss": usage.ru_maxrss,
        "allocated_blocks": sys.getallocatedblocks(),
    }


def with_diagnostics(settle: Settler) -> Settler:
    """Fold timing, loop lag and memory figures into each row's meta.

    Handler-supplied meta keys win over the diagnostics key.
    """

    async def instrumented(message: OutboxMessage) -> SettleResult:
        monitor = _LoopLagMonitor()
        before = _memory_snapshot()
        started = time.perf_counter()
        monitor.start()
        try:
            result = await settle(message)
        finally:
            loop_lag = await monitor.stop()
        diagnostics = {
            "time": (time.perf_counter() - started) * 1000,
            "loop_lag": loop_lag,
            "before_memory": before,
            "after_memory": _memory_snapshot(),
            "uptime": time.monotonic() - _PROCESS_STARTED,
        }
        meta = {DIAGNOSTICS_META_KEY: diagnostics, **(result.meta or {})}
        return dataclasses.replace(result, meta=meta)

    return instrumented


class HandlerAdapter(abc.ABC):
    """Lifecycle and hook plumbing common to every built-in strategy."""

    def __init__(
        self,
        handler: Handler,
        *,
        on_start: Hook | None = None,
        on_stop: Hook | None = None,
        on_handled: HandledHook | None = None,
        diagnostics: bool = True,
    ) -> None:
        self._on_start = on_start
        self._on_stop = on_stop
        self._on_handled = on_handled
        settle = settler(handler)
        self._settle = with_diagnostics(settle) if diagnostics else settle

    async def start(self) -> None:
        if self._on_start is not None:
            await self._on_start()

    async def stop(self) -> None:
        if self._on_stop is not None:
            await self._on_stop()

    async def on_handled(self, messages: Sequence[OutboxMessage]) -> None:
        if self._on_handled is not None:
            await self._on_handled(messages)

    @abc.abstractmethod
    async def send(self, messages: Sequence[OutboxMessage]) -> list[SettleResult]:
        ...
