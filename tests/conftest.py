"""Shared test fixtures: an in-memory outbox table and a recording adapter."""
from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from trx_outbox.application.exceptions import LockNotAvailableError
from trx_outbox.application.repositories.outbox import OutboxOutcome
from trx_outbox.domain.entities.outbox_message import OutboxMessage, SettledMessage
from trx_outbox.domain.value_objects.settle import Fulfilled, SettleResult

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_message(
    *,
    id: int = 1,
    topic: str = "orders",
    key: str | None = None,
    value: Any = None,
    is_event: bool = False,
    attempts: int = 0,
    context_id: float = 0.5,
) -> OutboxMessage:
    return OutboxMessage(
        id=id,
        topic=topic,
        key=key,
        value=value if value is not None else {"n": id},
        headers=None,
        processed=False,
        is_event=is_event,
        attempts=attempts,
        context_id=context_id,
        created_at=T0,
        updated_at=T0,
    )


@dataclass
class FakeOutboxStore:
    """Rows keyed by id plus row locks owned by open units of work.

    Writes made through a unit of work are applied on commit and dropped on
    rollback. ``now`` is the database clock used for ``since_at``.
    """

    rows: dict[int, dict[str, Any]] = field(default_factory=dict)
    locks: dict[int, FakeUoW] = field(default_factory=dict)
    now: datetime = T0
    failures: dict[str, Exception] = field(default_factory=dict)
    opened: int = 0
    _next_id: int = 1

    def add(
        self,
        topic: str = "orders",
        value: Any = None,
        *,
        key: str | None = None,
        is_event: bool = False,
        since_at: datetime | None = None,
        headers: dict[str, str] | None = None,
        attempts: int = 0,
        error: str | None = None,
        processed: bool = False,
    ) -> int:
        row_id = self._next_id
        self._next_id += 1
        self.rows[row_id] = {
            "id": row_id,
            "topic": topic,
            "key": key,
            "value": value if value is not None else {"n": row_id},
            "headers": headers,
            "processed": processed,
            "is_event": is_event,
            "attempts": attempts,
            "context_id": row_id / 1000,
            "created_at": self.now,
            "updated_at": self.now,
            "since_at": since_at,
            "partition": None,
            "timestamp": None,
            "response": None,
            "error": error,
            "error_approved": False,
            "meta": None,
        }
        return row_id

    def row(self, row_id: int) -> dict[str, Any]:
        return self.rows[row_id]

    def message(self, row_id: int) -> OutboxMessage:
        return OutboxMessage(**self.rows[row_id])

    def uow(self) -> FakeUoW:
        self.opened += 1
        return FakeUoW(self)

    def fail(self, method: str, exc: Exception) -> None:
        """Make the next call of ``method`` raise ``exc``."""
        self.failures[method] = exc

    def _maybe_fail(self, method: str) -> None:
        exc = self.failures.pop(method, None)
        if exc is not None:
            raise exc


class FakeOutboxRepo:
    def __init__(self, store: FakeOutboxStore, uow: FakeUoW) -> None:
        self._store = store
        self._uow = uow

    async def insert(
        self,
        topic: str,
        value: Any,
        *,
        key: str | None = None,
        headers: dict[str, str] | None = None,
        is_event: bool = False,
        since_at: Any = None,
    ) -> int:
        return self._store.add(topic, value, key=key, headers=headers, is_event=is_event, since_at=since_at)

    async def fetch_commands(
        self,
        limit: int,
        *,
        topics: Sequence[str] | None = None,
        skip_locked: bool = False,
    ) -> list[OutboxMessage]:
        store = self._store
        store._maybe_fail("fetch_commands")
        taken: list[int] = []
        for row_id in sorted(store.rows):
            row = store.rows[row_id]
            if row["processed"] or row["is_event"]:
                continue
            if row["since_at"] is not None and row["since_at"] > store.now:
                continue
            if topics is not None and row["topic"] not in topics:
                continue
            owner = store.locks.get(row_id)
            if owner is not None and owner is not self._uow:
                if skip_locked:
                    continue
                raise LockNotAvailableError(f"could not obtain lock on row {row_id}")
            taken.append(row_id)
            if len(taken) == limit:
                break
        for row_id in taken:
            store.locks[row_id] = self._uow
        return [store.message(row_id) for row_id in taken]

    async def fetch_events(
        self,
        after_id: int,
        limit: int,
        *,
        topics: Sequence[str] | None = None,
    ) -> list[OutboxMessage]:
        store = self._store
        store._maybe_fail("fetch_events")
        ids = [
            row_id
            for row_id in sorted(store.rows)
            if store.rows[row_id]["is_event"]
            and row_id > after_id
            and (topics is None or store.rows[row_id]["topic"] in topics)
        ]
        return [store.message(row_id) for row_id in ids[:limit]]

    async def save_outcomes(
        self,
        outcomes: Sequence[OutboxOutcome],
        *,
        retry_delay_seconds: float,
        clear_error_on_success: bool = False,
    ) -> None:
        self._store._maybe_fail("save_outcomes")
        outcomes = list(outcomes)

        def apply(store: FakeOutboxStore) -> None:
            for o in outcomes:
                row = store.rows[o.id]
                if row["is_event"]:
                    continue
                row["processed"] = not o.retry
                row["response"] = o.response
                if o.error is not None:
                    row["error"] = o.error
                elif o.succeeded and clear_error_on_success:
                    row["error"] = None
                if o.meta is not None:
                    row["meta"] = o.meta
                row["error_approved"] = o.error_approved
                if o.retry:
                    row["attempts"] += 1
                    row["since_at"] = store.now + timedelta(seconds=retry_delay_seconds)
                row["updated_at"] = store.now

        self._uow.pending.append(apply)

    async def mark_failed(self, ids: Sequence[int], error: str) -> None:
        self._store._maybe_fail("mark_failed")
        ids = list(ids)

        def apply(store: FakeOutboxStore) -> None:
            for row_id in ids:
                row = store.rows[row_id]
                if row["processed"] or row["is_event"]:
                    continue
                row["processed"] = True
                row["error"] = error
                row["updated_at"] = store.now

        self._uow.pending.append(apply)

    async def fetch_settled(
        self,
        ids: Sequence[int],
        *,
        keys: Sequence[str] | None = None,
    ) -> list[SettledMessage]:
        store = self._store
        store._maybe_fail("fetch_settled")
        settled = []
        for row_id in ids:
            row = store.rows.get(row_id)
            if row is None or not row["processed"]:
                continue
            if keys and row["key"] not in keys:
                continue
            settled.append(SettledMessage(id=row_id, response=row["response"], error=row["error"]))
        return settled


class FakeUoW:
    def __init__(self, store: FakeOutboxStore) -> None:
        self._store = store
        self.outbox = FakeOutboxRepo(store, self)
        self.pending: list[Callable[[FakeOutboxStore], None]] = []
        self.committed = False
        self.rolled_back = False

    async def commit(self) -> None:
        for apply in self.pending:
            apply(self._store)
        self.pending.clear()
        self.committed = True
        self._release()

    async def rollback(self) -> None:
        self.pending.clear()
        self.rolled_back = True
        self._release()

    async def __aenter__(self) -> FakeUoW:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            await self.rollback()
        self.pending.clear()
        self._release()

    def _release(self) -> None:
        for row_id in [r for r, owner in self._store.locks.items() if owner is self]:
            del self._store.locks[row_id]


def fulfil_all(message: OutboxMessage) -> SettleResult:
    return Fulfilled(value={"delivered": message.id})


@dataclass
class RecordingAdapter:
    """DispatchAdapter that records every batch and settles rows via ``result_for``."""

    result_for: Callable[[OutboxMessage], SettleResult] = fulfil_all
    batches: list[list[OutboxMessage]] = field(default_factory=list)
    handled: list[list[OutboxMessage]] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)
    send_error: Exception | None = None
    handled_error: Exception | None = None
    gate: asyncio.Event | None = None

    @property
    def sent_ids(self) -> list[int]:
        return [m.id for batch in self.batches for m in batch]

    async def start(self) -> None:
        self.calls.append("start")

    async def stop(self) -> None:
        self.calls.append("stop")

    async def send(self, messages: Sequence[OutboxMessage]) -> list[SettleResult]:
        self.batches.append(list(messages))
        if self.gate is not None:
            await self.gate.wait()
        if self.send_error is not None:
            raise self.send_error
        return [self.result_for(m) for m in messages]

    async def on_handled(self, messages: Sequence[OutboxMessage]) -> None:
        self.handled.append(list(messages))
        if self.handled_error is not None:
            raise self.handled_error


@pytest.fixture
def store() -> FakeOutboxStore:
    return FakeOutboxStore()


@pytest.fixture
def adapter() -> RecordingAdapter:
    return RecordingAdapter()
