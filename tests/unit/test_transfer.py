"""Unit tests for the transfer cycle against the in-memory store."""
from __future__ import annotations

from datetime import timedelta

import pytest

from tests.conftest import FakeOutboxStore, RecordingAdapter
from trx_outbox.application.dispatch.serial import SerialAdapter
from trx_outbox.application.dispatch.base import DIAGNOSTICS_META_KEY
from trx_outbox.application.exceptions import AdapterContractError, HandlerRejection
from trx_outbox.application.options import OutboxOptions
from trx_outbox.domain.value_objects.settle import Fulfilled, HandlerResult, Rejected
from trx_outbox.services.event_cursor import EventCursor
from trx_outbox.services.transfer import TransferEngine


def _engine(store: FakeOutboxStore, adapter, **options) -> TransferEngine:
    return TransferEngine(store.uow, adapter, OutboxOptions(**options), EventCursor())


async def test_empty_table_is_a_noop(store, adapter):
    engine = _engine(store, adapter)
    assert await engine.run_cycle() == []
    assert adapter.batches == []
    assert adapter.handled == []


async def test_ok_and_error_pair(store):
    ok_id = store.add(value={"ok": True})
    err_id = store.add(value={"ok": False})

    async def handler(message, ctx):
        if not message.value["ok"]:
            raise ValueError("rejected by handler")
        return {"status": "sent"}

    engine = _engine(store, SerialAdapter(handler, diagnostics=False))
    dispatched = await engine.run_cycle()

    assert [m.id for m in dispatched] == [ok_id, err_id]
    ok, err = store.row(ok_id), store.row(err_id)
    assert ok["processed"] and err["processed"]
    assert ok["response"] == {"status": "sent"}
    assert ok["error"] is None
    assert err["response"] is None
    assert "ValueError: rejected by handler" in err["error"]
    assert err["attempts"] == 0


async def test_limit_one_takes_lowest_id(store, adapter):
    first = store.add()
    second = store.add()

    engine = _engine(store, adapter, limit=1)
    await engine.run_cycle()

    assert adapter.sent_ids == [first]
    assert store.row(first)["processed"]
    assert not store.row(second)["processed"]


async def test_since_at_gates_rows(store, adapter):
    future = store.add(since_at=store.now + timedelta(minutes=5))
    past = store.add(since_at=store.now - timedelta(minutes=5))
    unset = store.add()

    await _engine(store, adapter).run_cycle()

    assert adapter.sent_ids == [past, unset]
    assert not store.row(future)["processed"]
    assert store.row(past)["processed"]
    assert store.row(unset)["processed"]


async def test_retry_then_success_keeps_first_error(store):
    row_id = store.add()
    calls = 0

    async def handler(message, ctx):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise ConnectionError("broker down")
        return "ok"

    engine = _engine(
        store,
        SerialAdapter(handler, diagnostics=False),
        retry_predicate=lambda reason: isinstance(reason, ConnectionError),
        retry_delay_seconds=5,
    )

    await engine.run_cycle()
    row = store.row(row_id)
    assert row["processed"] is False
    assert row["attempts"] == 1
    assert row["since_at"] == store.now + timedelta(seconds=5)
    assert "ConnectionError: broker down" in row["error"]

    # not due yet
    assert await engine.run_cycle() == []

    store.now += timedelta(seconds=5)
    await engine.run_cycle()
    row = store.row(row_id)
    assert row["processed"] is True
    assert row["attempts"] == 1
    assert row["response"] == {"r": "ok"}
    assert "ConnectionError: broker down" in row["error"]


async def test_clear_error_on_success(store):
    row_id = store.add(error="old failure")
    engine = _engine(store, RecordingAdapter(), clear_error_on_success=True)

    await engine.run_cycle()

    assert store.row(row_id)["error"] is None


async def test_exhausted_attempts_are_terminal(store):
    row_id = store.add(attempts=2)
    adapter = RecordingAdapter(result_for=lambda m: Rejected(reason="nope"))
    engine = _engine(store, adapter, retry_predicate=lambda _: True, retry_max_attempts=2)

    await engine.run_cycle()

    row = store.row(row_id)
    assert row["processed"] is True
    assert row["attempts"] == 2
    assert row["error"] == "nope"


async def test_events_are_merged_in_id_order_and_never_written(store, adapter):
    e1 = store.add("audit", is_event=True)
    c1 = store.add("orders")
    e2 = store.add("audit", is_event=True)
    c2 = store.add("orders")
    cursor = EventCursor()
    engine = TransferEngine(store.uow, adapter, OutboxOptions(), cursor)

    await engine.run_cycle()

    assert adapter.sent_ids == [e1, c1, e2, c2]
    assert cursor.last_event_id == e2
    assert store.row(e1)["processed"] is False
    assert store.row(e1)["response"] is None
    assert store.row(c1)["processed"] is True

    adapter.batches.clear()
    assert await engine.run_cycle() == []
    assert adapter.batches == []


async def test_independent_cursor_replays_all_events(store):
    ids = [store.add("audit", is_event=True) for _ in range(3)]
    first, second = RecordingAdapter(), RecordingAdapter()

    await TransferEngine(store.uow, first, OutboxOptions(), EventCursor()).run_cycle()
    await TransferEngine(store.uow, second, OutboxOptions(), EventCursor()).run_cycle()

    assert first.sent_ids == ids
    assert second.sent_ids == ids


async def test_merge_respects_limit(store, adapter):
    c1 = store.add()
    e1 = store.add(is_event=True)
    c2 = store.add()
    cursor = EventCursor()
    engine = TransferEngine(store.uow, adapter, OutboxOptions(limit=2), cursor)

    await engine.run_cycle()

    assert adapter.sent_ids == [c1, e1]
    assert cursor.last_event_id == e1
    assert store.row(c2)["processed"] is False
    assert store.locks == {}


async def test_topic_filter(store, adapter):
    wanted = store.add("orders")
    other = store.add("billing")
    event = store.add("orders", is_event=True)
    other_event = store.add("billing", is_event=True)

    await _engine(store, adapter, topic_filter=["orders"]).run_cycle()

    assert adapter.sent_ids == [wanted, event]
    assert store.row(other)["processed"] is False
    assert other_event not in adapter.sent_ids


async def test_explicit_meta_is_stored(store):
    row_id = store.add()

    async def handler(message, ctx):
        return HandlerResult(value={"ok": 1}, meta={"trace": "abc"})

    await _engine(store, SerialAdapter(handler, diagnostics=False)).run_cycle()

    assert store.row(row_id)["meta"] == {"trace": "abc"}
    assert store.row(row_id)["response"] == {"ok": 1}


async def test_diagnostics_meta_is_stored(store):
    row_id = store.add()

    async def handler(message, ctx):
        return HandlerResult(value=None, meta={"trace": "abc"})

    await _engine(store, SerialAdapter(handler)).run_cycle()

    meta = store.row(row_id)["meta"]
    assert meta["trace"] == "abc"
    assert set(meta[DIAGNOSTICS_META_KEY]) == {
        "time", "loop_lag", "before_memory", "after_memory", "uptime",
    }


async def test_adapter_exception_terminalises_commands(store):
    command = store.add()
    event = store.add(is_event=True)
    adapter = RecordingAdapter(send_error=RuntimeError("adapter exploded"))
    cursor = EventCursor()
    engine = TransferEngine(store.uow, adapter, OutboxOptions(), cursor)

    with pytest.raises(RuntimeError, match="adapter exploded"):
        await engine.run_cycle()

    row = store.row(command)
    assert row["processed"] is True
    assert "RuntimeError: adapter exploded" in row["error"]
    assert store.row(event)["processed"] is False
    assert cursor.last_event_id == 0
    assert adapter.handled == []
    assert store.locks == {}


async def test_result_count_mismatch_is_a_contract_error(store):
    row_id = store.add()
    store.add()

    class ShortAdapter(RecordingAdapter):
        async def send(self, messages):
            await super().send(messages)
            return [Fulfilled(value={})]

    with pytest.raises(AdapterContractError):
        await _engine(store, ShortAdapter()).run_cycle()

    assert "AdapterContractError" in store.row(row_id)["error"]


async def test_lock_contention_ends_cycle_quietly(store, adapter):
    row_id = store.add()
    other = store.uow()
    await other.outbox.fetch_commands(10)

    assert await _engine(store, adapter).run_cycle() == []
    assert adapter.batches == []
    assert store.row(row_id)["processed"] is False

    await other.rollback()
    await _engine(store, adapter).run_cycle()
    assert store.row(row_id)["processed"] is True


async def test_concurrency_skips_locked_rows(store, adapter):
    locked = store.add()
    free = store.add()
    other = store.uow()
    await other.outbox.fetch_commands(1)

    await _engine(store, adapter, concurrency=True).run_cycle()

    assert adapter.sent_ids == [free]
    assert store.row(locked)["processed"] is False
    assert store.row(free)["processed"] is True


async def test_on_handled_runs_after_commit(store, adapter):
    row_id = store.add()

    await _engine(store, adapter).run_cycle()

    assert [[m.id for m in batch] for batch in adapter.handled] == [[row_id]]


async def test_on_handled_failure_does_not_change_outcome(store):
    row_id = store.add()
    adapter = RecordingAdapter(handled_error=RuntimeError("hook failed"))

    dispatched = await _engine(store, adapter).run_cycle()

    assert [m.id for m in dispatched] == [row_id]
    assert store.row(row_id)["processed"] is True
    assert store.row(row_id)["error"] is None


async def test_save_failure_rolls_back_and_marks_failed(store, adapter):
    row_id = store.add()
    store.fail("save_outcomes", ConnectionResetError("connection lost"))

    with pytest.raises(ConnectionResetError):
        await _engine(store, adapter).run_cycle()

    row = store.row(row_id)
    assert row["processed"] is True
    assert row["response"] is None
    assert "ConnectionResetError" in row["error"]


async def test_failed_terminalisation_still_reraises(store, adapter):
    row_id = store.add()
    adapter.send_error = RuntimeError("adapter exploded")
    store.fail("mark_failed", ConnectionResetError("db gone"))

    with pytest.raises(RuntimeError, match="adapter exploded"):
        await _engine(store, adapter).run_cycle()

    assert store.row(row_id)["processed"] is False


async def test_handler_rejection_is_stored_as_approved_error(store):
    row_id = store.add()

    async def handler(message, ctx):
        raise HandlerRejection("duplicate", error="already delivered", approved=True, meta={"dedup": True})

    await _engine(store, SerialAdapter(handler, diagnostics=False)).run_cycle()

    row = store.row(row_id)
    assert row["processed"] is True
    assert row["response"] is None
    assert row["error"] == "already delivered"
    assert row["error_approved"] is True
    assert row["meta"] == {"dedup": True}


async def test_event_fetch_failure_marks_locked_commands_failed(store, adapter):
    command_id = store.add()
    event_id = store.add(is_event=True)
    store.fail("fetch_events", ConnectionResetError("connection lost"))

    with pytest.raises(ConnectionResetError):
        await _engine(store, adapter).run_cycle()

    assert adapter.batches == []
    assert store.row(command_id)["processed"] is True
    assert "ConnectionResetError" in store.row(command_id)["error"]
    assert store.row(event_id)["processed"] is False
    assert store.locks == {}
