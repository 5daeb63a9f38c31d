from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import Table, func, insert, or_, select, text, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from trx_outbox.application.exceptions import LockNotAvailableError
from trx_outbox.application.repositories.outbox import OutboxOutcome
from trx_outbox.domain.entities.outbox_message import OutboxMessage, SettledMessage
from trx_outbox.infrastructure.bus.serializer import JsonEncoder
from trx_outbox.infrastructure.db.mappers import outbox as mapper
from trx_outbox.infrastructure.db.models.outbox import resolve_table

LOCK_NOT_AVAILABLE = "55P03"

# One statement per cycle: outcomes travel as parallel arrays and are joined
# back to the rows with unnest().
_SAVE_OUTCOMES = """
UPDATE {table} AS t SET
    processed = NOT u.retry,
    response = CAST(u.response AS jsonb),
    error = CASE
        WHEN u.error IS NOT NULL THEN u.error
        WHEN u.succeeded AND :clear_error THEN NULL
        ELSE t.error
    END,
    meta = COALESCE(CAST(u.meta AS jsonb), t.meta),
    error_approved = u.error_approved,
    attempts = CASE WHEN u.retry THEN t.attempts + 1 ELSE t.attempts END,
    since_at = CASE
        WHEN u.retry THEN now() + make_interval(secs => :retry_delay)
        ELSE t.since_at
    END,
    updated_at = now()
FROM unnest(
    CAST(:ids AS bigint[]),
    CAST(:responses AS text[]),
    CAST(:errors AS text[]),
    CAST(:metas AS text[]),
    CAST(:retries AS boolean[]),
    CAST(:approved AS boolean[]),
    CAST(:succeeded AS boolean[])
) AS u(id, response, error, meta, retry, error_approved, succeeded)
WHERE t.id = u.id AND NOT t.is_event
"""


def _dump(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, cls=JsonEncoder)


def _is_lock_not_available(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE


class OutboxRepo:
    def __init__(self, session: AsyncSession, table: Table | str = "pg_trx_outbox") -> None:
        self._session = session
        self._table = resolve_table(table) if isinstance(table, str) else table

    @property
    def table(self) -> Table:
        return self._table

    async def insert(
        self,
        topic: str,
        value: Any,
        *,
        key: str | None = None,
        headers: dict[str, str] | None = None,
        is_event: bool = False,
        since_at: datetime | None = None,
    ) -> int:
        """Add a message inside the caller's transaction. Returns its id."""
        t = self._table
        stmt = (
            insert(t)
            .values(
                topic=topic,
                key=key,
                value=value,
                headers=headers,
                is_event=is_event,
                since_at=since_at,
            )
            .returning(t.c.id)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def fetch_commands(
        self,
        limit: int,
        *,
        topics: Sequence[str] | None = None,
        skip_locked: bool = False,
    ) -> list[OutboxMessage]:
        t = self._table
        stmt = (
            select(t)
            .where(
                t.c.processed.is_(False),
                t.c.is_event.is_(False),
                or_(t.c.since_at.is_(None), t.c.since_at <= func.now()),
            )
            .order_by(t.c.id.asc())
            .limit(limit)
        )
        if topics is not None:
            stmt = stmt.where(t.c.topic.in_(topics))
        if skip_locked:
            stmt = stmt.with_for_update(skip_locked=True)
        else:
            stmt = stmt.with_for_update(nowait=True)

        try:
            result = await self._session.execute(stmt)
        except DBAPIError as exc:
            if _is_lock_not_available(exc):
                raise LockNotAvailableError(str(exc.orig)) from exc
            raise
        return [mapper.row_to_entity(row) for row in result.mappings().all()]

    async def fetch_events(
        self,
        after_id: int,
        limit: int,
        *,
        topics: Sequence[str] | None = None,
    ) -> list[OutboxMessage]:
        t = self._table
        stmt = (
            select(t)
            .where(t.c.is_event.is_(True), t.c.id > after_id)
            .order_by(t.c.id.asc())
            .limit(limit)
        )
        if topics is not None:
            stmt = stmt.where(t.c.topic.in_(topics))
        result = await self._session.execute(stmt)
        return [mapper.row_to_entity(row) for row in result.mappings().all()]

    async def save_outcomes(
        self,
        outcomes: Sequence[OutboxOutcome],
        *,
        retry_delay_seconds: float,
        clear_error_on_success: bool = False,
    ) -> None:
        if not outcomes:
            return
        stmt = text(_SAVE_OUTCOMES.format(table=self._quoted_name()))
        await self._session.execute(
            stmt,
            {
                "ids": [o.id for o in outcomes],
                "responses": [_dump(o.response) for o in outcomes],
                "errors": [o.error for o in outcomes],
                "metas": [_dump(o.meta) for o in outcomes],
                "retries": [o.retry for o in outcomes],
                "approved": [o.error_approved for o in outcomes],
                "succeeded": [o.succeeded for o in outcomes],
                "clear_error": clear_error_on_success,
                "retry_delay": float(retry_delay_seconds),
            },
        )

    async def mark_failed(self, ids: Sequence[int], error: str) -> None:
        if not ids:
            return
        t = self._table
        stmt = (
            update(t)
            .where(
                t.c.id.in_(list(ids)),
                t.c.processed.is_(False),
                t.c.is_event.is_(False),
            )
            .values(processed=True, error=error, updated_at=func.now())
        )
        await self._session.execute(stmt)

    async def fetch_settled(
        self,
        ids: Sequence[int],
        *,
        keys: Sequence[str] | None = None,
    ) -> list[SettledMessage]:
        if not ids:
            return []
        t = self._table
        stmt = select(t.c.id, t.c.response, t.c.error).where(
            t.c.id.in_(list(ids)),
            t.c.processed.is_(True),
        )
        if keys:
            stmt = stmt.where(t.c.key.in_(list(keys)))
        result = await self._session.execute(stmt)
        return [mapper.row_to_settled(row) for row in result.mappings().all()]

    def _quoted_name(self) -> str:
        preparer = self._session.get_bind().dialect.identifier_preparer
        return preparer.format_table(self._table)
