from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, Boolean, Float, Index, MetaData, SmallInteger, Table, Text, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from trx_outbox.infrastructure.db.base import Base


class OutboxMessageModel(Base):
    __tablename__ = "pg_trx_outbox"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    processed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    since_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    key: Mapped[str | None] = mapped_column(Text, nullable=True)
    value: Mapped[Any] = mapped_column(JSONB(none_as_null=True), nullable=True)
    partition: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    headers: Mapped[dict[str, str] | None] = mapped_column(JSONB(none_as_null=True), nullable=True)
    response: Mapped[dict[str, Any] | None] = mapped_column(JSONB(none_as_null=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSONB(none_as_null=True), nullable=True)
    context_id: Mapped[float] = mapped_column(
        Float(precision=53), nullable=False, server_default=text("random()"),
    )
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, server_default=text("0"),
    )
    is_event: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false"),
    )
    error_approved: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false"),
    )

    __table_args__ = (
        Index(
            "ix_pg_trx_outbox_pending",
            "id",
            postgresql_where=text("NOT processed AND NOT is_event"),
        ),
        Index("ix_pg_trx_outbox_events", "id", postgresql_where=text("is_event")),
    )


_aliases = MetaData()


def resolve_table(name: str) -> Table:
    """Table object for ``name``: the mapped table or a same-shaped copy.

    Partitions (``pg_trx_outbox_0`` ...) and renamed outbox tables share the
    column layout of ``OutboxMessageModel``.
    """
    base: Table = OutboxMessageModel.__table__  # type: ignore[assignment]
    if name == base.name:
        return base
    if name in _aliases.tables:
        return _aliases.tables[name]
    copy = base.to_metadata(_aliases, name=name)
    for index in copy.indexes:
        if index.name:
            index.name = index.name.replace(base.name, name, 1)
    return copy
