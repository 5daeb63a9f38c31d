"""Outbox table model and the resolver for renamed or partitioned copies."""
from trx_outbox.infrastructure.db.models.outbox import OutboxMessageModel, resolve_table

__all__ = [
    "OutboxMessageModel",
    "resolve_table",
]
