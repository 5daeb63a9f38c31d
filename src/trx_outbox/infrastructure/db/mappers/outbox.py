from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from trx_outbox.domain.entities.outbox_message import OutboxMessage, SettledMessage


def row_to_entity(row: Mapping[str, Any]) -> OutboxMessage:
    return OutboxMessage(
        id=row["id"],
        topic=row["topic"],
        key=row["key"],
        value=row["value"],
        headers=row["headers"],
        processed=row["processed"],
        is_event=row["is_event"],
        attempts=row["attempts"],
        context_id=row["context_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        since_at=row["since_at"],
        partition=row["partition"],
        timestamp=row["timestamp"],
        response=row["response"],
        error=row["error"],
        error_approved=row["error_approved"],
        meta=row["meta"],
    )


def row_to_settled(row: Mapping[str, Any]) -> SettledMessage:
    return SettledMessage(
        id=row["id"],
        response=row["response"],
        error=row["error"],
    )
