from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class OutboxMessage:
    """One outbox row as seen by the engine and the dispatch adapters."""

    id: int
    topic: str
    key: str | None
    value: Any
    headers: dict[str, str] | None
    processed: bool
    is_event: bool
    attempts: int
    context_id: float
    created_at: datetime
    updated_at: datetime
    since_at: datetime | None = None
    partition: int | None = None
    timestamp: int | None = None
    response: dict[str, Any] | None = None
    error: str | None = None
    error_approved: bool = False
    meta: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class SettledMessage:
    """Terminal state of a command row, as read by the responder."""

    id: int
    response: dict[str, Any] | None
    error: str | None
