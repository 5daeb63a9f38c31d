from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from trx_outbox.domain.value_objects.enums import TriggerState


class TriggerResponse(BaseModel):
    started: bool
    state: TriggerState


class CursorResponse(BaseModel):
    last_event_id: int
    state: TriggerState
    cycles: int
    pending_waiters: int


class MessageResponse(BaseModel):
    id: int
    response: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    detail: str
    message_id: int | None = None
