from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Query, status

from trx_outbox.api.deps import OutboxDep
from trx_outbox.api.v1.schemas.outbox import (
    CursorResponse,
    ErrorResponse,
    MessageResponse,
    TriggerResponse,
)

router = APIRouter(prefix="/api/v1/outbox", tags=["outbox"])


@router.post("/trigger", response_model=TriggerResponse, status_code=202)
async def trigger(outbox: OutboxDep) -> TriggerResponse:
    started = outbox.trigger_manual_fetch()
    return TriggerResponse(started=started, state=outbox.coordinator_state)


@router.get("/cursor", response_model=CursorResponse)
async def cursor(outbox: OutboxDep) -> CursorResponse:
    return CursorResponse(
        last_event_id=outbox.get_last_event_id(),
        state=outbox.coordinator_state,
        cycles=outbox.coordinator.cycles,
        pending_waiters=outbox.responder.pending,
    )


@router.get(
    "/messages/{message_id}/response",
    response_model=MessageResponse,
    responses={409: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)
async def wait_response(
    message_id: int,
    outbox: OutboxDep,
    key: str | None = Query(None),
    timeout: float = Query(30.0, gt=0, le=300),
) -> MessageResponse:
    try:
        response = await asyncio.wait_for(outbox.wait_for(message_id, key), timeout)
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=f"Message {message_id} was not processed within {timeout}s",
        ) from exc
    return MessageResponse(id=message_id, response=response)
