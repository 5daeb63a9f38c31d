"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from trx_outbox.services.outbox import Outbox


def get_outbox(request: Request) -> Outbox:
    outbox: Outbox | None = getattr(request.app.state, "outbox", None)
    if outbox is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Outbox is not running",
        )
    return outbox


OutboxDep = Annotated[Outbox, Depends(get_outbox)]
