from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from trx_outbox.api.v1.routers import health, outbox
from trx_outbox.application.exceptions import (
    MessageFailedError,
    NotStartedError,
    OutboxError,
)
from trx_outbox.config import settings
from trx_outbox.infrastructure.adapters.redis_streams import RedisStreamAdapter
from trx_outbox.services.outbox import Outbox

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    app.state.redis = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    logger.info("Redis connection pool created")

    adapter = RedisStreamAdapter(
        app.state.redis,
        stream_prefix=settings.REDIS_STREAM_PREFIX,
        maxlen=settings.REDIS_STREAM_MAXLEN,
    )
    app.state.outbox = Outbox.from_settings(adapter, settings)
    await app.state.outbox.start()

    yield

    await app.state.outbox.stop()
    await app.state.redis.aclose()
    logger.info("Redis connection pool closed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="trx-outbox",
        version="0.1.0",
        lifespan=lifespan,
    )

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(outbox.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MessageFailedError)
    async def _failed(_req: Request, exc: MessageFailedError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": exc.detail, "message_id": exc.message_id},
        )

    @app.exception_handler(NotStartedError)
    async def _not_started(_req: Request, exc: NotStartedError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.detail})

    @app.exception_handler(OutboxError)
    async def _outbox_error(_req: Request, exc: OutboxError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"detail": exc.detail})
