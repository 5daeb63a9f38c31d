"""Redis Streams dispatch adapter: every row becomes one XADD entry."""
from __future__ import annotations

import logging
from collections.abc import Sequence

import redis.asyncio as aioredis

from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.domain.value_objects.settle import Fulfilled, Rejected, SettleResult
from trx_outbox.infrastructure.bus.serializer import serialize_message

logger = logging.getLogger(__name__)


class RedisStreamAdapter:
    """Implements application.ports.adapter.DispatchAdapter.

    Rows go to stream ``<prefix><topic>`` in a single non-transactional
    pipeline. A row whose XADD failed is rejected on its own; a failure of
    the whole round trip rejects every row of the batch.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        stream_prefix: str = "",
        maxlen: int | None = None,
        owns_client: bool = False,
    ) -> None:
        self._redis = redis
        self._prefix = stream_prefix
        self._maxlen = maxlen
        self._owns_client = owns_client

    async def start(self) -> None:
        await self._redis.ping()
        logger.info("Redis stream adapter ready (prefix=%r)", self._prefix)

    async def stop(self) -> None:
        if self._owns_client:
            await self._redis.aclose()
            logger.info("Redis connection pool closed")

    def stream_for(self, message: OutboxMessage) -> str:
        return f"{self._prefix}{message.topic}"

    async def send(self, messages: Sequence[OutboxMessage]) -> list[SettleResult]:
        if not messages:
            return []
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                for message in messages:
                    pipe.xadd(
                        self.stream_for(message),
                        serialize_message(message),
                        maxlen=self._maxlen,
                        approximate=True,
                    )
                replies = await pipe.execute(raise_on_error=False)
        except Exception as exc:
            logger.warning("Redis pipeline failed for %d outbox messages: %s", len(messages), exc)
            return [Rejected(reason=exc) for _ in messages]

        results: list[SettleResult] = []
        for reply in replies:
            if isinstance(reply, Exception):
                results.append(Rejected(reason=reply))
            else:
                results.append(Fulfilled(value={"stream_id": _decode(reply)}))
        return results

    async def on_handled(self, messages: Sequence[OutboxMessage]) -> None:
        return None


def _decode(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return value
