"""Kafka dispatch adapter (aiokafka)."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.domain.value_objects.settle import Fulfilled, Rejected, SettleResult
from trx_outbox.infrastructure.bus.serializer import serialize_value

logger = logging.getLogger(__name__)

CLIENT_ID = "pg_trx_outbox"


def _require_aiokafka() -> Any:
    try:
        import aiokafka  # type: ignore[import-untyped]
        return aiokafka
    except ImportError as exc:
        raise ImportError("Install 'trx-outbox[kafka]' to use the Kafka adapter") from exc


class KafkaAdapter:
    """Publishes each row to its ``topic``; the batch succeeds or fails as a whole.

    Per-row response is the record metadata:
    ``{"topic", "partition", "offset", "timestamp"}``.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        *,
        acks: int | str = "all",
        request_timeout_ms: int = 30000,
        **producer_kwargs: Any,
    ) -> None:
        aiokafka = _require_aiokafka()
        producer_kwargs.setdefault("client_id", CLIENT_ID)
        self._producer = aiokafka.AIOKafkaProducer(
            bootstrap_servers=bootstrap_servers,
            acks=acks,
            request_timeout_ms=request_timeout_ms,
            **producer_kwargs,
        )

    async def start(self) -> None:
        await self._producer.start()
        logger.info("Kafka producer started")

    async def stop(self) -> None:
        await self._producer.stop()
        logger.info("Kafka producer stopped")

    async def send(self, messages: Sequence[OutboxMessage]) -> list[SettleResult]:
        try:
            pending = [await self._producer.send(**_record(m)) for m in messages]
            metadata = await asyncio.gather(*pending)
        except Exception as exc:
            logger.warning("Kafka batch of %d outbox messages failed: %s", len(messages), exc)
            return [Rejected(reason=exc) for _ in messages]

        return [
            Fulfilled(
                value={
                    "topic": md.topic,
                    "partition": md.partition,
                    "offset": md.offset,
                    "timestamp": md.timestamp,
                }
            )
            for md in metadata
        ]

    async def on_handled(self, messages: Sequence[OutboxMessage]) -> None:
        return None


def _record(message: OutboxMessage) -> dict[str, Any]:
    headers = [(k, str(v).encode()) for k, v in (message.headers or {}).items()]
    return {
        "topic": message.topic,
        "value": serialize_value(message.value).encode(),
        "key": message.key.encode() if message.key is not None else None,
        "partition": message.partition,
        "timestamp_ms": message.timestamp,
        "headers": headers,
    }
