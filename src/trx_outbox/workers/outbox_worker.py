"""Outbox worker: drains the outbox table into Redis Streams until signalled."""
from __future__ import annotations

import asyncio
import logging
import signal

import redis.asyncio as aioredis

from trx_outbox.config import settings
from trx_outbox.infrastructure.adapters.redis_streams import RedisStreamAdapter
from trx_outbox.services.outbox import Outbox

logger = logging.getLogger(__name__)


async def run_outbox_worker() -> None:
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    adapter = RedisStreamAdapter(
        redis,
        stream_prefix=settings.REDIS_STREAM_PREFIX,
        maxlen=settings.REDIS_STREAM_MAXLEN,
    )
    outbox = Outbox.from_settings(adapter, settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info(
        "Outbox worker starting (table=%s, mode=%s, poll=%dms, limit=%d)",
        outbox.options.table_name,
        outbox.options.mode,
        outbox.options.poll_interval_ms,
        outbox.options.limit,
    )

    try:
        async with outbox:
            outbox.trigger_manual_fetch()
            await stop.wait()
            logger.info("Shutdown requested, waiting for the running cycle")
    finally:
        await redis.aclose()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_outbox_worker())


if __name__ == "__main__":
    main()
