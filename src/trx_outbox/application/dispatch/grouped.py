from __future__ import annotations

import asyncio
from collections.abc import Sequence

from trx_outbox.application.dispatch.base import HandlerAdapter
from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.domain.value_objects.settle import SettleResult


class GroupedAdapter(HandlerAdapter):
    """Rows sharing a key run serially in id order; different keys run concurrently."""

    async def send(self, messages: Sequence[OutboxMessage]) -> list[SettleResult]:
        groups: dict[str | None, list[int]] = {}
        for index, message in enumerate(messages):
            groups.setdefault(message.key, []).append(index)

        results: list[SettleResult | None] = [None] * len(messages)

        async def run_group(indexes: list[int]) -> None:
            for index in indexes:
                results[index] = await self._settle(messages[index])

        await asyncio.gather(*(run_group(ix) for ix in groups.values()))
        return [r for r in results if r is not None]
