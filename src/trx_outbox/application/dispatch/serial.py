from __future__ import annotations

from collections.abc import Sequence

from trx_outbox.application.dispatch.base import HandlerAdapter
from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.domain.value_objects.settle import SettleResult


class SerialAdapter(HandlerAdapter):
    """One row at a time, in id order. Strict ordering across all keys."""

    async def send(self, messages: Sequence[OutboxMessage]) -> list[SettleResult]:
        results: list[SettleResult] = []
        for message in messages:
            results.append(await self._settle(message))
        return results
