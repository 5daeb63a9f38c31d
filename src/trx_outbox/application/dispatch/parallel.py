from __future__ import annotations

import asyncio
from collections.abc import Sequence

from trx_outbox.application.dispatch.base import HandlerAdapter
from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.domain.value_objects.settle import SettleResult


class ParallelAdapter(HandlerAdapter):
    """All rows at once. Completion order is arbitrary; result order is not."""

    async def send(self, messages: Sequence[OutboxMessage]) -> list[SettleResult]:
        return list(await asyncio.gather(*(self._settle(m) for m in messages)))
