from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from trx_outbox.domain.entities.outbox_message import OutboxMessage
from trx_outbox.domain.value_objects.settle import SettleResult


class DispatchAdapter(Protocol):
    """Delivers fetched rows to the outside world.

    ``send`` must return exactly one result per row, in the same order.
    ``on_handled`` runs after the cycle committed; its failures are logged
    and never change stored outcomes.
    """

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def send(self, messages: Sequence[OutboxMessage]) -> list[SettleResult]: ...

    async def on_handled(self, messages: Sequence[OutboxMessage]) -> None: ...
