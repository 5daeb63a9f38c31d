from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from trx_outbox.domain.value_objects.enums import TriggerEvent

TriggerFn = Callable[[TriggerEvent], object]


class TriggerSource(Protocol):
    """Something that wakes the coordinator up: timer, LISTEN channel, replication slot."""

    async def start(self, trigger: TriggerFn) -> None: ...

    async def stop(self) -> None: ...
