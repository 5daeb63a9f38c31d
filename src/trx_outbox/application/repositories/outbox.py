from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from trx_outbox.domain.entities.outbox_message import OutboxMessage, SettledMessage


@dataclass(frozen=True, slots=True)
class OutboxOutcome:
    """What the engine writes back for one command row.

    ``error=None`` keeps the stored error text as it is, unless the row
    succeeded and the store is asked to clear errors on success.
    """

    id: int
    succeeded: bool
    retry: bool
    response: dict[str, Any] | None = None
    error: str | None = None
    meta: dict[str, Any] | None = None
    error_approved: bool = False


class OutboxRepository(Protocol):
    async def insert(
        self,
        topic: str,
        value: Any,
        *,
        key: str | None = None,
        headers: dict[str, str] | None = None,
        is_event: bool = False,
        since_at: Any = None,
    ) -> int: ...

    async def fetch_commands(
        self,
        limit: int,
        *,
        topics: Sequence[str] | None = None,
        skip_locked: bool = False,
    ) -> list[OutboxMessage]: ...

    async def fetch_events(
        self,
        after_id: int,
        limit: int,
        *,
        topics: Sequence[str] | None = None,
    ) -> list[OutboxMessage]: ...

    async def save_outcomes(
        self,
        outcomes: Sequence[OutboxOutcome],
        *,
        retry_delay_seconds: float,
        clear_error_on_success: bool = False,
    ) -> None: ...

    async def mark_failed(self, ids: Sequence[int], error: str) -> None: ...

    async def fetch_settled(
        self,
        ids: Sequence[int],
        *,
        keys: Sequence[str] | None = None,
    ) -> list[SettledMessage]: ...
