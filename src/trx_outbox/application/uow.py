from __future__ import annotations

from collections.abc import Callable
from types import TracebackType
from typing import Protocol, Self

from trx_outbox.application.repositories.outbox import OutboxRepository


class UnitOfWork(Protocol):
    """One database transaction. Leaving the block releases the connection."""

    outbox: OutboxRepository

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...

    async def __aenter__(self) -> Self: ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None: ...


UnitOfWorkFactory = Callable[[], UnitOfWork]
