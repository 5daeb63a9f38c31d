from __future__ import annotations

from collections.abc import Callable
from types import TracebackType
from typing import Self

from sqlalchemy import Table
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trx_outbox.infrastructure.db.models.outbox import resolve_table
from trx_outbox.infrastructure.db.repositories.outbox import OutboxRepo


class SqlAlchemyUoW:
    """Concrete Unit-of-Work backed by a single AsyncSession.

    The transaction begins with the first statement; leaving the block rolls
    back anything uncommitted and returns the connection to the pool.
    """

    def __init__(self, session: AsyncSession, table: Table | str = "pg_trx_outbox") -> None:
        self._session = session
        self.outbox = OutboxRepo(session, table)

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is not None:
                await self.rollback()
        finally:
            await self._session.close()


def make_uow_factory(
    session_factory: async_sessionmaker[AsyncSession],
    table_name: str,
) -> Callable[[], SqlAlchemyUoW]:
    table = resolve_table(table_name)

    def factory() -> SqlAlchemyUoW:
        return SqlAlchemyUoW(session_factory(), table)

    return factory
