from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.repository import (
    ReservationRepository, ComponentRepository, StockRepository, CaseLineRepository,
)


class SqlAlchemyUnitOfWork:
    """
    One transaction per lifecycle operation.

    Leaving the block normally commits; any exception rolls back every row
    touched inside it, so a half-applied transition is never persisted.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self.session_factory()
        self._transaction = await self.session.begin()
        self.reservations = ReservationRepository(self.session)
        self.components = ComponentRepository(self.session)
        self.stocks = StockRepository(self.session)
        self.case_lines = CaseLineRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                await self._transaction.commit()
            else:
                await self._transaction.rollback()
        finally:
            await self.session.close()

    async def flush(self) -> None:
        await self.session.flush()
