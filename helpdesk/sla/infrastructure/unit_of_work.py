"""
SLA Unit of Work
================

Groups the ticket, history and notification repositories behind a single
session so that a transition commits or rolls back as a whole.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk.notifications.repositories import SQLAlchemyNotificationRepository
from helpdesk.sla.application.services import ISLAUnitOfWork
from helpdesk.sla.infrastructure.repositories import (
    SQLAlchemySLAHistoryRepository,
    SQLAlchemyTicketRepository,
)


class SQLAlchemyUnitOfWork(ISLAUnitOfWork):
    """
    One session, one transaction.

    Usage:
        async with SQLAlchemyUnitOfWork(session_maker) as uow:
            await uow.tickets.update_sla_flags(...)
            await uow.history.record_breach(...)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self._session = self._session_factory()
        self.tickets = SQLAlchemyTicketRepository(self._session)
        self.history = SQLAlchemySLAHistoryRepository(self._session)
        self.notifications = SQLAlchemyNotificationRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                await self._session.commit()
            else:
                await self._session.rollback()
        finally:
            await self._session.close()
            self._session = None
