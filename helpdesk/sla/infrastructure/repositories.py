"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. SLA flag writes are single conditional
UPDATE statements; a zero rowcount means the row changed or vanished
since it was read.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import Priority, TicketStatus
from helpdesk.core import (
    ConcurrentUpdateException,
    RepositoryException,
    ResourceNotFoundException,
)
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.application.services import ISLAHistoryRepository, ITicketRepository
from helpdesk.sla.domain import SLAFlags, SLAHistoryEntry, Ticket, as_utc
from helpdesk.sla.infrastructure.models import SLAHistoryModel, TicketModel

logger = get_logger(__name__)


def _to_ticket(model: TicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        title=model.title,
        priority=model.priority,
        status=model.status,
        created_at=model.created_at,
        assignee_email=model.assignee_email,
        sla_breached=model.sla_breached,
        sla_notified=model.sla_notified,
    )


def _to_history_entry(model: SLAHistoryModel) -> SLAHistoryEntry:
    return SLAHistoryEntry(
        id=model.id,
        ticket_id=model.ticket_id,
        breached_at=model.breached_at,
        notified_at=model.notified_at,
        resolved_at=model.resolved_at,
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Reads ticket snapshots and writes only the SLA flags.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _list(self, stmt, query_name: str) -> List[Ticket]:
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to query {query_name}",
                {"query": query_name, "error": str(e)}
            ) from e

        tickets = []
        for model in result.scalars().all():
            try:
                tickets.append(_to_ticket(model))
            except ValueError as e:
                # Row written outside the monitor with inconsistent flags
                logger.error(
                    "Skipping ticket with invalid SLA flags",
                    extra={
                        "ticket_id": model.id,
                        "query": query_name,
                        "sla_breached": model.sla_breached,
                        "sla_notified": model.sla_notified,
                        "error": str(e)
                    }
                )
        return tickets

    async def get_by_id(self, ticket_id: int) -> Optional[Ticket]:
        """Get ticket by ID."""
        try:
            model = await self._session.get(TicketModel, ticket_id, populate_existing=True)
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to load ticket {ticket_id}",
                {"ticket_id": ticket_id, "error": str(e)}
            ) from e
        return _to_ticket(model) if model else None

    async def list_breach_candidates(self) -> List[Ticket]:
        stmt = (
            select(TicketModel)
            .where(
                TicketModel.priority == Priority.HIGH,
                TicketModel.status != TicketStatus.CLOSED,
                TicketModel.sla_breached.is_(False),
            )
            .order_by(TicketModel.created_at, TicketModel.id)
        )
        return await self._list(stmt, "breach candidates")

    async def list_pending_notifications(self) -> List[Ticket]:
        stmt = (
            select(TicketModel)
            .where(
                TicketModel.sla_breached.is_(True),
                TicketModel.sla_notified.is_(False),
            )
            .order_by(TicketModel.created_at, TicketModel.id)
        )
        return await self._list(stmt, "pending notifications")

    async def list_breached_open(self) -> List[Ticket]:
        stmt = (
            select(TicketModel)
            .where(
                TicketModel.sla_breached.is_(True),
                TicketModel.status != TicketStatus.CLOSED,
            )
            .order_by(TicketModel.created_at, TicketModel.id)
        )
        return await self._list(stmt, "breached tickets")

    async def update_sla_flags(
        self,
        ticket_id: int,
        new: SLAFlags,
        expected: Optional[SLAFlags] = None,
        require_open: bool = False
    ) -> None:
        conditions = [TicketModel.id == ticket_id]
        if expected is not None:
            conditions.append(TicketModel.sla_breached.is_(expected.breached))
            conditions.append(TicketModel.sla_notified.is_(expected.notified))
        if require_open:
            conditions.append(TicketModel.status != TicketStatus.CLOSED)

        stmt = (
            update(TicketModel)
            .where(*conditions)
            .values(sla_breached=new.breached, sla_notified=new.notified)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount == 1:
            return

        exists = await self._session.execute(
            select(TicketModel.id).where(TicketModel.id == ticket_id)
        )
        if exists.scalar_one_or_none() is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        raise ConcurrentUpdateException("Ticket", ticket_id)


class SQLAlchemySLAHistoryRepository(ISLAHistoryRepository):
    """
    SQLAlchemy implementation of SLA history repository.

    One row per breach cycle; rows are only ever appended or completed.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _latest_model(self, ticket_id: int) -> Optional[SLAHistoryModel]:
        stmt = (
            select(SLAHistoryModel)
            .where(SLAHistoryModel.ticket_id == ticket_id)
            .order_by(SLAHistoryModel.breached_at.desc(), SLAHistoryModel.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def record_breach(self, ticket_id: int, breached_at: datetime) -> SLAHistoryEntry:
        model = SLAHistoryModel(ticket_id=ticket_id, breached_at=breached_at)
        self._session.add(model)
        await self._session.flush()
        return _to_history_entry(model)

    async def record_notification(self, ticket_id: int, notified_at: datetime) -> Optional[SLAHistoryEntry]:
        model = await self._latest_model(ticket_id)
        if model is None or model.resolved_at is not None:
            return None

        # Never earlier than the breach it reports
        breached_at = as_utc(model.breached_at)
        model.notified_at = max(as_utc(notified_at), breached_at)
        await self._session.flush()
        return _to_history_entry(model)

    async def record_resolution(self, ticket_id: int, resolved_at: datetime) -> Optional[SLAHistoryEntry]:
        model = await self._latest_model(ticket_id)
        if model is None or model.resolved_at is not None:
            return None

        model.resolved_at = max(as_utc(resolved_at), as_utc(model.breached_at))
        await self._session.flush()
        return _to_history_entry(model)

    async def latest_for_ticket(self, ticket_id: int) -> Optional[SLAHistoryEntry]:
        model = await self._latest_model(ticket_id)
        return _to_history_entry(model) if model else None

    async def list_for_ticket(self, ticket_id: int) -> List[SLAHistoryEntry]:
        stmt = (
            select(SLAHistoryModel)
            .where(SLAHistoryModel.ticket_id == ticket_id)
            .order_by(SLAHistoryModel.breached_at.desc(), SLAHistoryModel.id.desc())
        )
        result = await self._session.execute(stmt)
        return [_to_history_entry(model) for model in result.scalars().all()]
