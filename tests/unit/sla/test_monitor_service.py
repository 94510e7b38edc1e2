"""
Tests for the SLA monitor: scan ticks, resolution, status and warnings.

Run against an in-memory SQLite store through the real unit of work.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from helpdesk.config import NotificationType, Priority, SLAState, TicketStatus
from helpdesk.core import (
    RepositoryException,
    ResourceNotFoundException,
    ValidationException,
)
from helpdesk.notifications.models import NotificationModel
from helpdesk.sla.infrastructure.repositories import SQLAlchemyTicketRepository
from tests.factories import (
    T0,
    create_ticket,
    delete_ticket,
    load_history,
    load_ticket,
    set_ticket_status,
)


async def load_notifications(session_maker):
    async with session_maker() as session:
        result = await session.execute(select(NotificationModel).order_by(NotificationModel.id))
        return list(result.scalars().all())


class TestScenario:
    """High priority ticket with a one minute SLA, created at T0."""

    @pytest.mark.asyncio
    async def test_breach_then_notify_on_following_tick(
        self, monitor, session_maker, clock, dispatcher, recording_channel
    ):
        ticket_id = await create_ticket(session_maker)

        clock.advance(seconds=30)
        status = await monitor.get_sla_status(ticket_id)
        assert status.state == SLAState.ACTIVE
        assert status.remaining > timedelta(0)

        clock.advance(seconds=31)
        report = await monitor.run_scan_once()
        assert report.breached == [ticket_id]
        assert report.notified == []

        ticket = await load_ticket(session_maker, ticket_id)
        assert ticket.sla_breached is True
        assert ticket.sla_notified is False

        history = await load_history(session_maker, ticket_id)
        assert len(history) == 1
        assert history[0].breached_at.replace(tzinfo=None) == (T0 + timedelta(seconds=61)).replace(tzinfo=None)
        assert history[0].notified_at is None

        status = await monitor.get_sla_status(ticket_id)
        assert status.state == SLAState.BREACHED
        assert status.breached

        await dispatcher.drain()
        assert recording_channel.delivered == []

        clock.advance(seconds=30)
        report = await monitor.run_scan_once()
        assert report.notified == [ticket_id]
        assert report.breached == []

        ticket = await load_ticket(session_maker, ticket_id)
        assert ticket.sla_notified is True

        history = await load_history(session_maker, ticket_id)
        assert len(history) == 1
        assert history[0].notified_at is not None
        assert history[0].notified_at >= history[0].breached_at

        await dispatcher.drain()
        assert len(recording_channel.delivered) == 1
        notification = recording_channel.delivered[0]
        assert notification.recipient == "agent@example.com"
        assert notification.ticket_id == ticket_id
        assert notification.type == NotificationType.SLA_BREACH

        notifications = await load_notifications(session_maker)
        assert len(notifications) == 1

    @pytest.mark.asyncio
    async def test_further_ticks_do_nothing(self, monitor, session_maker, clock, dispatcher, recording_channel):
        ticket_id = await create_ticket(session_maker)

        for _ in range(4):
            clock.advance(minutes=1)
            await monitor.run_scan_once()

        await dispatcher.drain()
        assert len(await load_history(session_maker, ticket_id)) == 1
        assert len(recording_channel.delivered) == 1
        assert len(await load_notifications(session_maker)) == 1


class TestScanInvariants:
    @pytest.mark.asyncio
    async def test_double_scan_is_idempotent(self, monitor, session_maker, clock, dispatcher, recording_channel):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)

        first = await monitor.run_scan_once()
        second = await monitor.run_scan_once()
        third = await monitor.run_scan_once()
        fourth = await monitor.run_scan_once()

        assert first.breached == [ticket_id]
        assert second.breached == []
        assert len(await load_history(session_maker, ticket_id)) == 1

        # The breach read by the first tick is notified by the second, once
        assert first.notified == []
        assert second.notified == [ticket_id]
        assert third.notified == []
        assert fourth.notified == []

        await dispatcher.drain()
        assert len(recording_channel.delivered) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("priority", [Priority.MEDIUM, Priority.LOW])
    async def test_non_high_priority_never_breaches(self, monitor, session_maker, clock, priority):
        ticket_id = await create_ticket(session_maker, priority=priority)
        clock.advance(days=30)

        report = await monitor.run_scan_once()

        assert report.breach_candidates == 0
        ticket = await load_ticket(session_maker, ticket_id)
        assert ticket.sla_breached is False
        assert await load_history(session_maker, ticket_id) == []

    @pytest.mark.asyncio
    async def test_closed_before_scan_never_breaches(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        await set_ticket_status(session_maker, ticket_id, TicketStatus.CLOSED)
        clock.advance(minutes=5)

        await monitor.run_scan_once()

        ticket = await load_ticket(session_maker, ticket_id)
        assert ticket.sla_breached is False
        assert await load_history(session_maker, ticket_id) == []

    @pytest.mark.asyncio
    async def test_not_due_ticket_is_untouched(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        clock.advance(seconds=59)

        report = await monitor.run_scan_once()

        assert report.breach_candidates == 1
        assert report.breached == []
        assert (await load_ticket(session_maker, ticket_id)).sla_breached is False

    @pytest.mark.asyncio
    async def test_closed_after_breach_is_not_notified(
        self, monitor, session_maker, clock, dispatcher, recording_channel
    ):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)
        await monitor.run_scan_once()

        await set_ticket_status(session_maker, ticket_id, TicketStatus.CLOSED)
        report = await monitor.run_scan_once()

        assert report.notified == []
        await dispatcher.drain()
        assert recording_channel.delivered == []

    @pytest.mark.asyncio
    async def test_ticket_without_assignee_is_marked_notified(
        self, monitor, session_maker, clock, dispatcher, recording_channel
    ):
        ticket_id = await create_ticket(session_maker, assignee_email=None)
        clock.advance(minutes=2)

        await monitor.run_scan_once()
        report = await monitor.run_scan_once()

        assert report.notified == [ticket_id]
        assert (await load_ticket(session_maker, ticket_id)).sla_notified is True
        assert (await load_history(session_maker, ticket_id))[0].notified_at is not None
        await dispatcher.drain()
        assert recording_channel.delivered == []
        assert await load_notifications(session_maker) == []

    @pytest.mark.asyncio
    async def test_uses_one_timestamp_per_tick(self, monitor, session_maker, clock):
        first = await create_ticket(session_maker)
        second = await create_ticket(session_maker, created_at=T0 + timedelta(seconds=10))
        clock.advance(minutes=5)

        await monitor.run_scan_once()

        breached_at = {
            (await load_history(session_maker, ticket_id))[0].breached_at
            for ticket_id in (first, second)
        }
        assert len(breached_at) == 1


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_one_failing_ticket_does_not_stop_the_others(self, monitor, session_maker, clock):
        failing = await create_ticket(session_maker, title="first")
        healthy = await create_ticket(session_maker, title="second", created_at=T0 + timedelta(seconds=1))
        clock.advance(minutes=2)

        original = SQLAlchemyTicketRepository.update_sla_flags

        async def flaky_update(self, ticket_id, new, expected=None, require_open=False):
            if ticket_id == failing:
                raise RuntimeError("disk on fire")
            return await original(self, ticket_id, new, expected=expected, require_open=require_open)

        with patch.object(SQLAlchemyTicketRepository, "update_sla_flags", flaky_update):
            report = await monitor.run_scan_once()

        assert report.errors == 1
        assert report.breached == [healthy]
        assert (await load_ticket(session_maker, failing)).sla_breached is False
        assert await load_history(session_maker, failing) == []

        # Retried on the next tick
        report = await monitor.run_scan_once()
        assert failing in report.breached

    @pytest.mark.asyncio
    async def test_ticket_with_invalid_flags_does_not_block_the_scan(self, monitor, session_maker, clock):
        corrupt = await create_ticket(session_maker, title="corrupt", sla_breached=False, sla_notified=True)
        healthy = await create_ticket(session_maker, title="healthy", created_at=T0 + timedelta(seconds=1))
        clock.advance(minutes=2)

        report = await monitor.run_scan_once()

        assert report.breached == [healthy]
        assert report.breach_candidates == 1
        assert (await load_ticket(session_maker, healthy)).sla_breached is True
        assert await load_history(session_maker, corrupt) == []

        # Still healthy on the following tick
        report = await monitor.run_scan_once()
        assert report.notified == [healthy]

    @pytest.mark.asyncio
    async def test_failed_history_write_rolls_back_flags(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)

        with patch(
            "helpdesk.sla.infrastructure.repositories.SQLAlchemySLAHistoryRepository.record_breach",
            new=AsyncMock(side_effect=RuntimeError("history unavailable")),
        ):
            report = await monitor.run_scan_once()

        assert report.errors == 1
        assert (await load_ticket(session_maker, ticket_id)).sla_breached is False

    @pytest.mark.asyncio
    async def test_failed_delivery_keeps_ticket_notified(
        self, monitor, session_maker, clock, dispatcher, recording_channel
    ):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)
        await monitor.run_scan_once()

        recording_channel.deliver = AsyncMock(side_effect=RuntimeError("smtp down"))
        report = await monitor.run_scan_once()
        await dispatcher.drain()

        assert report.notified == [ticket_id]
        assert report.errors == 0
        assert (await load_ticket(session_maker, ticket_id)).sla_notified is True

        # At most once: no retry on later ticks
        await monitor.run_scan_once()
        await dispatcher.drain()
        assert recording_channel.deliver.await_count == 1

    @pytest.mark.asyncio
    async def test_store_failure_escalates(self, monitor, session_maker):
        with patch.object(
            SQLAlchemyTicketRepository,
            "list_breach_candidates",
            new=AsyncMock(side_effect=RepositoryException("store unreachable")),
        ):
            with pytest.raises(RepositoryException):
                await monitor.run_scan_once()

        # The lock is released for the next tick
        assert not monitor.is_scanning


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_overlapping_scan_is_skipped(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)

        first, second = await asyncio.gather(monitor.run_scan_once(), monitor.run_scan_once())

        assert first.skipped_overlap is False
        assert second.skipped_overlap is True
        assert first.breached == [ticket_id]
        assert len(await load_history(session_maker, ticket_id)) == 1

    @pytest.mark.asyncio
    async def test_close_racing_the_scan_wins(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)

        original = SQLAlchemyTicketRepository.list_breach_candidates

        async def list_then_close(self):
            candidates = await original(self)
            await set_ticket_status(session_maker, ticket_id, TicketStatus.CLOSED)
            return candidates

        with patch.object(SQLAlchemyTicketRepository, "list_breach_candidates", list_then_close):
            report = await monitor.run_scan_once()

        assert report.breached == []
        assert report.skipped == 1
        assert (await load_ticket(session_maker, ticket_id)).sla_breached is False
        assert await load_history(session_maker, ticket_id) == []

    @pytest.mark.asyncio
    async def test_deleted_ticket_is_skipped(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)

        original = SQLAlchemyTicketRepository.list_breach_candidates

        async def list_then_delete(self):
            candidates = await original(self)
            await delete_ticket(session_maker, ticket_id)
            return candidates

        with patch.object(SQLAlchemyTicketRepository, "list_breach_candidates", list_then_delete):
            report = await monitor.run_scan_once()

        assert report.skipped == 1
        assert report.errors == 0


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolution_clears_flags_and_closes_history(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)
        await monitor.run_scan_once()
        await monitor.run_scan_once()

        await set_ticket_status(session_maker, ticket_id, TicketStatus.CLOSED)
        clock.advance(minutes=1)
        entry = await monitor.resolve_sla(ticket_id)

        assert entry is not None
        assert entry.resolved_at == clock.now
        ticket = await load_ticket(session_maker, ticket_id)
        assert ticket.sla_breached is False
        assert ticket.sla_notified is False

        status = await monitor.get_sla_status(ticket_id)
        assert status.state == SLAState.RESOLVED
        assert not status.breached

    @pytest.mark.asyncio
    async def test_resolving_never_breached_ticket_only_resets_flags(self, monitor, session_maker):
        ticket_id = await create_ticket(session_maker)

        entry = await monitor.resolve_sla(ticket_id)

        assert entry is None
        assert await load_history(session_maker, ticket_id) == []

    @pytest.mark.asyncio
    async def test_resolving_twice_keeps_first_resolution(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)
        await monitor.run_scan_once()

        first = await monitor.resolve_sla(ticket_id)
        clock.advance(minutes=5)
        second = await monitor.resolve_sla(ticket_id)

        assert first.resolved_at is not None
        assert second is None
        history = await load_history(session_maker, ticket_id)
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_unknown_ticket(self, monitor):
        with pytest.raises(ResourceNotFoundException):
            await monitor.resolve_sla(999)

    @pytest.mark.asyncio
    async def test_reopened_ticket_starts_a_new_cycle(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)
        await monitor.run_scan_once()
        await monitor.run_scan_once()

        await set_ticket_status(session_maker, ticket_id, TicketStatus.CLOSED)
        await monitor.resolve_sla(ticket_id)
        await set_ticket_status(session_maker, ticket_id, TicketStatus.OPEN)

        clock.advance(minutes=1)
        report = await monitor.run_scan_once()

        assert report.breached == [ticket_id]
        entries = await monitor.get_history(ticket_id)
        assert len(entries) == 2
        assert entries[0].resolved_at is None
        assert entries[1].resolved_at is not None


class TestQueries:
    @pytest.mark.asyncio
    async def test_status_is_read_only(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=10)

        status = await monitor.get_sla_status(ticket_id)

        assert status.breached
        assert (await load_ticket(session_maker, ticket_id)).sla_breached is False

    @pytest.mark.asyncio
    async def test_status_of_unknown_ticket(self, monitor):
        with pytest.raises(ResourceNotFoundException):
            await monitor.get_sla_status(404)

    @pytest.mark.asyncio
    async def test_breached_tickets_oldest_first(self, monitor, session_maker, clock):
        newer = await create_ticket(session_maker, created_at=T0 + timedelta(seconds=30))
        older = await create_ticket(session_maker)
        closed = await create_ticket(session_maker, created_at=T0 - timedelta(minutes=1))
        clock.advance(minutes=5)
        await monitor.run_scan_once()
        await set_ticket_status(session_maker, closed, TicketStatus.CLOSED)

        tickets = await monitor.get_breached_tickets()

        assert [t.id for t in tickets] == [older, newer]

    @pytest.mark.asyncio
    async def test_history_of_unknown_ticket(self, monitor):
        with pytest.raises(ResourceNotFoundException):
            await monitor.get_history(12345)


class TestWarning:
    @pytest.mark.asyncio
    async def test_warning_is_persisted_and_delivered(
        self, monitor, session_maker, clock, dispatcher, recording_channel
    ):
        ticket_id = await create_ticket(session_maker)
        clock.advance(seconds=20)

        notification = await monitor.send_warning(ticket_id)
        await dispatcher.drain()

        assert notification.id is not None
        assert notification.type == NotificationType.SLA_WARNING
        assert recording_channel.delivered == [notification]
        assert (await load_ticket(session_maker, ticket_id)).sla_breached is False

    @pytest.mark.asyncio
    async def test_no_warning_after_deadline(self, monitor, session_maker, clock):
        ticket_id = await create_ticket(session_maker)
        clock.advance(minutes=2)

        with pytest.raises(ValidationException):
            await monitor.send_warning(ticket_id)

    @pytest.mark.asyncio
    async def test_no_warning_without_deadline(self, monitor, session_maker):
        ticket_id = await create_ticket(session_maker, priority=Priority.LOW)

        with pytest.raises(ValidationException):
            await monitor.send_warning(ticket_id)

    @pytest.mark.asyncio
    async def test_no_warning_without_assignee(self, monitor, session_maker):
        ticket_id = await create_ticket(session_maker, assignee_email=None)

        with pytest.raises(ValidationException):
            await monitor.send_warning(ticket_id)
