"""
SLA State Machine
=================

Per-ticket breach/notify/resolve transitions.

States:
- active:   not past deadline, or not high priority, or flags clear
- breached: past deadline, notification not yet sent
- notified: past deadline, notification sent
- resolved: ticket closed and flags cleared

Transitions:
- active   -> breached  (scan: deadline reached)
- breached -> notified  (scan: a later pass than detection)
- *        -> resolved  (explicit resolve when the ticket is closed)

Nothing here performs I/O; the monitor service applies the decisions.
"""

from datetime import datetime, timedelta
from typing import Optional

from helpdesk.config import SLAState
from helpdesk.core import DomainException
from helpdesk.sla.domain.entities import Ticket
from helpdesk.sla.domain.value_objects import (
    BREACHED, CLEAR, NOTIFIED, SLAFlags, SLAPolicy, SLAStatus, as_utc
)


class Transition(str):
    """Transitions the monitor can apply."""
    BREACH = "breach"
    NOTIFY = "notify"
    RESOLVE = "resolve"


class InvalidTransitionException(DomainException):
    """Raised when a transition is not allowed from the observed flags."""

    def __init__(self, transition: str, flags: SLAFlags):
        self.transition = transition
        self.flags = flags
        super().__init__(
            f"cannot apply '{transition}' from {flags}",
            {"transition": transition, "breached": flags.breached, "notified": flags.notified}
        )


class SLAStateMachine:
    """Decides SLA state and transitions for a single ticket."""

    def __init__(self, policy: SLAPolicy):
        self._policy = policy

    @property
    def policy(self) -> SLAPolicy:
        return self._policy

    def deadline_for(self, ticket: Ticket) -> Optional[datetime]:
        return self._policy.deadline_for(ticket.created_at, ticket.priority)

    def state_of(self, ticket: Ticket) -> str:
        """Current state derived from the stored flags."""
        if ticket.sla_notified:
            return SLAState.NOTIFIED
        if ticket.sla_breached:
            return SLAState.BREACHED
        if ticket.is_closed:
            return SLAState.RESOLVED
        return SLAState.ACTIVE

    def is_past_deadline(self, ticket: Ticket, now: datetime) -> bool:
        """
        Whether the ticket is in breach at ``now``.

        Always False for closed tickets and for priorities without a
        deadline, whatever the elapsed time.
        """
        if ticket.is_closed or not ticket.is_high_priority:
            return False
        deadline = self.deadline_for(ticket)
        if deadline is None:
            return False
        return as_utc(now) >= deadline

    def is_breach_active(self, ticket: Ticket) -> bool:
        """A recorded breach still counts while the ticket stays open and high."""
        return ticket.sla_breached and ticket.is_high_priority and not ticket.is_closed

    def next_transition(self, ticket: Ticket, now: datetime) -> Optional[str]:
        """
        The transition a scan pass should apply to this snapshot, if any.

        Resolution is never returned: it only happens on explicit close.
        """
        if not ticket.sla_breached:
            return Transition.BREACH if self.is_past_deadline(ticket, now) else None
        if not ticket.sla_notified and self.is_breach_active(ticket):
            return Transition.NOTIFY
        return None

    @staticmethod
    def target_flags(transition: str, current: SLAFlags) -> SLAFlags:
        """
        Flags after applying ``transition`` to ``current``.

        Raises:
            InvalidTransitionException: if the transition is not allowed
        """
        if transition == Transition.BREACH and current == CLEAR:
            return BREACHED
        if transition == Transition.NOTIFY and current == BREACHED:
            return NOTIFIED
        if transition == Transition.RESOLVE:
            return CLEAR
        raise InvalidTransitionException(transition, current)

    def status(self, ticket: Ticket, now: datetime) -> SLAStatus:
        """Read-only SLA standing; never changes the ticket."""
        if ticket.is_closed:
            return SLAStatus(
                breached=False,
                remaining=timedelta(0),
                deadline=None,
                state=SLAState.RESOLVED,
            )

        deadline = self.deadline_for(ticket) if ticket.is_high_priority else None
        if deadline is None:
            return SLAStatus(breached=False, remaining=None, deadline=None, state=SLAState.ACTIVE)

        remaining = deadline - as_utc(now)
        if remaining <= timedelta(0):
            return SLAStatus(
                breached=True,
                remaining=timedelta(0),
                deadline=deadline,
                state=SLAState.BREACHED,
            )
        return SLAStatus(breached=False, remaining=remaining, deadline=deadline, state=SLAState.ACTIVE)
