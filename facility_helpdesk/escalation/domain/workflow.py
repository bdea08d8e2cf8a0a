"""
Ticket Status State Machine
============================

Legal status flow for helpdesk tickets: Open -> WIP -> Resolved.

There is no direct Open -> Resolved path and Resolved is terminal.
"""

from typing import Dict, List

from facility_helpdesk.config import TicketStatus


class TicketStateMachine:
    """Transition table for ticket statuses."""

    TRANSITIONS: Dict[TicketStatus, List[TicketStatus]] = {
        TicketStatus.OPEN: [TicketStatus.WIP],
        TicketStatus.WIP: [TicketStatus.RESOLVED],
        TicketStatus.RESOLVED: [],
    }

    @classmethod
    def allowed_transitions(cls, current: TicketStatus) -> List[TicketStatus]:
        """Statuses reachable in one step from current."""
        return list(cls.TRANSITIONS.get(current, []))

    @classmethod
    def is_valid_transition(cls, current: TicketStatus, target: TicketStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, [])

    @classmethod
    def is_terminal(cls, status: TicketStatus) -> bool:
        return not cls.TRANSITIONS.get(status)
