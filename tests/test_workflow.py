"""
Ticket status workflow: Open -> WIP -> Resolved, sub-status annotations,
escalation preconditions on the entity.
"""
from datetime import timedelta

import pytest

from facility_helpdesk.config import SubStatus, SupportLevel, TicketStatus
from facility_helpdesk.core.exceptions import (
    DomainException,
    InvalidEscalationException,
    InvalidTransitionException,
    ResourceNotFoundException,
)
from facility_helpdesk.escalation.domain import Ticket, TicketStateMachine, TierWindow

from tests.conftest import T0


def _ticket(**overrides) -> Ticket:
    values = dict(
        ticket_id="HD-1",
        category="Plumbing",
        sub_category="Leakage",
        issue="Tap leaking",
        priority="P3",
        reported_by="front.desk",
        created_at=T0,
        assignee="L0 Technician",
        window=TierWindow(30, 120),
        next_escalation_time=T0 + timedelta(minutes=360),
    )
    values.update(overrides)
    return Ticket.open(**values)


# ═══════════════════════════════════════════════════════════════════════════
#  STATE MACHINE
# ═══════════════════════════════════════════════════════════════════════════

class TestTicketStateMachine:
    def test_open_only_moves_to_wip(self):
        assert TicketStateMachine.allowed_transitions(TicketStatus.OPEN) == [TicketStatus.WIP]
        assert not TicketStateMachine.is_valid_transition(TicketStatus.OPEN, TicketStatus.RESOLVED)

    def test_resolved_is_terminal(self):
        assert TicketStateMachine.is_terminal(TicketStatus.RESOLVED)
        assert not TicketStateMachine.is_terminal(TicketStatus.WIP)
        assert TicketStateMachine.allowed_transitions(TicketStatus.RESOLVED) == []


# ═══════════════════════════════════════════════════════════════════════════
#  ENTITY
# ═══════════════════════════════════════════════════════════════════════════

class TestTicketEntity:
    def test_open_starts_at_l0_with_history(self):
        ticket = _ticket()
        assert ticket.status == TicketStatus.OPEN
        assert ticket.current_level == SupportLevel.L0
        assert [c.status for c in ticket.status_history] == [TicketStatus.OPEN]
        assert ticket.escalation_chain[0].assignee == "L0 Technician"
        assert ticket.tier_entered_at == T0

    def test_open_to_resolved_is_rejected(self):
        ticket = _ticket()
        with pytest.raises(InvalidTransitionException) as exc:
            ticket.transition_to(TicketStatus.RESOLVED, "tech", T0)
        assert exc.value.details["allowed"] == ["WIP"]
        assert ticket.status == TicketStatus.OPEN
        assert len(ticket.status_history) == 1

    def test_full_lifecycle(self):
        ticket = _ticket()
        ticket.transition_to(TicketStatus.WIP, "tech", T0 + timedelta(minutes=5))
        ticket.transition_to(TicketStatus.RESOLVED, "tech", T0 + timedelta(minutes=50), "Washer replaced")

        assert [c.status for c in ticket.status_history] == [
            TicketStatus.OPEN, TicketStatus.WIP, TicketStatus.RESOLVED
        ]
        assert ticket.wip_started_at == T0 + timedelta(minutes=5)
        assert ticket.resolved_at == T0 + timedelta(minutes=50)
        assert ticket.next_escalation_time is None
        assert ticket.status_history[-1].reason == "Washer replaced"
        assert ticket.allowed_transitions() == []

    def test_sub_status_on_wip(self):
        ticket = _ticket()
        ticket.transition_to(TicketStatus.WIP, "tech", T0)
        ticket.set_sub_status(SubStatus.DENIED, "supervisor", T0 + timedelta(minutes=1), "Wrong part")

        assert ticket.status == TicketStatus.WIP
        assert ticket.sub_status == SubStatus.DENIED
        assert ticket.status_history[-1].sub_status == SubStatus.DENIED

    def test_sub_status_needs_wip(self):
        ticket = _ticket()
        with pytest.raises(DomainException):
            ticket.set_sub_status(SubStatus.PUSHED_BACK, "supervisor", T0)

    def test_resolve_clears_sub_status(self):
        ticket = _ticket()
        ticket.transition_to(TicketStatus.WIP, "tech", T0)
        ticket.set_sub_status(SubStatus.PUSHED_BACK, "supervisor", T0)
        ticket.transition_to(TicketStatus.RESOLVED, "tech", T0)
        assert ticket.sub_status is None

    def test_escalate_closes_previous_entry(self):
        ticket = _ticket()
        now = T0 + timedelta(minutes=361)
        ticket.escalate_to(
            SupportLevel.L0, SupportLevel.L1, "Shift Engineer", TierWindow(60, 480),
            now, now + timedelta(minutes=360), "SLA breach"
        )
        assert ticket.current_level == SupportLevel.L1
        assert ticket.escalation_chain[0].escalated_at == now
        assert ticket.escalation_chain[1].assigned_at == now
        assert ticket.escalation_chain[1].resolution_time_minutes == 480
        assert ticket.tier_entered_at == now

    def test_escalate_rejects_level_mismatch(self):
        ticket = _ticket()
        with pytest.raises(InvalidEscalationException):
            ticket.escalate_to(SupportLevel.L1, SupportLevel.L2, "x", TierWindow(), T0, None)

    def test_escalate_rejects_skipping_a_tier(self):
        ticket = _ticket()
        with pytest.raises(InvalidEscalationException):
            ticket.escalate_to(SupportLevel.L0, SupportLevel.L2, "x", TierWindow(), T0, None)

    def test_resolved_ticket_cannot_escalate(self):
        ticket = _ticket()
        ticket.transition_to(TicketStatus.WIP, "tech", T0)
        ticket.transition_to(TicketStatus.RESOLVED, "tech", T0)
        with pytest.raises(InvalidEscalationException):
            ticket.escalate_to(SupportLevel.L0, SupportLevel.L1, "x", TierWindow(), T0, None)

    def test_unset_priority_reads_as_default(self):
        ticket = _ticket(priority=None)
        assert ticket.priority is None
        assert ticket.effective_priority == "P3"

    def test_to_dict(self):
        data = _ticket().to_dict()
        assert data["status"] == "Open"
        assert data["current_level"] == "L0"
        assert data["allowed_transitions"] == ["WIP"]
        assert data["created_at"] == T0.isoformat()


# ═══════════════════════════════════════════════════════════════════════════
#  WORKFLOW SERVICE
# ═══════════════════════════════════════════════════════════════════════════

class TestTicketWorkflowService:
    async def test_transition_persists(self, workflow, ticket_repo, tube_light_ticket, clock):
        clock.advance(10)
        await workflow.transition("HD-1001", TicketStatus.WIP, "tech.ravi")

        stored = await ticket_repo.get("HD-1001")
        assert stored.status == TicketStatus.WIP
        assert stored.wip_started_at == T0 + timedelta(minutes=10)
        assert stored.version == 2

    async def test_direct_resolve_is_rejected(self, workflow, ticket_repo, tube_light_ticket):
        with pytest.raises(InvalidTransitionException):
            await workflow.transition("HD-1001", TicketStatus.RESOLVED, "tech.ravi")

        stored = await ticket_repo.get("HD-1001")
        assert stored.status == TicketStatus.OPEN
        assert stored.version == 1

    async def test_resolve_stops_escalation(self, workflow, ticket_repo, tube_light_ticket):
        await workflow.transition("HD-1001", TicketStatus.WIP, "tech.ravi")
        await workflow.transition("HD-1001", TicketStatus.RESOLVED, "tech.ravi", "Tube replaced")

        stored = await ticket_repo.get("HD-1001")
        assert stored.next_escalation_time is None
        assert stored.resolved_at == T0

    async def test_sub_status(self, workflow, tube_light_ticket):
        await workflow.transition("HD-1001", TicketStatus.WIP, "tech.ravi")
        ticket = await workflow.set_sub_status("HD-1001", SubStatus.PUSHED_BACK, "supervisor")
        assert ticket.sub_status == SubStatus.PUSHED_BACK

    async def test_sub_status_on_open_ticket(self, workflow, tube_light_ticket):
        with pytest.raises(DomainException):
            await workflow.set_sub_status("HD-1001", SubStatus.DENIED, "supervisor")

    async def test_unknown_ticket(self, workflow):
        with pytest.raises(ResourceNotFoundException):
            await workflow.transition("HD-404", TicketStatus.WIP, "tech")

    async def test_list_by_status(self, workflow, tube_light_ticket):
        await workflow.open_ticket("HD-1002", "Plumbing", "Leakage", "Tap leaking", "desk")
        await workflow.transition("HD-1002", TicketStatus.WIP, "tech")

        wip = await workflow.list_tickets(TicketStatus.WIP)
        assert [t.id for t in wip] == ["HD-1002"]
        assert len(await workflow.list_tickets()) == 2
