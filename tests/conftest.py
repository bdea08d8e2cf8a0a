"""
Shared pytest fixtures for the helpdesk escalation test suite.

Provides:
    - clock: FixedClock pinned to T0, advanced explicitly by tests
    - policy / policy_provider: default escalation policy
    - rule_repo / rule_table: in-memory rule store, loaded with SAMPLE_RULES
    - ticket_repo: in-memory ticket store with version checks
    - workflow / escalation / priority_service: application services
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from facility_helpdesk.config import OPEN_STATUSES, SupportLevel, TicketStatus
from facility_helpdesk.core.exceptions import ConcurrentModificationException
from facility_helpdesk.escalation.application.services import (
    EscalationService,
    IClock,
    IEscalationNotifier,
    IEscalationPolicyProvider,
    IRuleRepository,
    ITicketRepository,
    PriorityService,
    RuleAssigneeDirectory,
    RuleResolver,
    RuleTable,
    TicketWorkflowService,
)
from facility_helpdesk.escalation.domain import (
    EscalationPolicy, EscalationRule, Ticket, TierWindow
)

T0 = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


# ── Fakes ────────────────────────────────────────────────────────────────

class FixedClock(IClock):
    def __init__(self, start: datetime = T0):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, minutes: float) -> datetime:
        self._now = self._now + timedelta(minutes=minutes)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value


class StaticPolicyProvider(IEscalationPolicyProvider):
    def __init__(self, policy: EscalationPolicy):
        self.policy = policy

    def get_policy(self) -> EscalationPolicy:
        return self.policy


class RecordingNotifier(IEscalationNotifier):
    def __init__(self):
        self.sent: List[Tuple[str, SupportLevel, SupportLevel, str]] = []

    async def notify_escalation(self, ticket, from_level, reason) -> bool:
        self.sent.append((ticket.id, from_level, ticket.current_level, reason))
        return True


class InMemoryRuleRepository(IRuleRepository):
    def __init__(self):
        self.versions: Dict[int, List[EscalationRule]] = {}
        self.active: int = 0
        self.replace_calls = 0
        self._next_rule_id = 1

    async def active_version(self) -> int:
        return self.active

    async def load_active(self):
        return self.active, list(self.versions.get(self.active, []))

    async def replace_all(self, rules):
        self.replace_calls += 1
        stored = []
        for rule in rules:
            stored.append(EscalationRule(
                id=self._next_rule_id,
                category=rule.category,
                sub_category=rule.sub_category,
                issue=rule.issue,
                priority=rule.priority,
                tiers=dict(rule.tiers),
            ))
            self._next_rule_id += 1
        version = max(self.versions, default=0) + 1
        self.versions[version] = stored
        self.active = version
        return version, stored


class InMemoryTicketRepository(ITicketRepository):
    """Stores deep copies so callers only change state through save()."""

    def __init__(self):
        self.tickets: Dict[str, Ticket] = {}

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        ticket = self.tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket else None

    async def add(self, ticket: Ticket) -> Ticket:
        self.tickets[ticket.id] = copy.deepcopy(ticket)
        return ticket

    async def save(self, ticket: Ticket) -> Ticket:
        stored = self.tickets.get(ticket.id)
        if stored is None or stored.version != ticket.version:
            raise ConcurrentModificationException("Ticket", ticket.id, ticket.version)
        ticket.version += 1
        self.tickets[ticket.id] = copy.deepcopy(ticket)
        return ticket

    async def list(self, statuses=None) -> List[Ticket]:
        return [
            copy.deepcopy(t) for t in self.tickets.values()
            if not statuses or t.status in statuses
        ]

    async def list_due(self, now: datetime) -> List[Ticket]:
        due = [
            t for t in self.tickets.values()
            if t.status in OPEN_STATUSES
            and t.next_escalation_time is not None
            and t.next_escalation_time <= now
        ]
        return [copy.deepcopy(t) for t in sorted(due, key=lambda t: t.next_escalation_time)]


# ── Sample data ──────────────────────────────────────────────────────────

def make_rule(category, sub_category, issue, priority, **tiers) -> EscalationRule:
    """tiers given as L0=(response, resolution[, assignee])."""
    return EscalationRule(
        category=category,
        sub_category=sub_category,
        issue=issue,
        priority=priority,
        tiers={SupportLevel(level): TierWindow(*values) for level, values in tiers.items()},
    )


def sample_rules() -> List[EscalationRule]:
    return [
        make_rule("Electrical", "Lighting", "Tube light not working", "P2",
                  L0=(30, 240), L1=(60, 480, "Shift Engineer"), L2=(120, 960)),
        make_rule("Electrical", "Lighting", None, "P2", L0=(45, 300)),
        make_rule("Electrical", None, None, "P2", L0=(60, 360)),
        make_rule("Plumbing", "Leakage", "Tap leaking", "P3", L0=(30, 120)),
        make_rule("HVAC", "Cooling", "AC not cooling", "P1", L0=(15, 60), L1=(30, 0)),
    ]


# ── Fixtures ─────────────────────────────────────────────────────────────

@pytest.fixture()
def clock():
    return FixedClock()


@pytest.fixture()
def policy():
    return EscalationPolicy()


@pytest.fixture()
def policy_provider(policy):
    return StaticPolicyProvider(policy)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def rule_repo():
    return InMemoryRuleRepository()


@pytest.fixture()
async def rule_table(rule_repo, clock):
    table = RuleTable(rule_repo, clock)
    await table.replace(sample_rules())
    return table


@pytest.fixture()
def resolver(rule_table):
    return RuleResolver(rule_table)


@pytest.fixture()
def ticket_repo():
    return InMemoryTicketRepository()


@pytest.fixture()
def workflow(ticket_repo, resolver, policy_provider, clock):
    return TicketWorkflowService(
        ticket_repo, resolver, RuleAssigneeDirectory(policy_provider), policy_provider, clock
    )


@pytest.fixture()
def escalation(ticket_repo, resolver, notifier, policy_provider, clock):
    return EscalationService(
        ticket_repo, resolver, RuleAssigneeDirectory(policy_provider),
        notifier, policy_provider, clock
    )


@pytest.fixture()
def priority_service(ticket_repo, policy_provider, clock):
    return PriorityService(ticket_repo, policy_provider, clock)


@pytest.fixture()
async def tube_light_ticket(workflow):
    """P2 ticket created at T0 matching the exact Tube light rule."""
    return await workflow.open_ticket(
        ticket_id="HD-1001",
        category="Electrical",
        sub_category="Lighting",
        issue="Tube light not working",
        reported_by="front.desk",
        priority="P2",
    )
