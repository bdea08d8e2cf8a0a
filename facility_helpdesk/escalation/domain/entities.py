"""
Escalation Domain Entities
===========================

Pure Python domain entities for helpdesk escalation.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Timing decisions
(deadlines) are made by the EscalationClock and handed to the entities;
the entities only enforce lifecycle rules and keep the audit trail.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional

from facility_helpdesk.config import (
    DEFAULT_PRIORITY, OPEN_STATUSES, SUPPORT_LEVELS, SubStatus, SupportLevel, TicketStatus
)
from facility_helpdesk.core.exceptions import (
    DomainException,
    InvalidEscalationException,
    InvalidTransitionException,
    ValidationException,
)
from facility_helpdesk.escalation.domain.value_objects import (
    RuleKey, TierWindow, display_value, format_minutes, normalize_priority
)
from facility_helpdesk.escalation.domain.workflow import TicketStateMachine


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class EscalationRule:
    """
    One row of the rule table.

    sub_category and issue may be None, meaning the rule applies to any
    value at that position. Tiers not present read as zero budgets.
    """

    category: str
    sub_category: Optional[str]
    issue: Optional[str]
    priority: str
    tiers: Dict[SupportLevel, TierWindow] = field(default_factory=dict)
    id: Optional[int] = None

    def __post_init__(self):
        category = display_value(self.category)
        if category is None:
            raise ValidationException("Escalation rule requires a category")
        sub_category = display_value(self.sub_category)
        issue = display_value(self.issue)
        if issue is not None and sub_category is None:
            raise ValidationException(
                f"Rule for category '{category}' names issue '{issue}' without a sub-category",
                {"category": category, "issue": issue}
            )

        object.__setattr__(self, "category", category)
        object.__setattr__(self, "sub_category", sub_category)
        object.__setattr__(self, "issue", issue)
        object.__setattr__(self, "priority", normalize_priority(self.priority))

    @property
    def key(self) -> RuleKey:
        return RuleKey.of(self.category, self.sub_category, self.issue, self.priority)

    def tier(self, level: SupportLevel) -> TierWindow:
        return self.tiers.get(level, TierWindow())

    def escalation_path(self) -> List[dict]:
        """Tiers with a resolution budget, lowest first."""
        path = []
        for level in SUPPORT_LEVELS:
            window = self.tier(level)
            if window.resolution_minutes > 0:
                path.append({
                    "level": level.value,
                    **window.to_dict(),
                    "resolution_time_display": format_minutes(window.resolution_minutes),
                })
        return path

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "category": self.category,
            "sub_category": self.sub_category,
            "issue": self.issue,
            "priority": self.priority,
            "tiers": {
                level.value: self.tiers[level].to_dict()
                for level in SUPPORT_LEVELS if level in self.tiers
            },
            "escalation_path": self.escalation_path(),
        }


@dataclass(frozen=True)
class StatusChange:
    """Entry of the append-only status history."""
    status: TicketStatus
    timestamp: datetime
    changed_by: str
    reason: Optional[str] = None
    sub_status: Optional[SubStatus] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "timestamp": _iso(self.timestamp),
            "changed_by": self.changed_by,
            "reason": self.reason,
            "sub_status": self.sub_status.value if self.sub_status else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StatusChange":
        return cls(
            status=TicketStatus(data["status"]),
            timestamp=_parse(data["timestamp"]),
            changed_by=data["changed_by"],
            reason=data.get("reason"),
            sub_status=SubStatus(data["sub_status"]) if data.get("sub_status") else None,
        )


@dataclass(frozen=True)
class EscalationEntry:
    """One tier assignment in a ticket's escalation chain."""
    level: SupportLevel
    assignee: str
    assigned_at: datetime
    escalated_at: Optional[datetime] = None
    response_time_minutes: Optional[int] = None
    resolution_time_minutes: Optional[int] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "assignee": self.assignee,
            "assigned_at": _iso(self.assigned_at),
            "escalated_at": _iso(self.escalated_at),
            "response_time_minutes": self.response_time_minutes,
            "resolution_time_minutes": self.resolution_time_minutes,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EscalationEntry":
        return cls(
            level=SupportLevel(data["level"]),
            assignee=data["assignee"],
            assigned_at=_parse(data["assigned_at"]),
            escalated_at=_parse(data.get("escalated_at")),
            response_time_minutes=data.get("response_time_minutes"),
            resolution_time_minutes=data.get("resolution_time_minutes"),
            reason=data.get("reason"),
        )


@dataclass
class Ticket:
    """
    Ticket entity as seen by the escalation engine.

    Classification fields are owned by the ticketing collaborator; this
    entity writes only status, escalation and priority-audit fields.
    version is the optimistic-concurrency token checked on every save.
    """

    id: str
    category: str
    sub_category: Optional[str]
    issue: Optional[str]
    created_at: datetime
    priority: Optional[str] = None
    reported_by: Optional[str] = None
    # Policy default in force at intake; applies while priority is unset
    default_priority: str = DEFAULT_PRIORITY

    status: TicketStatus = TicketStatus.OPEN
    sub_status: Optional[SubStatus] = None
    status_history: List[StatusChange] = field(default_factory=list)

    current_level: SupportLevel = SupportLevel.L0
    escalation_chain: List[EscalationEntry] = field(default_factory=list)
    next_escalation_time: Optional[datetime] = None

    wip_started_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    priority_manually_set: bool = False
    priority_set_by: Optional[str] = None
    priority_set_at: Optional[datetime] = None
    priority_justification: Optional[str] = None

    version: int = 1

    @classmethod
    def open(
        cls,
        ticket_id: str,
        category: str,
        sub_category: Optional[str],
        issue: Optional[str],
        priority: Optional[str],
        reported_by: str,
        created_at: datetime,
        assignee: str,
        window: TierWindow,
        next_escalation_time: Optional[datetime],
        default_priority: str = DEFAULT_PRIORITY
    ) -> "Ticket":
        """New ticket at L0 in status Open."""
        return cls(
            id=ticket_id,
            category=category,
            sub_category=sub_category,
            issue=issue,
            priority=normalize_priority(priority) if display_value(priority) else None,
            default_priority=normalize_priority(default_priority),
            reported_by=reported_by,
            created_at=created_at,
            status_history=[
                StatusChange(TicketStatus.OPEN, created_at, reported_by, "Ticket created")
            ],
            escalation_chain=[
                EscalationEntry(
                    level=SupportLevel.L0,
                    assignee=assignee,
                    assigned_at=created_at,
                    response_time_minutes=window.response_minutes,
                    resolution_time_minutes=window.resolution_minutes,
                )
            ],
            next_escalation_time=next_escalation_time,
        )

    # ========== Properties ==========

    @property
    def effective_priority(self) -> str:
        return normalize_priority(self.priority, self.default_priority)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def current_entry(self) -> Optional[EscalationEntry]:
        return self.escalation_chain[-1] if self.escalation_chain else None

    @property
    def tier_entered_at(self) -> datetime:
        """When the ticket entered its current tier."""
        entry = self.current_entry
        if entry is not None and entry.level == self.current_level:
            return entry.assigned_at
        return self.created_at

    def allowed_transitions(self) -> List[TicketStatus]:
        return TicketStateMachine.allowed_transitions(self.status)

    # ========== Status ==========

    def transition_to(
        self,
        target: TicketStatus,
        changed_by: str,
        now: datetime,
        reason: Optional[str] = None
    ) -> None:
        if not TicketStateMachine.is_valid_transition(self.status, target):
            raise InvalidTransitionException(
                self.id,
                self.status.value,
                target.value,
                [s.value for s in self.allowed_transitions()]
            )

        self.status = target
        self.status_history.append(StatusChange(target, now, changed_by, reason))

        if target == TicketStatus.WIP and self.wip_started_at is None:
            self.wip_started_at = now
        if target == TicketStatus.RESOLVED:
            self.resolved_at = now
            self.next_escalation_time = None
            self.sub_status = None

    def set_sub_status(
        self,
        sub_status: Optional[SubStatus],
        changed_by: str,
        now: datetime,
        reason: Optional[str] = None
    ) -> None:
        """Annotate a WIP ticket; the status itself does not change."""
        if self.status != TicketStatus.WIP:
            raise DomainException(
                f"Sub-status can only be set on a WIP ticket; ticket {self.id} is {self.status.value}",
                {"ticket_id": self.id, "status": self.status.value}
            )
        self.sub_status = sub_status
        self.status_history.append(
            StatusChange(self.status, now, changed_by, reason, sub_status)
        )

    # ========== Escalation ==========

    def escalate_to(
        self,
        from_level: SupportLevel,
        to_level: SupportLevel,
        assignee: str,
        window: TierWindow,
        now: datetime,
        next_escalation_time: Optional[datetime],
        reason: Optional[str] = None
    ) -> None:
        """Close the current chain entry and open one at to_level."""
        if self.status == TicketStatus.RESOLVED:
            raise InvalidEscalationException(self.id, "ticket is resolved")
        if self.current_level != from_level:
            raise InvalidEscalationException(
                self.id,
                f"ticket is at {self.current_level.value}, not {from_level.value}",
                {"ticket_id": self.id, "current_level": self.current_level.value}
            )
        if from_level.successor() != to_level:
            raise InvalidEscalationException(
                self.id,
                f"{to_level.value} is not the next tier after {from_level.value}",
                {"ticket_id": self.id, "from_level": from_level.value, "to_level": to_level.value}
            )

        if self.escalation_chain:
            self.escalation_chain[-1] = replace(self.escalation_chain[-1], escalated_at=now)
        self.escalation_chain.append(
            EscalationEntry(
                level=to_level,
                assignee=assignee,
                assigned_at=now,
                response_time_minutes=window.response_minutes,
                resolution_time_minutes=window.resolution_minutes,
                reason=reason,
            )
        )
        self.current_level = to_level
        self.next_escalation_time = next_escalation_time

    # ========== Priority ==========

    def apply_priority(
        self,
        priority: str,
        set_by: str,
        now: datetime,
        next_escalation_time: Optional[datetime],
        justification: Optional[str] = None
    ) -> None:
        self.priority = priority
        self.priority_manually_set = True
        self.priority_set_by = set_by
        self.priority_set_at = now
        self.priority_justification = justification
        if self.status != TicketStatus.RESOLVED:
            self.next_escalation_time = next_escalation_time

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "category": self.category,
            "sub_category": self.sub_category,
            "issue": self.issue,
            "priority": self.priority,
            "effective_priority": self.effective_priority,
            "reported_by": self.reported_by,
            "created_at": _iso(self.created_at),
            "status": self.status.value,
            "sub_status": self.sub_status.value if self.sub_status else None,
            "allowed_transitions": [s.value for s in self.allowed_transitions()],
            "status_history": [change.to_dict() for change in self.status_history],
            "current_level": self.current_level.value,
            "escalation_chain": [entry.to_dict() for entry in self.escalation_chain],
            "next_escalation_time": _iso(self.next_escalation_time),
            "wip_started_at": _iso(self.wip_started_at),
            "resolved_at": _iso(self.resolved_at),
            "priority_manually_set": self.priority_manually_set,
            "priority_set_by": self.priority_set_by,
            "priority_set_at": _iso(self.priority_set_at),
            "priority_justification": self.priority_justification,
            "version": self.version,
        }
