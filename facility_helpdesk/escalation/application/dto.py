"""
Escalation Application DTOs
============================

Data Transfer Objects for the escalation API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from facility_helpdesk.config import SupportLevel
from facility_helpdesk.escalation.domain import (
    EscalationEntry, EscalationRule, StatusChange, Ticket, TierWindow
)


# ========== Type Aliases for Literals ==========
TicketStatusStr = Literal["Open", "WIP", "Resolved"]
SubStatusStr = Literal["denied", "pushed_back"]
SupportLevelStr = Literal["L0", "L1", "L2", "L3", "L4", "L5"]


# ========== Request DTOs ==========

class TierWindowDTO(BaseModel):
    """Budgets of one tier in a rule."""
    response_time_minutes: int = Field(default=0, ge=0)
    resolution_time_minutes: int = Field(default=0, ge=0)
    assignee: Optional[str] = Field(None, description="Assignee for this tier")

    def to_domain(self) -> TierWindow:
        return TierWindow(
            response_minutes=self.response_time_minutes,
            resolution_minutes=self.resolution_time_minutes,
            assignee=self.assignee,
        )


class RuleDTO(BaseModel):
    """DTO for one escalation rule in an administrative replace."""
    category: str = Field(..., min_length=1, description="Ticket category")
    sub_category: Optional[str] = Field(None, description="Sub-category; omitted means any")
    issue: Optional[str] = Field(None, description="Issue; omitted means any")
    priority: Optional[str] = Field(None, description="Priority code, P3 when omitted")
    tiers: Dict[SupportLevelStr, TierWindowDTO] = Field(
        default_factory=dict,
        description="Budgets per support tier"
    )

    def to_domain(self) -> EscalationRule:
        return EscalationRule(
            category=self.category,
            sub_category=self.sub_category,
            issue=self.issue,
            priority=self.priority,
            tiers={SupportLevel(level): window.to_domain() for level, window in self.tiers.items()},
        )


class RuleReplaceRequest(BaseModel):
    """Request model for replacing the whole rule table."""
    rules: List[RuleDTO] = Field(..., min_length=1, description="Complete new rule set")


class TicketOpenRequest(BaseModel):
    """Request model for registering a ticket with the engine."""
    id: str = Field(..., min_length=1, description="Ticket ID from the ticketing system")
    category: str = Field(..., min_length=1)
    sub_category: Optional[str] = None
    issue: Optional[str] = None
    priority: Optional[str] = Field(None, description="Priority code, unset means P3")
    reported_by: str = Field(..., min_length=1)
    created_at: Optional[datetime] = Field(None, description="Defaults to now")


class TransitionRequest(BaseModel):
    to_status: TicketStatusStr
    changed_by: str = Field(..., min_length=1)
    reason: Optional[str] = None


class SubStatusRequest(BaseModel):
    sub_status: Optional[SubStatusStr] = Field(None, description="None clears the annotation")
    changed_by: str = Field(..., min_length=1)
    reason: Optional[str] = None


class EscalateRequest(BaseModel):
    """
    Manual escalation request.

    Without from_level/to_level the ticket moves to the tier right above
    its current one.
    """
    from_level: Optional[SupportLevelStr] = None
    to_level: Optional[SupportLevelStr] = None
    reason: str = Field(default="Manual escalation")
    escalated_by: str = Field(default="system")

    @model_validator(mode="after")
    def validate_levels_together(self) -> "EscalateRequest":
        """from_level and to_level are given together or not at all."""
        if (self.from_level is None) != (self.to_level is None):
            raise ValueError("from_level and to_level must be given together")
        return self


class PriorityRequest(BaseModel):
    priority: str = Field(..., min_length=1, description="Priority code, e.g. P1")
    set_by: str = Field(..., min_length=1)
    justification: Optional[str] = None


# ========== Response DTOs ==========

class TierWindowResponse(BaseModel):
    level: SupportLevelStr
    response_time_minutes: int
    resolution_time_minutes: int
    assignee: Optional[str] = None
    resolution_time_display: str


class RuleResponse(BaseModel):
    """Response model for a resolved escalation rule."""
    id: Optional[int] = None
    category: str
    sub_category: Optional[str] = None
    issue: Optional[str] = None
    priority: str
    tiers: Dict[str, TierWindowDTO] = Field(default_factory=dict)
    escalation_path: List[TierWindowResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, rule: EscalationRule) -> "RuleResponse":
        data = rule.to_dict()
        return cls(
            id=data["id"],
            category=data["category"],
            sub_category=data["sub_category"],
            issue=data["issue"],
            priority=data["priority"],
            tiers={level: TierWindowDTO(**tier) for level, tier in data["tiers"].items()},
            escalation_path=[TierWindowResponse(**step) for step in data["escalation_path"]],
        )


class RuleReplaceResponse(BaseModel):
    version: int = Field(..., description="Activated rule set version")
    total_rules: int


class StatsResponse(BaseModel):
    """Summary statistics over the active rule table."""
    total_rules: int
    unique_categories: int
    unique_priorities: List[str]
    categories: List[str]
    rule_set_version: int
    loaded_at: Optional[datetime] = None


class StatusChangeResponse(BaseModel):
    status: TicketStatusStr
    timestamp: datetime
    changed_by: str
    reason: Optional[str] = None
    sub_status: Optional[SubStatusStr] = None

    @classmethod
    def from_domain(cls, change: StatusChange) -> "StatusChangeResponse":
        return cls(
            status=change.status.value,
            timestamp=change.timestamp,
            changed_by=change.changed_by,
            reason=change.reason,
            sub_status=change.sub_status.value if change.sub_status else None,
        )


class EscalationEntryResponse(BaseModel):
    level: SupportLevelStr
    assignee: str
    assigned_at: datetime
    escalated_at: Optional[datetime] = None
    response_time_minutes: Optional[int] = None
    resolution_time_minutes: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def from_domain(cls, entry: EscalationEntry) -> "EscalationEntryResponse":
        return cls(
            level=entry.level.value,
            assignee=entry.assignee,
            assigned_at=entry.assigned_at,
            escalated_at=entry.escalated_at,
            response_time_minutes=entry.response_time_minutes,
            resolution_time_minutes=entry.resolution_time_minutes,
            reason=entry.reason,
        )


class TicketResponse(BaseModel):
    """Response model for a ticket and its escalation state."""
    id: str
    category: str
    sub_category: Optional[str] = None
    issue: Optional[str] = None
    priority: Optional[str] = None
    effective_priority: str
    reported_by: Optional[str] = None
    created_at: datetime
    status: TicketStatusStr
    sub_status: Optional[SubStatusStr] = None
    allowed_transitions: List[TicketStatusStr] = Field(default_factory=list)
    status_history: List[StatusChangeResponse] = Field(default_factory=list)
    current_level: SupportLevelStr
    escalation_chain: List[EscalationEntryResponse] = Field(default_factory=list)
    next_escalation_time: Optional[datetime] = None
    wip_started_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    priority_manually_set: bool = False
    priority_set_by: Optional[str] = None
    priority_set_at: Optional[datetime] = None
    priority_justification: Optional[str] = None
    version: int

    @classmethod
    def from_domain(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            id=ticket.id,
            category=ticket.category,
            sub_category=ticket.sub_category,
            issue=ticket.issue,
            priority=ticket.priority,
            effective_priority=ticket.effective_priority,
            reported_by=ticket.reported_by,
            created_at=ticket.created_at,
            status=ticket.status.value,
            sub_status=ticket.sub_status.value if ticket.sub_status else None,
            allowed_transitions=[s.value for s in ticket.allowed_transitions()],
            status_history=[StatusChangeResponse.from_domain(c) for c in ticket.status_history],
            current_level=ticket.current_level.value,
            escalation_chain=[EscalationEntryResponse.from_domain(e) for e in ticket.escalation_chain],
            next_escalation_time=ticket.next_escalation_time,
            wip_started_at=ticket.wip_started_at,
            resolved_at=ticket.resolved_at,
            priority_manually_set=ticket.priority_manually_set,
            priority_set_by=ticket.priority_set_by,
            priority_set_at=ticket.priority_set_at,
            priority_justification=ticket.priority_justification,
            version=ticket.version,
        )


class EscalationStatusResponse(BaseModel):
    """Where a ticket stands against its current escalation deadline."""
    ticket_id: str
    status: TicketStatusStr
    current_level: SupportLevelStr
    next_level: Optional[SupportLevelStr] = None
    next_escalation_time: Optional[datetime] = None
    should_escalate: bool
    minutes_in_level: int
    minutes_remaining: Optional[int] = Field(None, description="Negative once overdue")


class ProcessResult(BaseModel):
    """Outcome of a batch escalation sweep."""
    escalated: int = 0
    errors: int = 0
