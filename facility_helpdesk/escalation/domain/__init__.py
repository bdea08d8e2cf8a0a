"""
Escalation Domain Layer
========================

Domain layer for the helpdesk escalation module.

Contains:
- Entities: EscalationRule, Ticket and its audit records
- Value Objects: RuleKey, TierWindow, EscalationPolicy
- Domain Services: EscalationClock, TicketStateMachine

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from facility_helpdesk.escalation.domain.entities import (
    EscalationEntry,
    EscalationRule,
    StatusChange,
    Ticket,
)
from facility_helpdesk.escalation.domain.value_objects import (
    EscalationClock,
    EscalationPolicy,
    RuleKey,
    TierWindow,
    display_value,
    format_minutes,
    normalize_key,
    normalize_priority,
)
from facility_helpdesk.escalation.domain.workflow import TicketStateMachine

__all__ = [
    # Entities
    "EscalationRule",
    "Ticket",
    "StatusChange",
    "EscalationEntry",
    # Value Objects & Services
    "EscalationClock",
    "EscalationPolicy",
    "RuleKey",
    "TierWindow",
    "TicketStateMachine",
    "display_value",
    "format_minutes",
    "normalize_key",
    "normalize_priority",
]
