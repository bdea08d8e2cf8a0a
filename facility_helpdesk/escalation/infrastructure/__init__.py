"""
Escalation Infrastructure Layer
================================

Infrastructure implementations for helpdesk escalation:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: Policy file watcher, Slack notifier, sweep scheduler
"""

from facility_helpdesk.escalation.infrastructure.models import (
    EscalationRuleModel,
    HelpdeskTicketModel,
    RuleSetModel,
)
from facility_helpdesk.escalation.infrastructure.repositories import (
    SQLAlchemyRuleRepository,
    SQLAlchemyTicketRepository,
)
from facility_helpdesk.escalation.infrastructure.external import (
    CircuitBreaker,
    EscalationPolicyManager,
    EscalationScheduler,
    SlackEscalationNotifier,
)

__all__ = [
    "RuleSetModel",
    "EscalationRuleModel",
    "HelpdeskTicketModel",
    "SQLAlchemyRuleRepository",
    "SQLAlchemyTicketRepository",
    "CircuitBreaker",
    "EscalationPolicyManager",
    "EscalationScheduler",
    "SlackEscalationNotifier",
]
