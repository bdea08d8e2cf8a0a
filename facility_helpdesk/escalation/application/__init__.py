"""
Escalation Application Layer
=============================

Application layer for the helpdesk escalation module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from facility_helpdesk.escalation.application.dto import (
    EscalateRequest,
    EscalationEntryResponse,
    EscalationStatusResponse,
    PriorityRequest,
    ProcessResult,
    RuleDTO,
    RuleReplaceRequest,
    RuleReplaceResponse,
    RuleResponse,
    StatsResponse,
    SubStatusRequest,
    TicketOpenRequest,
    TicketResponse,
    TransitionRequest,
)
from facility_helpdesk.escalation.application.services import (
    EscalationService,
    IAssigneeDirectory,
    IClock,
    IEscalationNotifier,
    IEscalationPolicyProvider,
    IRuleRepository,
    ITicketRepository,
    PriorityService,
    RuleAssigneeDirectory,
    RuleCatalogService,
    RuleResolver,
    RuleSnapshot,
    RuleStatsService,
    RuleTable,
    SystemClock,
    TicketWorkflowService,
)

__all__ = [
    # DTOs
    "EscalateRequest",
    "EscalationEntryResponse",
    "EscalationStatusResponse",
    "PriorityRequest",
    "ProcessResult",
    "RuleDTO",
    "RuleReplaceRequest",
    "RuleReplaceResponse",
    "RuleResponse",
    "StatsResponse",
    "SubStatusRequest",
    "TicketOpenRequest",
    "TicketResponse",
    "TransitionRequest",
    # Services
    "EscalationService",
    "PriorityService",
    "RuleAssigneeDirectory",
    "RuleCatalogService",
    "RuleResolver",
    "RuleSnapshot",
    "RuleStatsService",
    "RuleTable",
    "SystemClock",
    "TicketWorkflowService",
    # Interfaces
    "IAssigneeDirectory",
    "IClock",
    "IEscalationNotifier",
    "IEscalationPolicyProvider",
    "IRuleRepository",
    "ITicketRepository",
]
