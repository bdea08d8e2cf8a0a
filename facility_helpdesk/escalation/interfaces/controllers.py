"""
Escalation Controllers (API Routes)
====================================

FastAPI routes for escalation rules and helpdesk tickets.

Controllers are thin - they delegate to application services. Domain
errors propagate to the ApplicationException handler registered in main.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from facility_helpdesk.config import SubStatus, SupportLevel, TicketStatus
from facility_helpdesk.escalation.application import (
    EscalateRequest,
    EscalationEntryResponse,
    EscalationService,
    EscalationStatusResponse,
    IClock,
    IEscalationNotifier,
    IEscalationPolicyProvider,
    ITicketRepository,
    PriorityRequest,
    PriorityService,
    ProcessResult,
    RuleAssigneeDirectory,
    RuleCatalogService,
    RuleReplaceRequest,
    RuleReplaceResponse,
    RuleResolver,
    RuleResponse,
    RuleStatsService,
    RuleTable,
    StatsResponse,
    SubStatusRequest,
    SystemClock,
    TicketOpenRequest,
    TicketResponse,
    TicketWorkflowService,
    TransitionRequest,
)
from facility_helpdesk.escalation.infrastructure import SQLAlchemyTicketRepository
from facility_helpdesk.infrastructure.database import get_session
from facility_helpdesk.shared.infrastructure.logging import (
    get_context_logger, get_logger, log_latency
)

logger = get_logger(__name__)
escalation_router = APIRouter(prefix="/escalation", tags=["Escalation Rules"])
helpdesk_router = APIRouter(prefix="/helpdesk", tags=["Helpdesk Tickets"])


# ========== Example payloads for Swagger ==========

RULE_RESPONSE_EXAMPLE = {
    "id": 12,
    "category": "Electrical",
    "sub_category": "Lighting",
    "issue": "Tube light not working",
    "priority": "P2",
    "tiers": {
        "L0": {"response_time_minutes": 30, "resolution_time_minutes": 240, "assignee": None},
        "L1": {"response_time_minutes": 60, "resolution_time_minutes": 480, "assignee": "Shift Engineer"}
    },
    "escalation_path": [
        {"level": "L0", "response_time_minutes": 30, "resolution_time_minutes": 240,
         "assignee": None, "resolution_time_display": "4h"},
        {"level": "L1", "response_time_minutes": 60, "resolution_time_minutes": 480,
         "assignee": "Shift Engineer", "resolution_time_display": "8h"}
    ]
}

STATS_RESPONSE_EXAMPLE = {
    "total_rules": 148,
    "unique_categories": 9,
    "unique_priorities": ["P1", "P2", "P3", "P4"],
    "categories": ["Civil", "Electrical", "HVAC", "Plumbing"],
    "rule_set_version": 3,
    "loaded_at": "2024-01-15T10:00:00Z"
}


# ========== Dependencies ==========

def get_rule_table(request: Request) -> RuleTable:
    return request.app.state.rule_table


def get_policy_provider(request: Request) -> IEscalationPolicyProvider:
    return request.app.state.policy_manager


def get_notifier(request: Request) -> IEscalationNotifier:
    return request.app.state.notifier


def get_clock() -> IClock:
    return SystemClock()


async def get_ticket_repository(
    session: AsyncSession = Depends(get_session)
) -> ITicketRepository:
    return SQLAlchemyTicketRepository(session)


def get_rule_resolver(rule_table: RuleTable = Depends(get_rule_table)) -> RuleResolver:
    return RuleResolver(rule_table)


def get_catalog_service(rule_table: RuleTable = Depends(get_rule_table)) -> RuleCatalogService:
    return RuleCatalogService(rule_table)


def get_stats_service(rule_table: RuleTable = Depends(get_rule_table)) -> RuleStatsService:
    return RuleStatsService(rule_table)


def get_workflow_service(
    ticket_repo: ITicketRepository = Depends(get_ticket_repository),
    resolver: RuleResolver = Depends(get_rule_resolver),
    policy_provider: IEscalationPolicyProvider = Depends(get_policy_provider),
    clock: IClock = Depends(get_clock)
) -> TicketWorkflowService:
    return TicketWorkflowService(
        ticket_repo, resolver, RuleAssigneeDirectory(policy_provider), policy_provider, clock
    )


def get_escalation_service(
    ticket_repo: ITicketRepository = Depends(get_ticket_repository),
    resolver: RuleResolver = Depends(get_rule_resolver),
    notifier: IEscalationNotifier = Depends(get_notifier),
    policy_provider: IEscalationPolicyProvider = Depends(get_policy_provider),
    clock: IClock = Depends(get_clock)
) -> EscalationService:
    return EscalationService(
        ticket_repo, resolver, RuleAssigneeDirectory(policy_provider),
        notifier, policy_provider, clock
    )


def get_priority_service(
    ticket_repo: ITicketRepository = Depends(get_ticket_repository),
    policy_provider: IEscalationPolicyProvider = Depends(get_policy_provider),
    clock: IClock = Depends(get_clock)
) -> PriorityService:
    return PriorityService(ticket_repo, policy_provider, clock)


# ========== Escalation Rule Routes ==========

@escalation_router.get("/categories", response_model=List[str], summary="List rule categories")
async def list_categories(catalog: RuleCatalogService = Depends(get_catalog_service)):
    return catalog.categories()


@escalation_router.get(
    "/subcategories/{category}",
    response_model=List[str],
    summary="List sub-categories of a category"
)
async def list_subcategories(
    category: str,
    catalog: RuleCatalogService = Depends(get_catalog_service)
):
    return catalog.subcategories(category)


@escalation_router.get(
    "/issues/{category}/{subcategory}",
    response_model=List[str],
    summary="List issues of a sub-category"
)
async def list_issues(
    category: str,
    subcategory: str,
    catalog: RuleCatalogService = Depends(get_catalog_service)
):
    return catalog.issues(category, subcategory)


@escalation_router.get(
    "/priorities",
    response_model=List[str],
    summary="List priorities of matching rules"
)
async def list_priorities(
    category: Optional[str] = Query(None),
    subcategory: Optional[str] = Query(None),
    issue: Optional[str] = Query(None),
    catalog: RuleCatalogService = Depends(get_catalog_service)
):
    return catalog.priorities(category, subcategory, issue)


@escalation_router.get(
    "/rule",
    response_model=RuleResponse,
    summary="Resolve the escalation rule for a classification",
    description="""
    Lookup order: exact match, then the sub-category rule (issue omitted),
    then the category rule (sub-category and issue omitted). Matching
    ignores case and surrounding whitespace. Priority defaults to P3.
    """,
    responses={
        200: {"content": {"application/json": {"example": RULE_RESPONSE_EXAMPLE}}},
        404: {"description": "No rule matches"}
    }
)
async def resolve_rule(
    category: str = Query(..., min_length=1),
    subcategory: Optional[str] = Query(None),
    issue: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    resolver: RuleResolver = Depends(get_rule_resolver)
):
    rule = resolver.resolve(category, subcategory, issue, priority)
    return RuleResponse.from_domain(rule)


@escalation_router.get(
    "/rules/search",
    response_model=List[RuleResponse],
    summary="Search rules by text"
)
async def search_rules(
    q: str = Query(..., min_length=1, description="Text contained in category, sub-category, issue or priority"),
    catalog: RuleCatalogService = Depends(get_catalog_service)
):
    return [RuleResponse.from_domain(rule) for rule in catalog.search(q)]


@escalation_router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Rule table statistics",
    responses={200: {"content": {"application/json": {"example": STATS_RESPONSE_EXAMPLE}}}}
)
async def get_stats(stats: RuleStatsService = Depends(get_stats_service)):
    return StatsResponse(**stats.get_stats())


@escalation_router.put(
    "/rules",
    response_model=RuleReplaceResponse,
    summary="Replace the whole rule table",
    description="""
    Validates the complete set first (duplicate keys, issue without
    sub-category), stores it as a new version and activates it in one
    transaction. Readers see either the old or the new set, never a mix.
    """
)
async def replace_rules(
    payload: RuleReplaceRequest,
    request: Request,
    rule_table: RuleTable = Depends(get_rule_table)
):
    request_logger = get_context_logger(
        __name__, getattr(request.state, "correlation_id", None)
    )
    rules = [dto.to_domain() for dto in payload.rules]
    snapshot = await rule_table.replace(rules)
    request_logger.info(
        "Rule table replaced via API",
        extra={"rule_set_version": snapshot.version, "total_rules": len(snapshot)}
    )
    return RuleReplaceResponse(version=snapshot.version, total_rules=len(snapshot))


# ========== Helpdesk Ticket Routes ==========

@helpdesk_router.post(
    "/tickets",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a ticket with the escalation engine"
)
async def open_ticket(
    request: TicketOpenRequest,
    workflow: TicketWorkflowService = Depends(get_workflow_service)
):
    ticket = await workflow.open_ticket(
        ticket_id=request.id,
        category=request.category,
        sub_category=request.sub_category,
        issue=request.issue,
        reported_by=request.reported_by,
        priority=request.priority,
        created_at=request.created_at,
    )
    return TicketResponse.from_domain(ticket)


@helpdesk_router.get("/tickets", response_model=List[TicketResponse], summary="List tickets")
async def list_tickets(
    status_filter: Optional[TicketStatus] = Query(None, alias="status"),
    workflow: TicketWorkflowService = Depends(get_workflow_service)
):
    tickets = await workflow.list_tickets(status_filter)
    return [TicketResponse.from_domain(t) for t in tickets]


@helpdesk_router.get("/tickets/{ticket_id}", response_model=TicketResponse, summary="Get a ticket")
async def get_ticket(
    ticket_id: str,
    workflow: TicketWorkflowService = Depends(get_workflow_service)
):
    return TicketResponse.from_domain(await workflow.get_ticket(ticket_id))


@helpdesk_router.post(
    "/tickets/{ticket_id}/transition",
    response_model=TicketResponse,
    summary="Change ticket status",
    description="Legal moves: Open -> WIP, WIP -> Resolved. Anything else returns 409."
)
async def transition_ticket(
    ticket_id: str,
    request: TransitionRequest,
    workflow: TicketWorkflowService = Depends(get_workflow_service)
):
    ticket = await workflow.transition(
        ticket_id, TicketStatus(request.to_status), request.changed_by, request.reason
    )
    return TicketResponse.from_domain(ticket)


@helpdesk_router.post(
    "/tickets/{ticket_id}/sub-status",
    response_model=TicketResponse,
    summary="Mark a WIP ticket denied or pushed back"
)
async def set_sub_status(
    ticket_id: str,
    request: SubStatusRequest,
    workflow: TicketWorkflowService = Depends(get_workflow_service)
):
    sub_status = SubStatus(request.sub_status) if request.sub_status else None
    ticket = await workflow.set_sub_status(
        ticket_id, sub_status, request.changed_by, request.reason
    )
    return TicketResponse.from_domain(ticket)


@helpdesk_router.post(
    "/tickets/{ticket_id}/escalate",
    response_model=TicketResponse,
    summary="Escalate a ticket one tier"
)
async def escalate_ticket(
    ticket_id: str,
    request: Optional[EscalateRequest] = None,
    escalation: EscalationService = Depends(get_escalation_service)
):
    request = request or EscalateRequest()
    if request.from_level is not None:
        ticket = await escalation.escalate(
            ticket_id,
            SupportLevel(request.from_level),
            SupportLevel(request.to_level),
            request.reason,
            request.escalated_by,
        )
    else:
        ticket = await escalation.escalate_next(ticket_id, request.reason, request.escalated_by)
    return TicketResponse.from_domain(ticket)


@helpdesk_router.get(
    "/tickets/{ticket_id}/escalation-status",
    response_model=EscalationStatusResponse,
    summary="Deadline status of a ticket"
)
async def get_escalation_status(
    ticket_id: str,
    escalation: EscalationService = Depends(get_escalation_service)
):
    return EscalationStatusResponse(**await escalation.escalation_status(ticket_id))


@helpdesk_router.get(
    "/tickets/{ticket_id}/escalation-chain",
    response_model=List[EscalationEntryResponse],
    summary="Tier assignments of a ticket"
)
async def get_escalation_chain(
    ticket_id: str,
    escalation: EscalationService = Depends(get_escalation_service)
):
    chain = await escalation.escalation_chain(ticket_id)
    return [EscalationEntryResponse.from_domain(entry) for entry in chain]


@helpdesk_router.post(
    "/tickets/{ticket_id}/priority",
    response_model=TicketResponse,
    summary="Set ticket priority",
    description="Records who set it and re-scales the current tier deadline."
)
async def set_priority(
    ticket_id: str,
    request: PriorityRequest,
    priority_service: PriorityService = Depends(get_priority_service)
):
    ticket = await priority_service.set_priority(
        ticket_id, request.priority, request.set_by, request.justification
    )
    return TicketResponse.from_domain(ticket)


@helpdesk_router.get(
    "/escalations/due",
    response_model=List[TicketResponse],
    summary="Tickets past their escalation deadline"
)
async def list_due_escalations(
    escalation: EscalationService = Depends(get_escalation_service)
):
    return [TicketResponse.from_domain(t) for t in await escalation.due_tickets()]


@helpdesk_router.post(
    "/escalations/process",
    response_model=ProcessResult,
    summary="Run the escalation sweep now"
)
async def process_escalations(
    escalation: EscalationService = Depends(get_escalation_service)
):
    with log_latency(logger, "escalation_sweep", trigger="api"):
        result = await escalation.process_pending_escalations()
    return ProcessResult(**result)
