"""
Facility Helpdesk - Main Application
=====================================

Helpdesk escalation and SLA engine of the facility-management suite.

Modules:
- Escalation: rule table, ticket status workflow, tier escalation

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects, state machine, escalation clock
- Infrastructure: Database, policy file, Slack, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from facility_helpdesk.config import settings
from facility_helpdesk.core import ApplicationException
from facility_helpdesk.escalation.application import (
    EscalationService,
    RuleAssigneeDirectory,
    RuleResolver,
    RuleTable,
)
from facility_helpdesk.escalation.infrastructure import (
    EscalationPolicyManager,
    EscalationScheduler,
    SlackEscalationNotifier,
    SQLAlchemyRuleRepository,
    SQLAlchemyTicketRepository,
)
from facility_helpdesk.escalation.interfaces import escalation_router, helpdesk_router
from facility_helpdesk.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    get_session_maker,
    init_database,
)
from facility_helpdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from facility_helpdesk.shared.infrastructure.logging import (
    get_logger, log_latency, setup_logging
)

logger = get_logger(__name__)


def build_sweep_job(app: FastAPI):
    """Scheduler job: pick up rule sets activated elsewhere, then sweep."""

    async def escalation_sweep_job() -> None:
        rule_table: RuleTable = app.state.rule_table
        policy_manager: EscalationPolicyManager = app.state.policy_manager

        await rule_table.refresh()
        with log_latency(logger, "escalation_sweep", trigger="scheduler"):
            async with get_session_context() as session:
                service = EscalationService(
                    SQLAlchemyTicketRepository(session),
                    RuleResolver(rule_table),
                    RuleAssigneeDirectory(policy_manager),
                    app.state.notifier,
                    policy_manager,
                )
                await service.process_pending_escalations()

    return escalation_sweep_job


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load escalation policy and start watching it
    4. Load the active rule table
    5. Start the escalation sweep scheduler (unless interval is 0)

    SHUTDOWN runs the same steps in reverse.
    """
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Facility Helpdesk", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()
    await create_tables()

    policy_manager = EscalationPolicyManager()
    policy_manager.load(settings.escalation_config_path)
    policy_manager.start_watching()

    rule_table = RuleTable(SQLAlchemyRuleRepository(get_session_maker()))
    await rule_table.load()

    notifier = SlackEscalationNotifier(
        webhook_url=settings.slack_webhook_url,
        channel=settings.slack_channel,
        timeout_seconds=settings.slack_timeout_seconds,
    )

    app.state.policy_manager = policy_manager
    app.state.rule_table = rule_table
    app.state.notifier = notifier

    scheduler = None
    if settings.escalation_sweep_interval > 0:
        scheduler = EscalationScheduler(interval_seconds=settings.escalation_sweep_interval)
        await scheduler.start(build_sweep_job(app))
    else:
        logger.info("Escalation scheduler disabled")
    app.state.scheduler = scheduler

    logger.info("Facility Helpdesk started")

    yield

    logger.info("Shutting down Facility Helpdesk")
    if scheduler:
        await scheduler.stop()
    policy_manager.stop_watching()
    await notifier.close()
    await close_database()
    logger.info("Facility Helpdesk shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Facility Helpdesk Escalation API",
        description="""
    ## Helpdesk Escalation & SLA Engine

    **Escalation rules** (`/escalation`): cascading category / sub-category /
    issue / priority lookups, rule resolution with wildcard fallback,
    statistics and whole-table replacement.

    **Helpdesk tickets** (`/helpdesk`): intake, status workflow
    (Open -> WIP -> Resolved), tier escalation L0 -> L5, priority changes
    and the batch escalation sweep.

    **Escalation timing:** a ticket may stay in a tier for
    `(offset(next tier) - offset(current tier)) x priority multiplier`
    minutes. Default offsets L0=0, L1=240, L2=480; multipliers
    P1 0.5, P2 1, P3 1.5, P4 2.
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Added last runs first: correlation id is set before logging reads it
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(escalation_router)
    app.include_router(helpdesk_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check for load balancers and orchestrators."""
        state = request.app.state
        rule_table = getattr(state, "rule_table", None)
        scheduler = getattr(state, "scheduler", None)
        checks = {
            "escalation_policy": "loaded" if getattr(state, "policy_manager", None) else "not_loaded",
            "rule_table": f"version {rule_table.current.version} ({len(rule_table.current)} rules)"
            if rule_table else "not_loaded",
            "escalation_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        }
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "escalation": {"prefix": "/escalation"},
                "helpdesk": {"prefix": "/helpdesk"},
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "facility_helpdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
