"""
Escalation Infrastructure Repositories
=======================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from facility_helpdesk.config import (
    OPEN_STATUSES, SubStatus, SupportLevel, TicketStatus
)
from facility_helpdesk.core.exceptions import (
    ConcurrentModificationException, DomainException, RepositoryException
)
from facility_helpdesk.escalation.application.services import (
    IRuleRepository, ITicketRepository
)
from facility_helpdesk.escalation.domain import (
    EscalationEntry, EscalationRule, StatusChange, Ticket, TierWindow
)
from facility_helpdesk.escalation.infrastructure.models import (
    EscalationRuleModel, HelpdeskTicketModel, RuleSetModel
)
from facility_helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Previous rule set is kept so a process still loading it does not read a
# half-deleted set; anything older is pruned on replace.
_RETAINED_RULE_SETS = 2


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ========== Rule Repository ==========

def _rule_to_model(rule: EscalationRule, rule_set_id: int) -> EscalationRuleModel:
    key = rule.key
    return EscalationRuleModel(
        rule_set_id=rule_set_id,
        category=rule.category,
        sub_category=rule.sub_category,
        issue=rule.issue,
        priority=rule.priority,
        category_key=key.category,
        sub_category_key=key.sub_category,
        issue_key=key.issue,
        tiers={level.value: window.to_dict() for level, window in rule.tiers.items()},
    )


def _rule_from_model(model: EscalationRuleModel) -> EscalationRule:
    tiers = {
        SupportLevel(level): TierWindow(
            response_minutes=data.get("response_time_minutes", 0),
            resolution_minutes=data.get("resolution_time_minutes", 0),
            assignee=data.get("assignee"),
        )
        for level, data in (model.tiers or {}).items()
    }
    return EscalationRule(
        id=model.id,
        category=model.category,
        sub_category=model.sub_category,
        issue=model.issue,
        priority=model.priority,
        tiers=tiers,
    )


class SQLAlchemyRuleRepository(IRuleRepository):
    """
    SQLAlchemy implementation of the rule set store.

    Takes a session factory rather than a session: it is owned by the
    long-lived RuleTable, not by a request.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def active_version(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RuleSetModel.id).where(RuleSetModel.is_active.is_(True))
            )
            return result.scalar_one_or_none() or 0

    async def load_active(self) -> Tuple[int, List[EscalationRule]]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RuleSetModel.id).where(RuleSetModel.is_active.is_(True))
            )
            version = result.scalar_one_or_none()
            if version is None:
                return 0, []

            result = await session.execute(
                select(EscalationRuleModel)
                .where(EscalationRuleModel.rule_set_id == version)
                .order_by(EscalationRuleModel.id)
            )
            return version, [_rule_from_model(m) for m in result.scalars().all()]

    async def replace_all(self, rules: List[EscalationRule]) -> Tuple[int, List[EscalationRule]]:
        """Insert rules as a new set and make it the only active one, in one transaction."""
        async with self._session_factory() as session:
            try:
                rule_set = RuleSetModel(is_active=False, rule_count=len(rules))
                session.add(rule_set)
                await session.flush()

                models = [_rule_to_model(rule, rule_set.id) for rule in rules]
                session.add_all(models)
                await session.flush()

                await session.execute(
                    update(RuleSetModel)
                    .where(RuleSetModel.id != rule_set.id)
                    .values(is_active=False)
                )
                rule_set.is_active = True

                stale = RuleSetModel.id <= rule_set.id - _RETAINED_RULE_SETS
                await session.execute(
                    delete(EscalationRuleModel).where(
                        EscalationRuleModel.rule_set_id.in_(select(RuleSetModel.id).where(stale))
                    )
                )
                await session.execute(delete(RuleSetModel).where(stale))

                version = rule_set.id
                stored = [_rule_from_model(m) for m in models]
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise RepositoryException(f"Failed to replace rule set: {e}") from e

            return version, stored


# ========== Ticket Repository ==========

def _ticket_from_model(model: HelpdeskTicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        category=model.category,
        sub_category=model.sub_category,
        issue=model.issue,
        priority=model.priority,
        default_priority=model.default_priority,
        reported_by=model.reported_by,
        created_at=_as_utc(model.created_at),
        status=TicketStatus(model.status),
        sub_status=SubStatus(model.sub_status) if model.sub_status else None,
        status_history=[StatusChange.from_dict(c) for c in model.status_history or []],
        current_level=SupportLevel(model.current_level),
        escalation_chain=[EscalationEntry.from_dict(e) for e in model.escalation_chain or []],
        next_escalation_time=_as_utc(model.next_escalation_time),
        wip_started_at=_as_utc(model.wip_started_at),
        resolved_at=_as_utc(model.resolved_at),
        priority_manually_set=model.priority_manually_set,
        priority_set_by=model.priority_set_by,
        priority_set_at=_as_utc(model.priority_set_at),
        priority_justification=model.priority_justification,
        version=model.version,
    )


def _mutable_columns(ticket: Ticket) -> dict:
    """Columns the engine writes after intake."""
    return {
        "priority": ticket.priority,
        "status": ticket.status.value,
        "sub_status": ticket.sub_status.value if ticket.sub_status else None,
        "status_history": [c.to_dict() for c in ticket.status_history],
        "current_level": ticket.current_level.value,
        "escalation_chain": [e.to_dict() for e in ticket.escalation_chain],
        "next_escalation_time": ticket.next_escalation_time,
        "wip_started_at": ticket.wip_started_at,
        "resolved_at": ticket.resolved_at,
        "priority_manually_set": ticket.priority_manually_set,
        "priority_set_by": ticket.priority_set_by,
        "priority_set_at": ticket.priority_set_at,
        "priority_justification": ticket.priority_justification,
    }


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Every write commits on its own so a sweep interrupted midway leaves
    each ticket either fully escalated or untouched.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        result = await self._session.execute(
            select(HelpdeskTicketModel).where(HelpdeskTicketModel.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return _ticket_from_model(model) if model else None

    async def add(self, ticket: Ticket) -> Ticket:
        model = HelpdeskTicketModel(
            id=ticket.id,
            category=ticket.category,
            sub_category=ticket.sub_category,
            issue=ticket.issue,
            reported_by=ticket.reported_by,
            default_priority=ticket.default_priority,
            created_at=ticket.created_at,
            version=ticket.version,
            **_mutable_columns(ticket),
        )
        self._session.add(model)
        try:
            await self._session.commit()
        except IntegrityError as e:
            # Lost an intake race against another writer of the same id
            await self._session.rollback()
            raise DomainException(
                f"Ticket {ticket.id} already exists", {"ticket_id": ticket.id}
            ) from e
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise RepositoryException(
                f"Failed to add ticket {ticket.id}: {e}", {"ticket_id": ticket.id}
            ) from e
        return ticket

    async def save(self, ticket: Ticket) -> Ticket:
        """
        Conditional update on (id, version).

        Any failure rolls the session back so the caller can keep using it
        for the next ticket.
        """
        expected = ticket.version
        try:
            result = await self._session.execute(
                update(HelpdeskTicketModel)
                .where(and_(
                    HelpdeskTicketModel.id == ticket.id,
                    HelpdeskTicketModel.version == expected,
                ))
                .values(version=expected + 1, **_mutable_columns(ticket))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise RepositoryException(
                f"Failed to save ticket {ticket.id}: {e}", {"ticket_id": ticket.id}
            ) from e

        if result.rowcount != 1:
            await self._session.rollback()
            logger.info(
                "Ticket write lost a version race",
                extra={"ticket_id": ticket.id, "expected_version": expected}
            )
            raise ConcurrentModificationException("Ticket", ticket.id, expected)

        ticket.version = expected + 1
        return ticket

    async def list(self, statuses: Optional[List[TicketStatus]] = None) -> List[Ticket]:
        stmt = select(HelpdeskTicketModel)
        if statuses:
            stmt = stmt.where(HelpdeskTicketModel.status.in_([s.value for s in statuses]))
        stmt = stmt.order_by(HelpdeskTicketModel.created_at.desc()).execution_options(
            populate_existing=True
        )

        result = await self._session.execute(stmt)
        return [_ticket_from_model(m) for m in result.scalars().all()]

    async def list_due(self, now: datetime) -> List[Ticket]:
        stmt = (
            select(HelpdeskTicketModel)
            .where(and_(
                HelpdeskTicketModel.status.in_([s.value for s in OPEN_STATUSES]),
                HelpdeskTicketModel.next_escalation_time.is_not(None),
                HelpdeskTicketModel.next_escalation_time <= now,
            ))
            .order_by(HelpdeskTicketModel.next_escalation_time.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [_ticket_from_model(m) for m in result.scalars().all()]
