"""
Escalation Application Services
================================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from facility_helpdesk.config import SubStatus, SupportLevel, TicketStatus
from facility_helpdesk.core.exceptions import (
    ApplicationException,
    DomainException,
    InvalidEscalationException,
    ResourceNotFoundException,
    RuleNotFoundException,
    ValidationException,
)
from facility_helpdesk.escalation.domain import (
    EscalationClock,
    EscalationEntry,
    EscalationPolicy,
    EscalationRule,
    RuleKey,
    Ticket,
    TierWindow,
    display_value,
    normalize_key,
    normalize_priority,
)
from facility_helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IRuleRepository(ABC):
    """Interface for rule set storage."""

    @abstractmethod
    async def load_active(self) -> Tuple[int, List[EscalationRule]]:
        """Version and rules of the active rule set (0 and [] when none)."""

    @abstractmethod
    async def active_version(self) -> int:
        """Version number of the active rule set, 0 when none."""

    @abstractmethod
    async def replace_all(self, rules: List[EscalationRule]) -> Tuple[int, List[EscalationRule]]:
        """Store rules as a new version and activate it atomically."""


class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def add(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket."""

    @abstractmethod
    async def save(self, ticket: Ticket) -> Ticket:
        """
        Write ticket if its stored version still equals ticket.version.

        Raises ConcurrentModificationException otherwise. On success the
        returned ticket carries the incremented version.
        """

    @abstractmethod
    async def list(self, statuses: Optional[List[TicketStatus]] = None) -> List[Ticket]:
        """List tickets, optionally filtered by status."""

    @abstractmethod
    async def list_due(self, now: datetime) -> List[Ticket]:
        """Open/WIP tickets whose escalation deadline is at or before now."""


class IEscalationPolicyProvider(ABC):
    """Interface for escalation policy access."""

    @abstractmethod
    def get_policy(self) -> EscalationPolicy:
        """Get current escalation policy."""


class IAssigneeDirectory(ABC):
    """Who takes a ticket at a given tier."""

    @abstractmethod
    def assignee_for(self, level: SupportLevel, rule: Optional[EscalationRule]) -> str:
        """Assignee name for level."""


class IEscalationNotifier(ABC):
    """Outbound notice that a ticket moved up a tier."""

    @abstractmethod
    async def notify_escalation(
        self,
        ticket: Ticket,
        from_level: SupportLevel,
        reason: str
    ) -> bool:
        """Send the notice. Delivery failures are reported as False, never raised."""


class IClock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware time."""


class SystemClock(IClock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


# ========== Rule Table ==========

class RuleSnapshot:
    """
    Immutable view of one rule set version.

    Building a snapshot validates the whole set; a duplicate normalized
    key rejects it.
    """

    def __init__(
        self,
        version: int,
        rules: List[EscalationRule],
        loaded_at: Optional[datetime] = None
    ):
        index: Dict[RuleKey, EscalationRule] = {}
        for rule in rules:
            if rule.key in index:
                raise ValidationException(
                    "Duplicate escalation rule",
                    {
                        "category": rule.category,
                        "sub_category": rule.sub_category,
                        "issue": rule.issue,
                        "priority": rule.priority,
                    }
                )
            index[rule.key] = rule

        self._version = version
        self._rules = tuple(rules)
        self._index = index
        self._loaded_at = loaded_at

    @classmethod
    def empty(cls) -> "RuleSnapshot":
        return cls(0, [])

    @property
    def version(self) -> int:
        return self._version

    @property
    def rules(self) -> Tuple[EscalationRule, ...]:
        return self._rules

    @property
    def loaded_at(self) -> Optional[datetime]:
        return self._loaded_at

    def lookup(self, key: RuleKey) -> Optional[EscalationRule]:
        return self._index.get(key)

    def __len__(self) -> int:
        return len(self._rules)


class RuleTable:
    """
    Owner of the active rule snapshot.

    Readers take `current` once per operation and keep using that object,
    so a concurrent replace never shows them a partial set.
    """

    def __init__(self, repository: IRuleRepository, clock: Optional[IClock] = None):
        self._repository = repository
        self._clock = clock or SystemClock()
        self._snapshot = RuleSnapshot.empty()
        self._lock = asyncio.Lock()

    @property
    def current(self) -> RuleSnapshot:
        return self._snapshot

    async def load(self) -> RuleSnapshot:
        """Load the active rule set from storage and swap it in."""
        async with self._lock:
            version, rules = await self._repository.load_active()
            self._snapshot = RuleSnapshot(version, rules, self._clock.now())

        logger.info(
            "Rule table loaded",
            extra={"rule_set_version": version, "total_rules": len(rules)}
        )
        return self._snapshot

    async def replace(self, rules: List[EscalationRule]) -> RuleSnapshot:
        """
        Replace the rule set: validate, persist as a new version, swap.

        Nothing is written when validation fails.
        """
        RuleSnapshot(0, rules)

        async with self._lock:
            version, stored = await self._repository.replace_all(rules)
            self._snapshot = RuleSnapshot(version, stored, self._clock.now())

        logger.info(
            "Rule table replaced",
            extra={"rule_set_version": version, "total_rules": len(stored)}
        )
        return self._snapshot

    async def refresh(self) -> bool:
        """Reload when another process activated a different version."""
        version = await self._repository.active_version()
        if version == self._snapshot.version:
            return False
        await self.load()
        return True


class RuleResolver:
    """Finds the rule for a classification: exact, then sub-category wildcard, then category wildcard."""

    def __init__(self, rule_table: RuleTable):
        self._rule_table = rule_table

    def find(
        self,
        category: Optional[str],
        sub_category: Optional[str],
        issue: Optional[str],
        priority: Optional[str] = None
    ) -> Optional[EscalationRule]:
        snapshot = self._rule_table.current
        key = RuleKey.of(category, sub_category, issue, priority)
        for candidate in key.fallback_chain():
            rule = snapshot.lookup(candidate)
            if rule is not None:
                return rule
        return None

    def resolve(
        self,
        category: Optional[str],
        sub_category: Optional[str],
        issue: Optional[str],
        priority: Optional[str] = None
    ) -> EscalationRule:
        rule = self.find(category, sub_category, issue, priority)
        if rule is None:
            logger.debug(
                "No escalation rule matched",
                extra={"category": category, "sub_category": sub_category,
                       "issue": issue, "priority": priority}
            )
            raise RuleNotFoundException(
                category, sub_category, issue, normalize_priority(priority)
            )
        return rule


class RuleAssigneeDirectory(IAssigneeDirectory):
    """Tier assignee from the matched rule, else the policy's per-level default."""

    def __init__(self, policy_provider: IEscalationPolicyProvider):
        self._policy_provider = policy_provider

    def assignee_for(self, level: SupportLevel, rule: Optional[EscalationRule]) -> str:
        if rule is not None:
            assignee = rule.tier(level).assignee
            if assignee:
                return assignee
        return self._policy_provider.get_policy().fallback_assignee(level)


# ========== Catalog & Stats ==========

def _distinct(values) -> List[str]:
    """Distinct display values, first spelling wins, sorted case-insensitively."""
    seen: Dict[str, str] = {}
    for value in values:
        key = normalize_key(value)
        if key is not None and key not in seen:
            seen[key] = display_value(value)
    return [seen[key] for key in sorted(seen)]


class RuleCatalogService:
    """Cascading lookups over the active rule table (category -> sub-category -> issue -> priority)."""

    def __init__(self, rule_table: RuleTable):
        self._rule_table = rule_table

    def _rules(self) -> Tuple[EscalationRule, ...]:
        return self._rule_table.current.rules

    def categories(self) -> List[str]:
        return _distinct(rule.category for rule in self._rules())

    def subcategories(self, category: str) -> List[str]:
        wanted = normalize_key(category)
        return _distinct(
            rule.sub_category for rule in self._rules()
            if rule.key.category == wanted
        )

    def issues(self, category: str, sub_category: str) -> List[str]:
        wanted_category = normalize_key(category)
        wanted_sub = normalize_key(sub_category)
        return _distinct(
            rule.issue for rule in self._rules()
            if rule.key.category == wanted_category and rule.key.sub_category == wanted_sub
        )

    def priorities(
        self,
        category: Optional[str] = None,
        sub_category: Optional[str] = None,
        issue: Optional[str] = None
    ) -> List[str]:
        """Priorities of the rules matching the given (optional) filters."""
        filters = {
            "category": normalize_key(category),
            "sub_category": normalize_key(sub_category),
            "issue": normalize_key(issue),
        }
        found = set()
        for rule in self._rules():
            key = rule.key
            if all(
                wanted is None or getattr(key, field) == wanted
                for field, wanted in filters.items()
            ):
                found.add(rule.priority)
        return sorted(found)

    def search(self, query: str) -> List[EscalationRule]:
        """Rules whose category, sub-category, issue or priority contains query."""
        needle = normalize_key(query)
        if needle is None:
            return []
        results = []
        for rule in self._rules():
            haystack = (rule.category, rule.sub_category, rule.issue, rule.priority)
            if any(value and needle in value.casefold() for value in haystack):
                results.append(rule)
        return results


class RuleStatsService:
    """Summary statistics over the active rule table."""

    def __init__(self, rule_table: RuleTable):
        self._rule_table = rule_table

    def get_stats(self) -> dict:
        snapshot = self._rule_table.current
        categories = _distinct(rule.category for rule in snapshot.rules)
        return {
            "total_rules": len(snapshot),
            "unique_categories": len(categories),
            "unique_priorities": sorted({rule.priority for rule in snapshot.rules}),
            "categories": categories,
            "rule_set_version": snapshot.version,
            "loaded_at": snapshot.loaded_at,
        }


# ========== Ticket Services ==========

class _TicketServiceBase:
    """Shared plumbing for services that read and write tickets."""

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        policy_provider: IEscalationPolicyProvider,
        clock: Optional[IClock] = None
    ):
        self._ticket_repo = ticket_repository
        self._policy_provider = policy_provider
        self._time = clock or SystemClock()

    def _escalation_clock(self) -> EscalationClock:
        # Policy may be hot-reloaded, so build per call.
        return EscalationClock(self._policy_provider.get_policy())

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._ticket_repo.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    def _tier_window(
        self,
        rule: Optional[EscalationRule],
        level: SupportLevel,
        priority: str
    ) -> TierWindow:
        """Budgets from the matched rule, or the policy default resolution SLA."""
        if rule is not None:
            return rule.tier(level)
        policy = self._policy_provider.get_policy()
        return TierWindow(resolution_minutes=policy.default_resolution_minutes(priority))


class TicketWorkflowService(_TicketServiceBase):
    """Ticket intake and status changes."""

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        rule_resolver: RuleResolver,
        assignees: IAssigneeDirectory,
        policy_provider: IEscalationPolicyProvider,
        clock: Optional[IClock] = None
    ):
        super().__init__(ticket_repository, policy_provider, clock)
        self._resolver = rule_resolver
        self._assignees = assignees

    async def open_ticket(
        self,
        ticket_id: str,
        category: str,
        sub_category: Optional[str],
        issue: Optional[str],
        reported_by: str,
        priority: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> Ticket:
        """
        Register a ticket: status Open at L0 with its first deadline.

        Args:
            ticket_id: ID assigned by the ticketing system
            category, sub_category, issue: Classification
            reported_by: Who raised the ticket
            priority: Optional priority code; unset means the default
            created_at: Creation time, defaults to now

        Returns:
            The stored ticket
        """
        if await self._ticket_repo.get(ticket_id) is not None:
            raise DomainException(
                f"Ticket {ticket_id} is already registered",
                {"ticket_id": ticket_id}
            )

        policy = self._policy_provider.get_policy()
        if display_value(priority) and not policy.is_valid_priority(normalize_priority(priority)):
            raise ValidationException(
                f"Invalid priority '{priority}'. Must be one of {policy.priorities}",
                {"priority": priority}
            )

        created_at = created_at or self._time.now()
        effective_priority = normalize_priority(priority, policy.default_priority)
        rule = self._resolver.find(category, sub_category, issue, effective_priority)

        ticket = Ticket.open(
            ticket_id=ticket_id,
            category=category,
            sub_category=display_value(sub_category),
            issue=display_value(issue),
            priority=priority,
            reported_by=reported_by,
            created_at=created_at,
            assignee=self._assignees.assignee_for(SupportLevel.L0, rule),
            window=self._tier_window(rule, SupportLevel.L0, effective_priority),
            next_escalation_time=self._escalation_clock().calculate_next_escalation(
                created_at, effective_priority, SupportLevel.L0
            ),
            default_priority=policy.default_priority,
        )
        ticket = await self._ticket_repo.add(ticket)

        logger.info(
            "Ticket registered",
            extra={
                "ticket_id": ticket.id,
                "priority": ticket.effective_priority,
                "rule_matched": rule is not None,
                "next_escalation_time": ticket.next_escalation_time.isoformat()
                if ticket.next_escalation_time else None,
            }
        )
        return ticket

    async def list_tickets(self, status: Optional[TicketStatus] = None) -> List[Ticket]:
        return await self._ticket_repo.list([status] if status else None)

    async def transition(
        self,
        ticket_id: str,
        to_status: TicketStatus,
        changed_by: str,
        reason: Optional[str] = None
    ) -> Ticket:
        ticket = await self.get_ticket(ticket_id)
        from_status = ticket.status
        ticket.transition_to(to_status, changed_by, self._time.now(), reason)
        ticket = await self._ticket_repo.save(ticket)

        logger.info(
            "Ticket status changed",
            extra={"ticket_id": ticket_id, "from_status": from_status.value,
                   "to_status": to_status.value, "changed_by": changed_by}
        )
        return ticket

    async def set_sub_status(
        self,
        ticket_id: str,
        sub_status: Optional[SubStatus],
        changed_by: str,
        reason: Optional[str] = None
    ) -> Ticket:
        ticket = await self.get_ticket(ticket_id)
        ticket.set_sub_status(sub_status, changed_by, self._time.now(), reason)
        return await self._ticket_repo.save(ticket)


class EscalationService(_TicketServiceBase):
    """
    Service for tier escalation.

    Invoked, never self-triggering: the sweep runs when a scheduler or an
    API caller asks for it.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        rule_resolver: RuleResolver,
        assignees: IAssigneeDirectory,
        notifier: IEscalationNotifier,
        policy_provider: IEscalationPolicyProvider,
        clock: Optional[IClock] = None
    ):
        super().__init__(ticket_repository, policy_provider, clock)
        self._resolver = rule_resolver
        self._assignees = assignees
        self._notifier = notifier

    def should_escalate(self, ticket: Ticket, now: Optional[datetime] = None) -> bool:
        if not ticket.is_open:
            return False
        return EscalationClock.should_escalate(
            ticket.next_escalation_time, now or self._time.now()
        )

    async def escalate(
        self,
        ticket_id: str,
        from_level: SupportLevel,
        to_level: SupportLevel,
        reason: str,
        escalated_by: str = "system"
    ) -> Ticket:
        ticket = await self.get_ticket(ticket_id)
        return await self._escalate(ticket, from_level, to_level, reason, escalated_by)

    async def escalate_next(
        self,
        ticket_id: str,
        reason: str,
        escalated_by: str = "system"
    ) -> Ticket:
        """Escalate to the tier right above the current one."""
        ticket = await self.get_ticket(ticket_id)
        to_level = ticket.current_level.successor()
        if to_level is None:
            raise InvalidEscalationException(
                ticket_id, f"already at top tier {ticket.current_level.value}"
            )
        return await self._escalate(ticket, ticket.current_level, to_level, reason, escalated_by)

    async def _escalate(
        self,
        ticket: Ticket,
        from_level: SupportLevel,
        to_level: SupportLevel,
        reason: str,
        escalated_by: str
    ) -> Ticket:
        now = self._time.now()
        priority = ticket.effective_priority
        rule = self._resolver.find(ticket.category, ticket.sub_category, ticket.issue, priority)

        ticket.escalate_to(
            from_level=from_level,
            to_level=to_level,
            assignee=self._assignees.assignee_for(to_level, rule),
            window=self._tier_window(rule, to_level, priority),
            now=now,
            next_escalation_time=self._escalation_clock().calculate_next_escalation(
                now, priority, to_level
            ),
            reason=reason,
        )
        ticket = await self._ticket_repo.save(ticket)

        logger.info(
            "Ticket escalated",
            extra={"ticket_id": ticket.id, "from_level": from_level.value,
                   "to_level": to_level.value, "escalated_by": escalated_by,
                   "reason": reason}
        )
        await self._notifier.notify_escalation(ticket, from_level, reason)
        return ticket

    async def process_pending_escalations(self) -> Dict[str, int]:
        """
        Escalate every due Open/WIP ticket by one tier.

        Each ticket is saved on its own; a failure is counted and logged
        and the sweep moves on.

        Returns:
            {"escalated": n, "errors": m}
        """
        now = self._time.now()
        due = await self._ticket_repo.list_due(now)

        escalated = 0
        errors = 0
        for ticket in due:
            if not self.should_escalate(ticket, now):
                continue
            to_level = ticket.current_level.successor()
            if to_level is None:
                continue
            try:
                await self._escalate(
                    ticket,
                    ticket.current_level,
                    to_level,
                    f"SLA breach: {ticket.current_level.value} deadline passed",
                    "scheduler",
                )
                escalated += 1
            except ApplicationException as e:
                errors += 1
                logger.warning(
                    "Escalation failed",
                    extra={"ticket_id": ticket.id, "error": e.message}
                )
            except Exception as e:
                errors += 1
                logger.error(
                    "Escalation failed unexpectedly",
                    extra={"ticket_id": ticket.id, "error": str(e)},
                    exc_info=True
                )

        logger.info(
            "Escalation sweep finished",
            extra={"due": len(due), "escalated": escalated, "errors": errors}
        )
        return {"escalated": escalated, "errors": errors}

    async def escalation_status(self, ticket_id: str) -> dict:
        ticket = await self.get_ticket(ticket_id)
        now = self._time.now()
        remaining = None
        if ticket.next_escalation_time is not None:
            remaining = int((ticket.next_escalation_time - now).total_seconds() // 60)

        return {
            "ticket_id": ticket.id,
            "status": ticket.status.value,
            "current_level": ticket.current_level.value,
            "next_level": ticket.current_level.successor().value
            if ticket.current_level.successor() else None,
            "next_escalation_time": ticket.next_escalation_time,
            "should_escalate": self.should_escalate(ticket, now),
            "minutes_in_level": int((now - ticket.tier_entered_at).total_seconds() // 60),
            "minutes_remaining": remaining,
        }

    async def due_tickets(self) -> List[Ticket]:
        return await self._ticket_repo.list_due(self._time.now())

    async def escalation_chain(self, ticket_id: str) -> List[EscalationEntry]:
        ticket = await self.get_ticket(ticket_id)
        return list(ticket.escalation_chain)


class PriorityService(_TicketServiceBase):
    """Explicit, audited priority changes."""

    async def set_priority(
        self,
        ticket_id: str,
        priority: str,
        set_by: str,
        justification: Optional[str] = None
    ) -> Ticket:
        """
        Set a ticket's priority and re-scale its current deadline.

        The new deadline is measured from when the ticket entered its
        current tier, using the new priority's multiplier. It may already
        be in the past, in which case the next sweep escalates.
        """
        policy = self._policy_provider.get_policy()
        code = normalize_priority(priority, policy.default_priority)
        if not policy.is_valid_priority(code):
            raise ValidationException(
                f"Invalid priority '{priority}'. Must be one of {policy.priorities}",
                {"priority": priority}
            )

        ticket = await self.get_ticket(ticket_id)
        previous = ticket.effective_priority
        deadline = None
        if ticket.status != TicketStatus.RESOLVED:
            deadline = self._escalation_clock().calculate_next_escalation(
                ticket.tier_entered_at, code, ticket.current_level
            )

        ticket.apply_priority(code, set_by, self._time.now(), deadline, justification)
        ticket = await self._ticket_repo.save(ticket)

        logger.info(
            "Ticket priority set",
            extra={"ticket_id": ticket_id, "from_priority": previous,
                   "to_priority": code, "set_by": set_by}
        )
        return ticket
