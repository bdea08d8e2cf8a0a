"""
Escalation Infrastructure Models
=================================

SQLAlchemy ORM models for the escalation module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from facility_helpdesk.config import DEFAULT_PRIORITY, SupportLevel, TicketStatus
from facility_helpdesk.infrastructure.database import Base


class RuleSetModel(Base):
    """
    One version of the rule table.

    Exactly one row is active; the id doubles as the version number.
    """
    __tablename__ = "escalation_rule_sets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    rule_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    rules: Mapped[List["EscalationRuleModel"]] = relationship(
        back_populates="rule_set", cascade="all, delete-orphan"
    )


class EscalationRuleModel(Base):
    """
    Database model for EscalationRule entity.

    Maps to the 'escalation_rules' table. The *_key columns hold the
    normalized lookup values; tiers holds {"L0": {...}, ...} as JSON.
    """
    __tablename__ = "escalation_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_set_id: Mapped[int] = mapped_column(
        ForeignKey("escalation_rule_sets.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Display values
    category: Mapped[str] = mapped_column(String(255), nullable=False)
    sub_category: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    issue: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(10), nullable=False)

    # Normalized lookup values
    category_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    sub_category_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    issue_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    tiers: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    rule_set: Mapped[RuleSetModel] = relationship(back_populates="rules")

    __table_args__ = (
        UniqueConstraint(
            "rule_set_id", "category_key", "sub_category_key", "issue_key", "priority",
            name="uq_escalation_rule_key"
        ),
    )


class HelpdeskTicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'helpdesk_tickets' table. Status history and the
    escalation chain are append-only lists stored as JSON.
    """
    __tablename__ = "helpdesk_tickets"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Classification
    category: Mapped[str] = mapped_column(String(255), nullable=False)
    sub_category: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    issue: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    default_priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=DEFAULT_PRIORITY
    )
    reported_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TicketStatus.OPEN.value, index=True
    )
    sub_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status_history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Escalation
    current_level: Mapped[str] = mapped_column(
        String(5), nullable=False, default=SupportLevel.L0.value
    )
    escalation_chain: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    next_escalation_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    wip_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Priority audit
    priority_manually_set: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority_set_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    priority_set_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    priority_justification: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Optimistic concurrency token
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
