"""
Escalation Value Objects
=========================

Immutable value objects for the escalation domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from facility_helpdesk.config import (
    DEFAULT_PRIORITY, SUPPORT_LEVELS, VALID_PRIORITIES, SupportLevel
)


# ========== Normalization ==========

def normalize_key(value: Optional[str]) -> Optional[str]:
    """
    Normalize a classification value for matching.

    Trims and case-folds; blank or missing values become None (wildcard).
    """
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    return cleaned.casefold()


def display_value(value: Optional[str]) -> Optional[str]:
    """Trimmed original text, None when blank."""
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def normalize_priority(value: Optional[str], default: str = DEFAULT_PRIORITY) -> str:
    """
    Normalize a priority to its code.

    Accepts labelled forms used by the ticket forms:
        "P1 - Critical" -> "P1", " p2 " -> "P2", None -> default
    """
    if value is None or not value.strip():
        return default
    code = value.strip().split("-", 1)[0].strip()
    return code.upper()


@dataclass(frozen=True)
class RuleKey:
    """Normalized lookup key of an escalation rule."""
    category: Optional[str]
    sub_category: Optional[str]
    issue: Optional[str]
    priority: str

    @classmethod
    def of(
        cls,
        category: Optional[str],
        sub_category: Optional[str],
        issue: Optional[str],
        priority: Optional[str]
    ) -> "RuleKey":
        return cls(
            category=normalize_key(category),
            sub_category=normalize_key(sub_category),
            issue=normalize_key(issue),
            priority=normalize_priority(priority),
        )

    def fallback_chain(self) -> List["RuleKey"]:
        """Keys to try, most specific first: exact, subcategory wildcard, category wildcard."""
        return [
            self,
            RuleKey(self.category, self.sub_category, None, self.priority),
            RuleKey(self.category, None, None, self.priority),
        ]


@dataclass(frozen=True)
class TierWindow:
    """Response/resolution budget of one support tier."""
    response_minutes: int = 0
    resolution_minutes: int = 0
    assignee: Optional[str] = None

    def __post_init__(self):
        if self.response_minutes < 0 or self.resolution_minutes < 0:
            raise ValueError("tier budgets must be non-negative")

    def to_dict(self) -> dict:
        return {
            "response_time_minutes": self.response_minutes,
            "resolution_time_minutes": self.resolution_minutes,
            "assignee": self.assignee,
        }


def format_minutes(minutes: int) -> str:
    """Human readable duration: 45min, 4h, 4h 30min."""
    if minutes < 60:
        return f"{minutes}min"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}min" if mins else f"{hours}h"


# ========== Escalation Policy ==========

class EscalationPolicy(BaseModel):
    """
    Escalation timing policy loaded from YAML.

    Tier offsets are the minutes after ticket creation at which a tier is
    entered. Deadline window = (offset(next) - offset(current)) x priority multiplier,
    so a P1 ticket (0.5) escalates twice as fast as a P2 ticket (1.0).

    Example:
        Offsets L0=0, L1=240
        P1 multiplier 0.5 -> L0 window = (240 - 0) x 0.5 = 120 minutes
        P2 multiplier 1.0 -> L0 window = 240 minutes
        P4 multiplier 2.0 -> L0 window = 480 minutes

    This is a value object - immutable and defined by its attributes.
    """
    tier_offsets: Dict[str, int] = Field(
        default_factory=lambda: {"L0": 0, "L1": 240, "L2": 480},
        description="Minutes after creation at which each tier is entered"
    )
    priority_multipliers: Dict[str, float] = Field(
        default_factory=lambda: {"P1": 0.5, "P2": 1.0, "P3": 1.5, "P4": 2.0},
        description="Window multipliers by priority"
    )
    priorities: List[str] = Field(
        default_factory=lambda: list(VALID_PRIORITIES),
        description="Priorities accepted for manual assignment"
    )
    default_priority: str = Field(default=DEFAULT_PRIORITY)
    default_resolution_hours: Dict[str, int] = Field(
        default_factory=lambda: {"P1": 4, "P2": 8, "P3": 24, "P4": 48},
        description="Resolution budget used when no rule matches"
    )
    level_assignees: Dict[str, str] = Field(
        default_factory=lambda: {level.value: f"{level.value} Technician" for level in SUPPORT_LEVELS},
        description="Fallback assignee per tier"
    )

    model_config = {"frozen": True}

    @field_validator("tier_offsets")
    @classmethod
    def validate_tier_offsets(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Offsets must name real tiers, be non-negative and strictly increase."""
        levels = {level.value for level in SUPPORT_LEVELS}
        unknown = set(v) - levels
        if unknown:
            raise ValueError(f"unknown tiers in tier_offsets: {sorted(unknown)}")

        ordered = [v[level.value] for level in SUPPORT_LEVELS if level.value in v]
        if any(minutes < 0 for minutes in ordered):
            raise ValueError("tier offsets must be non-negative")
        if any(later <= earlier for earlier, later in zip(ordered, ordered[1:])):
            raise ValueError("tier offsets must strictly increase with the tier")
        return v

    @field_validator("priority_multipliers")
    @classmethod
    def validate_multipliers(cls, v: Dict[str, float]) -> Dict[str, float]:
        for priority, multiplier in v.items():
            if multiplier <= 0:
                raise ValueError(f"multiplier for {priority} must be positive")
        return {normalize_priority(k): m for k, m in v.items()}

    @field_validator("priorities")
    @classmethod
    def validate_priorities(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one priority is required")
        return [normalize_priority(p) for p in v]

    @model_validator(mode="after")
    def validate_default_priority(self) -> "EscalationPolicy":
        if normalize_priority(self.default_priority) not in self.priorities:
            raise ValueError("default_priority must be one of priorities")
        return self

    def get_offset(self, level: SupportLevel) -> Optional[int]:
        """Configured entry offset for a tier, None if not configured."""
        return self.tier_offsets.get(level.value)

    def get_multiplier(self, priority: Optional[str]) -> float:
        """Window multiplier for a priority (1.0 when unknown)."""
        return self.priority_multipliers.get(
            normalize_priority(priority, self.default_priority), 1.0
        )

    def is_valid_priority(self, priority: str) -> bool:
        return priority in self.priorities

    def default_resolution_minutes(self, priority: Optional[str]) -> int:
        hours = self.default_resolution_hours.get(
            normalize_priority(priority, self.default_priority), 48
        )
        return hours * 60

    def fallback_assignee(self, level: SupportLevel) -> str:
        return self.level_assignees.get(level.value, f"{level.value} Technician")


class EscalationClock:
    """
    Pure functions for escalation timing.

    Stateless apart from the policy it reads; the clock never sleeps or
    schedules itself, callers poll should_escalate().
    """

    def __init__(self, policy: EscalationPolicy):
        self._policy = policy

    @property
    def policy(self) -> EscalationPolicy:
        return self._policy

    def window_minutes(self, priority: Optional[str], current_level: SupportLevel) -> Optional[float]:
        """Scaled minutes a ticket may stay in current_level, None if it never escalates."""
        next_level = current_level.successor()
        if next_level is None:
            return None

        current_offset = self._policy.get_offset(current_level)
        next_offset = self._policy.get_offset(next_level)
        if current_offset is None or next_offset is None:
            return None

        return (next_offset - current_offset) * self._policy.get_multiplier(priority)

    def calculate_next_escalation(
        self,
        anchor: datetime,
        priority: Optional[str],
        current_level: SupportLevel = SupportLevel.L0
    ) -> Optional[datetime]:
        """
        Calculate the escalation deadline for a tier.

        Args:
            anchor: When the ticket entered current_level (creation time for L0)
            priority: Ticket priority code
            current_level: Tier the ticket is at

        Returns:
            Deadline, or None when no further escalation is configured
        """
        window = self.window_minutes(priority, current_level)
        if window is None:
            return None
        return anchor + timedelta(minutes=window)

    @staticmethod
    def should_escalate(next_escalation_time: Optional[datetime], now: datetime) -> bool:
        """True iff a deadline is set and has been reached."""
        if next_escalation_time is None:
            return False
        return now >= next_escalation_time
