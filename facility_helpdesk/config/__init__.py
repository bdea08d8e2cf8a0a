"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="facility-helpdesk", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Escalation Policy ==========
    escalation_config_path: Path = Field(
        default=Path("escalation_config.yaml"),
        description="Path to escalation policy YAML file"
    )
    escalation_sweep_interval: int = Field(
        default=300,
        description="Seconds between escalation sweeps (0 disables the in-process scheduler)",
        ge=0
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for escalation notices"
    )
    slack_channel: str = Field(
        default="#helpdesk-escalations",
        description="Slack channel for escalation notices"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "testing", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "Open"
    WIP = "WIP"
    RESOLVED = "Resolved"


class SubStatus(str, Enum):
    """Annotations on an in-progress ticket (rework markers)."""
    DENIED = "denied"
    PUSHED_BACK = "pushed_back"


class SupportLevel(str, Enum):
    """Support tiers a ticket walks through while unresolved."""
    L0 = "L0"
    L1 = "L1"
    L2 = "L2"
    L3 = "L3"
    L4 = "L4"
    L5 = "L5"

    @property
    def rank(self) -> int:
        return int(self.value[1:])

    def successor(self) -> Optional["SupportLevel"]:
        """Next tier up, or None at the top tier."""
        if self.rank >= len(SUPPORT_LEVELS) - 1:
            return None
        return SUPPORT_LEVELS[self.rank + 1]


class Priority(str, Enum):
    """Ticket priority codes."""
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"
    P5 = "P5"


# ========== Lists for validation ==========

SUPPORT_LEVELS = list(SupportLevel)
DEFAULT_PRIORITY = Priority.P3.value
VALID_PRIORITIES = [Priority.P1.value, Priority.P2.value, Priority.P3.value, Priority.P4.value]
OPEN_STATUSES = [TicketStatus.OPEN, TicketStatus.WIP]
VALID_SUB_STATUSES = [SubStatus.DENIED, SubStatus.PUSHED_BACK]
