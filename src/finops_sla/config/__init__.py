"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="finops-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/finops",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Monitoring ==========
    sla_policy_path: Path = Field(
        default=Path("sla_policy.yaml"),
        description="Path to the threshold policy YAML file"
    )
    timezone: str = Field(
        default="Asia/Kolkata",
        description="Canonical timezone in which scheduled starts are interpreted"
    )
    enable_scheduler: bool = Field(
        default=True,
        description="Run the periodic evaluation loop inside the API process"
    )
    sync_timeout_seconds: float = Field(
        default=10.0,
        description="Default timeout for on-demand sync calls",
        gt=0,
        le=300
    )

    # ========== Escalation Webhook ==========
    escalation_webhook_url: Optional[str] = Field(
        default=None,
        description="Incoming webhook URL notified on escalation (best effort)"
    )
    escalation_channel: str = Field(
        default="#finops-escalations",
        description="Channel named in escalation webhook payloads"
    )
    webhook_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for webhook calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
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
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject zone names the tz database does not know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class LifecycleStatus(str):
    """Monitored task lifecycle states, in forward order."""
    PENDING = "PENDING"
    PRE_START = "PRE_START"
    DUE = "DUE"
    SLA_BREACHED = "SLA_BREACHED"
    ESCALATED = "ESCALATED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    COMPLETED = "COMPLETED"


class EventKind(str):
    """Notification event kinds written to the ledger."""
    PRE_START = "PRE_START"
    MISSED_START = "MISSED_START"
    ESCALATED = "ESCALATED"
    JUSTIFICATION_REQUIRED = "JUSTIFICATION_REQUIRED"


class NotificationPriority(str):
    """Display priority derived from the event kind."""
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationStatus(str):
    """Read/archive filter values for notification listings."""
    UNREAD = "unread"
    READ = "read"
    ACTIVE = "active"
    ARCHIVED = "archived"
    ALL = "all"


# ========== Lists for validation ==========

LIFECYCLE_ORDER = [
    LifecycleStatus.PENDING, LifecycleStatus.PRE_START,
    LifecycleStatus.DUE, LifecycleStatus.SLA_BREACHED,
    LifecycleStatus.ESCALATED, LifecycleStatus.ACKNOWLEDGED,
    LifecycleStatus.COMPLETED
]
VALID_EVENT_KINDS = [
    EventKind.PRE_START, EventKind.MISSED_START,
    EventKind.ESCALATED, EventKind.JUSTIFICATION_REQUIRED
]
VALID_NOTIFICATION_STATUSES = [
    NotificationStatus.UNREAD, NotificationStatus.READ,
    NotificationStatus.ACTIVE, NotificationStatus.ARCHIVED,
    NotificationStatus.ALL
]
EVENT_KIND_PRIORITY = {
    EventKind.PRE_START: NotificationPriority.MEDIUM,
    EventKind.MISSED_START: NotificationPriority.HIGH,
    EventKind.ESCALATED: NotificationPriority.CRITICAL,
    EventKind.JUSTIFICATION_REQUIRED: NotificationPriority.CRITICAL,
}
# Kinds forwarded to the escalation webhook
ESCALATION_EVENT_KINDS = [EventKind.ESCALATED, EventKind.JUSTIFICATION_REQUIRED]
