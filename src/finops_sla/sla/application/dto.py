"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA monitoring API layer.

These Pydantic models handle serialization/deserialization and validation
for service results and HTTP requests/responses.
"""

from pydantic import BaseModel, Field, model_validator
from typing import List, Optional, Literal
from datetime import date, datetime


# ========== Type Aliases for Literals ==========
LifecycleStatusStr = Literal[
    "PENDING", "PRE_START", "DUE", "SLA_BREACHED", "ESCALATED", "ACKNOWLEDGED", "COMPLETED"
]
EventKindStr = Literal["PRE_START", "MISSED_START", "ESCALATED", "JUSTIFICATION_REQUIRED"]
NotificationStatusStr = Literal["unread", "read", "active", "archived", "all"]
PriorityStr = Literal["medium", "high", "critical"]


# ========== Request DTOs ==========

class TaskRegisterRequest(BaseModel):
    """Register a task for monitoring."""
    name: str = Field(..., min_length=1, max_length=255, description="Task display name")
    scheduled_start: datetime = Field(
        ..., description="Scheduled start; naive values are read in the canonical timezone"
    )
    sla_minutes: int = Field(..., ge=0, le=7 * 24 * 60, description="SLA window in minutes")


class TaskCompleteRequest(BaseModel):
    """Mark a task episode completed."""
    completed_at: Optional[datetime] = Field(None, description="Completion time (defaults to now)")


class NextEpisodeRequest(BaseModel):
    """Start the next scheduled occurrence of a task."""
    scheduled_start: datetime = Field(..., description="Scheduled start of the new episode")
    sla_minutes: Optional[int] = Field(None, ge=0, le=7 * 24 * 60, description="New SLA window")


class JustificationRequest(BaseModel):
    """Written justification for an escalated task."""
    text: str = Field(..., description="Explanation of the delay")
    actor: str = Field(..., min_length=1, max_length=255, description="Who is submitting")


class NotificationFilter(BaseModel):
    """Query parameters for notification listings."""
    kind: Optional[EventKindStr] = None
    status: NotificationStatusStr = "active"
    task_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    day: Optional[date] = Field(None, description="Calendar day in the canonical timezone")
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_range(self) -> "NotificationFilter":
        """Reject inverted date ranges."""
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to cannot be before date_from")
        return self


# ========== Response DTOs ==========

class NotificationView(BaseModel):
    """A ledger row with its countdown rendered at read time."""
    id: str
    task_id: str
    task_name: Optional[str] = None
    episode: int
    event_kind: EventKindStr
    priority: PriorityStr
    payload: str = Field(..., description="Summary written when the event occurred")
    minutes_delta: int = Field(..., description="Minutes remaining (+) or late (-) at creation")
    created_at: datetime
    read_at: Optional[datetime] = None
    read_by: Optional[str] = None
    archived_at: Optional[datetime] = None
    archived_by: Optional[str] = None

    # Derived fresh on every read
    task_status: Optional[LifecycleStatusStr] = None
    live_text: Optional[str] = None
    minutes_remaining: Optional[int] = None
    minutes_overdue: Optional[int] = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


class NotificationPage(BaseModel):
    """Paginated notification listing."""
    notifications: List[NotificationView]
    total: int
    unread_count: int
    limit: int
    offset: int
    has_more: bool


class KindSummary(BaseModel):
    """Per-kind counts over non-archived notifications."""
    event_kind: EventKindStr
    priority: PriorityStr
    total_count: int
    unread_count: int


class DashboardSummary(BaseModel):
    """Aggregate counts for the monitoring dashboard."""
    total: int = Field(..., description="Non-archived notifications")
    unread: int = Field(..., description="Non-archived unread notifications")
    escalated: int = Field(..., description="Tasks escalated in their current episode")
    justification_pending: int = Field(..., description="Escalated tasks still awaiting justification")


class SyncReport(BaseModel):
    """Result of one evaluation pass."""
    trigger: Literal["timer", "manual"]
    tasks_evaluated: int = 0
    events_emitted: int = 0
    tasks_failed: int = 0
    started_at: datetime
    finished_at: Optional[datetime] = None


class TaskStatusView(BaseModel):
    """Stored and live lifecycle state for one task."""
    task_id: str
    name: str
    episode: int
    scheduled_start: datetime
    sla_minutes: int
    stored_status: LifecycleStatusStr
    live_status: LifecycleStatusStr
    countdown: str
    minutes_remaining: Optional[int] = None
    minutes_overdue: Optional[int] = None
    pre_start_at: datetime
    breach_at: datetime
    escalate_at: datetime
    completed_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    justification: Optional[str] = None


class TaskResponse(BaseModel):
    """Monitored task as stored."""
    task_id: str
    name: str
    episode: int
    scheduled_start: datetime
    sla_minutes: int
    lifecycle_status: LifecycleStatusStr
    completed_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    justification: Optional[str] = None


class JustificationResponse(BaseModel):
    """Accepted justification record."""
    id: str
    task_id: str
    episode: int
    text: str
    submitted_at: datetime
    submitted_by: str
    escalated_at: Optional[datetime] = None


class ReadAllResponse(BaseModel):
    """Result of mark-all-read."""
    updated: int
