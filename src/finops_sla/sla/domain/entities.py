"""
SLA Domain Entities
====================

Pure Python domain entities for SLA deadline monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from finops_sla.config import (
    LifecycleStatus, EventKind, EVENT_KIND_PRIORITY, LIFECYCLE_ORDER
)


@dataclass
class MonitoredTask:
    """
    A scheduled operational task watched for SLA compliance.

    The task row itself belongs to the surrounding application; the
    engine only owns ``lifecycle_status`` and the monitoring bookkeeping
    fields (episode, escalated_at, last_evaluated_at, justification).
    """

    id: str
    name: str
    scheduled_start: datetime
    sla_minutes: int
    lifecycle_status: str = LifecycleStatus.PENDING
    episode: int = 1

    completed_at: Optional[datetime] = None
    justification: Optional[str] = None
    escalated_at: Optional[datetime] = None
    last_evaluated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.sla_minutes < 0:
            raise ValueError("sla_minutes cannot be negative")
        if self.lifecycle_status not in LIFECYCLE_ORDER:
            raise ValueError(f"unknown lifecycle status: {self.lifecycle_status}")

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def is_awaiting_justification(self) -> bool:
        """Escalated and held until a justification is attached."""
        return self.lifecycle_status == LifecycleStatus.ESCALATED


@dataclass
class NotificationEvent:
    """
    One ledger row: an event that occurred for a task episode.

    ``payload`` is the summary written at creation time. Live countdown
    text is never stored here; it is rendered on read.
    """

    id: Optional[str]
    task_id: str
    episode: int
    event_kind: str
    created_at: datetime
    payload: str
    minutes_delta: int = 0

    read_at: Optional[datetime] = None
    read_by: Optional[str] = None
    archived_at: Optional[datetime] = None
    archived_by: Optional[str] = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def priority(self) -> str:
        return EVENT_KIND_PRIORITY[self.event_kind]

    @property
    def is_escalation(self) -> bool:
        return self.event_kind in (EventKind.ESCALATED, EventKind.JUSTIFICATION_REQUIRED)


@dataclass
class JustificationRecord:
    """Written explanation that releases an escalated task episode."""

    id: Optional[str]
    task_id: str
    episode: int
    text: str
    submitted_at: datetime
    submitted_by: str
    escalated_at: Optional[datetime] = None
