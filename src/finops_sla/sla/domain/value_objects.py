"""
SLA Value Objects
==================

Immutable value objects and pure services for the SLA domain.

The lifecycle evaluator and the countdown renderer live here: one
source of truth for threshold math, one for display text. Neither
touches storage or reads the system clock.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from finops_sla.config import (
    settings, LifecycleStatus, EventKind, LIFECYCLE_ORDER
)
from finops_sla.sla.domain.entities import MonitoredTask


def to_canonical(value: datetime, tz: ZoneInfo) -> datetime:
    """
    Normalize an instant into the canonical timezone.

    Naive values are wall-clock times in the canonical zone; aware
    values are converted. The host's local zone never participates.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def minutes_until(target: datetime, now: datetime) -> int:
    """Whole minutes remaining, rounded up, never negative."""
    seconds = (target - now).total_seconds()
    return max(0, math.ceil(seconds / 60))


def minutes_since(origin: datetime, now: datetime) -> int:
    """Whole minutes elapsed, rounded down, never negative."""
    seconds = (now - origin).total_seconds()
    return max(0, math.floor(seconds / 60))


def format_minutes(minutes: int) -> str:
    """``45 min`` below an hour, ``1h 5m`` from an hour up."""
    if minutes < 60:
        return f"{minutes} min"
    return f"{minutes // 60}h {minutes % 60}m"


class ThresholdPolicy(BaseModel):
    """
    Threshold policy loaded from YAML.

    Value object: pure configuration, replaced wholesale on reload.
    """
    pre_start_lead_minutes: int = Field(
        default=15, ge=0,
        description="Minutes before scheduled start when the pre-start warning opens"
    )
    sla_grace_minutes: int = Field(
        default=0, ge=0,
        description="Extra minutes added to the SLA window before it counts as breached"
    )
    escalation_delay_minutes: int = Field(
        default=15, ge=0,
        description="Minutes between SLA breach and escalation"
    )
    justification_min_length: int = Field(
        default=10, ge=1,
        description="Minimum justification length (characters, whitespace trimmed)"
    )
    evaluation_interval_seconds: int = Field(
        default=30, ge=1,
        description="Seconds between periodic evaluation ticks"
    )
    notification_retention_days: int = Field(
        default=30, ge=1,
        description="Archived notifications older than this are purged"
    )
    timezone: str = Field(
        default_factory=lambda: settings.timezone,
        description="Canonical timezone for naive scheduled starts"
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def pre_start_lead(self) -> timedelta:
        return timedelta(minutes=self.pre_start_lead_minutes)

    @property
    def escalation_delay(self) -> timedelta:
        return timedelta(minutes=self.escalation_delay_minutes)


@dataclass(frozen=True)
class TaskDeadlines:
    """The four threshold instants of one task episode."""
    pre_start_at: datetime
    scheduled_start: datetime
    breach_at: datetime
    escalate_at: datetime

    @classmethod
    def for_task(cls, task: MonitoredTask, policy: ThresholdPolicy) -> "TaskDeadlines":
        start = to_canonical(task.scheduled_start, policy.tzinfo)
        breach_at = start + timedelta(minutes=task.sla_minutes + policy.sla_grace_minutes)
        return cls(
            pre_start_at=start - policy.pre_start_lead,
            scheduled_start=start,
            breach_at=breach_at,
            escalate_at=breach_at + policy.escalation_delay,
        )

    def status_at(self, now: datetime) -> str:
        """Status implied by elapsed time alone."""
        if now < self.pre_start_at:
            return LifecycleStatus.PENDING
        if now < self.scheduled_start:
            return LifecycleStatus.PRE_START
        if now < self.breach_at:
            return LifecycleStatus.DUE
        if now < self.escalate_at:
            return LifecycleStatus.SLA_BREACHED
        return LifecycleStatus.ESCALATED


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of one evaluation: the status to store and the events to record."""
    previous_status: str
    status: str
    events: Tuple[str, ...] = ()
    clock_skew: bool = False
    deadlines: Optional[TaskDeadlines] = field(default=None, compare=False)

    @property
    def changed(self) -> bool:
        return self.status != self.previous_status

    @property
    def escalated_now(self) -> bool:
        """This evaluation is the ESCALATED transition of the episode."""
        return self.changed and self.status == LifecycleStatus.ESCALATED


def status_rank(status: str) -> int:
    return LIFECYCLE_ORDER.index(status)


# Candidate events per time-derived window. Inserts are idempotent, so
# re-offering a kind that already exists is harmless.
WINDOW_EVENTS: Dict[str, Tuple[str, ...]] = {
    LifecycleStatus.PENDING: (),
    LifecycleStatus.PRE_START: (EventKind.PRE_START,),
    LifecycleStatus.DUE: (EventKind.MISSED_START,),
    LifecycleStatus.SLA_BREACHED: (EventKind.MISSED_START,),
    LifecycleStatus.ESCALATED: (
        EventKind.MISSED_START,
        EventKind.ESCALATED,
        EventKind.JUSTIFICATION_REQUIRED,
    ),
}


class LifecycleEvaluator:
    """
    Pure state machine: ``(task, now, policy) -> EvaluationResult``.

    Never raises for business conditions and never reads the clock.
    """

    @staticmethod
    def evaluate(
        task: MonitoredTask,
        now: datetime,
        policy: ThresholdPolicy
    ) -> EvaluationResult:
        tz = policy.tzinfo
        now = to_canonical(now, tz)
        stored = task.lifecycle_status
        deadlines = TaskDeadlines.for_task(task, policy)

        def hold(events: Tuple[str, ...] = (), clock_skew: bool = False) -> EvaluationResult:
            return EvaluationResult(stored, stored, events, clock_skew, deadlines)

        if task.last_evaluated_at is not None and now < to_canonical(task.last_evaluated_at, tz):
            return hold(clock_skew=True)

        # Justification gate: only the acknowledgment path releases ESCALATED
        if stored == LifecycleStatus.ESCALATED:
            if task.completed_at is not None:
                return hold()
            return hold((EventKind.ESCALATED, EventKind.JUSTIFICATION_REQUIRED))

        if task.completed_at is not None:
            return EvaluationResult(stored, LifecycleStatus.COMPLETED, (), False, deadlines)

        if stored == LifecycleStatus.ACKNOWLEDGED:
            return hold()

        derived = deadlines.status_at(now)
        if status_rank(derived) < status_rank(stored):
            return hold()

        return EvaluationResult(stored, derived, WINDOW_EVENTS[derived], False, deadlines)


@dataclass(frozen=True)
class Countdown:
    """Display-ready countdown derived at read time."""
    text: str
    minutes_remaining: Optional[int] = None
    minutes_overdue: Optional[int] = None


class CountdownRenderer:
    """
    Formats countdown and event text.

    Remaining time rounds up and overdue time rounds down, so a task
    still inside its window never reads as "0 min remaining".
    """

    @staticmethod
    def render(status: str, deadlines: TaskDeadlines, now: datetime) -> Countdown:
        now = now.astimezone(deadlines.scheduled_start.tzinfo)

        if status == LifecycleStatus.COMPLETED:
            return Countdown("Completed")

        if status in (LifecycleStatus.PENDING, LifecycleStatus.PRE_START):
            remaining = minutes_until(deadlines.scheduled_start, now)
            return Countdown(f"Starts in {format_minutes(remaining)}", minutes_remaining=remaining)

        if status == LifecycleStatus.DUE:
            remaining = minutes_until(deadlines.breach_at, now)
            return Countdown(f"{format_minutes(remaining)} remaining", minutes_remaining=remaining)

        overdue = minutes_since(deadlines.breach_at, now)
        return Countdown(f"Overdue by {format_minutes(overdue)}", minutes_overdue=overdue)

    @staticmethod
    def event_payload(
        kind: str,
        task: MonitoredTask,
        deadlines: TaskDeadlines,
        now: datetime
    ) -> Tuple[str, int]:
        """
        Creation-time summary for a ledger row.

        Returns ``(text, minutes_delta)`` where minutes_delta is positive
        for time remaining and negative for time late.
        """
        now = now.astimezone(deadlines.scheduled_start.tzinfo)
        start_label = deadlines.scheduled_start.strftime("%H:%M")

        if kind == EventKind.PRE_START:
            remaining = minutes_until(deadlines.scheduled_start, now)
            return (
                f"SLA Warning - {task.name} starts at {start_label}, "
                f"{format_minutes(remaining)} remaining to start",
                remaining,
            )

        if kind == EventKind.MISSED_START:
            late = minutes_since(deadlines.scheduled_start, now)
            if late == 0:
                return f"{task.name} missed its {start_label} start", 0
            return (
                f"{task.name} missed its {start_label} start - "
                f"not started {format_minutes(late)} after schedule",
                -late,
            )

        overdue = minutes_since(deadlines.breach_at, now)
        if kind == EventKind.ESCALATED:
            return (
                f"Escalation - {task.name} is overdue by {format_minutes(overdue)}",
                -overdue,
            )
        return (
            f"Justification required - {task.name} is overdue by "
            f"{format_minutes(overdue)}; explain the delay to continue",
            -overdue,
        )
