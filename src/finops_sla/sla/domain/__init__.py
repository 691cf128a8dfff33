"""
SLA Domain Layer
================

Domain layer for SLA deadline monitoring.

Contains:
- Entities: MonitoredTask, NotificationEvent, JustificationRecord
- Value Objects: ThresholdPolicy, TaskDeadlines, EvaluationResult, Countdown
- Domain Services: LifecycleEvaluator, CountdownRenderer
- Clocks: injectable time sources

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from finops_sla.sla.domain.clock import Clock, SystemClock, FixedClock
from finops_sla.sla.domain.entities import (
    MonitoredTask,
    NotificationEvent,
    JustificationRecord,
)
from finops_sla.sla.domain.value_objects import (
    ThresholdPolicy,
    TaskDeadlines,
    EvaluationResult,
    LifecycleEvaluator,
    Countdown,
    CountdownRenderer,
    to_canonical,
)

__all__ = [
    # Clocks
    "Clock",
    "SystemClock",
    "FixedClock",
    # Entities
    "MonitoredTask",
    "NotificationEvent",
    "JustificationRecord",
    # Value Objects & Services
    "ThresholdPolicy",
    "TaskDeadlines",
    "EvaluationResult",
    "LifecycleEvaluator",
    "Countdown",
    "CountdownRenderer",
    "to_canonical",
]
