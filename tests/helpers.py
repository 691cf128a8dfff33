"""Shared builders for SLA tests."""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from finops_sla.config import LifecycleStatus
from finops_sla.sla.application import IPolicyProvider
from finops_sla.sla.domain import MonitoredTask, ThresholdPolicy

IST = ZoneInfo("Asia/Kolkata")


def ist(hour: int, minute: int = 0, second: int = 0, day: int = 15) -> datetime:
    """An instant on 2024-01-<day> in the canonical timezone."""
    return datetime(2024, 1, day, hour, minute, second, tzinfo=IST)


def make_task(
    scheduled_start: Optional[datetime] = None,
    sla_minutes: int = 15,
    status: str = LifecycleStatus.PENDING,
    **kwargs
) -> MonitoredTask:
    return MonitoredTask(
        id=kwargs.pop("id", "00000000-0000-0000-0000-000000000001"),
        name=kwargs.pop("name", "Clearing file validation"),
        scheduled_start=scheduled_start or ist(9, 0),
        sla_minutes=sla_minutes,
        lifecycle_status=status,
        **kwargs
    )


class StaticPolicyProvider(IPolicyProvider):
    def __init__(self, policy: ThresholdPolicy):
        self.policy = policy

    def get_policy(self) -> ThresholdPolicy:
        return self.policy
