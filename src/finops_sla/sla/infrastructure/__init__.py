"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and unit of work
- External: Policy file watcher, escalation webhook, scheduler
"""

from finops_sla.sla.infrastructure.models import (
    MonitoredTaskModel,
    NotificationModel,
    JustificationModel,
)
from finops_sla.sla.infrastructure.repositories import (
    SQLAlchemyTaskRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyJustificationRepository,
    SQLAlchemyUnitOfWork,
    sqlalchemy_uow_factory,
)
from finops_sla.sla.infrastructure.external import (
    PolicyConfigManager,
    CircuitBreaker,
    EscalationNotifier,
    SLAScheduler,
)

__all__ = [
    "MonitoredTaskModel",
    "NotificationModel",
    "JustificationModel",
    "SQLAlchemyTaskRepository",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemyJustificationRepository",
    "SQLAlchemyUnitOfWork",
    "sqlalchemy_uow_factory",
    "PolicyConfigManager",
    "CircuitBreaker",
    "EscalationNotifier",
    "SLAScheduler",
]
