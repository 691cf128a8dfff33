"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from finops_sla.sla.application.dto import (
    TaskRegisterRequest,
    TaskCompleteRequest,
    NextEpisodeRequest,
    JustificationRequest,
    NotificationFilter,
    NotificationView,
    NotificationPage,
    KindSummary,
    DashboardSummary,
    SyncReport,
    TaskStatusView,
    TaskResponse,
    JustificationResponse,
    ReadAllResponse,
)
from finops_sla.sla.application.services import (
    SLAEvaluationService,
    EscalationDispatcher,
    AcknowledgmentGate,
    NotificationService,
    TaskRegistryService,
    ITaskRepository,
    INotificationRepository,
    IJustificationRepository,
    IUnitOfWork,
    IPolicyProvider,
    IEscalationNotifier,
    UnitOfWorkFactory,
)

__all__ = [
    # DTOs
    "TaskRegisterRequest",
    "TaskCompleteRequest",
    "NextEpisodeRequest",
    "JustificationRequest",
    "NotificationFilter",
    "NotificationView",
    "NotificationPage",
    "KindSummary",
    "DashboardSummary",
    "SyncReport",
    "TaskStatusView",
    "TaskResponse",
    "JustificationResponse",
    "ReadAllResponse",
    # Services
    "SLAEvaluationService",
    "EscalationDispatcher",
    "AcknowledgmentGate",
    "NotificationService",
    "TaskRegistryService",
    # Interfaces
    "ITaskRepository",
    "INotificationRepository",
    "IJustificationRepository",
    "IUnitOfWork",
    "IPolicyProvider",
    "IEscalationNotifier",
    "UnitOfWorkFactory",
]
