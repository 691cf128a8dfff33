"""
SLA Dependency Wiring
======================

Builds the SLA service graph once at startup and exposes it to route
handlers through FastAPI dependencies.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from finops_sla.core import StoreUnavailableException
from finops_sla.sla.application import (
    AcknowledgmentGate,
    EscalationDispatcher,
    IEscalationNotifier,
    IPolicyProvider,
    NotificationService,
    SLAEvaluationService,
    TaskRegistryService,
)
from finops_sla.sla.domain import Clock, SystemClock
from finops_sla.sla.infrastructure import sqlalchemy_uow_factory


@dataclass
class SLAServices:
    """Everything the SLA routes need, shared for the process lifetime."""
    evaluation: SLAEvaluationService
    notifications: NotificationService
    gate: AcknowledgmentGate
    registry: TaskRegistryService
    dispatcher: EscalationDispatcher
    policy_provider: IPolicyProvider
    clock: Clock


def build_sla_services(
    session_maker: async_sessionmaker[AsyncSession],
    policy_provider: IPolicyProvider,
    clock: Optional[Clock] = None,
    notifier: Optional[IEscalationNotifier] = None
) -> SLAServices:
    clock = clock or SystemClock()
    uow_factory = sqlalchemy_uow_factory(session_maker)
    dispatcher = EscalationDispatcher(notifier)

    return SLAServices(
        evaluation=SLAEvaluationService(uow_factory, policy_provider, clock, dispatcher),
        notifications=NotificationService(uow_factory, policy_provider, clock),
        gate=AcknowledgmentGate(uow_factory, policy_provider, clock, dispatcher),
        registry=TaskRegistryService(uow_factory, policy_provider, clock),
        dispatcher=dispatcher,
        policy_provider=policy_provider,
        clock=clock,
    )


def get_sla_services(request: Request) -> SLAServices:
    """Services stored on app.state during startup."""
    services = getattr(request.app.state, "sla", None)
    if services is None:
        raise StoreUnavailableException("SLA services are not initialized (database unavailable)")
    return services


def get_evaluation_service(services: SLAServices = Depends(get_sla_services)) -> SLAEvaluationService:
    return services.evaluation


def get_notification_service(services: SLAServices = Depends(get_sla_services)) -> NotificationService:
    return services.notifications


def get_acknowledgment_gate(services: SLAServices = Depends(get_sla_services)) -> AcknowledgmentGate:
    return services.gate


def get_task_registry(services: SLAServices = Depends(get_sla_services)) -> TaskRegistryService:
    return services.registry


def get_actor(
    x_actor: str = Header(default="system", alias="X-Actor", description="Who is performing the action")
) -> str:
    return x_actor.strip() or "system"
