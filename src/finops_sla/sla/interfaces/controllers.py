"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA monitoring endpoints.

Controllers are thin - they delegate to application services.
Domain errors propagate to the application exception handler, which
maps them to status codes.
"""

from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import ValidationError as PydanticValidationError

from finops_sla.core import ValidationException
from finops_sla.sla.application import (
    AcknowledgmentGate,
    NotificationService,
    SLAEvaluationService,
    TaskRegistryService,
    TaskRegisterRequest,
    TaskCompleteRequest,
    NextEpisodeRequest,
    JustificationRequest,
    NotificationFilter,
    NotificationPage,
    KindSummary,
    DashboardSummary,
    SyncReport,
    TaskStatusView,
    TaskResponse,
    JustificationResponse,
    ReadAllResponse,
)
from finops_sla.sla.application.dto import EventKindStr, NotificationStatusStr
from finops_sla.sla.domain import MonitoredTask
from finops_sla.sla.interfaces.dependencies import (
    get_acknowledgment_gate,
    get_actor,
    get_evaluation_service,
    get_notification_service,
    get_task_registry,
)
from finops_sla.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])


# ========== Example payloads for Swagger ==========

NOTIFICATION_PAGE_EXAMPLE = {
    "notifications": [
        {
            "id": "3f1c2a9e-6b7d-4e0a-9c55-1d2e3f4a5b6c",
            "task_id": "8a7b6c5d-4e3f-2a1b-0c9d-8e7f6a5b4c3d",
            "task_name": "Bank reconciliation upload",
            "episode": 1,
            "event_kind": "ESCALATED",
            "priority": "critical",
            "payload": "Escalation - Bank reconciliation upload is overdue by 15 min",
            "minutes_delta": -15,
            "created_at": "2024-01-15T04:45:00Z",
            "read_at": None,
            "task_status": "ESCALATED",
            "live_text": "Overdue by 1h 5m",
            "minutes_overdue": 65
        }
    ],
    "total": 1,
    "unread_count": 1,
    "limit": 50,
    "offset": 0,
    "has_more": False
}

DASHBOARD_EXAMPLE = {
    "total": 12,
    "unread": 4,
    "escalated": 2,
    "justification_pending": 1
}


def _task_response(task: MonitoredTask) -> TaskResponse:
    return TaskResponse(
        task_id=task.id,
        name=task.name,
        episode=task.episode,
        scheduled_start=task.scheduled_start,
        sla_minutes=task.sla_minutes,
        lifecycle_status=task.lifecycle_status,
        completed_at=task.completed_at,
        escalated_at=task.escalated_at,
        justification=task.justification,
    )


# ========== Notifications ==========

@router.get(
    "/notifications",
    response_model=NotificationPage,
    summary="List SLA notifications",
    description="""
    List ledger notifications, newest first, with countdown text computed
    at request time.

    **Query Parameters:**
    - `kind`: `PRE_START`, `MISSED_START`, `ESCALATED`, `JUSTIFICATION_REQUIRED`
    - `status`: `unread`, `read`, `active` (default, not archived), `archived`, `all`
    - `task_id`: Only notifications for one task
    - `date_from` / `date_to`: Creation time range
    - `day`: One calendar day in the canonical timezone (YYYY-MM-DD)
    - `limit` / `offset`: Pagination
    """,
    responses={
        200: {
            "description": "Notification page",
            "content": {"application/json": {"example": NOTIFICATION_PAGE_EXAMPLE}}
        }
    }
)
async def list_notifications(
    kind: Optional[EventKindStr] = Query(None, description="Filter by event kind"),
    notification_status: NotificationStatusStr = Query("active", alias="status", description="Read/archive filter"),
    task_id: Optional[str] = Query(None, description="Filter by task"),
    date_from: Optional[datetime] = Query(None, description="Created at or after"),
    date_to: Optional[datetime] = Query(None, description="Created at or before"),
    day: Optional[date] = Query(None, description="Calendar day in the canonical timezone"),
    limit: int = Query(50, ge=1, le=500, description="Results per page"),
    offset: int = Query(0, ge=0, description="Page offset"),
    service: NotificationService = Depends(get_notification_service)
):
    try:
        filters = NotificationFilter(
            kind=kind,
            status=notification_status,
            task_id=task_id,
            date_from=date_from,
            date_to=date_to,
            day=day,
            limit=limit,
            offset=offset,
        )
    except PydanticValidationError as e:
        raise ValidationException("Invalid notification filter", {"error": str(e)}) from e
    return await service.list_notifications(filters)


@router.get(
    "/notifications/summary",
    response_model=List[KindSummary],
    summary="Per-kind notification counts",
    description="Total and unread counts over non-archived notifications, one entry per event kind."
)
async def notification_summary(
    service: NotificationService = Depends(get_notification_service)
):
    return await service.kind_summary()


@router.post(
    "/notifications/read-all",
    response_model=ReadAllResponse,
    summary="Mark all notifications read"
)
async def mark_all_read(
    actor: str = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service)
):
    updated = await service.acknowledge_all_read(actor)
    return ReadAllResponse(updated=updated)


@router.post(
    "/notifications/{notification_id}/read",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Mark a notification read",
    description="Idempotent: re-reading a notification leaves the first reader recorded.",
    responses={404: {"description": "Notification not found or archived"}}
)
async def mark_read(
    notification_id: str,
    actor: str = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service)
):
    await service.acknowledge_read(notification_id, actor)


@router.post(
    "/notifications/{notification_id}/archive",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Archive a notification",
    description="Archived notifications are hidden by default and never re-emitted for the same episode.",
    responses={404: {"description": "Notification not found or already archived"}}
)
async def archive_notification(
    notification_id: str,
    actor: str = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service)
):
    await service.archive(notification_id, actor)


@router.get(
    "/dashboard",
    response_model=DashboardSummary,
    summary="SLA dashboard counts",
    responses={
        200: {
            "description": "Dashboard counts",
            "content": {"application/json": {"example": DASHBOARD_EXAMPLE}}
        }
    }
)
async def get_dashboard(
    service: NotificationService = Depends(get_notification_service)
):
    return await service.dashboard_summary()


# ========== Evaluation ==========

@router.post(
    "/sync",
    response_model=SyncReport,
    summary="Run an evaluation pass now",
    description="""
    Evaluate every active task immediately, using the same code path as
    the periodic tick.

    - **503**: the store could not be reached (partial counts in `details`)
    - **504**: the pass exceeded `timeout_seconds` (partial counts in `details`)
    """
)
async def sync_now(
    timeout_seconds: Optional[float] = Query(None, gt=0, le=300, description="Give up after this many seconds"),
    service: SLAEvaluationService = Depends(get_evaluation_service)
):
    return await service.sync_now(timeout_seconds)


# ========== Tasks ==========

@router.post(
    "/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a task for SLA monitoring",
    description="Naive `scheduled_start` values are interpreted in the canonical timezone."
)
async def register_task(
    request: TaskRegisterRequest,
    registry: TaskRegistryService = Depends(get_task_registry)
):
    task = await registry.register_task(request.name, request.scheduled_start, request.sla_minutes)
    return _task_response(task)


@router.get(
    "/tasks/{task_id}",
    response_model=TaskStatusView,
    summary="Get live task status",
    description="Stored status alongside the status and countdown derived from the current time.",
    responses={404: {"description": "Task not found"}}
)
async def get_task_status(
    task_id: str,
    registry: TaskRegistryService = Depends(get_task_registry)
):
    return await registry.get_task_status(task_id)


@router.post(
    "/tasks/{task_id}/complete",
    response_model=TaskResponse,
    summary="Record task completion",
    responses={
        404: {"description": "Task not found"},
        409: {"description": "Task already completed at a different time"}
    }
)
async def complete_task(
    task_id: str,
    request: Optional[TaskCompleteRequest] = None,
    registry: TaskRegistryService = Depends(get_task_registry)
):
    completed_at = request.completed_at if request else None
    task = await registry.complete_task(task_id, completed_at)
    return _task_response(task)


@router.post(
    "/tasks/{task_id}/next-episode",
    response_model=TaskResponse,
    summary="Start the next occurrence of a task",
    responses={
        404: {"description": "Task not found"},
        409: {"description": "Task is escalated and awaiting justification"}
    }
)
async def start_next_episode(
    task_id: str,
    request: NextEpisodeRequest,
    registry: TaskRegistryService = Depends(get_task_registry)
):
    task = await registry.start_next_episode(task_id, request.scheduled_start, request.sla_minutes)
    return _task_response(task)


@router.post(
    "/tasks/{task_id}/justification",
    response_model=JustificationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a justification for an escalated task",
    description="""
    Releases an ESCALATED task to ACKNOWLEDGED and archives its
    justification-required notification.

    - **404**: unknown task
    - **409**: already acknowledged, or task not escalated
    - **422**: text too short after trimming whitespace
    """
)
async def submit_justification(
    task_id: str,
    request: JustificationRequest,
    gate: AcknowledgmentGate = Depends(get_acknowledgment_gate)
):
    record = await gate.submit_justification(task_id, request.text, request.actor)
    return JustificationResponse(
        id=record.id,
        task_id=record.task_id,
        episode=record.episode,
        text=record.text,
        submitted_at=record.submitted_at,
        submitted_by=record.submitted_by,
        escalated_at=record.escalated_at,
    )


sla_router = router
