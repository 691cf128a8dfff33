"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories, unit of work,
  clock, policy provider), not concrete implementations

Every store interaction runs inside a unit of work, one transaction each.
Correctness under concurrent evaluators comes from the store:
compare-and-set status updates and uniqueness-guarded inserts.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple
from uuid import uuid4

from finops_sla.config import (
    settings, LifecycleStatus, EventKind, EVENT_KIND_PRIORITY, ESCALATION_EVENT_KINDS,
    VALID_EVENT_KINDS,
)
from finops_sla.core import (
    AlreadyAcknowledgedException,
    InvalidStateException,
    ResourceNotFoundException,
    StoreUnavailableException,
    SyncFailedException,
    SyncTimeoutException,
    ValidationException,
)
from finops_sla.shared.infrastructure.logging import get_logger
from finops_sla.sla.application.dto import (
    DashboardSummary,
    KindSummary,
    NotificationFilter,
    NotificationPage,
    NotificationView,
    SyncReport,
    TaskStatusView,
)
from finops_sla.sla.domain import (
    Clock,
    CountdownRenderer,
    EvaluationResult,
    JustificationRecord,
    LifecycleEvaluator,
    MonitoredTask,
    NotificationEvent,
    TaskDeadlines,
    ThresholdPolicy,
    to_canonical,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITaskRepository(ABC):
    """Interface for monitored task data access."""

    @abstractmethod
    async def get(self, task_id: str, for_update: bool = False) -> Optional[MonitoredTask]:
        """Get task by ID, optionally locking the row."""

    @abstractmethod
    async def get_many(self, task_ids: Sequence[str]) -> Dict[str, MonitoredTask]:
        """Get several tasks keyed by ID."""

    @abstractmethod
    async def list_active_ids(self) -> List[str]:
        """IDs of every task whose status is not COMPLETED."""

    @abstractmethod
    async def add(self, task: MonitoredTask) -> MonitoredTask:
        """Insert a new task."""

    @abstractmethod
    async def compare_and_set_status(
        self,
        task_id: str,
        episode: int,
        expected_status: str,
        new_status: str,
        evaluated_at: datetime,
        escalated_at: Optional[datetime] = None
    ) -> bool:
        """
        Write the evaluated status only if the row still holds
        ``expected_status`` for ``episode`` and was not evaluated later.
        """

    @abstractmethod
    async def acknowledge(
        self,
        task_id: str,
        episode: int,
        justification: str,
        at: datetime
    ) -> bool:
        """Move ESCALATED to ACKNOWLEDGED for the episode."""

    @abstractmethod
    async def set_completed(self, task_id: str, completed_at: datetime) -> bool:
        """Set completed_at if it is still unset."""

    @abstractmethod
    async def start_episode(
        self,
        task_id: str,
        expected_episode: int,
        scheduled_start: datetime,
        sla_minutes: int,
        at: datetime
    ) -> bool:
        """Reset the task into a new PENDING episode."""

    @abstractmethod
    async def count_by_status(self, statuses: Sequence[str]) -> int:
        """Number of tasks currently in any of ``statuses``."""


class INotificationRepository(ABC):
    """Interface for the notification ledger."""

    @abstractmethod
    async def insert_if_absent(self, event: NotificationEvent) -> Optional[NotificationEvent]:
        """Insert unless (task, episode, kind) exists; None on conflict."""

    @abstractmethod
    async def get(self, notification_id: str) -> Optional[NotificationEvent]:
        """Get notification by ID."""

    @abstractmethod
    async def list(
        self,
        filters: NotificationFilter,
        date_from: Optional[datetime],
        date_to: Optional[datetime]
    ) -> Tuple[List[NotificationEvent], int, int]:
        """Return (page, total matching, unread matching)."""

    @abstractmethod
    async def mark_read(self, notification_id: str, actor: str, at: datetime) -> bool:
        """Set read_at if unset; False when nothing changed."""

    @abstractmethod
    async def mark_all_read(self, actor: str, at: datetime) -> int:
        """Mark every unread, non-archived notification read."""

    @abstractmethod
    async def archive(self, notification_id: str, actor: str, at: datetime) -> bool:
        """Set archived_at if unset; False when nothing changed."""

    @abstractmethod
    async def archive_kind(
        self,
        task_id: str,
        episode: int,
        event_kind: str,
        actor: str,
        at: datetime
    ) -> int:
        """Archive the episode's notification of ``event_kind``."""

    @abstractmethod
    async def counts(self) -> Tuple[int, int]:
        """(non-archived total, non-archived unread)."""

    @abstractmethod
    async def kind_counts(self) -> Dict[str, Tuple[int, int]]:
        """Per kind: (non-archived total, unread)."""

    @abstractmethod
    async def purge_archived_before(self, cutoff: datetime) -> int:
        """Delete archived rows older than ``cutoff``."""


class IJustificationRepository(ABC):
    """Interface for justification records."""

    @abstractmethod
    async def insert_if_absent(self, record: JustificationRecord) -> Optional[JustificationRecord]:
        """Insert unless the episode already has one; None on conflict."""

    @abstractmethod
    async def get_for_episode(self, task_id: str, episode: int) -> Optional[JustificationRecord]:
        """Justification for a given task episode."""


class IUnitOfWork(ABC):
    """
    One store transaction.

    Usage:
        async with uow_factory() as uow:
            task = await uow.tasks.get(task_id)
            ...
            await uow.commit()

    Leaving the block without commit() rolls back.
    """

    tasks: ITaskRepository
    notifications: INotificationRepository
    justifications: IJustificationRepository

    @abstractmethod
    async def __aenter__(self) -> "IUnitOfWork":
        """Open the transaction."""

    @abstractmethod
    async def __aexit__(self, exc_type, exc, tb) -> bool:
        """Roll back anything uncommitted and release the connection."""

    @abstractmethod
    async def commit(self) -> None:
        """Commit the transaction."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard the transaction."""


class IPolicyProvider(ABC):
    """Interface for threshold policy access."""

    @abstractmethod
    def get_policy(self) -> ThresholdPolicy:
        """Get the current threshold policy."""


class IEscalationNotifier(ABC):
    """Outbound, best-effort delivery of escalation events."""

    @abstractmethod
    async def notify(self, task: MonitoredTask, event: NotificationEvent) -> bool:
        """Deliver one event; True if delivered."""


UnitOfWorkFactory = Callable[[], IUnitOfWork]


Delivery = Tuple[MonitoredTask, NotificationEvent]


def _ensure_aware(value: datetime, policy: ThresholdPolicy) -> datetime:
    return to_canonical(value, policy.tzinfo)


async def _apply_evaluation(
    uow: IUnitOfWork,
    task: MonitoredTask,
    result: EvaluationResult,
    now: datetime
) -> Optional[List[NotificationEvent]]:
    """
    Write one evaluation into the open unit of work without committing.

    Returns the ledger rows actually inserted, or None when the
    compare-and-set lost to another writer.
    """
    applied = await uow.tasks.compare_and_set_status(
        task.id,
        task.episode,
        result.previous_status,
        result.status,
        evaluated_at=now,
        escalated_at=now if result.escalated_now else None,
    )
    if not applied:
        return None

    created = []
    for kind in result.events:
        payload, delta = CountdownRenderer.event_payload(kind, task, result.deadlines, now)
        inserted = await uow.notifications.insert_if_absent(NotificationEvent(
            id=None,
            task_id=task.id,
            episode=task.episode,
            event_kind=kind,
            created_at=now,
            payload=payload,
            minutes_delta=delta,
        ))
        if inserted is not None:
            created.append(inserted)
    return created


# ========== Escalation Delivery ==========

class EscalationDispatcher:
    """
    Hands committed escalation events to the notifier in the background.

    Callers never wait on delivery. Each delivery task stays referenced
    in ``_pending`` until it finishes.
    """

    def __init__(self, notifier: Optional[IEscalationNotifier] = None):
        self._notifier = notifier
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, deliveries: Sequence[Delivery]) -> None:
        if self._notifier is None:
            return
        escalations = [(t, e) for t, e in deliveries if e.event_kind in ESCALATION_EVENT_KINDS]
        if not escalations:
            return

        delivery = asyncio.create_task(self._deliver(escalations))
        self._pending.add(delivery)
        delivery.add_done_callback(self._pending.discard)

    async def _deliver(self, escalations: List[Delivery]) -> None:
        for task, event in escalations:
            try:
                await self._notifier.notify(task, event)
            except Exception as e:
                logger.warning(
                    "Escalation notifier failed",
                    extra={"task_id": task.id, "event_kind": event.event_kind, "error": str(e)}
                )

    async def drain(self, timeout_seconds: Optional[float] = None) -> None:
        """Wait for in-flight deliveries, e.g. at shutdown."""
        if not self._pending:
            return
        _, pending = await asyncio.wait(list(self._pending), timeout=timeout_seconds)
        if pending:
            logger.warning(
                "Escalation deliveries still in flight",
                extra={"pending": len(pending)}
            )


# ========== Evaluation Loop ==========

@dataclass
class _BatchProgress:
    """Mutable counters that survive cancellation of the batch coroutine."""
    tasks_evaluated: int = 0
    events_emitted: int = 0
    tasks_failed: int = 0
    store_failures: int = 0
    deliveries: List[Delivery] = field(default_factory=list)


class SLAEvaluationService:
    """
    Drives the lifecycle evaluator over every active task.

    Two entry points share one code path:
    - run_tick(): periodic, never overlaps itself, never raises
    - sync_now(): on demand, with a caller timeout, raises typed errors

    Escalation delivery is handed to the dispatcher after the pass and
    runs outside it.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy_provider: IPolicyProvider,
        clock: Clock,
        dispatcher: Optional[EscalationDispatcher] = None
    ):
        self._uow_factory = uow_factory
        self._policy_provider = policy_provider
        self._clock = clock
        self._dispatcher = dispatcher or EscalationDispatcher()

        self._tick_running = False
        self.last_tick_started: Optional[float] = None
        self.last_tick_finished: Optional[float] = None
        self.ticks_skipped = 0
        self.last_report: Optional[SyncReport] = None

    @property
    def is_tick_running(self) -> bool:
        return self._tick_running

    async def run_tick(self) -> Optional[SyncReport]:
        """
        Periodic evaluation pass.

        If the previous tick is still running this one is skipped, not
        queued. Failures are logged and retried on the next tick.
        """
        if self._tick_running:
            self.ticks_skipped += 1
            logger.warning(
                "SLA tick skipped, previous tick still running",
                extra={"ticks_skipped": self.ticks_skipped}
            )
            return None

        self._tick_running = True
        self.last_tick_started = time.monotonic()
        progress = _BatchProgress()
        try:
            report = await self._evaluate_batch(progress, "timer")
            self.last_report = report
            return report
        except StoreUnavailableException as e:
            logger.error(
                "SLA tick failed, store unavailable; retrying next tick",
                extra={"error": e.message, **e.details}
            )
        except Exception as e:
            logger.exception(
                "SLA tick failed; retrying next tick",
                extra={"error": str(e), "tasks_evaluated": progress.tasks_evaluated}
            )
        finally:
            self._tick_running = False
            self.last_tick_finished = time.monotonic()
            self._dispatcher.dispatch(progress.deliveries)
        return None

    async def sync_now(self, timeout_seconds: Optional[float] = None) -> SyncReport:
        """
        On-demand evaluation pass.

        Raises:
            SyncTimeoutException: the pass did not finish in time; the
                in-flight task transaction is rolled back
            SyncFailedException: the store could not be reached
        """
        timeout = timeout_seconds if timeout_seconds is not None else settings.sync_timeout_seconds
        progress = _BatchProgress()

        try:
            report = await asyncio.wait_for(self._evaluate_batch(progress, "manual"), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Manual SLA sync timed out",
                extra={
                    "timeout_seconds": timeout,
                    "tasks_evaluated": progress.tasks_evaluated,
                    "events_emitted": progress.events_emitted,
                }
            )
            raise SyncTimeoutException(timeout, progress.tasks_evaluated, progress.events_emitted)
        except StoreUnavailableException as e:
            raise SyncFailedException(
                "Store unavailable during sync",
                progress.tasks_evaluated,
                progress.events_emitted,
                progress.tasks_failed,
                cause=e
            ) from e
        finally:
            # Committed escalations are delivered even when the pass failed
            self._dispatcher.dispatch(progress.deliveries)

        if progress.store_failures:
            raise SyncFailedException(
                "Store unavailable for some tasks during sync",
                report.tasks_evaluated,
                report.events_emitted,
                report.tasks_failed,
            )
        return report

    async def _evaluate_batch(self, progress: _BatchProgress, trigger: str) -> SyncReport:
        started_at = self._clock.now()
        policy = self._policy_provider.get_policy()

        async with self._uow_factory() as uow:
            task_ids = await uow.tasks.list_active_ids()

        for task_id in task_ids:
            try:
                task, created = await self._evaluate_task(task_id, policy)
            except StoreUnavailableException as e:
                progress.tasks_failed += 1
                progress.store_failures += 1
                logger.error(
                    "Task evaluation failed, store unavailable",
                    extra={"task_id": task_id, "error": e.message}
                )
                continue
            except Exception as e:
                progress.tasks_failed += 1
                logger.exception(
                    "Task evaluation failed",
                    extra={"task_id": task_id, "error": str(e)}
                )
                continue

            progress.tasks_evaluated += 1
            progress.events_emitted += len(created)
            progress.deliveries.extend((task, event) for event in created)

        report = SyncReport(
            trigger=trigger,
            tasks_evaluated=progress.tasks_evaluated,
            events_emitted=progress.events_emitted,
            tasks_failed=progress.tasks_failed,
            started_at=started_at,
            finished_at=self._clock.now(),
        )
        logger.info("SLA evaluation pass finished", extra=report.model_dump(mode="json"))
        return report

    async def _evaluate_task(
        self,
        task_id: str,
        policy: ThresholdPolicy
    ) -> Tuple[Optional[MonitoredTask], List[NotificationEvent]]:
        """Evaluate and commit one task atomically; return it with the events created."""
        now = self._clock.now()

        async with self._uow_factory() as uow:
            task = await uow.tasks.get(task_id)
            if task is None or task.lifecycle_status == LifecycleStatus.COMPLETED:
                return task, []

            result = LifecycleEvaluator.evaluate(task, now, policy)
            if result.clock_skew:
                logger.warning(
                    "Clock skew detected, holding task state",
                    extra={
                        "task_id": task_id,
                        "now": now.isoformat(),
                        "last_evaluated_at": task.last_evaluated_at.isoformat(),
                        "status": task.lifecycle_status,
                    }
                )
                return task, []

            created = await _apply_evaluation(uow, task, result, now)
            if created is None:
                await uow.rollback()
                logger.debug(
                    "Task changed concurrently, leaving it to the other writer",
                    extra={"task_id": task_id}
                )
                return task, []

            await uow.commit()

        if result.changed:
            logger.info(
                "Task lifecycle transition",
                extra={
                    "task_id": task_id,
                    "episode": task.episode,
                    "from_status": result.previous_status,
                    "to_status": result.status,
                    "events": [e.event_kind for e in created],
                }
            )
        return task, created

    async def purge_expired_notifications(self) -> int:
        """Delete archived notifications past the retention window."""
        policy = self._policy_provider.get_policy()
        cutoff = self._clock.now() - timedelta(days=policy.notification_retention_days)

        async with self._uow_factory() as uow:
            removed = await uow.notifications.purge_archived_before(cutoff)
            await uow.commit()

        logger.info(
            "Archived notifications purged",
            extra={"removed": removed, "cutoff": cutoff.isoformat()}
        )
        return removed


# ========== Acknowledgment Gate ==========

class AcknowledgmentGate:
    """
    Sole writer of justification records.

    An ESCALATED task leaves that state only through here. The gate
    judges the task by its status at submission time, so a task whose
    escalation threshold passed since the last evaluation pass is
    escalated here first, in the same transaction.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy_provider: IPolicyProvider,
        clock: Clock,
        dispatcher: Optional[EscalationDispatcher] = None
    ):
        self._uow_factory = uow_factory
        self._policy_provider = policy_provider
        self._clock = clock
        self._dispatcher = dispatcher or EscalationDispatcher()

    async def _catch_up(
        self,
        uow: IUnitOfWork,
        task: MonitoredTask,
        policy: ThresholdPolicy,
        now: datetime
    ) -> Tuple[MonitoredTask, str, List[NotificationEvent]]:
        """Bring the locked row up to its current status; returns (task, live status, new events)."""
        result = LifecycleEvaluator.evaluate(task, now, policy)
        if not result.escalated_now or result.clock_skew:
            return task, result.status, []

        created = await _apply_evaluation(uow, task, result, now)
        if created is None:
            # The evaluation loop escalated it first
            task = await uow.tasks.get(task.id, for_update=True)
            return task, task.lifecycle_status, []

        logger.info(
            "Task escalated on justification submit",
            extra={"task_id": task.id, "episode": task.episode, "from_status": result.previous_status}
        )
        task.lifecycle_status = LifecycleStatus.ESCALATED
        task.escalated_at = now
        task.last_evaluated_at = now
        return task, LifecycleStatus.ESCALATED, created

    async def submit_justification(self, task_id: str, text: str, actor: str) -> JustificationRecord:
        """
        Attach a justification and release the escalated episode.

        Raises:
            ResourceNotFoundException: unknown task
            AlreadyAcknowledgedException: the episode already has one
            InvalidStateException: task is not ESCALATED
            ValidationException: text shorter than the policy minimum
        """
        policy = self._policy_provider.get_policy()
        now = self._clock.now()
        cleaned = (text or "").strip()

        async with self._uow_factory() as uow:
            task = await uow.tasks.get(task_id, for_update=True)
            if task is None:
                raise ResourceNotFoundException("MonitoredTask", task_id)

            task, live_status, escalations = await self._catch_up(uow, task, policy, now)

            existing = await uow.justifications.get_for_episode(task.id, task.episode)
            if task.lifecycle_status == LifecycleStatus.ACKNOWLEDGED or existing is not None:
                raise AlreadyAcknowledgedException(task.id, task.episode)

            if task.lifecycle_status != LifecycleStatus.ESCALATED:
                raise InvalidStateException(task.id, live_status, "submit justification for")

            if len(cleaned) < policy.justification_min_length:
                raise ValidationException(
                    f"Justification must be at least {policy.justification_min_length} characters",
                    {"min_length": policy.justification_min_length, "length": len(cleaned)}
                )

            record = await uow.justifications.insert_if_absent(JustificationRecord(
                id=None,
                task_id=task.id,
                episode=task.episode,
                text=cleaned,
                submitted_at=now,
                submitted_by=actor,
                escalated_at=task.escalated_at,
            ))
            if record is None:
                raise AlreadyAcknowledgedException(task.id, task.episode)

            if not await uow.tasks.acknowledge(task.id, task.episode, cleaned, now):
                raise AlreadyAcknowledgedException(task.id, task.episode)

            await uow.notifications.archive_kind(
                task.id, task.episode, EventKind.JUSTIFICATION_REQUIRED, actor, now
            )
            await uow.commit()

        self._dispatcher.dispatch([(task, event) for event in escalations])
        logger.info(
            "Justification accepted",
            extra={"task_id": task.id, "episode": task.episode, "actor": actor}
        )
        return record


# ========== Notifications ==========

class NotificationService:
    """
    Read side of the ledger plus the UI's read/archive mutations.

    Countdown text is rendered on every read from the task's thresholds
    and the current time; nothing derived is written back.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy_provider: IPolicyProvider,
        clock: Clock
    ):
        self._uow_factory = uow_factory
        self._policy_provider = policy_provider
        self._clock = clock

    def _resolve_range(
        self,
        filters: NotificationFilter,
        policy: ThresholdPolicy
    ) -> Tuple[Optional[datetime], Optional[datetime]]:
        date_from = _ensure_aware(filters.date_from, policy) if filters.date_from else None
        date_to = _ensure_aware(filters.date_to, policy) if filters.date_to else None

        if filters.day is not None:
            day_start = datetime(
                filters.day.year, filters.day.month, filters.day.day, tzinfo=policy.tzinfo
            )
            day_end = day_start + timedelta(days=1) - timedelta(microseconds=1)
            date_from = max(date_from, day_start) if date_from else day_start
            date_to = min(date_to, day_end) if date_to else day_end

        return date_from, date_to

    async def list_notifications(self, filters: Optional[NotificationFilter] = None) -> NotificationPage:
        filters = filters or NotificationFilter()
        policy = self._policy_provider.get_policy()
        now = self._clock.now()
        date_from, date_to = self._resolve_range(filters, policy)

        async with self._uow_factory() as uow:
            events, total, unread = await uow.notifications.list(filters, date_from, date_to)
            tasks = await uow.tasks.get_many(sorted({e.task_id for e in events}))

        views = [self._to_view(e, tasks.get(e.task_id), now, policy) for e in events]
        return NotificationPage(
            notifications=views,
            total=total,
            unread_count=unread,
            limit=filters.limit,
            offset=filters.offset,
            has_more=filters.offset + len(views) < total,
        )

    @staticmethod
    def _to_view(
        event: NotificationEvent,
        task: Optional[MonitoredTask],
        now: datetime,
        policy: ThresholdPolicy
    ) -> NotificationView:
        view = NotificationView(
            id=event.id,
            task_id=event.task_id,
            episode=event.episode,
            event_kind=event.event_kind,
            priority=event.priority,
            payload=event.payload,
            minutes_delta=event.minutes_delta,
            created_at=event.created_at,
            read_at=event.read_at,
            read_by=event.read_by,
            archived_at=event.archived_at,
            archived_by=event.archived_by,
        )
        if task is None:
            return view

        view.task_name = task.name
        # Rows from earlier episodes describe a run that is already over
        if event.episode != task.episode:
            view.live_text = "Episode closed"
            return view

        result = LifecycleEvaluator.evaluate(task, now, policy)
        countdown = CountdownRenderer.render(result.status, result.deadlines, now)
        view.task_status = result.status
        view.live_text = countdown.text
        view.minutes_remaining = countdown.minutes_remaining
        view.minutes_overdue = countdown.minutes_overdue
        return view

    async def acknowledge_read(self, notification_id: str, actor: str) -> None:
        """
        Mark a notification read. Re-acknowledging is a no-op.

        Raises:
            ResourceNotFoundException: missing or archived notification
        """
        now = self._clock.now()
        async with self._uow_factory() as uow:
            event = await uow.notifications.get(notification_id)
            if event is None or event.is_archived:
                raise ResourceNotFoundException("Notification", notification_id)
            if event.is_read:
                return
            await uow.notifications.mark_read(notification_id, actor, now)
            await uow.commit()

    async def acknowledge_all_read(self, actor: str) -> int:
        """Mark every unread, non-archived notification read."""
        now = self._clock.now()
        async with self._uow_factory() as uow:
            updated = await uow.notifications.mark_all_read(actor, now)
            await uow.commit()

        logger.info("Notifications marked read", extra={"updated": updated, "actor": actor})
        return updated

    async def archive(self, notification_id: str, actor: str) -> None:
        """
        Archive a notification.

        Raises:
            ResourceNotFoundException: missing or already archived
        """
        now = self._clock.now()
        async with self._uow_factory() as uow:
            if not await uow.notifications.archive(notification_id, actor, now):
                raise ResourceNotFoundException("Notification", notification_id)
            await uow.commit()

    async def kind_summary(self) -> List[KindSummary]:
        async with self._uow_factory() as uow:
            counts = await uow.notifications.kind_counts()

        return [
            KindSummary(
                event_kind=kind,
                priority=EVENT_KIND_PRIORITY[kind],
                total_count=counts.get(kind, (0, 0))[0],
                unread_count=counts.get(kind, (0, 0))[1],
            )
            for kind in VALID_EVENT_KINDS
        ]

    async def dashboard_summary(self) -> DashboardSummary:
        """Aggregate counts; read-only."""
        async with self._uow_factory() as uow:
            total, unread = await uow.notifications.counts()
            escalated = await uow.tasks.count_by_status(
                [LifecycleStatus.ESCALATED, LifecycleStatus.ACKNOWLEDGED]
            )
            pending = await uow.tasks.count_by_status([LifecycleStatus.ESCALATED])

        return DashboardSummary(
            total=total,
            unread=unread,
            escalated=escalated,
            justification_pending=pending,
        )


# ========== Task Registry Adapter ==========

class TaskRegistryService:
    """
    Thin adapter over the task store owned by the surrounding application.

    Only registers tasks, records completion, rolls tasks into their next
    episode, and answers live status queries.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy_provider: IPolicyProvider,
        clock: Clock
    ):
        self._uow_factory = uow_factory
        self._policy_provider = policy_provider
        self._clock = clock

    async def register_task(self, name: str, scheduled_start: datetime, sla_minutes: int) -> MonitoredTask:
        policy = self._policy_provider.get_policy()
        now = self._clock.now()
        task = MonitoredTask(
            id=str(uuid4()),
            name=name,
            scheduled_start=_ensure_aware(scheduled_start, policy),
            sla_minutes=sla_minutes,
        )
        async with self._uow_factory() as uow:
            task = await uow.tasks.add(task)
            await uow.commit()

        logger.info(
            "Task registered for SLA monitoring",
            extra={"task_id": task.id, "scheduled_start": task.scheduled_start.isoformat(), "at": now.isoformat()}
        )
        return task

    async def get_task(self, task_id: str) -> MonitoredTask:
        async with self._uow_factory() as uow:
            task = await uow.tasks.get(task_id)
        if task is None:
            raise ResourceNotFoundException("MonitoredTask", task_id)
        return task

    async def complete_task(self, task_id: str, completed_at: Optional[datetime] = None) -> MonitoredTask:
        """
        Record completion. ``completed_at`` is immutable once set:
        repeating the same value is a no-op, a different one is refused.
        """
        policy = self._policy_provider.get_policy()
        completed_at = _ensure_aware(completed_at, policy) if completed_at else self._clock.now()

        async with self._uow_factory() as uow:
            task = await uow.tasks.get(task_id, for_update=True)
            if task is None:
                raise ResourceNotFoundException("MonitoredTask", task_id)

            if task.completed_at is not None:
                if task.completed_at == completed_at:
                    return task
                raise InvalidStateException(task.id, task.lifecycle_status, "change completion time of")

            if not await uow.tasks.set_completed(task.id, completed_at):
                raise InvalidStateException(task.id, task.lifecycle_status, "complete")
            await uow.commit()

        task.completed_at = completed_at
        return task

    async def start_next_episode(
        self,
        task_id: str,
        scheduled_start: datetime,
        sla_minutes: Optional[int] = None
    ) -> MonitoredTask:
        """
        Roll the task into its next occurrence.

        Refused while ESCALATED: the open episode still owes a justification.
        """
        policy = self._policy_provider.get_policy()
        scheduled_start = _ensure_aware(scheduled_start, policy)
        now = self._clock.now()

        async with self._uow_factory() as uow:
            task = await uow.tasks.get(task_id, for_update=True)
            if task is None:
                raise ResourceNotFoundException("MonitoredTask", task_id)
            if task.lifecycle_status == LifecycleStatus.ESCALATED:
                raise InvalidStateException(task.id, task.lifecycle_status, "start next episode of")

            new_sla = task.sla_minutes if sla_minutes is None else sla_minutes
            if not await uow.tasks.start_episode(task.id, task.episode, scheduled_start, new_sla, now):
                raise InvalidStateException(task.id, task.lifecycle_status, "start next episode of")
            await uow.commit()

        logger.info(
            "Task episode started",
            extra={"task_id": task.id, "episode": task.episode + 1}
        )
        return MonitoredTask(
            id=task.id,
            name=task.name,
            scheduled_start=scheduled_start,
            sla_minutes=new_sla,
            episode=task.episode + 1,
        )

    async def get_task_status(self, task_id: str) -> TaskStatusView:
        """Live status derived from the current time; writes nothing."""
        policy = self._policy_provider.get_policy()
        now = self._clock.now()
        task = await self.get_task(task_id)

        result = LifecycleEvaluator.evaluate(task, now, policy)
        deadlines: TaskDeadlines = result.deadlines
        countdown = CountdownRenderer.render(result.status, deadlines, now)

        return TaskStatusView(
            task_id=task.id,
            name=task.name,
            episode=task.episode,
            scheduled_start=deadlines.scheduled_start,
            sla_minutes=task.sla_minutes,
            stored_status=task.lifecycle_status,
            live_status=result.status,
            countdown=countdown.text,
            minutes_remaining=countdown.minutes_remaining,
            minutes_overdue=countdown.minutes_overdue,
            pre_start_at=deadlines.pre_start_at,
            breach_at=deadlines.breach_at,
            escalate_at=deadlines.escalate_at,
            completed_at=task.completed_at,
            escalated_at=task.escalated_at,
            justification=task.justification,
        )
