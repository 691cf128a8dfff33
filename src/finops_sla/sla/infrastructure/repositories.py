"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Status writes are compare-and-set and
ledger inserts are uniqueness-guarded, so concurrent evaluators never
double-write.
"""

from typing import Dict, List, Optional, Sequence, Tuple
from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import Insert, and_, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from finops_sla.config import LifecycleStatus, NotificationStatus
from finops_sla.core import RepositoryException
from finops_sla.infrastructure.database import STORE_ERROR_TYPES, as_store_error
from finops_sla.sla.application import (
    IJustificationRepository,
    INotificationRepository,
    ITaskRepository,
    IUnitOfWork,
)
from finops_sla.sla.application.dto import NotificationFilter
from finops_sla.sla.domain import JustificationRecord, MonitoredTask, NotificationEvent
from finops_sla.sla.infrastructure.models import (
    JustificationModel,
    MonitoredTaskModel,
    NotificationModel,
)


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _dialect_insert(session: AsyncSession, model) -> Insert:
    """Dialect insert that supports ON CONFLICT DO NOTHING."""
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise RepositoryException(f"Unsupported database dialect: {dialect}")


def _to_task(model: MonitoredTaskModel) -> MonitoredTask:
    return MonitoredTask(
        id=str(model.id),
        name=model.name,
        scheduled_start=model.scheduled_start,
        sla_minutes=model.sla_minutes,
        lifecycle_status=model.lifecycle_status,
        episode=model.episode,
        completed_at=model.completed_at,
        justification=model.justification,
        escalated_at=model.escalated_at,
        last_evaluated_at=model.last_evaluated_at,
    )


def _to_notification(model: NotificationModel) -> NotificationEvent:
    return NotificationEvent(
        id=str(model.id),
        task_id=str(model.task_id),
        episode=model.episode,
        event_kind=model.event_kind,
        created_at=model.created_at,
        payload=model.payload,
        minutes_delta=model.minutes_delta,
        read_at=model.read_at,
        read_by=model.read_by,
        archived_at=model.archived_at,
        archived_by=model.archived_by,
    )


def _to_justification(model: JustificationModel) -> JustificationRecord:
    return JustificationRecord(
        id=str(model.id),
        task_id=str(model.task_id),
        episode=model.episode,
        text=model.text,
        submitted_at=model.submitted_at,
        submitted_by=model.submitted_by,
        escalated_at=model.escalated_at,
    )


class SQLAlchemyTaskRepository(ITaskRepository):
    """
    SQLAlchemy implementation of the monitored task repository.

    Reads return detached domain entities; writes go through UPDATE
    statements so every status change is a compare-and-set.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, task_id: str, for_update: bool = False) -> Optional[MonitoredTask]:
        """Get task by ID."""
        task_uuid = _parse_uuid(task_id)
        if task_uuid is None:
            return None

        stmt = select(MonitoredTaskModel).where(MonitoredTaskModel.id == task_uuid)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_task(model) if model else None

    async def get_many(self, task_ids: Sequence[str]) -> Dict[str, MonitoredTask]:
        uuids = [u for u in (_parse_uuid(t) for t in task_ids) if u is not None]
        if not uuids:
            return {}

        stmt = select(MonitoredTaskModel).where(MonitoredTaskModel.id.in_(uuids))
        result = await self._session.execute(stmt)
        return {str(m.id): _to_task(m) for m in result.scalars().all()}

    async def list_active_ids(self) -> List[str]:
        stmt = (
            select(MonitoredTaskModel.id)
            .where(MonitoredTaskModel.lifecycle_status != LifecycleStatus.COMPLETED)
            .order_by(MonitoredTaskModel.scheduled_start.asc(), MonitoredTaskModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [str(row) for row in result.scalars().all()]

    async def add(self, task: MonitoredTask) -> MonitoredTask:
        """Create new task."""
        model = MonitoredTaskModel(
            id=_parse_uuid(task.id) or uuid4(),
            name=task.name,
            scheduled_start=task.scheduled_start,
            sla_minutes=task.sla_minutes,
            lifecycle_status=task.lifecycle_status,
            episode=task.episode,
            completed_at=task.completed_at,
        )
        self._session.add(model)
        await self._session.flush()

        task.id = str(model.id)
        return task

    async def compare_and_set_status(
        self,
        task_id: str,
        episode: int,
        expected_status: str,
        new_status: str,
        evaluated_at: datetime,
        escalated_at: Optional[datetime] = None
    ) -> bool:
        values = {
            "lifecycle_status": new_status,
            "last_evaluated_at": evaluated_at,
        }
        if new_status != expected_status:
            values["updated_at"] = evaluated_at
        if escalated_at is not None:
            values["escalated_at"] = escalated_at

        stmt = (
            update(MonitoredTaskModel)
            .where(
                MonitoredTaskModel.id == _parse_uuid(task_id),
                MonitoredTaskModel.episode == episode,
                MonitoredTaskModel.lifecycle_status == expected_status,
                or_(
                    MonitoredTaskModel.last_evaluated_at.is_(None),
                    MonitoredTaskModel.last_evaluated_at <= evaluated_at,
                ),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0) == 1

    async def acknowledge(
        self,
        task_id: str,
        episode: int,
        justification: str,
        at: datetime
    ) -> bool:
        stmt = (
            update(MonitoredTaskModel)
            .where(
                MonitoredTaskModel.id == _parse_uuid(task_id),
                MonitoredTaskModel.episode == episode,
                MonitoredTaskModel.lifecycle_status == LifecycleStatus.ESCALATED,
            )
            .values(
                lifecycle_status=LifecycleStatus.ACKNOWLEDGED,
                justification=justification,
                updated_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0) == 1

    async def set_completed(self, task_id: str, completed_at: datetime) -> bool:
        stmt = (
            update(MonitoredTaskModel)
            .where(
                MonitoredTaskModel.id == _parse_uuid(task_id),
                MonitoredTaskModel.completed_at.is_(None),
            )
            .values(completed_at=completed_at, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0) == 1

    async def start_episode(
        self,
        task_id: str,
        expected_episode: int,
        scheduled_start: datetime,
        sla_minutes: int,
        at: datetime
    ) -> bool:
        stmt = (
            update(MonitoredTaskModel)
            .where(
                MonitoredTaskModel.id == _parse_uuid(task_id),
                MonitoredTaskModel.episode == expected_episode,
                MonitoredTaskModel.lifecycle_status != LifecycleStatus.ESCALATED,
            )
            .values(
                episode=expected_episode + 1,
                scheduled_start=scheduled_start,
                sla_minutes=sla_minutes,
                lifecycle_status=LifecycleStatus.PENDING,
                completed_at=None,
                justification=None,
                escalated_at=None,
                last_evaluated_at=None,
                updated_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0) == 1

    async def count_by_status(self, statuses: Sequence[str]) -> int:
        stmt = select(func.count()).select_from(MonitoredTaskModel).where(
            MonitoredTaskModel.lifecycle_status.in_(list(statuses))
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())


class SQLAlchemyNotificationRepository(INotificationRepository):
    """
    SQLAlchemy implementation of the notification ledger.

    Emission is INSERT ... ON CONFLICT DO NOTHING against the
    (task_id, episode, event_kind) unique constraint.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def insert_if_absent(self, event: NotificationEvent) -> Optional[NotificationEvent]:
        new_id = uuid4()
        stmt = (
            _dialect_insert(self._session, NotificationModel)
            .values(
                id=new_id,
                task_id=_parse_uuid(event.task_id),
                episode=event.episode,
                event_kind=event.event_kind,
                payload=event.payload,
                minutes_delta=event.minutes_delta,
                created_at=event.created_at,
            )
            .on_conflict_do_nothing(index_elements=["task_id", "episode", "event_kind"])
            .returning(NotificationModel.id)
        )
        result = await self._session.execute(stmt)
        if result.scalar_one_or_none() is None:
            return None

        event.id = str(new_id)
        return event

    async def get(self, notification_id: str) -> Optional[NotificationEvent]:
        notification_uuid = _parse_uuid(notification_id)
        if notification_uuid is None:
            return None

        result = await self._session.execute(
            select(NotificationModel).where(NotificationModel.id == notification_uuid)
        )
        model = result.scalar_one_or_none()
        return _to_notification(model) if model else None

    @staticmethod
    def _conditions(
        filters: NotificationFilter,
        date_from: Optional[datetime],
        date_to: Optional[datetime]
    ) -> Optional[list]:
        """WHERE clauses for a listing; None when nothing can match."""
        conditions = []

        if filters.status == NotificationStatus.UNREAD:
            conditions += [NotificationModel.read_at.is_(None), NotificationModel.archived_at.is_(None)]
        elif filters.status == NotificationStatus.READ:
            conditions += [NotificationModel.read_at.is_not(None), NotificationModel.archived_at.is_(None)]
        elif filters.status == NotificationStatus.ACTIVE:
            conditions.append(NotificationModel.archived_at.is_(None))
        elif filters.status == NotificationStatus.ARCHIVED:
            conditions.append(NotificationModel.archived_at.is_not(None))

        if filters.kind:
            conditions.append(NotificationModel.event_kind == filters.kind)

        if filters.task_id:
            task_uuid = _parse_uuid(filters.task_id)
            if task_uuid is None:
                return None
            conditions.append(NotificationModel.task_id == task_uuid)

        if date_from:
            conditions.append(NotificationModel.created_at >= date_from)
        if date_to:
            conditions.append(NotificationModel.created_at <= date_to)

        return conditions

    async def list(
        self,
        filters: NotificationFilter,
        date_from: Optional[datetime],
        date_to: Optional[datetime]
    ) -> Tuple[List[NotificationEvent], int, int]:
        conditions = self._conditions(filters, date_from, date_to)
        if conditions is None:
            return [], 0, 0

        where = and_(*conditions) if conditions else None

        count_stmt = select(func.count()).select_from(NotificationModel)
        unread_stmt = select(func.count()).select_from(NotificationModel).where(
            NotificationModel.read_at.is_(None), NotificationModel.archived_at.is_(None)
        )
        stmt = select(NotificationModel)
        if where is not None:
            count_stmt = count_stmt.where(where)
            unread_stmt = unread_stmt.where(where)
            stmt = stmt.where(where)

        stmt = (
            stmt.order_by(NotificationModel.created_at.desc(), NotificationModel.id.asc())
            .limit(filters.limit)
            .offset(filters.offset)
        )

        total = int((await self._session.execute(count_stmt)).scalar_one())
        unread = int((await self._session.execute(unread_stmt)).scalar_one())
        result = await self._session.execute(stmt)
        return [_to_notification(m) for m in result.scalars().all()], total, unread

    async def mark_read(self, notification_id: str, actor: str, at: datetime) -> bool:
        stmt = (
            update(NotificationModel)
            .where(
                NotificationModel.id == _parse_uuid(notification_id),
                NotificationModel.read_at.is_(None),
            )
            .values(read_at=at, read_by=actor)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0) == 1

    async def mark_all_read(self, actor: str, at: datetime) -> int:
        stmt = (
            update(NotificationModel)
            .where(NotificationModel.read_at.is_(None), NotificationModel.archived_at.is_(None))
            .values(read_at=at, read_by=actor)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)

    async def archive(self, notification_id: str, actor: str, at: datetime) -> bool:
        notification_uuid = _parse_uuid(notification_id)
        if notification_uuid is None:
            return False

        stmt = (
            update(NotificationModel)
            .where(
                NotificationModel.id == notification_uuid,
                NotificationModel.archived_at.is_(None),
            )
            .values(archived_at=at, archived_by=actor)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0) == 1

    async def archive_kind(
        self,
        task_id: str,
        episode: int,
        event_kind: str,
        actor: str,
        at: datetime
    ) -> int:
        stmt = (
            update(NotificationModel)
            .where(
                NotificationModel.task_id == _parse_uuid(task_id),
                NotificationModel.episode == episode,
                NotificationModel.event_kind == event_kind,
                NotificationModel.archived_at.is_(None),
            )
            .values(archived_at=at, archived_by=actor)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)

    async def counts(self) -> Tuple[int, int]:
        stmt = select(
            func.count(NotificationModel.id),
            func.count(NotificationModel.id).filter(NotificationModel.read_at.is_(None)),
        ).where(NotificationModel.archived_at.is_(None))
        total, unread = (await self._session.execute(stmt)).one()
        return int(total or 0), int(unread or 0)

    async def kind_counts(self) -> Dict[str, Tuple[int, int]]:
        stmt = (
            select(
                NotificationModel.event_kind,
                func.count(NotificationModel.id),
                func.count(NotificationModel.id).filter(NotificationModel.read_at.is_(None)),
            )
            .where(NotificationModel.archived_at.is_(None))
            .group_by(NotificationModel.event_kind)
        )
        result = await self._session.execute(stmt)
        return {kind: (int(total), int(unread)) for kind, total, unread in result.all()}

    async def purge_archived_before(self, cutoff: datetime) -> int:
        stmt = (
            delete(NotificationModel)
            .where(
                NotificationModel.archived_at.is_not(None),
                NotificationModel.archived_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)


class SQLAlchemyJustificationRepository(IJustificationRepository):
    """SQLAlchemy implementation of justification records."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def insert_if_absent(self, record: JustificationRecord) -> Optional[JustificationRecord]:
        new_id = uuid4()
        stmt = (
            _dialect_insert(self._session, JustificationModel)
            .values(
                id=new_id,
                task_id=_parse_uuid(record.task_id),
                episode=record.episode,
                escalated_at=record.escalated_at,
                text=record.text,
                submitted_at=record.submitted_at,
                submitted_by=record.submitted_by,
            )
            .on_conflict_do_nothing(index_elements=["task_id", "episode"])
            .returning(JustificationModel.id)
        )
        result = await self._session.execute(stmt)
        if result.scalar_one_or_none() is None:
            return None

        record.id = str(new_id)
        return record

    async def get_for_episode(self, task_id: str, episode: int) -> Optional[JustificationRecord]:
        stmt = select(JustificationModel).where(
            JustificationModel.task_id == _parse_uuid(task_id),
            JustificationModel.episode == episode,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_justification(model) if model else None


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """
    One session, one transaction.

    Connectivity errors raised anywhere inside the block surface as
    StoreUnavailableException; an uncommitted transaction is rolled back
    on exit, including on cancellation.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self._session = self._session_maker()
        self.tasks = SQLAlchemyTaskRepository(self._session)
        self.notifications = SQLAlchemyNotificationRepository(self._session)
        self.justifications = SQLAlchemyJustificationRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        session, self._session = self._session, None
        try:
            # close() rolls back anything not committed
            await session.close()
        except STORE_ERROR_TYPES as e:
            raise as_store_error(e) from e

        if exc is not None:
            store_error = as_store_error(exc)
            if store_error is not None:
                raise store_error from exc
        return False

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


def sqlalchemy_uow_factory(session_maker: async_sessionmaker[AsyncSession]):
    """Bind a session maker into a zero-argument unit-of-work factory."""
    def factory() -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_maker)
    return factory


__all__ = [
    "SQLAlchemyTaskRepository",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemyJustificationRepository",
    "SQLAlchemyUnitOfWork",
    "sqlalchemy_uow_factory",
]
