"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA monitoring module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime, ForeignKey, Index, Integer, String, Text, TypeDecorator,
    UniqueConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from finops_sla.infrastructure.database import Base
from finops_sla.config import LifecycleStatus


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp stored as UTC.

    SQLite drops offsets, so values are normalized to UTC on the way in
    and re-tagged as UTC on the way out. PostgreSQL round-trips the
    same way through ``timestamptz``.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonitoredTaskModel(Base):
    """
    Database model for MonitoredTask entity.

    Maps to the 'sla_monitored_tasks' table.
    """
    __tablename__ = "sla_monitored_tasks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Schedule
    scheduled_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    sla_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    # Lifecycle (owned by the evaluator and the acknowledgment gate)
    lifecycle_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=LifecycleStatus.PENDING, index=True
    )
    episode: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    justification: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_evaluated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class NotificationModel(Base):
    """
    Database model for the notification ledger.

    Maps to the 'sla_notifications' table. The unique constraint on
    (task_id, episode, event_kind) is what makes emission idempotent.
    """
    __tablename__ = "sla_notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    task_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("sla_monitored_tasks.id", ondelete="CASCADE"), nullable=False
    )
    episode: Mapped[int] = mapped_column(Integer, nullable=False)
    event_kind: Mapped[str] = mapped_column(String(32), nullable=False)

    payload: Mapped[str] = mapped_column(Text, nullable=False)
    minutes_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    # Read / archive tracking
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    read_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    archived_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("task_id", "episode", "event_kind", name="uq_sla_notification_episode_kind"),
        Index("ix_sla_notifications_created_at", "created_at"),
    )


class JustificationModel(Base):
    """
    Database model for JustificationRecord entity.

    Maps to the 'sla_justifications' table. One row per task episode.
    """
    __tablename__ = "sla_justifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    task_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("sla_monitored_tasks.id", ondelete="CASCADE"), nullable=False
    )
    episode: Mapped[int] = mapped_column(Integer, nullable=False)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    text: Mapped[str] = mapped_column(Text, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    submitted_by: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("task_id", "episode", name="uq_sla_justification_episode"),
    )
