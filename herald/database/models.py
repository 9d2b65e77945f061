"""
herald.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- notification_object   — Polymorphic notifications (no FK to the target)
- entity_view_analytics — Per-entity, per-day view counters
- entity_view_receipts  — Idempotency ledger for retried view writes
- entity_viewers        — First-view-of-the-day ledger (unique viewers)
- entity_kinds          — Version-tagged mirror of the kind registry

``(entity_type, entity_id)`` columns are validated by
:class:`herald.engine.entities.EntityResolver`, never by a foreign key.
Primary keys are generated here, at the storage boundary (``default=``);
the Alembic migration adds ``gen_random_uuid()`` server defaults on top.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from herald.engine.entities import EntityReference
from herald.engine.status import NotificationStatus

TITLE_MAX_LENGTH = 255
ENTITY_ID_MAX_LENGTH = 64


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize to an aware UTC datetime.  Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Herald ORM models."""


class StatusType(TypeDecorator):
    """Persist :class:`NotificationStatus` as a smallint (0/1)."""

    impl = SmallInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return int(NotificationStatus(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return NotificationStatus(value)


# ---------------------------------------------------------------------------
# NotificationObject: one row per notification, pointing at any entity
# ---------------------------------------------------------------------------
class NotificationObject(Base):
    """A notification attached to an entity through a polymorphic reference.

    ``version`` is SQLAlchemy's ``version_id_col``: every UPDATE carries
    ``WHERE version = :old`` so concurrent writers cannot lose an update.
    """
    __tablename__ = "notification_object"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[int] = mapped_column(Integer, nullable=False)
    entity_id: Mapped[str] = mapped_column(String(ENTITY_ID_MAX_LENGTH), nullable=False)
    created_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(),
    )
    status: Mapped[NotificationStatus] = mapped_column(
        StatusType, nullable=False,
        default=NotificationStatus.ACTIVE, server_default="1",
    )
    title: Mapped[str | None] = mapped_column(String(TITLE_MAX_LENGTH), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(),
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_notification_object_entity", "entity_type", "entity_id"),
        Index("ix_notification_object_created_on", "created_on"),
        Index("ix_notification_object_status", "status"),
        CheckConstraint("status IN (0, 1)", name="ck_notification_object_status"),
    )

    @property
    def entity_ref(self) -> EntityReference:
        return EntityReference(self.entity_type, self.entity_id)

    @property
    def is_active(self) -> bool:
        return self.status == NotificationStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"<NotificationObject id={self.id} ref={self.entity_type}:{self.entity_id} "
            f"status={int(self.status) if self.status is not None else None}>"
        )


# ---------------------------------------------------------------------------
# EntityViewAnalytics: aggregated view counters (one row per entity × day)
# ---------------------------------------------------------------------------
class EntityViewAnalytics(Base):
    """Pre-aggregated view counters, written only through an atomic upsert."""
    __tablename__ = "entity_view_analytics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[int] = mapped_column(Integer, nullable=False)
    entity_id: Mapped[str] = mapped_column(String(ENTITY_ID_MAX_LENGTH), nullable=False)
    view_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_views: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    unique_views: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    first_viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "view_date",
            name="uq_entity_view_analytics_ref_day",
        ),
        Index("ix_entity_view_analytics_type_day", "entity_type", "view_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<EntityViewAnalytics id={self.id} ref={self.entity_type}:{self.entity_id} "
            f"day={self.view_date} total={self.total_views}>"
        )


# ---------------------------------------------------------------------------
# EntityViewReceipt: idempotency ledger for retried writes
# ---------------------------------------------------------------------------
class EntityViewReceipt(Base):
    __tablename__ = "entity_view_receipts"

    # Receipts are scoped per entity; one source may count views on many
    entity_type: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(ENTITY_ID_MAX_LENGTH), primary_key=True)
    source_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_entity_view_receipts_created_at", "created_at"),
    )


# ---------------------------------------------------------------------------
# EntityViewer: one row per viewer per entity per day
# ---------------------------------------------------------------------------
class EntityViewer(Base):
    __tablename__ = "entity_viewers"

    entity_type: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(ENTITY_ID_MAX_LENGTH), primary_key=True)
    view_date: Mapped[date] = mapped_column(Date, primary_key=True)
    viewer_id: Mapped[str] = mapped_column(String(ENTITY_ID_MAX_LENGTH), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_entity_viewers_view_date", "view_date"),
    )


# ---------------------------------------------------------------------------
# EntityKindRecord: persisted, version-tagged kind catalogue
# ---------------------------------------------------------------------------
class EntityKindRecord(Base):
    """Mirror of the in-process registry so the DB knows which tags exist."""
    __tablename__ = "entity_kinds"

    tag: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    shape: Mapped[str] = mapped_column(String(32), nullable=False)
    since_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    retired_in: Mapped[int | None] = mapped_column(Integer, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow,
        server_default=func.now(), onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<EntityKindRecord tag={self.tag} name={self.name!r}>"
