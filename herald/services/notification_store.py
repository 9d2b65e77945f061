"""
herald.services.notification_store — Notification Object Store
===============================================================

Owns the lifecycle of ``notification_object`` rows: creation, status
transitions, payload edits, lookups and keyset-paginated listings.

Concurrency:
    Every mutation is a compare-and-set on the row's ``version`` column
    (SQLAlchemy ``version_id_col``).  A writer that loses the race gets a
    ``StaleDataError`` at flush time; the store re-reads and re-applies the
    change up to ``max_retries`` times before surfacing
    :class:`~herald.errors.ConcurrentUpdateConflict`.  ``updated_at`` strictly
    advances with every effective commit, so the last commit always carries
    the latest timestamp.

References are validated by the resolver, not by a foreign key: deleting
the referenced entity elsewhere leaves the notification in place.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import Engine, and_, delete, func, or_, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from herald.config import HeraldConfig
from herald.database.engine import get_session
from herald.database.models import (
    TITLE_MAX_LENGTH,
    NotificationObject,
    as_utc,
    utcnow,
)
from herald.engine.entities import EntityReference, EntityResolver
from herald.engine.status import NotificationStatus, coerce_status, transition
from herald.errors import (
    ConcurrentUpdateConflict,
    EntityReferenceError,
    IdentifierGenerationError,
    InvalidReference,
    NotFound,
)

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def _advance(previous: datetime | None) -> datetime:
    """Return "now", nudged forward if the clock has not moved past *previous*."""
    now = utcnow()
    previous = as_utc(previous)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class NotificationPage:
    """One page of a ``(created_on DESC, id DESC)`` listing."""

    items: list[NotificationObject]
    next_cursor: str | None

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


def encode_cursor(created_on: datetime, notification_id: uuid.UUID) -> str:
    """Opaque cursor pointing *after* the given row."""
    raw = json.dumps({"o": as_utc(created_on).isoformat(), "i": notification_id.hex})
    return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")


def decode_cursor(cursor: str) -> tuple[datetime, uuid.UUID]:
    """Inverse of :func:`encode_cursor`.  Raises ``ValueError`` when malformed."""
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode()))
        return as_utc(datetime.fromisoformat(data["o"])), uuid.UUID(hex=data["i"])
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError,
            KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Malformed pagination cursor: {cursor!r}") from exc


def _coerce_id(notification_id: object) -> uuid.UUID:
    if isinstance(notification_id, uuid.UUID):
        return notification_id
    try:
        return uuid.UUID(str(notification_id))
    except ValueError:
        raise NotFound(notification_id) from None


def _check_title(title: str | None) -> None:
    if title is not None and len(title) > TITLE_MAX_LENGTH:
        raise ValueError(
            f"title is {len(title)} characters; the limit is {TITLE_MAX_LENGTH}"
        )


# ---------------------------------------------------------------------------
# NotificationStore
# ---------------------------------------------------------------------------
class NotificationStore:
    """Persistence service for :class:`NotificationObject`.

    All methods are synchronous — async callers go through
    ``await run_db(store.method, ...)``.  Returned rows are detached from
    their session and safe to read anywhere.
    """

    def __init__(
        self,
        engine: Engine,
        resolver: EntityResolver | None = None,
        *,
        max_retries: int = 3,
        default_page_size: int = 20,
        max_page_size: int = 100,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.engine = engine
        self.resolver = resolver if resolver is not None else EntityResolver()
        self.max_retries = max_retries
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    @classmethod
    def from_config(
        cls,
        engine: Engine,
        cfg: HeraldConfig,
        resolver: EntityResolver | None = None,
    ) -> NotificationStore:
        return cls(
            engine,
            resolver,
            max_retries=cfg.max_update_retries,
            default_page_size=cfg.default_page_size,
            max_page_size=cfg.max_page_size,
        )

    # -------------------------------------------------------------------
    # Reference handling
    # -------------------------------------------------------------------
    def _validated(
        self,
        ref: EntityReference | tuple,
        *,
        strict: bool = False,
        allow_retired: bool = False,
    ) -> EntityReference:
        if isinstance(ref, EntityReference):
            entity_type, entity_id = ref.entity_type, ref.entity_id
        else:
            entity_type, entity_id = ref
        try:
            return self.resolver.resolve(
                entity_type, entity_id, strict=strict, allow_retired=allow_retired,
            )
        except EntityReferenceError as exc:
            raise InvalidReference(str(exc)) from exc

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def create(
        self,
        ref: EntityReference | tuple,
        title: str | None = None,
        message: str | None = None,
        created_on: datetime | None = None,
        *,
        strict: bool = False,
    ) -> NotificationObject:
        """Persist a new ACTIVE notification for *ref*.

        Raises :class:`InvalidReference` when the resolver rejects *ref*
        and ``ValueError`` when *title* is too long.
        """
        ref = self._validated(ref, strict=strict)
        _check_title(title)

        now = utcnow()
        row = NotificationObject(
            entity_type=ref.entity_type,
            entity_id=ref.entity_id,
            status=NotificationStatus.ACTIVE,
            title=title,
            message=message,
            created_on=as_utc(created_on) or now,
            created_at=now,
            updated_at=now,
        )
        with get_session(self.engine) as session:
            session.add(row)
            session.flush()
            if row.id is None:
                raise IdentifierGenerationError(
                    "notification_object insert returned no id"
                )

        logger.debug("Notification created: id=%s ref=%s", row.id, ref)
        return row

    def set_status(self, notification_id, status) -> NotificationObject:
        """Move a notification to *status*.  Same-state calls are no-ops."""
        target = coerce_status(status)

        def apply(row: NotificationObject) -> bool:
            if not transition(row.status, target):
                return False
            row.status = target
            return True

        return self._mutate(notification_id, apply)

    def update(
        self,
        notification_id,
        *,
        title: str | None | _Unset = UNSET,
        message: str | None | _Unset = UNSET,
    ) -> NotificationObject:
        """Partially update the payload.  Omitted fields stay as they are."""
        if title is not UNSET:
            _check_title(title)  # type: ignore[arg-type]

        def apply(row: NotificationObject) -> bool:
            changed = False
            if title is not UNSET and row.title != title:
                row.title = title  # type: ignore[assignment]
                changed = True
            if message is not UNSET and row.message != message:
                row.message = message  # type: ignore[assignment]
                changed = True
            return changed

        return self._mutate(notification_id, apply)

    def _mutate(
        self,
        notification_id,
        apply: Callable[[NotificationObject], bool],
    ) -> NotificationObject:
        """Read → apply → compare-and-set, retrying on a lost race."""
        notification_id = _coerce_id(notification_id)

        for attempt in range(1, self.max_retries + 1):
            try:
                with get_session(self.engine) as session:
                    row = session.get(NotificationObject, notification_id)
                    if row is None:
                        raise NotFound(notification_id)
                    if apply(row):
                        row.updated_at = _advance(row.updated_at)
                    return row
            except StaleDataError:
                logger.debug(
                    "Concurrent update on notification %s (attempt %d/%d)",
                    notification_id, attempt, self.max_retries,
                )

        raise ConcurrentUpdateConflict(notification_id, self.max_retries)

    # -------------------------------------------------------------------
    # Bulk status changes
    # -------------------------------------------------------------------
    def set_status_many(self, notification_ids, status) -> int:
        """Move every listed notification to *status* in one statement.

        Rows already in *status* and ids that do not exist are skipped.
        Returns the number of rows changed.
        """
        target = coerce_status(status)
        ids = list(dict.fromkeys(_coerce_id(nid) for nid in notification_ids))
        if not ids:
            return 0
        return self._bulk_status(target, NotificationObject.id.in_(ids))

    def deactivate_for_entity(self, ref: EntityReference | tuple) -> int:
        """Mark every ACTIVE notification for *ref* INACTIVE.  Returns the count."""
        ref = self._validated(ref, allow_retired=True)
        return self._bulk_status(
            NotificationStatus.INACTIVE,
            NotificationObject.entity_type == ref.entity_type,
            NotificationObject.entity_id == ref.entity_id,
        )

    def _bulk_status(self, target: NotificationStatus, *criteria) -> int:
        # Bumping version keeps in-flight compare-and-set writers honest
        stmt = (
            update(NotificationObject)
            .where(*criteria, NotificationObject.status != target)
            .values(
                status=target,
                version=NotificationObject.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        with get_session(self.engine) as session:
            changed = session.execute(stmt).rowcount
        logger.debug("Bulk status change to %s: %d rows", target.name, changed)
        return changed

    def delete(self, notification_id) -> None:
        """Administrative hard delete.  Normal flow deactivates instead."""
        notification_id = _coerce_id(notification_id)
        with get_session(self.engine) as session:
            result = session.execute(
                delete(NotificationObject).where(NotificationObject.id == notification_id)
            )
            if not result.rowcount:
                raise NotFound(notification_id)
        logger.info("Notification %s hard-deleted", notification_id)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_by_id(self, notification_id) -> NotificationObject:
        notification_id = _coerce_id(notification_id)
        with Session(self.engine) as session:
            row = session.get(NotificationObject, notification_id)
            if row is None:
                raise NotFound(notification_id)
            session.expunge(row)
            return row

    def list_by_entity(
        self,
        ref: EntityReference | tuple,
        status=None,
        *,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> NotificationPage:
        """Notifications for *ref*, newest ``created_on`` first."""
        ref = self._validated(ref, allow_retired=True)
        criteria = [
            NotificationObject.entity_type == ref.entity_type,
            NotificationObject.entity_id == ref.entity_id,
        ]
        if status is not None:
            criteria.append(NotificationObject.status == coerce_status(status))
        return self._page(criteria, limit=limit, cursor=cursor)

    def list_by_status(
        self,
        status,
        *,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> NotificationPage:
        """All notifications in *status*, newest ``created_on`` first."""
        criteria = [NotificationObject.status == coerce_status(status)]
        return self._page(criteria, limit=limit, cursor=cursor)

    def count_by_status(self, ref: EntityReference | tuple | None = None) -> dict[str, int]:
        """Return ``{"active": n, "inactive": m}``, optionally for one entity."""
        stmt = select(NotificationObject.status, func.count()).group_by(
            NotificationObject.status
        )
        if ref is not None:
            ref = self._validated(ref, allow_retired=True)
            stmt = stmt.where(
                NotificationObject.entity_type == ref.entity_type,
                NotificationObject.entity_id == ref.entity_id,
            )
        counts = {s.name.lower(): 0 for s in NotificationStatus}
        with Session(self.engine) as session:
            for status, count in session.execute(stmt).all():
                counts[coerce_status(status).name.lower()] = count
        return counts

    def _page_size(self, limit: int | None) -> int:
        if limit is None:
            return self.default_page_size
        if limit < 1:
            raise ValueError("limit must be at least 1")
        return min(limit, self.max_page_size)

    def _page(self, criteria: list, *, limit: int | None, cursor: str | None) -> NotificationPage:
        size = self._page_size(limit)
        stmt = select(NotificationObject).where(*criteria)
        if cursor:
            after_on, after_id = decode_cursor(cursor)
            stmt = stmt.where(or_(
                NotificationObject.created_on < after_on,
                and_(
                    NotificationObject.created_on == after_on,
                    NotificationObject.id < after_id,
                ),
            ))
        stmt = stmt.order_by(
            NotificationObject.created_on.desc(), NotificationObject.id.desc(),
        ).limit(size + 1)

        with Session(self.engine) as session:
            rows = list(session.scalars(stmt).all())
            session.expunge_all()

        next_cursor = None
        if len(rows) > size:
            rows = rows[:size]
            last = rows[-1]
            next_cursor = encode_cursor(last.created_on, last.id)
        return NotificationPage(items=rows, next_cursor=next_cursor)
