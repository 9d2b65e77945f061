"""
herald.services.view_analytics — View Analytics Aggregator
===========================================================

Counts views per entity per UTC day in ``entity_view_analytics``.

Write path (one transaction per view):

1. ``source_id`` given → insert a receipt under a SAVEPOINT.  A unique
   violation means this exact write was already counted (client retry);
   nothing else happens.
2. ``viewer_id`` given → insert into ``entity_viewers`` under a SAVEPOINT.
   Success means first view by this viewer today → ``unique_views`` +1.
3. One ``INSERT … ON CONFLICT (entity_type, entity_id, view_date) DO UPDATE
   SET total_views = total_views + 1`` upsert.  No read-modify-write, so
   concurrent viewers never lose increments, and the only lock taken is
   the row for this entity/day.

The analytics ``id`` is generated by this module inside the upsert and the
``RETURNING`` value is checked, so a null id can never be written silently.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import Engine, case, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from herald.database.engine import get_session
from herald.database.models import (
    EntityViewAnalytics,
    EntityViewer,
    EntityViewReceipt,
    as_utc,
    utcnow,
)
from herald.engine.entities import EntityReference, EntityResolver
from herald.errors import (
    EntityReferenceError,
    IdentifierGenerationError,
    InvalidReference,
)

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _dialect_insert(session: Session):
    name = session.get_bind().dialect.name
    try:
        return _UPSERT_DIALECTS[name]
    except KeyError:
        raise RuntimeError(
            f"View counters need INSERT … ON CONFLICT; dialect {name!r} is not supported"
        ) from None


class ViewAnalytics:
    """Atomic per-entity view counters.

    All methods are synchronous — call via ``await run_db(analytics.record_view, ...)``.
    """

    def __init__(self, engine: Engine, resolver: EntityResolver | None = None) -> None:
        self.engine = engine
        self.resolver = resolver if resolver is not None else EntityResolver()

    def _validated(self, ref: EntityReference | tuple, *, allow_retired: bool = False) -> EntityReference:
        if isinstance(ref, EntityReference):
            entity_type, entity_id = ref.entity_type, ref.entity_id
        else:
            entity_type, entity_id = ref
        try:
            return self.resolver.resolve(entity_type, entity_id, allow_retired=allow_retired)
        except EntityReferenceError as exc:
            raise InvalidReference(str(exc)) from exc

    # -------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------
    def record_view(
        self,
        ref: EntityReference | tuple,
        *,
        viewer_id: str | int | None = None,
        source_id: str | None = None,
        viewed_at: datetime | None = None,
    ) -> bool:
        """Count one view of *ref*.

        Returns True if the view was counted, False if *source_id* had
        already been recorded for this entity (a retried write).  The same
        *source_id* may count once on each entity it touches.
        """
        ref = self._validated(ref)
        ts = as_utc(viewed_at) or utcnow()
        view_date = ts.date()

        with get_session(self.engine) as session:
            if source_id is not None:
                try:
                    with session.begin_nested():   # SAVEPOINT
                        session.add(EntityViewReceipt(
                            source_id=source_id,
                            entity_type=ref.entity_type,
                            entity_id=ref.entity_id,
                            created_at=ts,
                        ))
                        session.flush()
                except IntegrityError:
                    logger.debug("Duplicate view skipped: source_id=%s ref=%s", source_id, ref)
                    return False

            unique = 0
            if viewer_id is not None:
                try:
                    with session.begin_nested():
                        session.add(EntityViewer(
                            entity_type=ref.entity_type,
                            entity_id=ref.entity_id,
                            view_date=view_date,
                            viewer_id=str(viewer_id),
                            created_at=ts,
                        ))
                        session.flush()
                    unique = 1
                except IntegrityError:
                    pass  # repeat viewer today: total only

            self._upsert_counter(session, ref, view_date, ts, unique)
        return True

    def _upsert_counter(
        self,
        session: Session,
        ref: EntityReference,
        view_date: date,
        ts: datetime,
        unique: int,
    ) -> None:
        table = EntityViewAnalytics.__table__
        insert = _dialect_insert(session)
        stmt = insert(table).values(
            entity_type=ref.entity_type,
            entity_id=ref.entity_id,
            view_date=view_date,
            total_views=1,
            unique_views=unique,
            first_viewed_at=ts,
            last_viewed_at=ts,
            created_at=ts,
            updated_at=ts,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.entity_type, table.c.entity_id, table.c.view_date],
            set_={
                "total_views": table.c.total_views + 1,
                "unique_views": table.c.unique_views + unique,
                "first_viewed_at": case(
                    (stmt.excluded.first_viewed_at < table.c.first_viewed_at,
                     stmt.excluded.first_viewed_at),
                    else_=table.c.first_viewed_at,
                ),
                "last_viewed_at": case(
                    (stmt.excluded.last_viewed_at > table.c.last_viewed_at,
                     stmt.excluded.last_viewed_at),
                    else_=table.c.last_viewed_at,
                ),
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(table.c.id)

        row_id = session.execute(stmt).scalar_one_or_none()
        if row_id is None:
            raise IdentifierGenerationError(
                f"entity_view_analytics upsert for {ref} on {view_date} returned no id"
            )

    # -------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------
    def get_count(
        self,
        ref: EntityReference | tuple,
        *,
        since: date | None = None,
        until: date | None = None,
    ) -> int:
        """Total views of *ref* across all day buckets (bounds inclusive)."""
        ref = self._validated(ref, allow_retired=True)
        stmt = select(func.coalesce(func.sum(EntityViewAnalytics.total_views), 0)).where(
            EntityViewAnalytics.entity_type == ref.entity_type,
            EntityViewAnalytics.entity_id == ref.entity_id,
        )
        if since is not None:
            stmt = stmt.where(EntityViewAnalytics.view_date >= since)
        if until is not None:
            stmt = stmt.where(EntityViewAnalytics.view_date <= until)
        with Session(self.engine) as session:
            return int(session.scalar(stmt) or 0)

    def get_analytics(
        self,
        ref: EntityReference | tuple,
        *,
        days: int = 30,
        today: date | None = None,
    ) -> dict:
        """Totals plus a per-day breakdown (newest first) for the last *days*."""
        ref = self._validated(ref, allow_retired=True)
        end = today or utcnow().date()
        start = end - timedelta(days=days - 1)

        with Session(self.engine) as session:
            rows = session.execute(
                select(
                    EntityViewAnalytics.view_date,
                    EntityViewAnalytics.total_views,
                    EntityViewAnalytics.unique_views,
                )
                .where(
                    EntityViewAnalytics.entity_type == ref.entity_type,
                    EntityViewAnalytics.entity_id == ref.entity_id,
                    EntityViewAnalytics.view_date.between(start, end),
                )
                .order_by(EntityViewAnalytics.view_date.desc())
            ).all()

        return {
            "entity_type": ref.entity_type,
            "entity_id": ref.entity_id,
            "total_views": sum(r.total_views for r in rows),
            "unique_views": sum(r.unique_views for r in rows),
            "views_by_date": [
                {
                    "date": r.view_date.isoformat(),
                    "total_views": r.total_views,
                    "unique_views": r.unique_views,
                }
                for r in rows
            ],
        }

    def bulk_counts(self, entity_type: int | str, entity_ids: list) -> dict[str, int]:
        """Total views for many entities of one kind, keyed by canonical id."""
        refs = [self._validated((entity_type, eid), allow_retired=True) for eid in entity_ids]
        if not refs:
            return {}
        tag = refs[0].entity_type
        ids = [r.entity_id for r in refs]

        with Session(self.engine) as session:
            rows = session.execute(
                select(
                    EntityViewAnalytics.entity_id,
                    func.sum(EntityViewAnalytics.total_views).label("total"),
                )
                .where(
                    EntityViewAnalytics.entity_type == tag,
                    EntityViewAnalytics.entity_id.in_(ids),
                )
                .group_by(EntityViewAnalytics.entity_id)
            ).all()

        counts = {eid: 0 for eid in ids}
        counts.update({row.entity_id: int(row.total) for row in rows})
        return counts

    def top_viewed(
        self,
        entity_type: int | str,
        *,
        days: int = 30,
        limit: int = 10,
        today: date | None = None,
    ) -> list[dict]:
        """Most-viewed entities of a kind over the last *days*."""
        tag = self.resolver.registry.get(entity_type).tag
        end = today or utcnow().date()
        start = end - timedelta(days=days - 1)

        total = func.sum(EntityViewAnalytics.total_views).label("total_views")
        unique = func.sum(EntityViewAnalytics.unique_views).label("unique_views")
        with Session(self.engine) as session:
            rows = session.execute(
                select(EntityViewAnalytics.entity_id, total, unique)
                .where(
                    EntityViewAnalytics.entity_type == tag,
                    EntityViewAnalytics.view_date.between(start, end),
                )
                .group_by(EntityViewAnalytics.entity_id)
                .order_by(total.desc(), EntityViewAnalytics.entity_id)
                .limit(limit)
            ).all()

        return [
            {
                "entity_id": row.entity_id,
                "total_views": int(row.total_views),
                "unique_views": int(row.unique_views),
            }
            for row in rows
        ]
