"""
herald.services.retention_service — Notification & View Retention
===================================================================

Periodic cleanup:

- **Notification compaction** — hard-deletes INACTIVE notifications whose
  ``created_on`` is older than ``notification_retention_days``.  ACTIVE rows
  are never touched, however old.
- **View data cleanup** — drops ``entity_view_analytics`` buckets,
  ``entity_viewers`` rows and ``entity_view_receipts`` older than
  ``view_retention_days``.

**Deletion is batched** so no single transaction holds locks for long;
live writers (``create``/``set_status``/``record_view``) interleave freely
between batches.  Nothing here is required for correctness.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import Engine, delete, func, select

from herald.config import HeraldConfig
from herald.database.engine import get_session, run_db
from herald.database.models import (
    EntityViewAnalytics,
    EntityViewer,
    EntityViewReceipt,
    NotificationObject,
    utcnow,
)
from herald.engine.status import NotificationStatus

logger = logging.getLogger(__name__)

# How many rows to delete in each batch (avoids long-held row locks)
BATCH_SIZE = 5_000


def compact_notifications(
    engine: Engine,
    retention_days: int = 90,
    *,
    now: datetime | None = None,
    batch_size: int = BATCH_SIZE,
) -> int:
    """Hard-delete inactive notifications created before the cutoff.

    Returns the number of rows removed.
    """
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    deleted = 0

    while True:
        with get_session(engine) as session:
            ids = session.scalars(
                select(NotificationObject.id)
                .where(
                    NotificationObject.status == NotificationStatus.INACTIVE,
                    NotificationObject.created_on < cutoff,
                )
                .limit(batch_size)
            ).all()

            if not ids:
                break

            # Re-check status: a row resurfaced since the SELECT stays put
            result = session.execute(
                delete(NotificationObject).where(
                    NotificationObject.id.in_(ids),
                    NotificationObject.status == NotificationStatus.INACTIVE,
                )
            )
            deleted += result.rowcount  # type: ignore[operator]
            logger.info(
                "Retention: deleted %d notification rows (total so far: %d)",
                result.rowcount, deleted,
            )
            if len(ids) < batch_size:
                break

    return deleted


def cleanup_view_data(
    engine: Engine,
    retention_days: int = 90,
    *,
    now: datetime | None = None,
) -> dict[str, int]:
    """Delete view buckets, viewer rows and receipts older than the cutoff.

    Returns ``{"analytics_deleted": N, "viewers_deleted": M, "receipts_deleted": K}``.
    """
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    cutoff_day = cutoff.date()

    with get_session(engine) as session:
        analytics = session.execute(
            delete(EntityViewAnalytics).where(EntityViewAnalytics.view_date < cutoff_day)
        ).rowcount
        viewers = session.execute(
            delete(EntityViewer).where(EntityViewer.view_date < cutoff_day)
        ).rowcount
        receipts = session.execute(
            delete(EntityViewReceipt).where(EntityViewReceipt.created_at < cutoff)
        ).rowcount

    logger.info(
        "Retention: pruned %d analytics buckets, %d viewer rows, %d receipts "
        "(retention_days=%d, cutoff=%s)",
        analytics, viewers, receipts, retention_days, cutoff.isoformat(),
    )
    return {
        "analytics_deleted": analytics,
        "viewers_deleted": viewers,
        "receipts_deleted": receipts,
    }


def run_retention_cleanup(engine: Engine, cfg: HeraldConfig | None = None) -> dict[str, int]:
    """One full retention pass using the configured windows."""
    cfg = cfg or HeraldConfig()
    summary = {
        "notifications_deleted": compact_notifications(
            engine, cfg.notification_retention_days,
        ),
    }
    summary.update(cleanup_view_data(engine, cfg.view_retention_days))
    logger.info("Retention cleanup complete — %s", summary)
    return summary


def get_retention_stats(engine: Engine) -> dict:
    """Row counts and age bounds for the health dashboard."""
    with get_session(engine) as session:
        active = session.scalar(
            select(func.count()).select_from(NotificationObject)
            .where(NotificationObject.status == NotificationStatus.ACTIVE)
        ) or 0
        inactive = session.scalar(
            select(func.count()).select_from(NotificationObject)
            .where(NotificationObject.status == NotificationStatus.INACTIVE)
        ) or 0
        oldest = session.scalar(select(func.min(NotificationObject.created_on)))
        buckets = session.scalar(
            select(func.count()).select_from(EntityViewAnalytics)
        ) or 0
        oldest_bucket = session.scalar(select(func.min(EntityViewAnalytics.view_date)))

    return {
        "active_notifications": active,
        "inactive_notifications": inactive,
        "oldest_notification": oldest.isoformat() if oldest else None,
        "analytics_buckets": buckets,
        "oldest_analytics_day": oldest_bucket.isoformat() if oldest_bucket else None,
    }


# ---------------------------------------------------------------------------
# Background worker
# ---------------------------------------------------------------------------
class RetentionWorker:
    """Runs :func:`run_retention_cleanup` every ``compaction_interval_seconds``."""

    def __init__(self, engine: Engine, cfg: HeraldConfig | None = None) -> None:
        self.engine = engine
        self.cfg = cfg or HeraldConfig()
        self._task: asyncio.Task | None = None

    async def run_once(self) -> dict[str, int]:
        return await run_db(run_retention_cleanup, self.engine, self.cfg)

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start the background loop.  Calling twice is a no-op."""
        if self._task is not None:
            return

        async def _loop() -> None:
            while True:
                await asyncio.sleep(self.cfg.compaction_interval_seconds)
                try:
                    await self.run_once()
                except Exception:
                    logger.exception("Retention loop error")

        loop = loop or asyncio.get_running_loop()
        self._task = loop.create_task(_loop(), name="herald-retention")

    def stop(self) -> None:
        """Cancel the background loop."""
        if self._task:
            self._task.cancel()
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
