"""
herald.services.dispatch — Notification Dispatch / Query Facade
================================================================

The async boundary that request handlers talk to.  It composes the
:class:`~herald.services.notification_store.NotificationStore` with an
optional liveness check on the referenced entity:

* Store calls run on a worker thread through :func:`run_db`.
* Each distinct reference on a page is probed once, concurrently, and every
  probe is bounded by ``probe_timeout``.  Synchronous probes run on a small
  executor owned by the dispatcher, never on the default pool that store
  calls use, so a hung probe cannot starve the read path.  A probe that times out or raises
  counts as "alive" — delivery is never held hostage by a slow collaborator.
* Orphans (probe answered False) are dropped (``orphan_policy="omit"``) or
  returned with ``orphaned=True`` (``"flag"``).  They never raise.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime

from herald.config import ORPHAN_POLICIES, HeraldConfig
from herald.database.engine import run_db
from herald.database.models import NotificationObject
from herald.engine.entities import EntityReference, EntityResolver, ExistsProbe
from herald.engine.status import NotificationStatus
from herald.services.notification_store import NotificationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NotificationPayload:
    """What a collaborator wants to say about an entity."""

    title: str | None = None
    message: str | None = None
    created_on: datetime | None = None

    @classmethod
    def coerce(cls, payload: NotificationPayload | Mapping | None) -> NotificationPayload:
        if payload is None:
            return cls()
        if isinstance(payload, cls):
            return payload
        if isinstance(payload, Mapping):
            unknown = set(payload) - {"title", "message", "created_on"}
            if unknown:
                raise ValueError(f"Unknown payload fields: {sorted(unknown)}")
            return cls(
                title=payload.get("title"),
                message=payload.get("message"),
                created_on=payload.get("created_on"),
            )
        raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


@dataclass(frozen=True, slots=True)
class Delivery:
    """A notification as handed to a consumer."""

    notification: NotificationObject
    orphaned: bool = False


@dataclass(frozen=True, slots=True)
class DeliveryPage:
    items: list[Delivery]
    next_cursor: str | None


class NotificationDispatcher:
    """Async facade over the notification store."""

    def __init__(
        self,
        store: NotificationStore,
        resolver: EntityResolver | None = None,
        *,
        probe_timeout: float = 0.5,
        orphan_policy: str = "omit",
        probe_workers: int = 4,
    ) -> None:
        if orphan_policy not in ORPHAN_POLICIES:
            raise ValueError(f"orphan_policy must be one of {ORPHAN_POLICIES}")
        if probe_timeout <= 0:
            raise ValueError("probe_timeout must be positive")
        if probe_workers < 1:
            raise ValueError("probe_workers must be at least 1")
        self.store = store
        self.resolver = resolver if resolver is not None else store.resolver
        self.probe_timeout = probe_timeout
        self.orphan_policy = orphan_policy
        self._probe_executor = ThreadPoolExecutor(
            max_workers=probe_workers, thread_name_prefix="herald-probe",
        )

    @classmethod
    def from_config(
        cls, store: NotificationStore, cfg: HeraldConfig,
    ) -> NotificationDispatcher:
        return cls(
            store,
            probe_timeout=cfg.probe_timeout_seconds,
            orphan_policy=cfg.orphan_policy,
            probe_workers=cfg.probe_workers,
        )

    def close(self) -> None:
        """Release the probe threads.  Probes still running are abandoned."""
        self._probe_executor.shutdown(wait=False, cancel_futures=True)

    async def __aenter__(self) -> NotificationDispatcher:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    async def notify_entity(
        self,
        ref: EntityReference | tuple,
        payload: NotificationPayload | Mapping | None = None,
        *,
        strict: bool = False,
    ) -> NotificationObject:
        """Create an ACTIVE notification for *ref*."""
        payload = NotificationPayload.coerce(payload)
        return await run_db(
            self.store.create,
            ref,
            payload.title,
            payload.message,
            payload.created_on,
            strict=strict,
        )

    async def acknowledge(self, notification_id) -> NotificationObject:
        """Mark a notification read — i.e. move it to INACTIVE."""
        return await run_db(
            self.store.set_status, notification_id, NotificationStatus.INACTIVE,
        )

    async def resurface(self, notification_id) -> NotificationObject:
        """Bring an acknowledged notification back to ACTIVE."""
        return await run_db(
            self.store.set_status, notification_id, NotificationStatus.ACTIVE,
        )

    async def acknowledge_many(self, notification_ids) -> int:
        """Acknowledge a batch of notifications.  Returns how many changed."""
        return await run_db(
            self.store.set_status_many, list(notification_ids), NotificationStatus.INACTIVE,
        )

    async def acknowledge_entity(self, ref: EntityReference | tuple) -> int:
        """Acknowledge everything still active for *ref*."""
        return await run_db(self.store.deactivate_for_entity, ref)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    async def active_notifications_for(
        self, ref: EntityReference | tuple, *, limit: int | None = None,
    ) -> list[Delivery]:
        """ACTIVE notifications for *ref*, newest first, orphan-filtered."""
        page = await self.notifications_for(
            ref, NotificationStatus.ACTIVE, limit=limit,
        )
        return page.items

    async def notifications_for(
        self,
        ref: EntityReference | tuple,
        status=None,
        *,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> DeliveryPage:
        page = await run_db(
            self.store.list_by_entity, ref, status, limit=limit, cursor=cursor,
        )
        return DeliveryPage(await self._deliver(page.items), page.next_cursor)

    async def notifications_by_status(
        self,
        status,
        *,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> DeliveryPage:
        page = await run_db(
            self.store.list_by_status, status, limit=limit, cursor=cursor,
        )
        return DeliveryPage(await self._deliver(page.items), page.next_cursor)

    # -------------------------------------------------------------------
    # Liveness
    # -------------------------------------------------------------------
    async def is_alive(self, ref: EntityReference) -> bool:
        """Best-effort existence check; fails open."""
        probe = self.resolver.probe_for(ref)
        if probe is None:
            return True
        try:
            return await asyncio.wait_for(self._ask(probe, ref), self.probe_timeout)
        except TimeoutError:
            logger.warning(
                "Liveness probe for %s timed out after %.2fs; assuming alive",
                ref, self.probe_timeout,
            )
        except Exception:
            logger.warning("Liveness probe for %s failed; assuming alive", ref, exc_info=True)
        return True

    async def _deliver(self, rows: list[NotificationObject]) -> list[Delivery]:
        refs = list(dict.fromkeys(row.entity_ref for row in rows))
        answers = await asyncio.gather(*(self.is_alive(ref) for ref in refs))
        alive = dict(zip(refs, answers))

        deliveries = []
        for row in rows:
            if alive[row.entity_ref]:
                deliveries.append(Delivery(row))
            elif self.orphan_policy == "flag":
                deliveries.append(Delivery(row, orphaned=True))
            else:
                logger.debug("Omitting orphaned notification %s (%s)", row.id, row.entity_ref)
        return deliveries

    async def _ask(self, probe: ExistsProbe, ref: EntityReference) -> bool:
        if inspect.iscoroutinefunction(probe):
            answer = probe(ref)
        else:
            loop = asyncio.get_running_loop()
            answer = await loop.run_in_executor(self._probe_executor, probe, ref)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)
