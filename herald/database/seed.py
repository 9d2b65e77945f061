"""
herald.database.seed — Entity Kind Catalogue Sync
==================================================

Mirrors the in-process :class:`~herald.engine.entities.EntityKindRegistry`
into the ``entity_kinds`` table on startup.

Idempotent — inserts kinds that are new, records retirements, and never
deletes a row.  A tag that the database knows but the registry does not is
logged loudly: kinds are only ever retired through an explicit version step.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from herald.database.models import EntityKindRecord
from herald.engine.entities import EntityKindRegistry, default_registry

logger = logging.getLogger(__name__)


def sync_entity_kinds(
    engine: Engine, registry: EntityKindRegistry | None = None,
) -> dict:
    """Upsert every registered kind into ``entity_kinds``.

    Returns ``{"inserted": N, "retired": M, "missing": [tags…]}``.

    Raises
    ------
    RuntimeError
        If a stored tag is bound to a different name or identifier shape —
        reusing a tag would silently repoint existing rows.
    """
    registry = registry if registry is not None else default_registry()
    inserted = 0
    retired = 0

    with Session(engine) as session:
        stored = {
            row.tag: row
            for row in session.scalars(select(EntityKindRecord)).all()
        }

        for kind in registry.kinds():
            row = stored.pop(kind.tag, None)
            if row is None:
                session.add(EntityKindRecord(
                    tag=kind.tag,
                    name=kind.name,
                    shape=kind.shape.name,
                    since_version=kind.since_version,
                    retired_in=kind.retired_in,
                ))
                inserted += 1
                continue

            if row.name != kind.name or row.shape != kind.shape.name:
                raise RuntimeError(
                    f"Entity kind tag {kind.tag} is stored as "
                    f"{row.name!r}/{row.shape} but registered as "
                    f"{kind.name!r}/{kind.shape.name}"
                )
            if kind.retired_in is not None and row.retired_in != kind.retired_in:
                row.retired_in = kind.retired_in
                retired += 1

        missing = sorted(stored)
        if missing:
            logger.warning(
                "Entity kinds %s exist in the database but are not registered; "
                "rows referencing them will fail resolution",
                missing,
            )
        session.commit()

    if inserted or retired:
        logger.info(
            "Synced entity kinds: %d inserted, %d retired (registry version %d)",
            inserted, retired, registry.version,
        )
    return {"inserted": inserted, "retired": retired, "missing": missing}
