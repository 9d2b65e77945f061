"""
Herald — Polymorphic Notifications & Entity View Analytics
===========================================================
Attaches notifications and view counters to *any* entity of the community
platform (organizations, events, users, Discord members, …) through a
``(entity_type, entity_id)`` pair instead of one foreign key per kind.

Package layout::

    herald/
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Error taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, sessions, async bridge
    │   ├── models.py      # ORM models (notifications, view counters, kinds)
    │   └── seed.py        # entity_kinds catalogue sync
    ├── engine/
    │   ├── entities.py    # Kind registry + reference resolver
    │   └── status.py      # ACTIVE ⇄ INACTIVE lifecycle
    └── services/
        ├── notification_store.py  # Notification CRUD, CAS updates, cursors
        ├── view_analytics.py      # Atomic per-day view counters
        ├── dispatch.py            # Async facade with liveness filtering
        └── retention_service.py   # Compaction + background worker
"""

__version__ = "0.1.0"
