"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import Engine

from herald.database.engine import create_db_engine
from herald.database.models import Base
from herald.engine.entities import EntityResolver, default_registry
from herald.services.notification_store import NotificationStore
from herald.services.view_analytics import ViewAnalytics

ORG_ID = "6f1c2a9e-3b4d-4e5f-8a7b-1c2d3e4f5a6b"
EVENT_ID = "0b8e7d6c-5a4b-4c3d-9e2f-1a0b9c8d7e6f"
MEMBER_ID = "146881618185408122"


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Herald tables.

    ``create_db_engine`` gives it a StaticPool (one shared database for every
    thread) and IMMEDIATE transactions.  Good for sequential tests only.
    """
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine — one connection per thread.

    Used by the concurrency tests: writers queue on the database lock.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'herald.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def resolver(registry) -> EntityResolver:
    return EntityResolver(registry)


@pytest.fixture
def store(db_engine, resolver) -> NotificationStore:
    return NotificationStore(db_engine, resolver, default_page_size=20, max_page_size=50)


@pytest.fixture
def analytics(db_engine, resolver) -> ViewAnalytics:
    return ViewAnalytics(db_engine, resolver)


@pytest.fixture
def org_ref(resolver):
    return resolver.resolve("organization", ORG_ID)


@pytest.fixture
def event_ref(resolver):
    return resolver.resolve("event", EVENT_ID)
