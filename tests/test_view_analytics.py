"""
tests/test_view_analytics.py — View Analytics Aggregator Tests
===============================================================

Covers:
- record_view / get_count basics and per-day buckets
- Unique viewer counting
- Duplicate source_id writes counted once
- Every bucket gets a non-null id
- No lost increments under concurrent writers
- Dashboard reads: get_analytics, bulk_counts, top_viewed
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, date, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, insert, select
from sqlalchemy.orm import Session

from herald.database.models import EntityViewAnalytics, EntityViewReceipt, as_utc
from herald.engine.entities import Kind
from herald.errors import InvalidReference
from herald.services.view_analytics import ViewAnalytics, _dialect_insert

ORG_ID = "6f1c2a9e-3b4d-4e5f-8a7b-1c2d3e4f5a6b"
EVENT_ID = "0b8e7d6c-5a4b-4c3d-9e2f-1a0b9c8d7e6f"
MEMBER_ID = "146881618185408122"
DAY = date(2026, 3, 10)
NOON = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _buckets(engine) -> list[EntityViewAnalytics]:
    with Session(engine) as session:
        return list(session.scalars(select(EntityViewAnalytics)).all())


def _count_receipts(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(EntityViewReceipt))


class TestRecordView:
    def test_three_views(self, analytics, org_ref):
        for _ in range(3):
            analytics.record_view(org_ref)
        assert analytics.get_count(org_ref) == 3

    def test_never_viewed(self, analytics, org_ref):
        assert analytics.get_count(org_ref) == 0

    def test_one_bucket_per_day(self, analytics, db_engine, org_ref):
        analytics.record_view(org_ref, viewed_at=NOON)
        analytics.record_view(org_ref, viewed_at=NOON + timedelta(hours=3))
        analytics.record_view(org_ref, viewed_at=NOON + timedelta(days=1))

        buckets = sorted(_buckets(db_engine), key=lambda b: b.view_date)
        assert [(b.view_date, b.total_views) for b in buckets] == [
            (DAY, 2), (DAY + timedelta(days=1), 1),
        ]

    def test_bucket_tracks_first_and_last_view(self, analytics, db_engine, org_ref):
        analytics.record_view(org_ref, viewed_at=NOON)
        analytics.record_view(org_ref, viewed_at=NOON - timedelta(hours=2))
        analytics.record_view(org_ref, viewed_at=NOON + timedelta(hours=5))

        [bucket] = _buckets(db_engine)
        assert as_utc(bucket.first_viewed_at) == NOON - timedelta(hours=2)
        assert as_utc(bucket.last_viewed_at) == NOON + timedelta(hours=5)

    def test_count_window(self, analytics, org_ref):
        for offset in range(5):
            analytics.record_view(org_ref, viewed_at=NOON + timedelta(days=offset))
        assert analytics.get_count(org_ref, since=DAY + timedelta(days=1)) == 4
        assert analytics.get_count(org_ref, until=DAY + timedelta(days=1)) == 2
        assert analytics.get_count(
            org_ref, since=DAY + timedelta(days=1), until=DAY + timedelta(days=3),
        ) == 3

    def test_counts_are_per_entity(self, analytics, org_ref, event_ref):
        analytics.record_view(org_ref)
        analytics.record_view(event_ref)
        analytics.record_view(event_ref)
        assert analytics.get_count(org_ref) == 1
        assert analytics.get_count(event_ref) == 2

    def test_same_id_different_kind_kept_apart(self, analytics):
        analytics.record_view((Kind.ORGANIZATION, ORG_ID))
        analytics.record_view((Kind.USER, ORG_ID))
        assert analytics.get_count((Kind.ORGANIZATION, ORG_ID)) == 1
        assert analytics.get_count((Kind.USER, ORG_ID)) == 1

    def test_snowflake_kind(self, analytics):
        analytics.record_view((Kind.DISCORD_MEMBER, int(MEMBER_ID)))
        assert analytics.get_count((Kind.DISCORD_MEMBER, MEMBER_ID)) == 1

    def test_invalid_reference(self, analytics, db_engine):
        with pytest.raises(InvalidReference):
            analytics.record_view((404, ORG_ID))
        with pytest.raises(InvalidReference):
            analytics.record_view((Kind.EVENT, "bogus"))
        assert _buckets(db_engine) == []

    def test_every_bucket_has_an_id(self, analytics, db_engine, org_ref, event_ref):
        analytics.record_view(org_ref, viewed_at=NOON)
        analytics.record_view(event_ref, viewed_at=NOON)
        analytics.record_view(org_ref, viewed_at=NOON + timedelta(days=1))

        buckets = _buckets(db_engine)
        assert len(buckets) == 3
        assert all(b.id is not None for b in buckets)
        assert len({b.id for b in buckets}) == 3

    def test_core_insert_without_id_still_gets_one(self, db_engine):
        with db_engine.begin() as conn:
            conn.execute(insert(EntityViewAnalytics).values(
                entity_type=Kind.EVENT,
                entity_id=EVENT_ID,
                view_date=DAY,
                total_views=1,
                unique_views=0,
                first_viewed_at=NOON,
                last_viewed_at=NOON,
            ))
        [bucket] = _buckets(db_engine)
        assert bucket.id is not None


class TestUniqueViewers:
    def test_repeat_viewer_counted_once_as_unique(self, analytics, db_engine, org_ref):
        analytics.record_view(org_ref, viewer_id="alice", viewed_at=NOON)
        analytics.record_view(org_ref, viewer_id="alice", viewed_at=NOON + timedelta(minutes=1))
        analytics.record_view(org_ref, viewer_id="bob", viewed_at=NOON)
        analytics.record_view(org_ref, viewed_at=NOON)  # anonymous

        [bucket] = _buckets(db_engine)
        assert bucket.total_views == 4
        assert bucket.unique_views == 2

    def test_unique_resets_each_day(self, analytics, org_ref):
        analytics.record_view(org_ref, viewer_id=42, viewed_at=NOON)
        analytics.record_view(org_ref, viewer_id=42, viewed_at=NOON + timedelta(days=1))
        summary = analytics.get_analytics(org_ref, days=7, today=DAY + timedelta(days=1))
        assert summary["unique_views"] == 2


class TestIdempotentWrites:
    def test_duplicate_source_id_counted_once(self, analytics, org_ref):
        assert analytics.record_view(org_ref, source_id="req-1") is True
        assert analytics.record_view(org_ref, source_id="req-1") is False
        assert analytics.record_view(org_ref, source_id="req-2") is True
        assert analytics.get_count(org_ref) == 2

    def test_duplicate_does_not_count_viewer(self, analytics, db_engine, org_ref):
        analytics.record_view(org_ref, viewer_id="carol", source_id="req-9")
        analytics.record_view(org_ref, viewer_id="carol", source_id="req-9")

        [bucket] = _buckets(db_engine)
        assert (bucket.total_views, bucket.unique_views) == (1, 1)

    def test_source_id_scoped_to_entity(self, analytics, db_engine, org_ref, event_ref):
        assert analytics.record_view(org_ref, source_id="batch-7") is True
        assert analytics.record_view(event_ref, source_id="batch-7") is True
        assert analytics.record_view(org_ref, source_id="batch-7") is False

        assert analytics.get_count(org_ref) == 1
        assert analytics.get_count(event_ref) == 1
        assert _count_receipts(db_engine) == 2


class TestDialectSupport:
    def test_unsupported_dialect_rejected(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "mysql"
        with pytest.raises(RuntimeError, match="mysql"):
            _dialect_insert(session)

    def test_sqlite_supported(self, db_engine):
        with Session(db_engine) as session:
            assert _dialect_insert(session) is not None


class TestConcurrentViews:
    def test_no_lost_increments(self, file_engine, resolver, org_ref):
        analytics = ViewAnalytics(file_engine, resolver)
        n = 40

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: analytics.record_view(org_ref), range(n)))

        assert analytics.get_count(org_ref) == n
        with Session(file_engine) as session:
            rows = session.scalar(select(func.count()).select_from(EntityViewAnalytics))
        assert rows == 1

    def test_concurrent_unique_viewers(self, file_engine, resolver, org_ref):
        analytics = ViewAnalytics(file_engine, resolver)
        viewers = [f"viewer-{i % 5}" for i in range(20)]

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(
                lambda v: analytics.record_view(org_ref, viewer_id=v, viewed_at=NOON),
                viewers,
            ))

        [bucket] = _buckets(file_engine)
        assert bucket.total_views == 20
        assert bucket.unique_views == 5


class TestDashboardReads:
    def test_get_analytics_breakdown(self, analytics, org_ref):
        analytics.record_view(org_ref, viewer_id="a", viewed_at=NOON - timedelta(days=1))
        analytics.record_view(org_ref, viewer_id="a", viewed_at=NOON)
        analytics.record_view(org_ref, viewer_id="b", viewed_at=NOON)
        analytics.record_view(org_ref, viewed_at=NOON - timedelta(days=40))  # out of window

        summary = analytics.get_analytics(org_ref, days=30, today=DAY)

        assert summary["entity_type"] == Kind.ORGANIZATION
        assert summary["entity_id"] == ORG_ID
        assert summary["total_views"] == 3
        assert summary["unique_views"] == 3
        assert summary["views_by_date"] == [
            {"date": "2026-03-10", "total_views": 2, "unique_views": 2},
            {"date": "2026-03-09", "total_views": 1, "unique_views": 1},
        ]

    def test_get_analytics_empty(self, analytics, org_ref):
        summary = analytics.get_analytics(org_ref, today=DAY)
        assert summary["total_views"] == 0
        assert summary["views_by_date"] == []

    def test_bulk_counts_includes_zeros(self, analytics):
        other = "11111111-2222-4333-8444-555555555555"
        analytics.record_view((Kind.EVENT, EVENT_ID))
        analytics.record_view((Kind.EVENT, EVENT_ID))

        counts = analytics.bulk_counts(Kind.EVENT, [EVENT_ID.upper(), other])
        assert counts == {EVENT_ID: 2, other: 0}

    def test_bulk_counts_empty(self, analytics):
        assert analytics.bulk_counts(Kind.EVENT, []) == {}

    def test_top_viewed(self, analytics):
        ids = [
            "11111111-2222-4333-8444-555555555555",
            "22222222-3333-4444-8555-666666666666",
            "33333333-4444-4555-8666-777777777777",
        ]
        for eid, views in zip(ids, (1, 3, 2)):
            for _ in range(views):
                analytics.record_view((Kind.EVENT, eid), viewed_at=NOON)
        analytics.record_view((Kind.ORGANIZATION, ORG_ID), viewed_at=NOON)

        top = analytics.top_viewed("event", limit=2, today=DAY)
        assert [(t["entity_id"], t["total_views"]) for t in top] == [
            (ids[1], 3), (ids[2], 2),
        ]
