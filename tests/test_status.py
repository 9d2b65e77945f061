"""
tests/test_status.py — Notification Status Lifecycle
=====================================================
"""

from __future__ import annotations

import pytest

from herald.engine.status import NotificationStatus, coerce_status, transition


class TestCoerceStatus:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (NotificationStatus.ACTIVE, NotificationStatus.ACTIVE),
            (1, NotificationStatus.ACTIVE),
            (0, NotificationStatus.INACTIVE),
            ("active", NotificationStatus.ACTIVE),
            ("INACTIVE", NotificationStatus.INACTIVE),
            (" Active ", NotificationStatus.ACTIVE),
        ],
    )
    def test_accepted_spellings(self, value, expected):
        assert coerce_status(value) is expected

    @pytest.mark.parametrize("value", [2, -1, "archived", None, True, 1.0])
    def test_rejected_values(self, value):
        with pytest.raises(ValueError):
            coerce_status(value)

    def test_stored_values(self):
        assert int(NotificationStatus.INACTIVE) == 0
        assert int(NotificationStatus.ACTIVE) == 1


class TestTransition:
    def test_deactivate(self):
        assert transition(NotificationStatus.ACTIVE, NotificationStatus.INACTIVE) is True

    def test_reactivate(self):
        assert transition(NotificationStatus.INACTIVE, NotificationStatus.ACTIVE) is True

    @pytest.mark.parametrize("status", list(NotificationStatus))
    def test_same_state_is_noop(self, status):
        assert transition(status, status) is False

    def test_accepts_raw_values(self):
        assert transition(1, "inactive") is True
