"""
herald.engine.status — Notification Status Lifecycle
=====================================================

Two states, stored as a smallint::

    ACTIVE (1) ──acknowledge──▶ INACTIVE (0)
        ▲                          │
        └────────resurface─────────┘

Transitions to the current state are no-ops, never errors.
"""

from __future__ import annotations

import enum

__all__ = ["NotificationStatus", "TRANSITIONS", "coerce_status", "transition"]


class NotificationStatus(enum.IntEnum):
    INACTIVE = 0
    ACTIVE = 1


TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.ACTIVE: frozenset({NotificationStatus.INACTIVE}),
    NotificationStatus.INACTIVE: frozenset({NotificationStatus.ACTIVE}),
}


def coerce_status(value: object) -> NotificationStatus:
    """Accept a status enum, ``0``/``1``, or ``"active"``/``"inactive"``."""
    if isinstance(value, NotificationStatus):
        return value
    if isinstance(value, str):
        try:
            return NotificationStatus[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown notification status {value!r}") from None
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return NotificationStatus(value)
        except ValueError:
            raise ValueError(f"Unknown notification status {value!r}") from None
    raise ValueError(f"Unknown notification status {value!r}")


def transition(current: object, target: object) -> bool:
    """Return True if moving *current* → *target* changes the row.

    Raises ``ValueError`` for a transition the lifecycle does not allow.
    """
    current = coerce_status(current)
    target = coerce_status(target)
    if current is target:
        return False
    if target not in TRANSITIONS[current]:
        raise ValueError(f"Illegal status transition {current.name} → {target.name}")
    return True
