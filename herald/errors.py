"""
herald.errors — Error Taxonomy
===============================

Every error the core raises on purpose derives from :class:`HeraldError`.

Storage failures (``sqlalchemy.exc.OperationalError`` and friends) are not
wrapped: they propagate unchanged to the caller.
"""

from __future__ import annotations


class HeraldError(Exception):
    """Base class for all Herald errors."""


# ---------------------------------------------------------------------------
# Resolver-originated (surfaced to the caller, never retried)
# ---------------------------------------------------------------------------
class EntityReferenceError(HeraldError):
    """An ``(entity_type, entity_id)`` pair failed validation."""


class UnknownEntityKind(EntityReferenceError):
    """The entity type is not a member of the registered kind set."""

    def __init__(self, entity_type: object) -> None:
        super().__init__(f"Unknown entity kind: {entity_type!r}")
        self.entity_type = entity_type


class MalformedIdentifier(EntityReferenceError):
    """The entity id does not match the identifier shape of its kind."""

    def __init__(self, kind_name: str, entity_id: object, reason: str = "") -> None:
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"Malformed identifier for kind {kind_name!r}: {entity_id!r}{detail}"
        )
        self.kind_name = kind_name
        self.entity_id = entity_id


class InvalidReference(HeraldError):
    """A reference was rejected by the resolver or by a strict existence check."""


# ---------------------------------------------------------------------------
# Store-originated
# ---------------------------------------------------------------------------
class NotFound(HeraldError):
    """No notification exists with the requested id."""

    def __init__(self, notification_id: object) -> None:
        super().__init__(f"Notification {notification_id} not found")
        self.notification_id = notification_id


class ConcurrentUpdateConflict(HeraldError):
    """Compare-and-set kept failing after the retry budget was spent."""

    def __init__(self, notification_id: object, attempts: int) -> None:
        super().__init__(
            f"Notification {notification_id} changed concurrently; "
            f"gave up after {attempts} attempts"
        )
        self.notification_id = notification_id
        self.attempts = attempts


class IdentifierGenerationError(HeraldError):
    """The storage layer returned no primary key for a freshly written row."""
