"""
herald.engine.entities — Entity Kinds, References & the Resolver
=================================================================

A notification or a view counter can point at *any* entity kind
(organization, event, user, …) through a plain ``(entity_type, entity_id)``
column pair.  There is no foreign key behind that pair, so this module is
where referential sanity lives:

* :class:`EntityKindRegistry` — the closed, versioned set of kinds.  New
  kinds are *registered*, old kinds are *retired* with an explicit version
  step and are never removed.
* :class:`IdentifierShape` — per-kind id validation + canonicalization.
* :class:`EntityResolver` — turns raw input into a validated
  :class:`EntityReference`.  Pure by default; ``strict=True`` additionally
  asks the kind's ``exists`` probe.

Usage::

    registry = default_registry()
    resolver = EntityResolver(registry)
    ref = resolver.resolve("organization", "9F0C…")   # → EntityReference(1, "9f0c…")
"""

from __future__ import annotations

import re
import threading
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Union

from herald.errors import InvalidReference, MalformedIdentifier, UnknownEntityKind

# A probe answers "does this entity still exist?".  May be sync or async.
ExistsProbe = Callable[["EntityReference"], Union[bool, Awaitable[bool]]]


# ---------------------------------------------------------------------------
# Identifier shapes
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class IdentifierShape:
    """Named validator that canonicalizes an id or raises ``ValueError``."""

    name: str
    canonicalize: Callable[[object], str]

    def __call__(self, value: object) -> str:
        return self.canonicalize(value)


def _canonical_uuid(value: object) -> str:
    if isinstance(value, uuid.UUID):
        return str(value)
    if not isinstance(value, str):
        raise ValueError("expected a UUID string")
    return str(uuid.UUID(value.strip()))


_SNOWFLAKE_RE = re.compile(r"^\d{17,20}$")


def _canonical_snowflake(value: object) -> str:
    if isinstance(value, bool):
        raise ValueError("expected a Discord snowflake")
    text = str(value).strip() if isinstance(value, (int, str)) else ""
    if not _SNOWFLAKE_RE.match(text):
        raise ValueError("expected a Discord snowflake (17-20 digits)")
    return text


UUID_SHAPE = IdentifierShape("uuid", _canonical_uuid)
SNOWFLAKE_SHAPE = IdentifierShape("snowflake", _canonical_snowflake)

SHAPES: dict[str, IdentifierShape] = {
    UUID_SHAPE.name: UUID_SHAPE,
    SNOWFLAKE_SHAPE.name: SNOWFLAKE_SHAPE,
}


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class EntityReference:
    """A polymorphic pointer: kind tag + canonical id.  Never persisted alone."""

    entity_type: int
    entity_id: str

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.entity_id}"


@dataclass(frozen=True, slots=True)
class EntityKind:
    """One member of the closed kind set."""

    tag: int
    name: str
    shape: IdentifierShape
    since_version: int = 1
    retired_in: int | None = None
    exists: ExistsProbe | None = None

    @property
    def retired(self) -> bool:
        return self.retired_in is not None

    def same_definition(self, other: EntityKind) -> bool:
        return (
            self.tag == other.tag
            and self.name == other.name
            and self.shape.name == other.shape.name
            and self.since_version == other.since_version
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class EntityKindRegistry:
    """Map from kind tag to :class:`EntityKind`.

    Adding a kind never touches core logic — callers register it at startup.
    Registration is guarded by a lock; lookups are plain dict reads.
    """

    def __init__(self) -> None:
        self._by_tag: dict[int, EntityKind] = {}
        self._by_name: dict[str, int] = {}
        self._lock = threading.Lock()

    def register(
        self,
        tag: int,
        name: str,
        shape: IdentifierShape | str,
        *,
        since_version: int = 1,
        exists: ExistsProbe | None = None,
    ) -> EntityKind:
        """Add a kind.  Re-registering an identical definition is a no-op.

        Raises ``ValueError`` when *tag* or *name* is already taken by a
        different definition, or when *shape* names an unknown shape.
        """
        if isinstance(tag, bool) or not isinstance(tag, int) or tag <= 0:
            raise ValueError(f"Kind tag must be a positive int, got {tag!r}")
        if isinstance(shape, str):
            try:
                shape = SHAPES[shape]
            except KeyError:
                raise ValueError(f"Unknown identifier shape {shape!r}") from None

        kind = EntityKind(
            tag=tag, name=name, shape=shape,
            since_version=since_version, exists=exists,
        )
        with self._lock:
            existing = self._by_tag.get(tag)
            if existing is not None:
                if not existing.same_definition(kind):
                    raise ValueError(
                        f"Kind tag {tag} is already registered as {existing.name!r}"
                    )
                if exists is not None and existing.exists is None:
                    existing = replace(existing, exists=exists)
                    self._by_tag[tag] = existing
                return existing
            if name in self._by_name:
                raise ValueError(
                    f"Kind name {name!r} is already registered "
                    f"with tag {self._by_name[name]}"
                )
            self._by_tag[tag] = kind
            self._by_name[name] = tag
        return kind

    def retire(self, tag: int, *, in_version: int) -> EntityKind:
        """Mark a kind retired as of *in_version*.  The kind stays known."""
        with self._lock:
            kind = self._lookup(tag)
            if in_version <= kind.since_version:
                raise ValueError(
                    f"Kind {kind.name!r} cannot retire in version {in_version}; "
                    f"it was introduced in {kind.since_version}"
                )
            if kind.retired_in is not None:
                return kind
            kind = replace(kind, retired_in=in_version)
            self._by_tag[tag] = kind
        return kind

    def set_probe(self, tag: int, exists: ExistsProbe | None) -> EntityKind:
        """Attach (or clear) the existence probe for a kind."""
        with self._lock:
            kind = replace(self._lookup(tag), exists=exists)
            self._by_tag[tag] = kind
        return kind

    def get(self, entity_type: int | str | EntityKind) -> EntityKind:
        """Look up a kind by tag, name, or kind object.

        Raises :class:`UnknownEntityKind` when it is not registered.
        """
        if isinstance(entity_type, EntityKind):
            entity_type = entity_type.tag
        if isinstance(entity_type, str):
            tag = self._by_name.get(entity_type)
            if tag is None:
                raise UnknownEntityKind(entity_type)
            return self._by_tag[tag]
        return self._lookup(entity_type)

    def _lookup(self, tag: object) -> EntityKind:
        if isinstance(tag, bool) or not isinstance(tag, int):
            raise UnknownEntityKind(tag)
        kind = self._by_tag.get(tag)
        if kind is None:
            raise UnknownEntityKind(tag)
        return kind

    def kinds(self) -> list[EntityKind]:
        """All registered kinds (retired included), ordered by tag."""
        return [self._by_tag[t] for t in sorted(self._by_tag)]

    @property
    def version(self) -> int:
        """Highest version tag that introduced or retired a kind."""
        versions = [k.since_version for k in self._by_tag.values()]
        versions += [k.retired_in for k in self._by_tag.values() if k.retired_in]
        return max(versions, default=0)

    def __contains__(self, entity_type: object) -> bool:
        try:
            self.get(entity_type)  # type: ignore[arg-type]
        except UnknownEntityKind:
            return False
        return True

    def __len__(self) -> int:
        return len(self._by_tag)


# ---------------------------------------------------------------------------
# Built-in kinds
# ---------------------------------------------------------------------------
class Kind:
    """Tags of the built-in kinds.  Tags are stable forever."""
    ORGANIZATION = 1
    EVENT = 2
    USER = 3
    COMMENT = 4
    DISCORD_MEMBER = 5


def default_registry() -> EntityKindRegistry:
    """Return a fresh registry pre-loaded with the built-in kinds."""
    registry = EntityKindRegistry()
    registry.register(Kind.ORGANIZATION, "organization", UUID_SHAPE)
    registry.register(Kind.EVENT, "event", UUID_SHAPE)
    registry.register(Kind.USER, "user", UUID_SHAPE)
    registry.register(Kind.COMMENT, "comment", UUID_SHAPE)
    registry.register(Kind.DISCORD_MEMBER, "discord_member", SNOWFLAKE_SHAPE)
    return registry


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------
class EntityResolver:
    """Validate ``(entity_type, entity_id)`` pairs against a registry."""

    def __init__(self, registry: EntityKindRegistry | None = None) -> None:
        self.registry = registry if registry is not None else default_registry()

    def resolve(
        self,
        entity_type: int | str | EntityKind,
        entity_id: object,
        *,
        strict: bool = False,
        allow_retired: bool = False,
    ) -> EntityReference:
        """Return a validated :class:`EntityReference`.

        Raises
        ------
        UnknownEntityKind
            *entity_type* is not registered (or is retired and
            ``allow_retired`` is False).
        MalformedIdentifier
            *entity_id* does not match the kind's identifier shape.
        InvalidReference
            ``strict=True`` and the kind has no probe, or the probe says the
            entity does not exist.  Only synchronous probes can be used here.
        """
        kind = self.registry.get(entity_type)
        if kind.retired and not allow_retired:
            raise UnknownEntityKind(entity_type)

        try:
            canonical = kind.shape(entity_id)
        except (TypeError, ValueError) as exc:
            raise MalformedIdentifier(kind.name, entity_id, str(exc)) from exc

        ref = EntityReference(kind.tag, canonical)
        if strict:
            if kind.exists is None:
                raise InvalidReference(
                    f"Strict resolution requested but kind {kind.name!r} "
                    "has no existence probe"
                )
            answer = kind.exists(ref)
            if isinstance(answer, Awaitable):
                close = getattr(answer, "close", None)
                if close is not None:
                    close()
                raise InvalidReference(
                    f"Kind {kind.name!r} has an async probe; "
                    "strict resolution needs a synchronous one"
                )
            if not answer:
                raise InvalidReference(f"Entity {ref} does not exist")
        return ref

    def revalidate(
        self, ref: EntityReference, *, strict: bool = False,
    ) -> EntityReference:
        """Re-run :meth:`resolve` on an existing reference."""
        return self.resolve(ref.entity_type, ref.entity_id, strict=strict)

    def probe_for(self, ref: EntityReference) -> ExistsProbe | None:
        """Return the existence probe registered for *ref*'s kind, if any."""
        try:
            return self.registry.get(ref.entity_type).exists
        except UnknownEntityKind:
            return None
