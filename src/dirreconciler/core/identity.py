"""
Identity codec.

Three identity schemes exist, chosen once per resource kind:

- OpaqueIdentity: the remote API assigns an ID on creation; it is stored verbatim.
- CompositeKey: relationship resources without a native ID are addressed by
  their foreign keys joined with ':' (e.g. "groupID:userID" or
  "appID:user_group:groupID"). These strings are persisted state; their shape
  must not change.
- SingletonIdentity: org-wide settings addressed by org ID, or "current".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, FrozenSet, List, Mapping, Sequence, Tuple

from .errors import InvalidSegment, MalformedIdentity

DELIMITER = ":"


def encode(segments: Sequence[Any], *, allow_empty: bool = False) -> str:
    """Join segments with the delimiter, rejecting values that would not round-trip."""
    parts: List[str] = []
    for i, seg in enumerate(segments):
        s = "" if seg is None else str(seg)
        if DELIMITER in s:
            raise InvalidSegment(f"segment {i} contains '{DELIMITER}': {s!r}")
        if not s and not allow_empty:
            raise InvalidSegment(f"segment {i} is empty")
        parts.append(s)
    return DELIMITER.join(parts)


def decode(identity: str, arity: int) -> List[str]:
    """Split an identity into exactly `arity` segments."""
    parts = str(identity or "").split(DELIMITER)
    if len(parts) != arity:
        raise MalformedIdentity(
            f"expected {arity} '{DELIMITER}'-separated segments, got {len(parts)}: {identity!r}",
            identity=str(identity or ""),
        )
    return parts


@dataclass(frozen=True)
class OpaqueIdentity:
    """Remote-assigned identifier, used as-is."""

    id_field: str = "id"
    local: ClassVar[bool] = False

    def format(self, state: Mapping[str, Any]) -> str:
        value = state.get(self.id_field)
        if value in (None, ""):
            raise InvalidSegment(f"remote response carries no '{self.id_field}'")
        return str(value)

    def parse(self, identity: str) -> Dict[str, str]:
        if not identity:
            raise MalformedIdentity("identity is empty")
        return {self.id_field: identity}

    def describe(self) -> str:
        return "{" + self.id_field + "}"


@dataclass(frozen=True)
class CompositeKey:
    """
    Fixed-arity key built from named desired-state fields.

    `type_tags` restricts selected fields to a closed set of values, e.g.
    {"type": frozenset({"user_group", "system_group"})}.
    `assigned` names segments the remote side hands out on create (an action
    ID); keys with such segments can only be formatted after the create call.
    """

    fields: Tuple[str, ...]
    type_tags: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    assigned: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        if not 2 <= len(self.fields) <= 3:
            raise ValueError(f"composite keys have 2 or 3 segments, got {len(self.fields)}")
        if not set(self.assigned) <= set(self.fields):
            raise ValueError(f"assigned segments {sorted(self.assigned)} are not key fields")

    @property
    def arity(self) -> int:
        return len(self.fields)

    @property
    def local(self) -> bool:
        return not self.assigned

    def format(self, state: Mapping[str, Any]) -> str:
        for name, allowed in self.type_tags.items():
            value = state.get(name)
            if value not in allowed:
                raise InvalidSegment(
                    f"'{name}' must be one of {sorted(allowed)}, got {value!r}"
                )
        return encode([state.get(f) for f in self.fields])

    def parse(self, identity: str) -> Dict[str, str]:
        parts = decode(identity, self.arity)
        out: Dict[str, str] = {}
        for name, value in zip(self.fields, parts):
            if not value:
                raise MalformedIdentity(f"empty '{name}' segment in {identity!r}", identity=identity)
            allowed = self.type_tags.get(name)
            if allowed is not None and value not in allowed:
                raise MalformedIdentity(
                    f"'{name}' must be one of {sorted(allowed)}, got {value!r}", identity=identity
                )
            out[name] = value
        return out

    def describe(self) -> str:
        return DELIMITER.join("{" + f + "}" for f in self.fields)


@dataclass(frozen=True)
class SingletonIdentity:
    """
    Organisation-wide settings objects: addressed by an optional scope field,
    falling back to a fixed alias ("current") when the scope is unset.
    """

    scope_field: str
    alias: str = "current"
    local: ClassVar[bool] = True

    def format(self, state: Mapping[str, Any]) -> str:
        value = state.get(self.scope_field)
        if value in (None, ""):
            return self.alias
        s = str(value)
        if DELIMITER in s:
            raise InvalidSegment(f"'{self.scope_field}' contains '{DELIMITER}': {s!r}")
        return s

    def parse(self, identity: str) -> Dict[str, str]:
        if not identity:
            raise MalformedIdentity("identity is empty")
        if DELIMITER in identity:
            raise MalformedIdentity(f"unexpected '{DELIMITER}' in {identity!r}", identity=identity)
        return {self.scope_field: "" if identity == self.alias else identity}

    def describe(self) -> str:
        return "{" + self.scope_field + "}|" + self.alias
