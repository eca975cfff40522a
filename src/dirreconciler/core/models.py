from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Optional

from .errors import FatalError

State = Dict[str, Any]


class Status(str, enum.Enum):
    ABSENT = "absent"
    CREATING = "creating"
    PRESENT = "present"
    UPDATING = "updating"
    DELETING = "deleting"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @classmethod
    def parse(cls, value: Any) -> "TaskStatus":
        """Map a remote status string; anything unrecognised counts as pending."""
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.PENDING


@dataclass(frozen=True)
class RemoteActionTask:
    """An asynchronous remote operation started by a mutating call."""

    task_id: str
    target_resource_id: str
    status: TaskStatus = TaskStatus.PENDING
    created_at: str = ""
    message: str = ""


@dataclass(frozen=True)
class DriftResult:
    found: bool
    changed: bool = False
    removed_fields: FrozenSet[str] = frozenset()
    changed_fields: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class ResourceInstance:
    """
    One managed object.

    `identity` is empty exactly when `status` is ABSENT. Instances are values:
    the reconciler returns new instances instead of mutating the one passed in.
    """

    kind: str
    identity: str = ""
    desired_state: State = field(default_factory=dict)
    observed_state: State = field(default_factory=dict)
    status: Status = Status.ABSENT
    drift: Optional[DriftResult] = None

    def __post_init__(self) -> None:
        if bool(self.identity) == (self.status is Status.ABSENT):
            raise FatalError(
                f"{self.kind}: identity={self.identity!r} is inconsistent with status={self.status.value}"
            )

    def transition(self, status: Status, **changes: Any) -> "ResourceInstance":
        """Return a copy in `status`; a set identity can only be cleared, never replaced."""
        new_identity = changes.get("identity", self.identity)
        if self.identity and new_identity and new_identity != self.identity:
            raise FatalError(
                f"{self.kind}: identity is immutable ({self.identity!r} -> {new_identity!r})",
                identity=self.identity,
            )
        return replace(self, status=status, **changes)

    def absent(self) -> "ResourceInstance":
        return self.transition(Status.ABSENT, identity="", observed_state={}, drift=None)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "kind": self.kind,
            "identity": self.identity,
            "status": self.status.value,
            "desired_state": dict(self.desired_state),
            "observed_state": dict(self.observed_state),
        }
        if self.drift is not None:
            out["drift"] = {
                "found": self.drift.found,
                "changed": self.drift.changed,
                "removed_fields": sorted(self.drift.removed_fields),
                "changed_fields": sorted(self.drift.changed_fields),
            }
        return out
