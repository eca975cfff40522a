"""
Drift detection and change planning.

Only fields that appear in the desired state take part in drift comparison.
Computed fields (timestamps, counts, server-assigned IDs) are refreshed from
every read and never count as drift. Sensitive fields are revealed once, on
create, and are carried forward: a later read that omits them is expected.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Any, Dict, Iterable, List, Literal, Mapping, Optional

from .models import DriftResult

Op = Literal["NOOP", "CREATE", "UPDATE", "REPLACE"]


def _participating(desired: Mapping[str, Any], excluded: AbstractSet[str]) -> List[str]:
    return [k for k in desired if k not in excluded]


def detect_drift(
    previous: Optional[Mapping[str, Any]],
    fresh: Optional[Mapping[str, Any]],
    desired: Mapping[str, Any],
    *,
    computed: AbstractSet[str] = frozenset(),
    sensitive: AbstractSet[str] = frozenset(),
) -> DriftResult:
    """Compare the previous observed snapshot with a fresh read."""
    if fresh is None:
        return DriftResult(found=False)

    previous = previous or {}
    keys = _participating(desired, set(computed) | set(sensitive))
    removed = frozenset(k for k in keys if k in previous and k not in fresh)
    changed = frozenset(
        k for k in keys if k in fresh and k in previous and previous[k] != fresh[k]
    )
    return DriftResult(
        found=True,
        changed=bool(changed or removed),
        removed_fields=removed,
        changed_fields=changed,
    )


def merge_observed(
    previous: Optional[Mapping[str, Any]],
    fresh: Mapping[str, Any],
    *,
    sensitive: AbstractSet[str] = frozenset(),
) -> Dict[str, Any]:
    """Fresh values win; sensitive values are never refreshed or cleared by a read."""
    merged = {k: v for k, v in fresh.items() if k not in sensitive}
    for k in sensitive:
        if previous and k in previous:
            merged[k] = previous[k]
    return merged


_EMPTY = (None, "", [], {})


def _same(a: Any, b: Any) -> bool:
    if a == b:
        return True
    return a in _EMPTY and b in _EMPTY


def changed_fields(
    desired: Mapping[str, Any],
    observed: Mapping[str, Any],
    fields: Iterable[str],
) -> List[str]:
    """Names from `fields` whose desired value differs from the observed one."""
    return [f for f in fields if f in desired and not _same(desired.get(f), observed.get(f))]


@dataclass(frozen=True)
class Decision:
    """Planned operation for one instance.

    Attributes:
        op: ``"CREATE"``, ``"UPDATE"``, ``"REPLACE"`` or ``"NOOP"``.
        reason: Human-friendly explanation.
        fields: The fields behind an UPDATE/REPLACE decision.
    """
    op: Op
    reason: str
    fields: tuple = ()


def decide(
    desired: Mapping[str, Any],
    observed: Optional[Mapping[str, Any]],
    *,
    mutable: Iterable[str],
    create_only: Iterable[str],
    previous_desired: Optional[Mapping[str, Any]] = None,
) -> Decision:
    """Compute a :class:`Decision` from desired vs observed state."""
    if observed is None:
        return Decision(op="CREATE", reason="Not found")

    baseline = dict(observed)
    if previous_desired:
        for k in create_only:
            baseline.setdefault(k, previous_desired.get(k))
    replace = changed_fields(desired, baseline, create_only)
    if replace:
        return Decision(op="REPLACE", reason=f"Create-only field differs: {replace[0]}", fields=tuple(replace))

    diff = changed_fields(desired, observed, mutable)
    if diff:
        return Decision(op="UPDATE", reason=f"Field differs: {diff[0]}", fields=tuple(diff))

    return Decision(op="NOOP", reason="Identical subset")
