from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import cmp_to_key
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from phaseboard.core.models import AssetIdentity, ReviewEvent, format_utc
from phaseboard.core.phases import Phase
from phaseboard.pivot.sort_spec import SortDirection, SortKind, SortTarget


class SortField(str, Enum):
    NAME = "name"
    RELATION = "relation"
    SUBMITTED_AT = "submitted_at"
    WORK_STATUS = "work_status"
    APPROVAL_STATUS = "approval_status"
    PHASE_PRESENCE = "phase_presence"


@dataclass(frozen=True)
class OrderKey:
    """One tie-break level. Null values sort last in either direction.

    SUBMITTED_AT without a phase means the latest submission across the
    asset's current events; with a phase it is that phase's submission.
    """

    field: SortField
    descending: bool = False
    phase: Optional[Phase] = None
    case_insensitive: bool = True


Ordering = Tuple[OrderKey, ...]
CurrentEvents = Mapping[str, ReviewEvent]


def build_ordering(target: Optional[SortTarget], direction: SortDirection = SortDirection.ASC) -> Ordering:
    desc = direction == SortDirection.DESC
    kind = target.kind if target is not None else None

    if kind == SortKind.NAME:
        return (
            OrderKey(SortField.NAME, desc),
            OrderKey(SortField.RELATION),
            OrderKey(SortField.SUBMITTED_AT, desc),
        )
    if kind == SortKind.RELATION:
        return (
            OrderKey(SortField.RELATION, desc),
            OrderKey(SortField.NAME),
            OrderKey(SortField.SUBMITTED_AT, desc),
        )
    if kind in (SortKind.PHASE_WORK, SortKind.PHASE_APPROVAL) and target.phase is not None:
        field = SortField.WORK_STATUS if kind == SortKind.PHASE_WORK else SortField.APPROVAL_STATUS
        return (
            OrderKey(field, desc, phase=target.phase),
            OrderKey(SortField.NAME),
            OrderKey(SortField.RELATION),
        )
    if kind == SortKind.PHASE_SUBMITTED and target.phase is not None:
        return (
            OrderKey(SortField.SUBMITTED_AT, desc, phase=target.phase),
            OrderKey(SortField.NAME),
        )
    return (
        OrderKey(SortField.NAME),
        OrderKey(SortField.RELATION),
        OrderKey(SortField.SUBMITTED_AT),
    )


def with_phase_priority(ordering: Ordering, phase: Optional[Phase]) -> Ordering:
    if phase is None:
        return tuple(ordering)
    return (OrderKey(SortField.PHASE_PRESENCE, phase=phase, case_insensitive=False),) + tuple(ordering)


def with_identity_tiebreak(ordering: Ordering) -> Ordering:
    """Appends exact name/relation keys so no two assets ever compare equal."""
    return tuple(ordering) + (
        OrderKey(SortField.NAME, case_insensitive=False),
        OrderKey(SortField.RELATION, case_insensitive=False),
    )


def _fold(value: Optional[str], case_insensitive: bool) -> Optional[str]:
    if value is None:
        return None
    return value.lower() if case_insensitive else value


def order_value(key: OrderKey, identity: AssetIdentity, current: CurrentEvents) -> Any:
    """Evaluates one order key for an asset given its current events by phase."""
    if key.field == SortField.NAME:
        return _fold(identity.name, key.case_insensitive)
    if key.field == SortField.RELATION:
        return _fold(identity.relation, key.case_insensitive)
    if key.field == SortField.PHASE_PRESENCE:
        return 0 if key.phase is not None and key.phase.value in current else 1

    if key.field == SortField.SUBMITTED_AT and key.phase is None:
        stamps = [format_utc(e.submitted_at) for e in current.values() if e.submitted_at is not None]
        return max(stamps) if stamps else None

    event = current.get(key.phase.value) if key.phase is not None else None
    if event is None:
        return None
    if key.field == SortField.SUBMITTED_AT:
        return format_utc(event.submitted_at)
    if key.field == SortField.WORK_STATUS:
        return _fold(event.work_status, key.case_insensitive)
    if key.field == SortField.APPROVAL_STATUS:
        return _fold(event.approval_status, key.case_insensitive)
    raise ValueError(f"Unsupported sort field: {key.field}")


def _compare(left: Any, right: Any, descending: bool) -> int:
    if left is None and right is None:
        return 0
    if left is None:
        return 1
    if right is None:
        return -1
    if left == right:
        return 0
    result = -1 if left < right else 1
    return -result if descending else result


def sort_identities(
    entries: Sequence[Tuple[AssetIdentity, CurrentEvents]],
    ordering: Ordering,
) -> List[AssetIdentity]:
    keyed: List[Tuple[AssetIdentity, List[Any]]] = [
        (identity, [order_value(key, identity, current) for key in ordering]) for identity, current in entries
    ]

    def compare(a: Tuple[AssetIdentity, List[Any]], b: Tuple[AssetIdentity, List[Any]]) -> int:
        for idx, key in enumerate(ordering):
            result = _compare(a[1][idx], b[1][idx], key.descending)
            if result:
                return result
        return 0

    keyed.sort(key=cmp_to_key(compare))
    return [identity for identity, _ in keyed]


def describe_ordering(ordering: Ordering) -> List[Dict[str, Any]]:
    return [
        {
            "field": key.field.value,
            "dir": "desc" if key.descending else "asc",
            "phase": key.phase.value if key.phase is not None else None,
        }
        for key in ordering
    ]
