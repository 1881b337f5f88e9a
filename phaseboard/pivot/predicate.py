from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from phaseboard.core.errors import InvalidArgument
from phaseboard.core.models import DEFAULT_ROOT, AssetIdentity, ReviewEvent

IGNORED_STATUS_TOKENS = {"", "all"}


def normalize_status_values(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Trims, lower-cases and de-duplicates status filter values.

    Comma-separated entries are split; blanks and "all" mean no filter.
    """
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    normalized = set()
    for value in values:
        for part in str(value or "").split(","):
            token = part.strip().lower()
            if token in IGNORED_STATUS_TOKENS:
                continue
            normalized.add(token)
    return frozenset(normalized)


@dataclass(frozen=True)
class QueryPredicate:
    """AND(project, root, not deleted, [name prefix], [approval in set], [work in set]).

    Status sets are matched against an asset's current events: the asset is
    kept when any one current event satisfies every supplied set.
    """

    project: str
    root: str
    name_prefix: Optional[str] = None
    approval_statuses: FrozenSet[str] = frozenset()
    work_statuses: FrozenSet[str] = frozenset()

    @property
    def has_status_filter(self) -> bool:
        return bool(self.approval_statuses or self.work_statuses)

    def matches_identity(self, identity: AssetIdentity) -> bool:
        if identity.project != self.project or identity.root != self.root:
            return False
        if self.name_prefix and not identity.name.lower().startswith(self.name_prefix):
            return False
        return True

    def matches_event(self, event: ReviewEvent) -> bool:
        if event.deleted:
            return False
        if self.approval_statuses and _lower(event.approval_status) not in self.approval_statuses:
            return False
        if self.work_statuses and _lower(event.work_status) not in self.work_statuses:
            return False
        return True

    def describe(self) -> dict:
        """Loggable summary of the active filters."""
        return {
            "project": self.project,
            "root": self.root,
            "name_prefix": self.name_prefix,
            "approval_statuses": sorted(self.approval_statuses),
            "work_statuses": sorted(self.work_statuses),
        }


def _lower(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip().lower()


def build_predicate(
    project: Optional[str],
    root: Optional[str] = None,
    name: Optional[str] = None,
    approval_statuses: Optional[Iterable[str]] = None,
    work_statuses: Optional[Iterable[str]] = None,
) -> QueryPredicate:
    project_value = str(project or "").strip()
    if not project_value:
        raise InvalidArgument("project is required")
    root_value = str(root or "").strip() or DEFAULT_ROOT
    name_prefix = str(name or "").strip().lower() or None
    return QueryPredicate(
        project=project_value,
        root=root_value,
        name_prefix=name_prefix,
        approval_statuses=normalize_status_values(approval_statuses),
        work_statuses=normalize_status_values(work_statuses),
    )
