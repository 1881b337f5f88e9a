from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from phaseboard.core.phases import PHASE_ORDER, Phase

UNASSIGNED_GROUP = "Unassigned"
DEFAULT_ROOT = "assets"


def group_name_or_unassigned(name: Optional[str]) -> str:
    """Blank names and any casing of "unassigned" collapse to the single Unassigned bucket."""
    text = str(name or "").strip()
    if not text or text.lower() == UNASSIGNED_GROUP.lower():
        return UNASSIGNED_GROUP
    return text


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalizes timestamps to aware UTC; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_utc(value: Optional[datetime]) -> Optional[str]:
    normalized = to_utc(value)
    if normalized is None:
        return None
    return normalized.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_utc(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))


@dataclass(frozen=True)
class AssetIdentity:
    project: str
    root: str
    name: str
    relation: str


@dataclass(frozen=True)
class ReviewEvent:
    """One submission/status update for an asset within one phase."""

    project: str
    root: str
    name: str
    relation: str
    phase: str
    modified_at: datetime
    work_status: Optional[str] = None
    approval_status: Optional[str] = None
    submitted_at: Optional[datetime] = None
    deleted: bool = False
    leaf_group: str = ""
    seq: int = 0

    @property
    def identity(self) -> AssetIdentity:
        return AssetIdentity(self.project, self.root, self.name, self.relation)


@dataclass(frozen=True)
class PhaseSummary:
    identity: AssetIdentity
    phase: str
    work_status: Optional[str]
    approval_status: Optional[str]
    submitted_at: Optional[datetime]
    modified_at: datetime
    leaf_group: str = ""

    @classmethod
    def from_event(cls, event: ReviewEvent) -> "PhaseSummary":
        return cls(
            identity=event.identity,
            phase=str(event.phase).strip().lower(),
            work_status=event.work_status,
            approval_status=event.approval_status,
            submitted_at=to_utc(event.submitted_at),
            modified_at=to_utc(event.modified_at) or event.modified_at,
            leaf_group=event.leaf_group or "",
        )


def _empty_phase_slots() -> Dict[Phase, Optional[PhaseSummary]]:
    return {phase: None for phase in PHASE_ORDER}


@dataclass
class AssetPivotRecord:
    identity: AssetIdentity
    phases: Dict[Phase, Optional[PhaseSummary]] = field(default_factory=_empty_phase_slots)
    leaf_group_name: str = ""
    group_category_path: str = ""
    top_group_node: str = UNASSIGNED_GROUP

    def phase(self, phase: Phase) -> Optional[PhaseSummary]:
        return self.phases.get(phase)


@dataclass
class GroupBucket:
    group_name: str
    items: List[AssetPivotRecord]
    total_count_in_group: int

    @property
    def item_count(self) -> int:
        return len(self.items)


@dataclass
class PivotPage:
    assets: List[AssetPivotRecord]
    total: int
    page: int
    per_page: int
    page_last: int
    has_next: bool
    has_prev: bool
    sort: str
    dir: str
    groups: Optional[List[GroupBucket]] = None
