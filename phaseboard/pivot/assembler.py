from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from phaseboard.core.deadline import Deadline
from phaseboard.core.models import AssetIdentity, AssetPivotRecord, PhaseSummary
from phaseboard.core.phases import PHASE_VALUES, Phase

DEFAULT_FETCH_BATCH_SIZE = 400


def _chunks(items: Sequence[AssetIdentity], size: int) -> Iterable[Sequence[AssetIdentity]]:
    step = max(1, int(size))
    for start in range(0, len(items), step):
        yield items[start : start + step]


def fetch_phase_summaries(
    store,
    identities: Sequence[AssetIdentity],
    *,
    batch_size: int = DEFAULT_FETCH_BATCH_SIZE,
    deadline: Optional[Deadline] = None,
) -> List[PhaseSummary]:
    """Loads the current summary of every (identity, phase) pair present for the given identities."""
    unique = list(dict.fromkeys(identities))
    summaries: List[PhaseSummary] = []
    for chunk in _chunks(unique, batch_size):
        if deadline is not None:
            deadline.check("fetch_phases")
        summaries.extend(PhaseSummary.from_event(event) for event in store.fetch_current_events(chunk, deadline=deadline))
    return summaries


def _leaf_group_for(summaries: Iterable[PhaseSummary]) -> str:
    latest: Optional[PhaseSummary] = None
    for summary in summaries:
        if not summary.leaf_group:
            continue
        if latest is None or summary.modified_at > latest.modified_at:
            latest = summary
    return latest.leaf_group if latest is not None else ""


def assemble_pivot_records(
    identities: Sequence[AssetIdentity],
    summaries: Iterable[PhaseSummary],
) -> List[AssetPivotRecord]:
    by_identity: Dict[AssetIdentity, List[PhaseSummary]] = defaultdict(list)
    for summary in summaries:
        if summary.phase not in PHASE_VALUES:
            continue
        by_identity[summary.identity].append(summary)

    records: List[AssetPivotRecord] = []
    for identity in identities:
        record = AssetPivotRecord(identity=identity)
        own = by_identity.get(identity, [])
        for summary in own:
            phase = Phase(summary.phase)
            current = record.phases.get(phase)
            if current is None or summary.modified_at > current.modified_at:
                record.phases[phase] = summary
        record.leaf_group_name = _leaf_group_for(own)
        records.append(record)
    return records
