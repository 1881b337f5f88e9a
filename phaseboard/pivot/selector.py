from __future__ import annotations

import logging
import math
from typing import List, Optional

from phaseboard.core.deadline import Deadline
from phaseboard.core.models import AssetIdentity
from phaseboard.core.phases import Phase
from phaseboard.pivot.ordering import Ordering, with_identity_tiebreak, with_phase_priority
from phaseboard.pivot.predicate import QueryPredicate

logger = logging.getLogger(__name__)


def effective_ordering(ordering: Ordering, phase_priority: Optional[Phase]) -> Ordering:
    return with_identity_tiebreak(with_phase_priority(ordering, phase_priority))


def select_asset_keys(
    store,
    predicate: QueryPredicate,
    ordering: Ordering,
    *,
    phase_priority: Optional[Phase] = None,
    limit: int,
    offset: int = 0,
    max_offset: Optional[int] = None,
    deadline: Optional[Deadline] = None,
) -> List[AssetIdentity]:
    """Returns one ordered, de-duplicated window of matching asset identities."""
    if max_offset is not None and offset > max_offset:
        logger.info(
            "Skipping deep offset query project=%s root=%s offset=%s max_offset=%s",
            predicate.project,
            predicate.root,
            offset,
            max_offset,
        )
        return []
    if limit <= 0:
        return []
    if deadline is not None:
        deadline.check("select_keys")
    return store.select_keys(
        predicate,
        effective_ordering(ordering, phase_priority),
        limit=limit,
        offset=max(0, offset),
        deadline=deadline,
    )


def count_asset_keys(store, predicate: QueryPredicate, *, deadline: Optional[Deadline] = None) -> int:
    if deadline is not None:
        deadline.check("count_keys")
    return int(store.count_keys(predicate, deadline=deadline))


def page_last(total: int, per_page: int) -> int:
    if per_page <= 0:
        return 1
    return max(1, math.ceil(max(0, total) / per_page))
