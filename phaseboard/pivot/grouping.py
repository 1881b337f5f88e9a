from __future__ import annotations

from collections import OrderedDict
from typing import Dict, List, Sequence, Tuple

from phaseboard.core.models import UNASSIGNED_GROUP, AssetPivotRecord, GroupBucket, group_name_or_unassigned


def _bucket_sort_key(group_name: str) -> Tuple[int, str, str]:
    if group_name_or_unassigned(group_name) == UNASSIGNED_GROUP:
        return (1, "", "")
    return (0, group_name.lower(), group_name)


def group_by_top_node(records: Sequence[AssetPivotRecord]) -> List[GroupBucket]:
    """Partitions records into buckets A-Z (case-insensitive) with "Unassigned" last.

    Items keep their incoming order inside each bucket.
    """
    buckets: Dict[str, List[AssetPivotRecord]] = OrderedDict()
    for record in records:
        name = group_name_or_unassigned(record.top_group_node)
        buckets.setdefault(name, []).append(record)
    return [
        GroupBucket(group_name=name, items=items, total_count_in_group=len(items))
        for name, items in sorted(buckets.items(), key=lambda item: _bucket_sort_key(item[0]))
    ]


def flatten_groups(buckets: Sequence[GroupBucket]) -> List[AssetPivotRecord]:
    return [record for bucket in buckets for record in bucket.items]


def window_groups(
    buckets: Sequence[GroupBucket],
    offset: int,
    limit: int,
) -> Tuple[List[AssetPivotRecord], List[GroupBucket]]:
    """Applies a page window over the flattened buckets and re-derives page-local buckets.

    Only buckets contributing items to the window are returned; each keeps its
    full cross-page total.
    """
    flat = flatten_groups(buckets)
    start = max(0, offset)
    page_items = flat[start : start + max(0, limit)]
    totals = {bucket.group_name: bucket.total_count_in_group for bucket in buckets}

    page_buckets: List[GroupBucket] = []
    for record in page_items:
        name = group_name_or_unassigned(record.top_group_node)
        if not page_buckets or page_buckets[-1].group_name != name:
            page_buckets.append(GroupBucket(group_name=name, items=[], total_count_in_group=totals.get(name, 0)))
        page_buckets[-1].items.append(record)
    return page_items, page_buckets
