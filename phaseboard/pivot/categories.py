from __future__ import annotations

from typing import List, Optional

from phaseboard.core.deadline import Deadline
from phaseboard.core.models import UNASSIGNED_GROUP, AssetPivotRecord, group_name_or_unassigned


def top_group_node(path: Optional[str]) -> str:
    text = str(path or "").strip()
    if not text:
        return UNASSIGNED_GROUP
    return group_name_or_unassigned(text.split("/", 1)[0])


def resolve_categories(
    records: List[AssetPivotRecord],
    provider,
    root: str,
    *,
    deadline: Optional[Deadline] = None,
) -> List[AssetPivotRecord]:
    """Annotates records in place with category path and top group node using a single bulk lookup."""
    leaf_names = sorted({r.leaf_group_name for r in records if r.leaf_group_name})
    paths = {}
    if leaf_names:
        if deadline is not None:
            deadline.check("resolve_categories")
        paths = provider.lookup(root, leaf_names)

    for record in records:
        path = str(paths.get(record.leaf_group_name, "") or "").strip() if record.leaf_group_name else ""
        record.group_category_path = path
        record.top_group_node = top_group_node(path)
    return records
