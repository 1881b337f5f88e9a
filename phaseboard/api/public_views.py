from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from fastapi.datastructures import URL

from phaseboard.core.models import AssetPivotRecord, GroupBucket, PivotPage, format_utc
from phaseboard.core.phases import PHASE_ORDER
from phaseboard.pivot.engine import ResolvedPivotQuery
from phaseboard.pivot.predicate import normalize_status_values

PIVOT_IDENTITY_COLUMNS = (
    "group_1",
    "relation",
    "project",
    "root",
    "leaf_group_name",
    "group_category_path",
    "top_group_node",
)
PHASE_FIELD_SUFFIXES = ("work_status", "approval_status", "submitted_at_utc")
PIVOT_PHASE_COLUMNS = tuple(f"{phase.value}_{suffix}" for phase in PHASE_ORDER for suffix in PHASE_FIELD_SUFFIXES)
PIVOT_COLUMNS = PIVOT_IDENTITY_COLUMNS + PIVOT_PHASE_COLUMNS


def merge_status_params(*groups: Optional[Iterable[str]]) -> List[str]:
    """Merges repeated and aliased query params (e.g. approval_status + appr)."""
    merged: List[str] = []
    for group in groups:
        if not group:
            continue
        merged.extend(str(value) for value in group)
    return sorted(normalize_status_values(merged))


def public_pivot_record(record: AssetPivotRecord) -> Dict[str, Any]:
    identity = record.identity
    row: Dict[str, Any] = {
        "group_1": identity.name,
        "relation": identity.relation,
        "project": identity.project,
        "root": identity.root,
        "leaf_group_name": record.leaf_group_name or None,
        "group_category_path": record.group_category_path or None,
        "top_group_node": record.top_group_node,
    }
    for phase in PHASE_ORDER:
        summary = record.phase(phase)
        row[f"{phase.value}_work_status"] = summary.work_status if summary else None
        row[f"{phase.value}_approval_status"] = summary.approval_status if summary else None
        row[f"{phase.value}_submitted_at_utc"] = format_utc(summary.submitted_at) if summary else None
    return row


def public_group_bucket(bucket: GroupBucket) -> Dict[str, Any]:
    return {
        "group_name": bucket.group_name,
        "items": [public_pivot_record(record) for record in bucket.items],
        "item_count": bucket.item_count,
        "total_count_in_group": bucket.total_count_in_group,
    }


def public_pivot_payload(page: PivotPage, query: ResolvedPivotQuery) -> Dict[str, Any]:
    predicate = query.predicate
    phase = query.sort.phase_priority
    payload: Dict[str, Any] = {
        "project": predicate.project,
        "root": predicate.root,
        "view": query.view,
        "phase": phase.value if phase is not None else "none",
        "assets": [public_pivot_record(record) for record in page.assets],
        "total": page.total,
        "page": page.page,
        "per_page": page.per_page,
        "page_last": page.page_last,
        "has_next": page.has_next,
        "has_prev": page.has_prev,
        "sort": page.sort,
        "dir": page.dir,
        "filters": {
            "name": predicate.name_prefix,
            "approval_status": sorted(predicate.approval_statuses),
            "work_status": sorted(predicate.work_statuses),
        },
    }
    if page.groups is not None:
        payload["groups"] = [public_group_bucket(bucket) for bucket in page.groups]
    return payload


def public_asset_review_payload(record: AssetPivotRecord) -> Dict[str, Any]:
    identity = record.identity
    phases = []
    for phase in PHASE_ORDER:
        summary = record.phase(phase)
        if summary is None:
            continue
        phases.append(
            {
                "phase": phase.value,
                "work_status": summary.work_status,
                "approval_status": summary.approval_status,
                "submitted_at_utc": format_utc(summary.submitted_at),
                "modified_at_utc": format_utc(summary.modified_at),
            }
        )
    return {
        "project": identity.project,
        "root": identity.root,
        "name": identity.name,
        "relation": identity.relation,
        "leaf_group_name": record.leaf_group_name or None,
        "group_category_path": record.group_category_path or None,
        "top_group_node": record.top_group_node,
        "phases": phases,
    }


def pagination_link_header(url: URL, page: int, page_last: int) -> str:
    """RFC 5988 Link header with first/prev/next/last relations."""
    links = [f'<{url.include_query_params(page=1)}>; rel="first"']
    if page > 1:
        links.append(f'<{url.include_query_params(page=min(page - 1, page_last))}>; rel="prev"')
    if page < page_last:
        links.append(f'<{url.include_query_params(page=page + 1)}>; rel="next"')
    links.append(f'<{url.include_query_params(page=page_last)}>; rel="last"')
    return ", ".join(links)


def pagination_headers(url: URL, page: PivotPage) -> Dict[str, str]:
    return {
        "X-Total-Count": str(page.total),
        "X-Page-Last": str(page.page_last),
        "Cache-Control": "public, max-age=15",
        "Link": pagination_link_header(url, page.page, page.page_last),
    }
