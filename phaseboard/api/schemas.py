from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class AssetPivotPublicRecord(BaseModel):
    group_1: str
    relation: str
    project: str
    root: str
    leaf_group_name: Optional[str] = None
    group_category_path: Optional[str] = None
    top_group_node: str
    mdl_work_status: Optional[str] = None
    mdl_approval_status: Optional[str] = None
    mdl_submitted_at_utc: Optional[str] = None
    rig_work_status: Optional[str] = None
    rig_approval_status: Optional[str] = None
    rig_submitted_at_utc: Optional[str] = None
    bld_work_status: Optional[str] = None
    bld_approval_status: Optional[str] = None
    bld_submitted_at_utc: Optional[str] = None
    dsn_work_status: Optional[str] = None
    dsn_approval_status: Optional[str] = None
    dsn_submitted_at_utc: Optional[str] = None
    ldv_work_status: Optional[str] = None
    ldv_approval_status: Optional[str] = None
    ldv_submitted_at_utc: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class GroupBucketPublicResponse(BaseModel):
    group_name: str
    items: List[AssetPivotPublicRecord]
    item_count: int
    total_count_in_group: int

    model_config = ConfigDict(extra="allow")


class AssetPivotPublicResponse(BaseModel):
    project: str
    root: str
    view: str
    phase: Optional[str] = None
    assets: List[AssetPivotPublicRecord]
    groups: Optional[List[GroupBucketPublicResponse]] = None
    total: int
    page: int
    per_page: int
    page_last: int
    has_next: bool
    has_prev: bool
    sort: str
    dir: str
    filters: Dict[str, Any]

    model_config = ConfigDict(extra="allow")


class PhaseSummaryPublicResponse(BaseModel):
    phase: str
    work_status: Optional[str] = None
    approval_status: Optional[str] = None
    submitted_at_utc: Optional[str] = None
    modified_at_utc: Optional[str] = None


class AssetReviewPublicResponse(BaseModel):
    project: str
    root: str
    name: str
    relation: str
    leaf_group_name: Optional[str] = None
    group_category_path: Optional[str] = None
    top_group_node: str
    phases: List[PhaseSummaryPublicResponse]

    model_config = ConfigDict(extra="allow")
