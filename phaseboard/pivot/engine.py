from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from phaseboard.core.config import PivotConfig, config
from phaseboard.core.deadline import Deadline
from phaseboard.core.errors import InternalError, NotFound, PivotError, ResultTooLarge, Unavailable
from phaseboard.core.models import AssetIdentity, AssetPivotRecord, PivotPage
from phaseboard.pivot.assembler import assemble_pivot_records, fetch_phase_summaries
from phaseboard.pivot.categories import resolve_categories
from phaseboard.pivot.grouping import group_by_top_node, window_groups
from phaseboard.pivot.ordering import Ordering, build_ordering, describe_ordering
from phaseboard.pivot.predicate import QueryPredicate, build_predicate
from phaseboard.pivot.selector import count_asset_keys, page_last, select_asset_keys
from phaseboard.pivot.sort_spec import SortSpec, resolve_sort_spec

logger = logging.getLogger(__name__)

VIEW_LIST = "list"
VIEW_GROUPED = "grouped"
VIEW_ALIASES = {
    "list": VIEW_LIST,
    "flat": VIEW_LIST,
    "grouped": VIEW_GROUPED,
    "group": VIEW_GROUPED,
    "category": VIEW_GROUPED,
}


def normalize_view(raw_view: Optional[str]) -> str:
    return VIEW_ALIASES.get(str(raw_view or "").strip().lower(), VIEW_LIST)


@dataclass
class PivotRequest:
    project: Optional[str]
    root: Optional[str] = None
    phase: Optional[str] = None
    sort: Optional[str] = None
    dir: Optional[str] = None
    page: Optional[int] = 1
    per_page: Optional[int] = None
    name: Optional[str] = None
    approval_statuses: List[str] = field(default_factory=list)
    work_statuses: List[str] = field(default_factory=list)
    view: Optional[str] = None


@dataclass(frozen=True)
class ResolvedPivotQuery:
    predicate: QueryPredicate
    sort: SortSpec
    ordering: Ordering
    page: int
    per_page: int
    view: str

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


def clamp_paging(page: Optional[int], per_page: Optional[int], settings: PivotConfig) -> Tuple[int, int]:
    page_value = int(page or 1)
    if page_value < 1:
        page_value = 1
    per_page_value = int(per_page or 0)
    if per_page_value < 1:
        per_page_value = settings.default_per_page
    if per_page_value > settings.max_per_page:
        logger.info("Clamping per_page=%s to max_per_page=%s", per_page_value, settings.max_per_page)
        per_page_value = settings.max_per_page
    return page_value, per_page_value


def resolve_request(request: PivotRequest, settings: Optional[PivotConfig] = None) -> ResolvedPivotQuery:
    settings = settings or config.pivot
    predicate = build_predicate(
        request.project,
        root=request.root,
        name=request.name,
        approval_statuses=request.approval_statuses,
        work_statuses=request.work_statuses,
    )
    sort = resolve_sort_spec(request.sort, request.dir, request.phase)
    page, per_page = clamp_paging(request.page, request.per_page, settings)
    return ResolvedPivotQuery(
        predicate=predicate,
        sort=sort,
        ordering=build_ordering(sort.target, sort.direction),
        page=page,
        per_page=per_page,
        view=normalize_view(request.view),
    )


def _await(future: Future, deadline: Deadline, stage: str) -> Any:
    try:
        return future.result(timeout=deadline.remaining())
    except FutureTimeoutError as exc:
        raise Unavailable(context={"stage": stage}) from exc


def _select_and_count(
    store,
    query: ResolvedPivotQuery,
    *,
    limit: int,
    offset: int,
    max_offset: Optional[int],
    deadline: Deadline,
) -> Tuple[List[AssetIdentity], int]:
    executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="phaseboard-pivot")
    try:
        keys_future = executor.submit(
            select_asset_keys,
            store,
            query.predicate,
            query.ordering,
            phase_priority=query.sort.phase_priority,
            limit=limit,
            offset=offset,
            max_offset=max_offset,
            deadline=deadline,
        )
        count_future = executor.submit(count_asset_keys, store, query.predicate, deadline=deadline)
        keys = _await(keys_future, deadline, "select_keys")
        total = _await(count_future, deadline, "count_keys")
        return keys, total
    except BaseException:
        deadline.cancel()
        raise
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def _pivot(
    store,
    categories,
    query: ResolvedPivotQuery,
    identities: Sequence[AssetIdentity],
    settings: PivotConfig,
    deadline: Deadline,
) -> List[AssetPivotRecord]:
    deadline.check("fetch_phases")
    summaries = fetch_phase_summaries(
        store,
        identities,
        batch_size=settings.phase_fetch_batch_size,
        deadline=deadline,
    )
    deadline.check("assemble")
    records = assemble_pivot_records(identities, summaries)
    deadline.check("resolve_categories")
    return resolve_categories(records, categories, query.predicate.root, deadline=deadline)


def _page(query: ResolvedPivotQuery, assets: List[AssetPivotRecord], total: int, groups=None) -> PivotPage:
    last = page_last(total, query.per_page)
    return PivotPage(
        assets=assets,
        total=total,
        page=query.page,
        per_page=query.per_page,
        page_last=last,
        has_next=query.page < last,
        has_prev=query.page > 1,
        sort=query.sort.target.key,
        dir=query.sort.direction.value,
        groups=groups,
    )


def _list_view(store, categories, query: ResolvedPivotQuery, settings: PivotConfig, deadline: Deadline) -> PivotPage:
    identities, total = _select_and_count(
        store,
        query,
        limit=query.per_page,
        offset=query.offset,
        max_offset=settings.max_offset,
        deadline=deadline,
    )
    records = _pivot(store, categories, query, identities, settings, deadline)
    return _page(query, records, total)


def _grouped_view(store, categories, query: ResolvedPivotQuery, settings: PivotConfig, deadline: Deadline) -> PivotPage:
    cap = settings.grouped_fetch_cap
    identities, total = _select_and_count(
        store,
        query,
        limit=cap + 1,
        offset=0,
        max_offset=None,
        deadline=deadline,
    )
    if len(identities) > cap or total > cap:
        raise ResultTooLarge(
            f"Grouped view supports at most {cap} assets; narrow the filters",
            limit=cap,
            context={"total": total},
        )
    records = _pivot(store, categories, query, identities, settings, deadline)
    deadline.check("group")
    buckets = group_by_top_node(records)
    page_items, page_buckets = window_groups(buckets, query.offset, query.per_page)
    return _page(query, page_items, total, groups=page_buckets)


def _log_context(query: ResolvedPivotQuery) -> Dict[str, Any]:
    context = query.predicate.describe()
    context.update({"view": query.view, "ordering": describe_ordering(query.ordering)})
    return context


def run_pivot_query(
    store,
    categories,
    query: ResolvedPivotQuery,
    *,
    settings: Optional[PivotConfig] = None,
) -> PivotPage:
    settings = settings or config.pivot
    deadline = Deadline(settings.request_timeout_s)
    try:
        deadline.check("resolve")
        if not store.project_exists(query.predicate.project, query.predicate.root):
            raise NotFound(
                f"No review data for project '{query.predicate.project}' and root '{query.predicate.root}'"
            )
        if query.view == VIEW_GROUPED:
            return _grouped_view(store, categories, query, settings, deadline)
        return _list_view(store, categories, query, settings, deadline)
    except Unavailable as exc:
        deadline.cancel()
        logger.warning(
            "Asset pivot timed out stage=%s project=%s root=%s",
            exc.context.get("stage", "unknown"),
            query.predicate.project,
            query.predicate.root,
        )
        raise
    except PivotError:
        raise
    except Exception as exc:
        logger.exception("Asset pivot failed: %s", _log_context(query))
        raise InternalError(context=_log_context(query)) from exc


def export_pivot_records(
    store,
    categories,
    request: PivotRequest,
    *,
    settings: Optional[PivotConfig] = None,
) -> Tuple[ResolvedPivotQuery, List[AssetPivotRecord]]:
    """Full filtered, sorted pivot bounded by the grouped fetch cap; paging params are ignored."""
    settings = settings or config.pivot
    query = resolve_request(request, settings)
    deadline = Deadline(settings.request_timeout_s)
    cap = settings.grouped_fetch_cap
    try:
        if not store.project_exists(query.predicate.project, query.predicate.root):
            raise NotFound(
                f"No review data for project '{query.predicate.project}' and root '{query.predicate.root}'"
            )
        identities = select_asset_keys(
            store,
            query.predicate,
            query.ordering,
            phase_priority=query.sort.phase_priority,
            limit=cap + 1,
            deadline=deadline,
        )
        if len(identities) > cap:
            raise ResultTooLarge(f"Export supports at most {cap} assets; narrow the filters", limit=cap)
        return query, _pivot(store, categories, query, identities, settings, deadline)
    except Unavailable:
        deadline.cancel()
        logger.warning("Asset pivot export timed out project=%s", query.predicate.project)
        raise
    except PivotError:
        raise
    except Exception as exc:
        logger.exception("Asset pivot export failed: %s", _log_context(query))
        raise InternalError(context=_log_context(query)) from exc


def asset_review_record(
    store,
    categories,
    identity: AssetIdentity,
    *,
    settings: Optional[PivotConfig] = None,
) -> AssetPivotRecord:
    settings = settings or config.pivot
    deadline = Deadline(settings.request_timeout_s)
    context = {
        "project": identity.project,
        "root": identity.root,
        "name": identity.name,
        "relation": identity.relation,
    }
    try:
        deadline.check("fetch_phases")
        summaries = fetch_phase_summaries(store, [identity], deadline=deadline)
        if not summaries:
            raise NotFound(f"No review data for asset '{identity.name}' relation '{identity.relation}'")
        records = assemble_pivot_records([identity], summaries)
        resolve_categories(records, categories, identity.root, deadline=deadline)
        return records[0]
    except Unavailable as exc:
        deadline.cancel()
        logger.warning(
            "Asset review lookup timed out stage=%s project=%s name=%s",
            exc.context.get("stage", "unknown"),
            identity.project,
            identity.name,
        )
        raise
    except PivotError:
        raise
    except Exception as exc:
        logger.exception("Asset review lookup failed: %s", context)
        raise InternalError(context=context) from exc


def list_assets_pivot(
    store,
    categories,
    request: PivotRequest,
    *,
    settings: Optional[PivotConfig] = None,
) -> PivotPage:
    """Single pass: resolve, select keys alongside the count, fetch phases, assemble, categorize, group."""
    settings = settings or config.pivot
    query = resolve_request(request, settings)
    return run_pivot_query(store, categories, query, settings=settings)
