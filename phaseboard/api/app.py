from __future__ import annotations

import io
import logging
from typing import Any, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from phaseboard.api.csv_utils import csv_text_from_rows
from phaseboard.api.public_views import (
    PIVOT_COLUMNS,
    merge_status_params,
    pagination_headers,
    public_asset_review_payload,
    public_pivot_payload,
    public_pivot_record,
)
from phaseboard.api.schemas import AssetPivotPublicResponse, AssetReviewPublicResponse
from phaseboard.core.config import config
from phaseboard.core.errors import PivotError
from phaseboard.core.models import DEFAULT_ROOT, AssetIdentity
from phaseboard.core.stores import create_category_provider_from_env, create_event_store_from_env
from phaseboard.exporters.excel_builder import build_xlsx_from_pivot
from phaseboard.pivot.engine import (
    PivotRequest,
    asset_review_record,
    export_pivot_records,
    resolve_request,
    run_pivot_query,
)

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"

app = FastAPI(
    title="Phaseboard API",
    description="Asset review pivot and grouping engine",
    version=API_VERSION,
)

EVENT_STORE = create_event_store_from_env(config.storage)
CATEGORY_PROVIDER = create_category_provider_from_env(config.storage)


def _http_error(exc: PivotError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.public_detail())


def _pivot_request(
    project: str,
    root: str,
    phase: Optional[str],
    sort: Optional[str],
    dir: Optional[str],
    page: Optional[int],
    per_page: Optional[int],
    name: Optional[str],
    approval_status: Optional[List[str]],
    appr: Optional[List[str]],
    work_status: Optional[List[str]],
    work: Optional[List[str]],
    view: Optional[str],
) -> PivotRequest:
    return PivotRequest(
        project=project,
        root=root,
        phase=phase,
        sort=sort,
        dir=dir,
        page=page,
        per_page=per_page,
        name=name,
        approval_statuses=merge_status_params(approval_status, appr),
        work_statuses=merge_status_params(work_status, work),
        view=view,
    )


def _store_mode(store: Any) -> str:
    return "sqlite" if getattr(store, "db_path", None) else "inmem"


def _health_diagnostics() -> dict[str, Any]:
    event_mode = _store_mode(EVENT_STORE)
    category_mode = _store_mode(CATEGORY_PROVIDER)
    diagnostics: dict[str, Any] = {
        "event_store": {"mode": event_mode},
        "category_store": {"mode": category_mode},
        "pivot": {
            "default_per_page": config.pivot.default_per_page,
            "max_per_page": config.pivot.max_per_page,
            "max_offset": config.pivot.max_offset,
            "grouped_fetch_cap": config.pivot.grouped_fetch_cap,
            "request_timeout_s": config.pivot.request_timeout_s,
        },
    }
    sqlite_path = getattr(EVENT_STORE, "db_path", None) or getattr(CATEGORY_PROVIDER, "db_path", None)
    if sqlite_path:
        diagnostics["sqlite"] = {"path": str(sqlite_path)}
    return diagnostics


def _event_store_readiness() -> dict[str, Any]:
    mode = _store_mode(EVENT_STORE)
    try:
        return {"ready": bool(EVENT_STORE.ping()), "mode": mode}
    except Exception as exc:
        return {"ready": False, "mode": mode, "error": str(exc)}


@app.get("/health")
def health_check():
    return {"status": "healthy", "version": API_VERSION, "diagnostics": _health_diagnostics()}


@app.get("/ready")
def readiness_check():
    store_ready = _event_store_readiness()
    ready = bool(store_ready.get("ready"))
    payload = {
        "status": "ready" if ready else "degraded",
        "checks": {"event_store": store_ready},
    }
    if not ready:
        raise HTTPException(status_code=503, detail=payload)
    return payload


@app.get(
    "/projects/{project}/reviews/assets/pivot",
    response_model=AssetPivotPublicResponse,
    response_model_exclude_none=True,
)
def get_assets_pivot(
    project: str,
    request: Request,
    root: str = DEFAULT_ROOT,
    phase: Optional[str] = None,
    sort: Optional[str] = "group_1",
    dir: Optional[str] = "asc",
    page: Optional[int] = 1,
    per_page: Optional[int] = None,
    name: Optional[str] = None,
    approval_status: Optional[List[str]] = Query(default=None),
    appr: Optional[List[str]] = Query(default=None),
    work_status: Optional[List[str]] = Query(default=None),
    work: Optional[List[str]] = Query(default=None),
    view: Optional[str] = "list",
):
    pivot_request = _pivot_request(
        project, root, phase, sort, dir, page, per_page, name, approval_status, appr, work_status, work, view
    )
    try:
        query = resolve_request(pivot_request, config.pivot)
        result = run_pivot_query(EVENT_STORE, CATEGORY_PROVIDER, query, settings=config.pivot)
    except PivotError as exc:
        raise _http_error(exc) from exc

    payload = AssetPivotPublicResponse.model_validate(public_pivot_payload(result, query))
    return JSONResponse(
        content=payload.model_dump(exclude_none=True),
        headers=pagination_headers(request.url, result),
    )


@app.get("/projects/{project}/reviews/assets/pivot/export")
def export_assets_pivot(
    project: str,
    format: str = "csv",
    root: str = DEFAULT_ROOT,
    phase: Optional[str] = None,
    sort: Optional[str] = "group_1",
    dir: Optional[str] = "asc",
    name: Optional[str] = None,
    approval_status: Optional[List[str]] = Query(default=None),
    appr: Optional[List[str]] = Query(default=None),
    work_status: Optional[List[str]] = Query(default=None),
    work: Optional[List[str]] = Query(default=None),
):
    fmt = (format or "").strip().lower()
    if fmt not in {"csv", "xlsx"}:
        raise HTTPException(status_code=400, detail="Unsupported format")

    pivot_request = _pivot_request(
        project, root, phase, sort, dir, 1, None, name, approval_status, appr, work_status, work, "list"
    )
    try:
        query, records = export_pivot_records(EVENT_STORE, CATEGORY_PROVIDER, pivot_request, settings=config.pivot)
    except PivotError as exc:
        raise _http_error(exc) from exc

    rows = [public_pivot_record(record) for record in records]
    filename = f"{query.predicate.project}_{query.predicate.root}_pivot"
    if fmt == "csv":
        return StreamingResponse(
            io.BytesIO(csv_text_from_rows(PIVOT_COLUMNS, rows).encode("utf-8")),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f"attachment; filename={filename}.csv"},
        )
    return StreamingResponse(
        io.BytesIO(build_xlsx_from_pivot(PIVOT_COLUMNS, rows, query.predicate.project)),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}.xlsx"},
    )


@app.get(
    "/projects/{project}/reviews/assets/{name}/relations/{relation}",
    response_model=AssetReviewPublicResponse,
    response_model_exclude_none=True,
)
def get_asset_review(project: str, name: str, relation: str, root: str = DEFAULT_ROOT):
    identity = AssetIdentity(project=project, root=root or DEFAULT_ROOT, name=name, relation=relation)
    try:
        record = asset_review_record(EVENT_STORE, CATEGORY_PROVIDER, identity, settings=config.pivot)
    except PivotError as exc:
        raise _http_error(exc) from exc
    return public_asset_review_payload(record)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.DEBUG if config.debug else logging.INFO)
    uvicorn.run(app, host=config.api_host, port=config.api_port, reload=config.debug)
