# phaseboard/tests/test_integration.py

from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

import phaseboard.api.app as api_app_module
from phaseboard.api.app import app
from phaseboard.core.stores import InMemoryCategoryProvider, InMemoryReviewEventStore

client = TestClient(app)


@pytest.fixture
def seeded(monkeypatch, make_event):
    store = InMemoryReviewEventStore()
    categories = InMemoryCategoryProvider()
    for name in ["char_a", "char_b", "char_c", "char_d", "char_e"]:
        store.append(make_event(name, approval="approved", leaf_group="heroes", submitted_minutes=15))
    store.append(make_event("prop_a", phase="rig", work="wip"))
    store.append(make_event("prop_b", phase="rig", approval="retake"))
    categories.set("assets", "heroes", "character/hero")
    monkeypatch.setattr(api_app_module, "EVENT_STORE", store)
    monkeypatch.setattr(api_app_module, "CATEGORY_PROVIDER", categories)
    return store


def test_health_endpoint():
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["version"]
    diagnostics = body["diagnostics"]
    assert diagnostics["event_store"]["mode"] in {"inmem", "sqlite"}
    assert diagnostics["category_store"]["mode"] in {"inmem", "sqlite"}
    assert diagnostics["pivot"]["max_per_page"] >= 1


def test_ready_endpoint():
    response = client.get("/ready")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ready"
    assert body["checks"]["event_store"]["ready"] is True


def test_ready_endpoint_returns_503_when_event_store_unavailable(monkeypatch):
    class BrokenStore:
        def ping(self):
            raise RuntimeError("database is locked")

    monkeypatch.setattr(api_app_module, "EVENT_STORE", BrokenStore())

    response = client.get("/ready")
    assert response.status_code == 503
    body = response.json()
    assert body["detail"]["status"] == "degraded"
    assert "locked" in body["detail"]["checks"]["event_store"]["error"]


def test_pivot_list_view_with_headers(seeded):
    response = client.get("/projects/demo/reviews/assets/pivot", params={"per_page": 3, "page": 2})
    assert response.status_code == 200
    body = response.json()

    assert [row["group_1"] for row in body["assets"]] == ["char_d", "char_e", "prop_a"]
    assert body["total"] == 7
    assert body["page_last"] == 3
    assert body["has_next"] is True
    assert body["has_prev"] is True
    assert body["sort"] == "group_1"
    assert body["dir"] == "asc"
    assert body["view"] == "list"
    assert "groups" not in body

    row = body["assets"][0]
    assert row["mdl_approval_status"] == "approved"
    assert row["mdl_submitted_at_utc"] == "2024-03-01T09:15:00.000000Z"
    assert row["top_group_node"] == "character"
    assert row["group_category_path"] == "character/hero"
    assert "rig_work_status" not in row

    assert response.headers["X-Total-Count"] == "7"
    assert response.headers["X-Page-Last"] == "3"
    assert response.headers["Cache-Control"] == "public, max-age=15"
    link = response.headers["Link"]
    for rel in ("first", "prev", "next", "last"):
        assert f'rel="{rel}"' in link
    assert "page=3" in link


def test_pivot_status_filters_accept_repeated_csv_and_alias_params(seeded):
    response = client.get(
        "/projects/demo/reviews/assets/pivot",
        params=[("appr", "retake"), ("approval_status", "Approved,all")],
    )
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 6
    assert body["filters"]["approval_status"] == ["approved", "retake"]

    response = client.get("/projects/demo/reviews/assets/pivot", params={"work": "wip"})
    assert [row["group_1"] for row in response.json()["assets"]] == ["prop_a"]


def test_pivot_phase_priority_and_sort_normalization(seeded):
    response = client.get(
        "/projects/demo/reviews/assets/pivot",
        params={"phase": "rig", "sort": "nonsense", "dir": "desc"},
    )
    body = response.json()
    assert [row["group_1"] for row in body["assets"]][:2] == ["prop_a", "prop_b"]
    assert body["phase"] == "rig"
    assert body["sort"] == "group_1"
    assert body["dir"] == "asc"


def test_pivot_grouped_view(seeded):
    response = client.get(
        "/projects/demo/reviews/assets/pivot", params={"view": "grouped", "per_page": 4, "page": 2}
    )
    assert response.status_code == 200
    body = response.json()
    groups = body["groups"]
    assert [(g["group_name"], g["item_count"], g["total_count_in_group"]) for g in groups] == [
        ("character", 1, 5),
        ("Unassigned", 2, 2),
    ]
    grouped_names = [item["group_1"] for group in groups for item in group["items"]]
    assert grouped_names == [row["group_1"] for row in body["assets"]]

    flat = client.get("/projects/demo/reviews/assets/pivot", params={"per_page": 4, "page": 2}).json()
    assert grouped_names == [row["group_1"] for row in flat["assets"]]


def test_pivot_per_page_is_clamped(seeded, monkeypatch):
    monkeypatch.setattr(api_app_module.config.pivot, "max_per_page", 2)
    body = client.get("/projects/demo/reviews/assets/pivot", params={"per_page": 50}).json()
    assert body["per_page"] == 2
    assert len(body["assets"]) == 2


def test_pivot_unknown_project_returns_404(seeded):
    response = client.get("/projects/unknown/reviews/assets/pivot")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"


def test_pivot_timeout_returns_503(seeded, monkeypatch):
    monkeypatch.setattr(api_app_module.config.pivot, "request_timeout_s", 0.0)
    response = client.get("/projects/demo/reviews/assets/pivot")
    assert response.status_code == 503
    detail = response.json()["detail"]
    assert detail["code"] == "UNAVAILABLE"
    assert detail["retryable"] is True


def test_grouped_view_over_cap_returns_query_too_complex(seeded, monkeypatch):
    monkeypatch.setattr(api_app_module.config.pivot, "grouped_fetch_cap", 3)
    response = client.get("/projects/demo/reviews/assets/pivot", params={"view": "category"})
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "QUERY_TOO_COMPLEX"
    assert detail["max_items"] == 3


def test_pivot_zero_results(seeded):
    response = client.get("/projects/demo/reviews/assets/pivot", params={"name": "zzz"})
    assert response.status_code == 200
    body = response.json()
    assert body["assets"] == []
    assert body["total"] == 0
    assert body["page_last"] == 1
    assert response.headers["X-Total-Count"] == "0"


def test_export_csv(seeded):
    response = client.get(
        "/projects/demo/reviews/assets/pivot/export", params={"format": "csv", "sort": "group_1", "dir": "desc"}
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "demo_assets_pivot.csv" in response.headers["content-disposition"]
    lines = response.text.strip().split("\n")
    assert lines[0].startswith("group_1,relation,project,root")
    assert len(lines) == 8
    assert lines[1].startswith("prop_b,main,demo,assets")


def test_export_xlsx(seeded):
    response = client.get("/projects/demo/reviews/assets/pivot/export", params={"format": "xlsx"})
    assert response.status_code == 200
    wb = load_workbook(BytesIO(response.content))
    assert wb.sheetnames == ["Pivot", "Groups"]
    assert wb["Pivot"].max_row == 8


def test_export_rejects_unknown_format(seeded):
    response = client.get("/projects/demo/reviews/assets/pivot/export", params={"format": "pdf"})
    assert response.status_code == 400


def test_asset_review_endpoint(seeded):
    response = client.get("/projects/demo/reviews/assets/char_a/relations/main")
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "char_a"
    assert body["top_group_node"] == "character"
    assert [phase["phase"] for phase in body["phases"]] == ["mdl"]
    assert body["phases"][0]["approval_status"] == "approved"

    missing = client.get("/projects/demo/reviews/assets/ghost/relations/main")
    assert missing.status_code == 404
