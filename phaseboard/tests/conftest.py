from datetime import datetime, timedelta, timezone

import pytest

from phaseboard.core.config import PivotConfig
from phaseboard.core.models import ReviewEvent
from phaseboard.core.stores import (
    InMemoryCategoryProvider,
    InMemoryReviewEventStore,
    SQLiteCategoryProvider,
    SQLiteReviewEventStore,
)

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _review_event(
    name,
    phase="mdl",
    *,
    project="demo",
    root="assets",
    relation="main",
    minutes=0,
    work=None,
    approval=None,
    submitted_minutes=None,
    deleted=False,
    leaf_group="",
):
    submitted_at = BASE_TIME + timedelta(minutes=submitted_minutes) if submitted_minutes is not None else None
    return ReviewEvent(
        project=project,
        root=root,
        name=name,
        relation=relation,
        phase=phase,
        modified_at=BASE_TIME + timedelta(minutes=minutes),
        work_status=work,
        approval_status=approval,
        submitted_at=submitted_at,
        deleted=deleted,
        leaf_group=leaf_group,
    )


@pytest.fixture
def make_event():
    return _review_event


@pytest.fixture(params=["inmem", "sqlite"])
def backend(request):
    return request.param


@pytest.fixture
def event_store(backend, tmp_path):
    if backend == "sqlite":
        return SQLiteReviewEventStore(str(tmp_path / "phaseboard_state.db"))
    return InMemoryReviewEventStore()


@pytest.fixture
def category_provider(backend, tmp_path):
    if backend == "sqlite":
        return SQLiteCategoryProvider(str(tmp_path / "phaseboard_state.db"))
    return InMemoryCategoryProvider()


@pytest.fixture
def settings():
    return PivotConfig(
        default_per_page=15,
        max_per_page=100,
        max_offset=10000,
        grouped_fetch_cap=5000,
        request_timeout_s=10.0,
        phase_fetch_batch_size=400,
    )
