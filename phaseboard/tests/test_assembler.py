from phaseboard.core.models import UNASSIGNED_GROUP, AssetIdentity, PhaseSummary
from phaseboard.core.phases import PHASE_ORDER, Phase
from phaseboard.pivot.assembler import assemble_pivot_records, fetch_phase_summaries


def _identity(name):
    return AssetIdentity("demo", "assets", name, "main")


class RecordingStore:
    def __init__(self, events):
        self.events = events
        self.calls = []

    def fetch_current_events(self, identities, deadline=None):
        self.calls.append(list(identities))
        wanted = set(identities)
        return [event for event in self.events if event.identity in wanted]


def test_empty_phase_slots_are_never_cross_populated(event_store, make_event):
    event_store.extend(
        [
            make_event("hero", phase="mdl", work="done", approval="approved", submitted_minutes=5),
            make_event("hero", phase="ldv", work="wip", minutes=3),
        ]
    )
    summaries = fetch_phase_summaries(event_store, [_identity("hero")])
    [record] = assemble_pivot_records([_identity("hero")], summaries)

    assert record.phase(Phase.MDL).approval_status == "approved"
    assert record.phase(Phase.LDV).work_status == "wip"
    for phase in (Phase.RIG, Phase.BLD, Phase.DSN):
        assert record.phase(phase) is None
    assert set(record.phases) == set(PHASE_ORDER)


def test_assembler_preserves_selector_order_and_keeps_missing_assets(make_event):
    identities = [_identity("zeta"), _identity("alpha"), _identity("ghost")]
    summaries = [
        PhaseSummary.from_event(make_event("alpha", work="wip")),
        PhaseSummary.from_event(make_event("zeta", phase="rig", work="done")),
    ]
    records = assemble_pivot_records(identities, summaries)
    assert [record.identity.name for record in records] == ["zeta", "alpha", "ghost"]
    assert all(slot is None for slot in records[2].phases.values())
    assert records[2].top_group_node == UNASSIGNED_GROUP


def test_assembler_ignores_unknown_phases(make_event):
    summaries = [
        PhaseSummary.from_event(make_event("hero", phase="fx", work="done")),
        PhaseSummary.from_event(make_event("hero", phase="RIG", work="wip")),
    ]
    [record] = assemble_pivot_records([_identity("hero")], summaries)
    assert record.phase(Phase.RIG).work_status == "wip"
    assert sum(1 for slot in record.phases.values() if slot is not None) == 1


def test_leaf_group_comes_from_latest_event_carrying_one(make_event):
    summaries = [
        PhaseSummary.from_event(make_event("hero", phase="mdl", minutes=1, leaf_group="heroes_old")),
        PhaseSummary.from_event(make_event("hero", phase="rig", minutes=7, leaf_group="heroes")),
        PhaseSummary.from_event(make_event("hero", phase="ldv", minutes=9)),
    ]
    [record] = assemble_pivot_records([_identity("hero")], summaries)
    assert record.leaf_group_name == "heroes"


def test_fetch_phase_summaries_batches_identities(make_event):
    names = [f"asset_{idx}" for idx in range(5)]
    store = RecordingStore([make_event(name) for name in names])
    summaries = fetch_phase_summaries(store, [_identity(name) for name in names], batch_size=2)

    assert [len(call) for call in store.calls] == [2, 2, 1]
    assert sorted(summary.identity.name for summary in summaries) == names


def test_fetch_phase_summaries_deduplicates_identities(make_event):
    store = RecordingStore([make_event("hero")])
    fetch_phase_summaries(store, [_identity("hero"), _identity("hero")])
    assert store.calls == [[_identity("hero")]]
