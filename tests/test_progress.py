from __future__ import annotations

import json

import pytest

from bizbox.orchestrator import ExecutionEngine, RunRequest
from bizbox.progress import ProgressBroadcaster, RecordingSink, percent_complete, poll_progress, snapshot, to_ndjson
from bizbox.runtime import RunContext
from bizbox.schemas import ProgressEvent, RunStatus, Tier

from conftest import FakeClient, build_catalog, item_entry


def _event(percentage=0, status="in_progress"):
    return ProgressEvent(run_id="run-1", item_id="a", item_name="A", status=status, percentage=percentage)


@pytest.mark.parametrize(
    "done,total,expected",
    [(0, 5, 0), (1, 5, 20), (5, 5, 100), (1, 3, 33), (2, 3, 67), (1, 8, 13), (1, 200, 1), (0, 0, 100)],
)
def test_percent_complete_rounds_half_up(done, total, expected):
    assert percent_complete(done, total) == expected


def test_broadcaster_isolates_failing_subscribers():
    received = []
    broadcaster = ProgressBroadcaster()

    def broken(_event):
        raise RuntimeError("socket closed")

    broadcaster.subscribe(broken)
    unsubscribe = broadcaster.subscribe(lambda event: received.append(("first", event.percentage)))
    broadcaster.subscribe(lambda event: received.append(("second", event.percentage)))

    broadcaster(_event(20))
    unsubscribe()
    broadcaster.publish(_event(40))

    assert received == [("first", 20), ("second", 20), ("second", 40)]


def test_snapshot_reflects_recorded_run(store):
    catalog = build_catalog([item_entry("alpha", 1), item_entry("beta", 2), item_entry("gamma", 3)])
    engine = ExecutionEngine(catalog, store)
    broadcaster = ProgressBroadcaster()
    broadcaster.subscribe(RecordingSink(store))
    context = RunContext(client=FakeClient(fail_on=["Write beta"]), progress=broadcaster)

    engine.run(RunRequest(tier=Tier.VALIDATION_PACK, subject_text="x", run_id="run-1"), context)
    current = snapshot(store, "run-1")

    assert current.status == RunStatus.COMPLETED
    assert current.percentage == 100
    assert (current.completed_count, current.failed_count, current.total_count) == (2, 1, 3)
    assert [item["item_id"] for item in current.completed_items] == ["alpha", "beta", "gamma"]
    assert current.last_event.item_id == "gamma"
    assert current.last_event.percentage == 100
    assert len(store.list_events("run-1", event_type="progress")) == 6


def test_snapshot_of_unknown_run(store):
    with pytest.raises(KeyError):
        snapshot(store, "nope")


def test_poll_progress_stops_at_terminal_status(store):
    store.create_run(run_id="run-1", owner_id="o", tier=Tier.VALIDATION_PACK, subject_text="x")
    store.start_run("run-1", 2)
    pauses = []

    def finish(interval):
        pauses.append(interval)
        store.finalize_run("run-1", RunStatus.COMPLETED, 2, 0, 2, 20, 5)

    snapshots = list(poll_progress(store, "run-1", interval=0.5, sleep=finish))

    assert [entry.status for entry in snapshots] == [RunStatus.IN_PROGRESS, RunStatus.COMPLETED]
    assert snapshots[0].percentage == 0
    assert snapshots[-1].percentage == 100
    assert pauses == [0.5]


def test_poll_progress_observer_can_detach(store):
    store.create_run(run_id="run-1", owner_id="o", tier=Tier.VALIDATION_PACK, subject_text="x")

    snapshots = list(poll_progress(store, "run-1", should_stop=lambda: True, sleep=lambda _: None))

    assert len(snapshots) == 1
    assert snapshots[0].status == RunStatus.PENDING
    assert store.get_run("run-1").status == RunStatus.PENDING


def test_ndjson_lines():
    line = to_ndjson(_event(40))

    assert line.endswith("\n")
    assert json.loads(line)["percentage"] == 40
