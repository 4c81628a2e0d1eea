"""Progress fan-out: in-process subscribers and poll-based snapshots."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, List, Optional

from pydantic import BaseModel

from .persistence.store import RunStore
from .schemas import ProgressEvent, ProgressSnapshot, RunStatus


LOGGER = logging.getLogger("bizbox.progress")

PROGRESS_EVENT_TYPE = "progress"

Subscriber = Callable[[ProgressEvent], None]


def percent_complete(done: int, total: int) -> int:
    """Integer percentage rounded half up; an empty run counts as finished."""
    if total <= 0:
        return 100
    return min(100, (200 * done + total) // (2 * total))


class ProgressBroadcaster:
    """Synchronous fan-out to subscribers, in subscription order."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: ProgressEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                LOGGER.exception("Progress subscriber %r failed; continuing", callback)

    __call__ = publish


class RecordingSink:
    """Persist each progress event as a run event so pollers can replay it."""

    def __init__(self, store: RunStore) -> None:
        self._store = store

    def __call__(self, event: ProgressEvent) -> None:
        label = event.item_name or "run"
        self._store.record_event(
            run_id=event.run_id,
            event_type=PROGRESS_EVENT_TYPE,
            message=f"{label} {event.status} ({event.percentage}%)",
            payload=event.model_dump(mode="json"),
        )


def snapshot(store: RunStore, run_id: str) -> ProgressSnapshot:
    """Re-derive a run's progress from persisted rows."""

    run = store.get_run(run_id)
    if run is None:
        raise KeyError(f"Unknown run {run_id}")

    executions = store.list_executions(run_id)
    events = store.list_events(run_id, event_type=PROGRESS_EVENT_TYPE)
    last_event = ProgressEvent.model_validate(events[-1].payload) if events else None
    attempted = len(executions)
    if run.status.is_terminal and run.status != RunStatus.CANCELLED:
        percentage = 100
    else:
        percentage = percent_complete(attempted, run.total_count) if run.total_count else 0

    current_item = None
    if last_event is not None and last_event.status == "in_progress":
        current_item = last_event.item_name

    return ProgressSnapshot(
        run_id=run_id,
        status=run.status,
        completed_count=sum(1 for execution in executions if execution.succeeded),
        failed_count=sum(1 for execution in executions if not execution.succeeded),
        total_count=run.total_count,
        percentage=percentage,
        current_item=current_item,
        completed_items=[
            {"item_id": execution.item_id, "name": execution.display_name, "status": execution.status}
            for execution in executions
        ],
        last_event=last_event,
    )


def poll_progress(
    store: RunStore,
    run_id: str,
    interval: float = 2.0,
    should_stop: Optional[Callable[[], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[ProgressSnapshot]:
    """
    Yield a snapshot every *interval* seconds until the run is terminal.

    ``should_stop`` lets an observer detach early (for example when an HTTP
    client disconnects); the run itself is unaffected.
    """

    while True:
        current = snapshot(store, run_id)
        yield current
        if current.status.is_terminal:
            return
        if should_stop is not None and should_stop():
            LOGGER.debug("Progress observer for %s detached", run_id)
            return
        sleep(interval)


def to_ndjson(obj: BaseModel) -> str:
    return obj.model_dump_json() + "\n"
