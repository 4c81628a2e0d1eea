"""Per-run collaborators and cross-run resource controls."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from .schemas import ProgressEvent
from .sdk.openai_client import GenerativeClient


ProgressSink = Callable[[ProgressEvent], None]


class CancellationToken:
    """Cooperative cancellation flag checked by the engine between items."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ConcurrencyBudget:
    """Bounded semaphore shared by every run created from one bootstrap."""

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("Concurrency limit must be at least 1")
        self.limit = limit
        self._semaphore = threading.BoundedSemaphore(limit)

    @contextmanager
    def slot(self) -> Iterator[None]:
        self._semaphore.acquire()
        try:
            yield
        finally:
            self._semaphore.release()


def _discard(_event: ProgressEvent) -> None:
    return None


@dataclass
class RunContext:
    """Collaborators injected into a single run."""

    client: GenerativeClient
    progress: ProgressSink = _discard
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    budget: ConcurrencyBudget = field(default_factory=lambda: ConcurrencyBudget(1))
