"""Conditional side effects keyed on (work item, minimum tier)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from tenacity import Retrying, before_sleep_log, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from ..persistence.records import ItemExecution
from ..persistence.store import RunStore
from ..schemas import Tier
from ..sdk.openai_client import GenerativeClient


LOGGER = logging.getLogger("bizbox.side_effects")


@dataclass
class SideEffectResult:
    handler: str
    succeeded: bool
    asset_urls: List[str] = field(default_factory=list)
    annotation: str = ""
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class SideEffectContext:
    """What a handler may read and write while reacting to one execution."""

    run_id: str
    tier: Tier
    execution: ItemExecution
    store: RunStore
    client: GenerativeClient


class SideEffectHandler:
    """Base class for handlers; ``run`` returns a result or raises."""

    name = "side_effect"

    def run(self, context: SideEffectContext) -> SideEffectResult:  # pragma: no cover - documentation method
        raise NotImplementedError

    def failure_annotation(self, error: str) -> str:
        return f"\n\n## {self.name}\n\n⚠️ {error}"


@dataclass(frozen=True)
class Trigger:
    item_id: str
    min_tier: Tier
    handler: SideEffectHandler

    def matches(self, item_id: str, tier: Tier) -> bool:
        return item_id == self.item_id and tier.at_least(self.min_tier)


class SideEffectRegistry:
    """
    Explicit trigger table consulted after every successful execution.

    Handler failures are contained here: the triggering execution gets a
    warning block appended to its output and keeps its ``completed`` status.
    Store errors while recording the outcome end up in ``result.warnings``.
    """

    def __init__(
        self,
        store: RunStore,
        triggers: Iterable[Trigger] = (),
        max_attempts: int = 1,
        wait: Optional[wait_base] = None,
    ) -> None:
        self._store = store
        self._triggers: List[Trigger] = list(triggers)
        self._max_attempts = max(1, max_attempts)
        self._wait = wait if wait is not None else wait_exponential(multiplier=1, min=2, max=10)

    @property
    def triggers(self) -> List[Trigger]:
        return list(self._triggers)

    def register(self, trigger: Trigger) -> None:
        self._triggers.append(trigger)

    def maybe_trigger(
        self,
        execution: ItemExecution,
        item_id: str,
        tier: Tier,
        client: GenerativeClient,
    ) -> List[SideEffectResult]:
        results: List[SideEffectResult] = []
        for trigger in self._triggers:
            if not trigger.matches(item_id, tier):
                continue
            context = SideEffectContext(
                run_id=execution.run_id,
                tier=tier,
                execution=execution,
                store=self._store,
                client=client,
            )
            result = self._run_with_retries(trigger.handler, context)
            self._record_outcome(execution, item_id, result)
            results.append(result)
        return results

    def _record_outcome(self, execution: ItemExecution, item_id: str, result: SideEffectResult) -> None:
        if result.annotation:
            try:
                execution.output = self._store.append_to_output(execution.id, result.annotation)
            except SQLAlchemyError as exc:
                execution.output = f"{execution.output}{result.annotation}"
                result.warnings.append(f"Could not store {result.handler} annotation for {item_id}: {exc}")
        try:
            self._store.record_event(
                run_id=execution.run_id,
                event_type="side_effect_completed" if result.succeeded else "side_effect_failed",
                message=f"{result.handler} {'succeeded' if result.succeeded else 'failed'} for {item_id}.",
                payload={"item_id": item_id, "asset_urls": result.asset_urls, "error": result.error},
            )
        except SQLAlchemyError as exc:
            result.warnings.append(f"Could not record {result.handler} event for {item_id}: {exc}")

    def _run_with_retries(self, handler: SideEffectHandler, context: SideEffectContext) -> SideEffectResult:
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait,
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
            reraise=True,
        )
        LOGGER.info("Running %s for %s", handler.name, context.execution.item_id)
        try:
            return retrying(handler.run, context)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            LOGGER.warning("%s failed after %d attempt(s): %s", handler.name, self._max_attempts, error)
            return SideEffectResult(
                handler=handler.name,
                succeeded=False,
                annotation=handler.failure_annotation(error),
                error=error,
            )
