from __future__ import annotations

import logging
import time
import uuid
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .catalog.loader import WorkCatalog, WorkItemDefinition
from .catalog.planner import ExecutionPlan, plan_execution_order
from .errors import ConfigurationError
from .persistence.records import ItemExecution
from .persistence.store import RunStore
from .progress import percent_complete
from .prompts import build_system_instructions, resolve_item_input
from .runtime import RunContext
from .schemas import DeploymentInfo, ItemStatus, ProgressEvent, RunStatus, Tier, utcnow
from .side_effects.registry import SideEffectRegistry, SideEffectResult


LOGGER = logging.getLogger("bizbox.orchestrator")


@dataclass
class RunRequest:
    """Inputs for a single run."""

    tier: Tier
    subject_text: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    owner_id: str = "local"
    retrieved_context: Optional[str] = None


@dataclass
class RunResult:
    """Outcome of a run once every planned item has been attempted."""

    run_id: str
    tier: Tier
    status: RunStatus
    completed_count: int
    failed_count: int
    total_count: int
    tokens_used: int
    elapsed_ms: int
    started_at: datetime
    completed_at: datetime
    executions: List[ItemExecution] = field(default_factory=list)
    side_effects: List[SideEffectResult] = field(default_factory=list)
    deployment: DeploymentInfo = field(default_factory=DeploymentInfo)
    warnings: List[str] = field(default_factory=list)


@dataclass
class _Outcome:
    text: str = ""
    tokens_used: int = 0
    duration_ms: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class _RunState:
    request: RunRequest
    plan: ExecutionPlan
    context: RunContext
    executions: Dict[str, ItemExecution] = field(default_factory=dict)
    ordered: List[ItemExecution] = field(default_factory=list)
    side_effects: List[SideEffectResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    completed: int = 0
    failed: int = 0
    tokens: int = 0

    @property
    def attempted(self) -> int:
        return self.completed + self.failed


class ExecutionEngine:
    """
    Execute a tier's work items in dependency order and record every outcome.

    Item failures are recorded and the run carries on; only configuration
    problems detected before the first item escape as exceptions.
    """

    def __init__(
        self,
        catalog: WorkCatalog,
        store: RunStore,
        registry: Optional[SideEffectRegistry] = None,
        max_parallel_items: int = 1,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._registry = registry
        self._max_parallel = max(1, max_parallel_items)
        self._logger = LOGGER

    def prepare(self, request: RunRequest, config: Optional[Dict[str, Any]] = None) -> None:
        """Create the pending run row so observers can find it before execution starts."""
        if self._store.get_run(request.run_id) is None:
            self._store.create_run(
                run_id=request.run_id,
                owner_id=request.owner_id,
                tier=request.tier,
                subject_text=request.subject_text,
                config=config,
            )

    def run(self, request: RunRequest, context: RunContext) -> RunResult:
        started_at = utcnow()
        clock = time.monotonic()
        self.prepare(request)
        self._logger.info("Starting run %s for tier %s", request.run_id, request.tier.value)

        try:
            plan = plan_execution_order(self._catalog.items_for_tier(request.tier))
        except ConfigurationError as exc:
            self._logger.error("Run %s cannot start: %s", request.run_id, exc)
            self._store.fail_run(request.run_id, str(exc))
            self._store.record_event(
                run_id=request.run_id,
                event_type="configuration_error",
                message="Run aborted before execution.",
                payload={"error": str(exc)},
            )
            raise

        state = _RunState(request=request, plan=plan, context=context)
        self._store.start_run(request.run_id, plan.total)
        self._store.record_event(
            run_id=request.run_id,
            event_type="run_started",
            message=f"Run initialised with {plan.total} work items.",
            payload={
                "tier": request.tier.value,
                "items": plan.item_ids,
                "external_dependencies": {key: list(value) for key, value in plan.external_dependencies.items()},
                "parallel": self._max_parallel,
            },
        )

        if plan.total == 0:
            self._emit(state, None, ItemStatus.COMPLETED.value, 100)
        elif self._max_parallel > 1:
            self._run_levels(state)
        else:
            self._run_sequential(state)

        cancelled = context.cancellation.cancelled and state.attempted < plan.total
        status = RunStatus.CANCELLED if cancelled else RunStatus.COMPLETED
        elapsed_ms = int((time.monotonic() - clock) * 1000)
        self._store.finalize_run(
            run_id=request.run_id,
            status=status,
            completed_count=state.completed,
            failed_count=state.failed,
            total_count=plan.total,
            tokens_used=state.tokens,
            elapsed_ms=elapsed_ms,
            error=context.cancellation.reason if cancelled else None,
        )
        self._store.record_event(
            run_id=request.run_id,
            event_type="run_cancelled" if cancelled else "run_completed",
            message=f"Run finished with status {status.value}.",
            payload={
                "completed": state.completed,
                "failed": state.failed,
                "total": plan.total,
                "tokens_used": state.tokens,
                "elapsed_ms": elapsed_ms,
            },
        )
        self._logger.info(
            "Run %s %s: %d/%d completed, %d failed",
            request.run_id,
            status.value,
            state.completed,
            plan.total,
            state.failed,
        )

        record = self._store.get_run(request.run_id)
        return RunResult(
            run_id=request.run_id,
            tier=request.tier,
            status=status,
            completed_count=state.completed,
            failed_count=state.failed,
            total_count=plan.total,
            tokens_used=state.tokens,
            elapsed_ms=elapsed_ms,
            started_at=started_at,
            completed_at=utcnow(),
            executions=state.ordered,
            side_effects=state.side_effects,
            deployment=record.deployment if record else DeploymentInfo(),
            warnings=state.warnings,
        )

    def _run_sequential(self, state: _RunState) -> None:
        for item in state.plan.items:
            if self._cancelled(state):
                return
            resolved = self._resolve(state, item)
            self._emit(state, item, ItemStatus.IN_PROGRESS.value, percent_complete(state.attempted, state.plan.total))
            outcome = self._generate(state, item, resolved)
            self._apply(state, item, resolved, outcome)

    def _run_levels(self, state: _RunState) -> None:
        with ThreadPoolExecutor(max_workers=self._max_parallel, thread_name_prefix="bizbox-item") as pool:
            for level in state.plan.levels:
                if self._cancelled(state):
                    return
                prepared: List[Tuple[WorkItemDefinition, str]] = []
                for item in level:
                    resolved = self._resolve(state, item)
                    self._emit(
                        state,
                        item,
                        ItemStatus.IN_PROGRESS.value,
                        percent_complete(state.attempted, state.plan.total),
                    )
                    prepared.append((item, resolved))
                futures = [pool.submit(self._generate, state, item, resolved) for item, resolved in prepared]
                for (item, resolved), future in zip(prepared, futures):
                    self._apply(state, item, resolved, future.result())

    def _cancelled(self, state: _RunState) -> bool:
        if state.context.cancellation.cancelled:
            self._logger.info(
                "Run %s cancelled after %d/%d items",
                state.request.run_id,
                state.attempted,
                state.plan.total,
            )
            return True
        return False

    def _resolve(self, state: _RunState, item: WorkItemDefinition) -> str:
        return resolve_item_input(
            item,
            state.request.subject_text,
            state.executions,
            omitted=state.plan.external_dependencies.get(item.id, ()),
        )

    def _generate(self, state: _RunState, item: WorkItemDefinition, resolved: str) -> _Outcome:
        system = build_system_instructions(item, state.request.retrieved_context)
        started = time.monotonic()
        try:
            with state.context.budget.slot():
                completion = state.context.client.invoke(system, resolved)
            text = completion.text
            if not text or not text.strip():
                raise ValueError("empty response from generative service")
        except Exception as exc:
            duration = int((time.monotonic() - started) * 1000)
            self._logger.warning("Item %s failed: %s", item.id, exc)
            return _Outcome(duration_ms=duration, error=str(exc) or exc.__class__.__name__)
        duration = int((time.monotonic() - started) * 1000)
        return _Outcome(text=text, tokens_used=completion.tokens_used, duration_ms=duration)

    def _apply(self, state: _RunState, item: WorkItemDefinition, resolved: str, outcome: _Outcome) -> None:
        run_id = state.request.run_id
        status = ItemStatus.COMPLETED.value if outcome.succeeded else ItemStatus.FAILED.value
        output = outcome.text if outcome.succeeded else f"ERROR: {outcome.error}"

        persisted = True
        try:
            execution = self._store.record_execution(
                run_id=run_id,
                item_id=item.id,
                display_name=item.display_name,
                section=item.section,
                order_index=item.order_index,
                resolved_input=resolved,
                output=output,
                status=status,
                tokens_used=outcome.tokens_used,
                duration_ms=outcome.duration_ms,
            )
            if outcome.succeeded:
                self._store.record_artifact(
                    run_id=run_id,
                    item_id=item.id,
                    name=f"{item.id}.md",
                    artifact_type="document",
                    payload=output,
                )
        except SQLAlchemyError as exc:
            persisted = False
            execution = ItemExecution(
                id=0,
                run_id=run_id,
                item_id=item.id,
                display_name=item.display_name,
                section=item.section,
                order_index=item.order_index,
                resolved_input=resolved,
                output=output,
                status=status,
                tokens_used=outcome.tokens_used,
                duration_ms=outcome.duration_ms,
                executed_at=utcnow(),
            )
            self._persistence_warning(state, f"Could not persist execution of {item.id}: {exc}")

        state.executions[item.id] = execution
        state.ordered.append(execution)
        state.tokens += outcome.tokens_used
        if outcome.succeeded:
            state.completed += 1
            if self._registry is not None and persisted:
                results = self._registry.maybe_trigger(execution, item.id, state.request.tier, state.context.client)
                for result in results:
                    for warning in result.warnings:
                        self._persistence_warning(state, warning)
                state.side_effects.extend(results)
        else:
            state.failed += 1

        try:
            self._store.update_counters(run_id, state.completed, state.failed, state.tokens)
        except SQLAlchemyError as exc:
            self._persistence_warning(state, f"Could not update run counters: {exc}")

        self._emit(state, item, status, percent_complete(state.attempted, state.plan.total))

    def _persistence_warning(self, state: _RunState, message: str) -> None:
        self._logger.error(message)
        state.warnings.append(message)
        try:
            self._store.record_event(
                run_id=state.request.run_id,
                event_type="persistence_warning",
                message=message,
            )
        except SQLAlchemyError:
            self._logger.exception("Event table unavailable for run %s", state.request.run_id)

    def _emit(self, state: _RunState, item: Optional[WorkItemDefinition], status: str, percentage: int) -> None:
        event = ProgressEvent(
            run_id=state.request.run_id,
            item_id=item.id if item else None,
            item_name=item.display_name if item else None,
            section=item.section if item else None,
            status=status,
            percentage=percentage,
            completed_count=state.completed,
            total_count=state.plan.total,
        )
        try:
            state.context.progress(event)
        except Exception:
            self._logger.exception("Progress sink failed for run %s", state.request.run_id)

    def execution_summary(self, run_id: str) -> Dict[str, Any]:
        """Counts by section, total tokens and the per-item listing for a run."""

        run = self._store.get_run(run_id)
        if run is None:
            raise KeyError(f"Unknown run {run_id}")
        executions = sorted(self._store.list_executions(run_id), key=lambda entry: (entry.order_index, entry.id))

        sections: "OrderedDict[str, Dict[str, int]]" = OrderedDict()
        for execution in executions:
            counts = sections.setdefault(execution.section, {"completed": 0, "failed": 0})
            counts["completed" if execution.succeeded else "failed"] += 1

        return {
            "run_id": run.run_id,
            "tier": run.tier.value,
            "status": run.status.value,
            "completed_count": run.completed_count,
            "failed_count": run.failed_count,
            "total_count": run.total_count,
            "total_tokens": sum(execution.tokens_used for execution in executions),
            "elapsed_ms": run.elapsed_ms,
            "sections": dict(sections),
            "items": [
                {
                    "item_id": execution.item_id,
                    "name": execution.display_name,
                    "section": execution.section,
                    "status": execution.status,
                    "tokens_used": execution.tokens_used,
                    "duration_ms": execution.duration_ms,
                }
                for execution in executions
            ],
            "deployment": run.deployment.model_dump(mode="json"),
        }
