"""Dependency resolver: verified topological order over a tier's work items."""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from ..errors import ConfigurationError
from .loader import WorkItemDefinition


LOGGER = logging.getLogger("bizbox.planner")


@dataclass
class ExecutionPlan:
    """Ordered items plus the dependency levels used by the parallel scheduler."""

    items: List[WorkItemDefinition]
    levels: List[List[WorkItemDefinition]]
    external_dependencies: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def item_ids(self) -> List[str]:
        return [item.id for item in self.items]

    def in_plan_dependencies(self, item: WorkItemDefinition) -> Tuple[str, ...]:
        external = set(self.external_dependencies.get(item.id, ()))
        return tuple(dep for dep in item.depends_on if dep not in external)

    def position(self, item_id: str) -> int:
        return self.item_ids.index(item_id)


def plan_execution_order(items: Sequence[WorkItemDefinition]) -> ExecutionPlan:
    """
    Order *items* so every item follows its in-plan dependencies.

    Ties between items with no relative constraint are broken by ``order_index``
    and then id. Dependencies on items outside *items* are recorded on the plan
    and ignored for ordering. A cycle raises :class:`ConfigurationError`.
    """

    by_id: Dict[str, WorkItemDefinition] = {}
    for item in items:
        if item.id in by_id:
            raise ConfigurationError(f"Work item {item.id} appears twice in the plan")
        by_id[item.id] = item

    external: Dict[str, Tuple[str, ...]] = {}
    indegree: Dict[str, int] = {item_id: 0 for item_id in by_id}
    dependents: Dict[str, List[str]] = {item_id: [] for item_id in by_id}
    for item in items:
        outside = tuple(dep for dep in item.depends_on if dep not in by_id)
        if outside:
            external[item.id] = outside
            LOGGER.info(
                "Item %s depends on %s which is not part of this plan; context will be omitted",
                item.id,
                ", ".join(outside),
            )
        for dep in item.depends_on:
            if dep in by_id:
                indegree[item.id] += 1
                dependents[dep].append(item.id)

    def sort_key(item_id: str) -> Tuple[int, str]:
        return (by_id[item_id].order_index, item_id)

    ready = [sort_key(item_id) for item_id, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    level_of: Dict[str, int] = {}
    ordered: List[WorkItemDefinition] = []

    while ready:
        _, item_id = heapq.heappop(ready)
        item = by_id[item_id]
        in_plan = [dep for dep in item.depends_on if dep in by_id]
        level_of[item_id] = 1 + max((level_of[dep] for dep in in_plan), default=-1)
        ordered.append(item)
        for child in dependents[item_id]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, sort_key(child))

    if len(ordered) != len(by_id):
        stuck = sorted(item_id for item_id, degree in indegree.items() if degree > 0)
        raise ConfigurationError(f"Dependency cycle detected among work items: {', '.join(stuck)}")

    _warn_on_reordering(items, ordered)

    levels: List[List[WorkItemDefinition]] = []
    for item in ordered:
        level = level_of[item.id]
        while len(levels) <= level:
            levels.append([])
        levels[level].append(item)

    return ExecutionPlan(items=ordered, levels=levels, external_dependencies=external)


def _warn_on_reordering(declared: Sequence[WorkItemDefinition], ordered: Sequence[WorkItemDefinition]) -> None:
    hinted = sorted(declared, key=lambda item: (item.order_index, item.id))
    for expected, actual in zip(hinted, ordered):
        if expected.id != actual.id:
            LOGGER.warning(
                "Catalog order_index disagrees with dependencies: %s moved ahead of %s",
                actual.id,
                expected.id,
            )
            return
