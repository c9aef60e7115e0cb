from __future__ import annotations

import heapq
import logging

from project_planner.core.errors import CyclicDependency
from project_planner.core.graph.dependency_graph import DependencyGraph
from project_planner.core.model import CATEGORY_RANK, DEFAULT_PRIORITY, ExecutionOrder, Task

logger = logging.getLogger(__name__)


def compute_execution_order(graph: DependencyGraph[Task], *, group_by_category: bool = True) -> ExecutionOrder:
    """Linear execution order plus level batches for a task graph.

    Acyclic graphs get a dependency-safe order, regrouped into category buckets
    when ``group_by_category`` is set. A cyclic graph gets a degraded order
    (category rank, then descending priority, then insertion order) that is
    NOT dependency-safe; ``degraded`` is set and ``cycle`` names the culprit.

    The critical path weighs each task by ``estimated_duration`` and ignores
    cycle members; ``blocking`` lists tasks with above-average dependents.
    Payload-less placeholder nodes never appear in the result.
    """
    path, length = graph.critical_path(lambda n: _duration(graph, n))
    blocking = graph.blocking_tasks()

    try:
        topo = graph.topological_order()
    except CyclicDependency as e:
        order = _degraded_order(graph)
        logger.warning("dependency cycle %s; using degraded execution order", " -> ".join(e.cycle))
        return ExecutionOrder(
            order=order,
            degraded=True,
            batches=_batches(graph, order),
            cycle=e.cycle,
            critical_path=path,
            critical_path_length=length,
            blocking=blocking,
        )

    materialized = tuple(n for n in topo if graph.is_materialized(n))
    order = _regroup(graph, materialized) if group_by_category else materialized
    return ExecutionOrder(
        order=order,
        degraded=False,
        batches=_batches(graph, order),
        critical_path=path,
        critical_path_length=length,
        blocking=blocking,
    )


def _duration(graph: DependencyGraph[Task], node_id: str) -> float:
    duration = getattr(graph.payload(node_id), "estimated_duration", None)
    return float(duration) if isinstance(duration, (int, float)) else 1.0


def _rank(graph: DependencyGraph[Task], node_id: str) -> int:
    task = graph.payload(node_id)
    category = getattr(task, "category", None)
    return CATEGORY_RANK.get(category, len(CATEGORY_RANK)) if isinstance(category, str) else len(CATEGORY_RANK)


def _priority(graph: DependencyGraph[Task], node_id: str) -> int:
    priority = getattr(graph.payload(node_id), "priority", DEFAULT_PRIORITY)
    return priority if isinstance(priority, int) else DEFAULT_PRIORITY


def _regroup(graph: DependencyGraph[Task], topo: tuple[str, ...]) -> tuple[str, ...]:
    # Kahn pass: among ready tasks always take the lowest (rank, topo index).
    topo_index = {n: i for i, n in enumerate(topo)}
    remaining: dict[str, int] = {}
    dependents: dict[str, list[str]] = {n: [] for n in topo}
    for n in topo:
        deps = [d for d in graph.dependencies(n) if d in topo_index]
        remaining[n] = len(deps)
        for d in deps:
            dependents[d].append(n)

    ready: list[tuple[int, int, str]] = [
        (_rank(graph, n), topo_index[n], n) for n in topo if remaining[n] == 0
    ]
    heapq.heapify(ready)

    out: list[str] = []
    while ready:
        _, _, node = heapq.heappop(ready)
        out.append(node)
        for dependent in dependents[node]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (_rank(graph, dependent), topo_index[dependent], dependent))
    return tuple(out)


def _degraded_order(graph: DependencyGraph[Task]) -> tuple[str, ...]:
    ids = [n for n in graph.nodes if graph.is_materialized(n)]
    position = {n: i for i, n in enumerate(ids)}
    return tuple(sorted(ids, key=lambda n: (_rank(graph, n), -_priority(graph, n), position[n])))


def _batches(graph: DependencyGraph[Task], order: tuple[str, ...]) -> tuple[tuple[str, ...], ...]:
    levels = graph.compute_levels()
    grouped: dict[int, list[str]] = {}
    for node in order:
        grouped.setdefault(levels.get(node, 0), []).append(node)
    return tuple(tuple(grouped[lvl]) for lvl in sorted(grouped) if grouped[lvl])
