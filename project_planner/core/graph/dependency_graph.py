"""Task dependency graph.

Edges point from a node to the nodes it depends on: ``add_edge("api", "setup")``
means *api requires setup to complete first*. Every traversal is iterative so
long dependency chains cannot exhaust the interpreter stack.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Set
from typing import Callable, Generic, Literal, Optional, TypeVar

from project_planner.core.errors import cyclic_dependency
from project_planner.core.model import Task, ValidationIssue


T = TypeVar("T")
DuplicatePolicy = Literal["replace", "keep"]

WHITE, GRAY, BLACK = 0, 1, 2


class DependencyGraph(Generic[T]):
    """Directed graph over string ids with an optional payload per node.

    ``on_duplicate`` decides what ``add_node`` does for an id that already has a
    payload: ``"replace"`` overwrites it, ``"keep"`` ignores the new payload.
    Graph shape is unaffected either way.

    Nodes created implicitly by ``add_edge`` have no payload until ``add_node``
    is called for them; ``validate`` reports the ones that never get one.
    """

    def __init__(self, *, on_duplicate: DuplicatePolicy = "replace") -> None:
        if on_duplicate not in ("replace", "keep"):
            raise ValueError(f"on_duplicate must be 'replace' or 'keep', got {on_duplicate!r}")
        self.on_duplicate: DuplicatePolicy = on_duplicate
        self._payloads: dict[str, T] = {}
        # id -> ordered set of direct dependencies; key order is insertion order.
        self._deps: dict[str, dict[str, None]] = {}

    def __len__(self) -> int:
        return len(self._deps)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._deps

    @property
    def nodes(self) -> tuple[str, ...]:
        """All node ids in insertion order, placeholders included."""
        return tuple(self._deps)

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        return tuple((n, d) for n, deps in self._deps.items() for d in deps)

    def add_node(self, node_id: str, payload: T) -> None:
        _validate_node_id(node_id)
        if node_id in self._payloads and self.on_duplicate == "keep":
            return
        self._payloads[node_id] = payload
        self._deps.setdefault(node_id, {})

    def add_edge(self, from_id: str, to_id: str) -> None:
        """Register that ``from_id`` depends on ``to_id``."""
        _validate_node_id(from_id)
        _validate_node_id(to_id)
        self._deps.setdefault(from_id, {})
        self._deps.setdefault(to_id, {})
        self._deps[from_id][to_id] = None

    def payload(self, node_id: str) -> Optional[T]:
        return self._payloads.get(node_id)

    def is_materialized(self, node_id: str) -> bool:
        return node_id in self._payloads

    def dependencies(self, node_id: str) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        return tuple(self._deps[node_id])

    def dependents(self, node_id: str) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        return tuple(n for n, deps in self._deps.items() if node_id in deps)

    def transitive_dependencies(self, node_id: str) -> tuple[str, ...]:
        """All nodes reachable through dependency edges, in insertion order."""
        self._assert_node_exists(node_id)
        visited: set[str] = set()
        pending: list[str] = list(self._deps[node_id])
        while pending:
            cur = pending.pop()
            if cur in visited:
                continue
            visited.add(cur)
            pending.extend(d for d in self._deps[cur] if d not in visited)
        return tuple(n for n in self._deps if n in visited)

    def has_cycle(self) -> bool:
        return bool(self._scan_cycles(first_only=True))

    def find_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Closed cycle paths such as ``("a", "b", "a")``, one per back edge, de-duplicated."""
        return self._scan_cycles(first_only=False)

    def topological_order(self) -> tuple[str, ...]:
        """Dependencies first. DFS post-order; ties follow insertion order.

        Raises CyclicDependency carrying the first cycle found.
        """
        cycles = self._scan_cycles(first_only=True)
        if cycles:
            raise cyclic_dependency(cycles[0])

        seen: set[str] = set()
        order: list[str] = []
        for start in self._deps:
            if start in seen:
                continue
            seen.add(start)
            frames: list[tuple[str, Iterator[str]]] = [(start, iter(self._deps[start]))]
            while frames:
                node, dep_iter = frames[-1]
                nxt = next(dep_iter, None)
                if nxt is None:
                    frames.pop()
                    order.append(node)
                    continue
                if nxt not in seen:
                    seen.add(nxt)
                    frames.append((nxt, iter(self._deps[nxt])))
        return tuple(order)

    def compute_levels(self) -> dict[str, int]:
        """Level 0 for leaves, else 1 + the highest level among resolvable dependencies.

        Nodes on a cycle get level 0 and do not count as resolvable
        dependencies of anything else. Never raises.
        """
        cyclic = self.cyclic_nodes()
        levels: dict[str, int] = {n: 0 for n in cyclic}

        for node in self._acyclic_postorder(cyclic):
            resolvable = [levels[d] for d in self._deps[node] if d not in cyclic and d in self._payloads]
            levels[node] = 1 + max(resolvable) if resolvable else 0

        return {n: levels[n] for n in self._deps}

    def executable_set(self, completed: Set[str]) -> tuple[str, ...]:
        """Materialized nodes not yet completed whose dependencies are all completed."""
        done = set(completed)
        return tuple(
            n
            for n, deps in self._deps.items()
            if n in self._payloads and n not in done and all(d in done for d in deps)
        )

    def critical_path(self, weight: Optional[Callable[[str], float]] = None) -> tuple[tuple[str, ...], float]:
        """Heaviest dependency chain and its total weight.

        ``weight`` maps a node id to its cost (default 1 per node). Only
        materialized nodes off any cycle take part, so the result is
        meaningful for cyclic graphs too. Ties go to the earliest-inserted node.
        """
        cost = weight if weight is not None else (lambda _node: 1.0)
        cyclic = self.cyclic_nodes()
        dist: dict[str, float] = {}
        prev: dict[str, Optional[str]] = {}

        for node in self._acyclic_postorder(cyclic):
            if node not in self._payloads:
                continue
            best: Optional[str] = None
            for d in self._deps[node]:
                if d in dist and (best is None or dist[d] > dist[best]):
                    best = d
            dist[node] = cost(node) + (dist[best] if best is not None else 0.0)
            prev[node] = best

        end: Optional[str] = None
        for node in self._deps:
            if node in dist and (end is None or dist[node] > dist[end]):
                end = node
        if end is None:
            return (), 0.0

        path: list[str] = []
        cur: Optional[str] = end
        while cur is not None:
            path.append(cur)
            cur = prev[cur]
        return tuple(reversed(path)), dist[end]

    def blocking_tasks(self) -> tuple[str, ...]:
        """Materialized nodes with more direct dependents than the average node."""
        counts = {n: 0 for n in self._payloads}
        for node, deps in self._deps.items():
            if node not in self._payloads:
                continue
            for d in deps:
                if d in counts and d != node:
                    counts[d] += 1
        if not counts:
            return ()
        average = sum(counts.values()) / len(counts)
        return tuple(n for n in self._deps if n in counts and counts[n] > average)

    def validate(self) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        reverse = self._reverse_index()

        for cycle in self.find_cycles():
            if len(cycle) == 2:
                # (x, x): reported as a self dependency below.
                continue
            issues.append(
                ValidationIssue(
                    code="G_CYCLE",
                    component="dependencies",
                    severity="error",
                    message="dependency cycle detected: " + " -> ".join(cycle),
                    affected_task_ids=tuple(dict.fromkeys(cycle)),
                )
            )

        for node, deps in self._deps.items():
            if node in deps:
                issues.append(
                    ValidationIssue(
                        code="G_SELF_DEPENDENCY",
                        component="dependencies",
                        severity="error",
                        message=f"{node} depends on itself",
                        affected_task_ids=(node,),
                    )
                )

        for node in self._deps:
            if node in self._payloads:
                continue
            referrers = reverse.get(node, ())
            if referrers:
                message = f"depends_on references unknown id: {node} (from {', '.join(referrers)})"
            else:
                message = f"node {node} was never defined"
            issues.append(
                ValidationIssue(
                    code="G_DANGLING_DEPENDENCY",
                    component="dependencies",
                    severity="error",
                    message=message,
                    affected_task_ids=referrers,
                    missing_ref=node,
                )
            )

        if len(self._deps) > 1:
            for node in self._payloads:
                if not self._deps[node] and not reverse.get(node):
                    issues.append(
                        ValidationIssue(
                            code="G_ISOLATED_NODE",
                            component="dependencies",
                            severity="warning",
                            message=f"{node} has no dependencies and no dependents",
                            affected_task_ids=(node,),
                        )
                    )

        return issues

    def _reverse_index(self) -> dict[str, tuple[str, ...]]:
        out: dict[str, list[str]] = {}
        for node, deps in self._deps.items():
            for d in deps:
                out.setdefault(d, []).append(node)
        return {k: tuple(v) for k, v in out.items()}

    def _scan_cycles(self, *, first_only: bool) -> tuple[tuple[str, ...], ...]:
        position = {n: i for i, n in enumerate(self._deps)}
        state: dict[str, int] = {n: WHITE for n in self._deps}
        found: dict[tuple[str, ...], None] = {}

        for start in self._deps:
            if state[start] != WHITE:
                continue
            state[start] = GRAY
            stack: list[str] = [start]
            frames: list[tuple[str, Iterator[str]]] = [(start, iter(self._deps[start]))]
            while frames:
                node, dep_iter = frames[-1]
                nxt = next(dep_iter, None)
                if nxt is None:
                    frames.pop()
                    stack.pop()
                    state[node] = BLACK
                    continue
                if state[nxt] == WHITE:
                    state[nxt] = GRAY
                    stack.append(nxt)
                    frames.append((nxt, iter(self._deps[nxt])))
                elif state[nxt] == GRAY:
                    idx = stack.index(nxt)
                    found[_canonical_cycle(stack[idx:], position)] = None
                    if first_only:
                        return tuple(found)

        return tuple(found)

    def cyclic_nodes(self) -> set[str]:
        """Nodes in a strongly connected component of size > 1, or with a self edge (iterative Tarjan)."""
        index_of: dict[str, int] = {}
        lowlink: dict[str, int] = {}
        on_stack: set[str] = set()
        stack: list[str] = []
        cyclic: set[str] = set()
        counter = 0

        for start in self._deps:
            if start in index_of:
                continue
            index_of[start] = lowlink[start] = counter
            counter += 1
            stack.append(start)
            on_stack.add(start)
            frames: list[tuple[str, Iterator[str]]] = [(start, iter(self._deps[start]))]
            while frames:
                node, dep_iter = frames[-1]
                nxt = next(dep_iter, None)
                if nxt is not None:
                    if nxt not in index_of:
                        index_of[nxt] = lowlink[nxt] = counter
                        counter += 1
                        stack.append(nxt)
                        on_stack.add(nxt)
                        frames.append((nxt, iter(self._deps[nxt])))
                    elif nxt in on_stack:
                        lowlink[node] = min(lowlink[node], index_of[nxt])
                    continue

                frames.pop()
                if frames:
                    parent = frames[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node])
                if lowlink[node] == index_of[node]:
                    component: list[str] = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node:
                            break
                    if len(component) > 1 or node in self._deps[node]:
                        cyclic.update(component)

        return cyclic

    def _acyclic_postorder(self, cyclic: Set[str]) -> list[str]:
        # Non-cyclic nodes, each after its non-cyclic dependencies.
        seen: set[str] = set(cyclic)
        out: list[str] = []
        for start in self._deps:
            if start in seen:
                continue
            seen.add(start)
            frames: list[tuple[str, Iterator[str]]] = [(start, iter(self._deps[start]))]
            while frames:
                node, dep_iter = frames[-1]
                nxt = next(dep_iter, None)
                if nxt is None:
                    frames.pop()
                    out.append(node)
                    continue
                if nxt not in seen:
                    # The non-cyclic remainder is a DAG, so nxt cannot already be on the stack.
                    seen.add(nxt)
                    frames.append((nxt, iter(self._deps[nxt])))
        return out

    def _assert_node_exists(self, node_id: str) -> None:
        if node_id not in self._deps:
            raise KeyError(f"Unknown node: {node_id}")


def build_graph(tasks: Iterable[Task], *, on_duplicate: DuplicatePolicy = "replace") -> DependencyGraph[Task]:
    """Fresh graph for a task list. Nodes first so insertion order follows the list."""
    task_list = list(tasks)
    graph: DependencyGraph[Task] = DependencyGraph(on_duplicate=on_duplicate)
    for task in task_list:
        graph.add_node(task.id, task)
    for task in task_list:
        for dep in task.depends_on:
            graph.add_edge(task.id, dep)
    return graph


def _canonical_cycle(path: list[str], position: dict[str, int]) -> tuple[str, ...]:
    # Rotate so the earliest-inserted node leads, then close the path.
    start = min(range(len(path)), key=lambda i: position[path[i]])
    rotated = path[start:] + path[:start]
    return tuple(rotated) + (rotated[0],)


def _validate_node_id(node_id: str) -> None:
    if not isinstance(node_id, str) or not node_id:
        raise ValueError("node id must be a non-empty string")
