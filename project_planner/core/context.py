"""ProjectContext lifecycle.

Contexts are immutable values owned by the caller. Every mutation returns a
new context with ``version + 1``, a fresh ``last_updated`` and re-derived task
statuses.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from project_planner.core.ai.contracts import ContextPatch
from project_planner.core.graph.dependency_graph import build_graph
from project_planner.core.model import ProjectContext, Task, utc_now


TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "in_progress", "failed"})


def new_context(
    prd: str = "",
    *,
    architecture: str = "",
    specifications: str = "",
    file_structure: str = "",
    tasks: Iterable[Task] = (),
) -> ProjectContext:
    return ProjectContext(
        prd=prd,
        architecture=architecture,
        specifications=specifications,
        file_structure=file_structure,
        tasks=refresh_statuses(tasks),
        version=0,
    )


def with_architecture(ctx: ProjectContext, architecture: str) -> ProjectContext:
    return _bump(ctx, architecture=architecture)


def with_specifications(ctx: ProjectContext, specifications: str) -> ProjectContext:
    return _bump(ctx, specifications=specifications)


def with_file_structure(ctx: ProjectContext, file_structure: str) -> ProjectContext:
    return _bump(ctx, file_structure=file_structure)


def with_tasks(ctx: ProjectContext, tasks: Iterable[Task]) -> ProjectContext:
    return _bump(ctx, tasks=tuple(tasks))


def apply_patch(ctx: ProjectContext, patch: ContextPatch) -> ProjectContext:
    """Apply every non-None field of ``patch`` as a single version bump."""
    changes: dict[str, Any] = {}
    if patch.architecture is not None:
        changes["architecture"] = patch.architecture
    if patch.specifications is not None:
        changes["specifications"] = patch.specifications
    if patch.file_structure is not None:
        changes["file_structure"] = patch.file_structure
    if patch.tasks is not None:
        changes["tasks"] = tuple(patch.tasks)
    return _bump(ctx, **changes)


def refresh_statuses(tasks: Iterable[Task]) -> tuple[Task, ...]:
    """Mark tasks with dangling, self or cyclic dependencies ``blocked``.

    Other non-terminal tasks become ``pending``; completed, in_progress and
    failed tasks keep their status.
    """
    task_list = tuple(tasks)
    graph = build_graph(task_list)
    cyclic = graph.cyclic_nodes()

    out: list[Task] = []
    for t in task_list:
        if t.status in TERMINAL_STATUSES:
            out.append(t)
            continue
        blocked = any(
            d == t.id or d in cyclic or not graph.is_materialized(d) for d in t.depends_on
        )
        status = "blocked" if blocked else "pending"
        out.append(t if t.status == status else replace(t, status=status))
    return tuple(out)


def _bump(ctx: ProjectContext, **changes: Any) -> ProjectContext:
    tasks = changes.pop("tasks", ctx.tasks)
    return replace(
        ctx,
        **changes,
        tasks=refresh_statuses(tasks),
        version=ctx.version + 1,
        last_updated=utc_now(),
    )
