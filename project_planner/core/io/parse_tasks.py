from __future__ import annotations

from typing import Any, Optional, cast

from project_planner.core.errors import invalid_task
from project_planner.core.model import (
    ALLOWED_STATUSES,
    DEFAULT_PRIORITY,
    Category,
    Task,
    TaskStatus,
    normalize_category,
    normalize_priority,
)


FALLBACK_TASKS: tuple[Task, ...] = (
    Task(
        id="task-1",
        title="Initialize Project Setup",
        details="Create the repository, tooling and base configuration for the project.",
        category="setup",
        priority=3,
    ),
    Task(
        id="task-2",
        title="Implement Core Architecture",
        details="Build the core modules and interfaces every other task relies on.",
        category="core",
        priority=3,
    ),
)


def fallback_tasks() -> tuple[Task, ...]:
    """Deterministic two-task plan used when generation fails or returns nothing."""
    return FALLBACK_TASKS


def parse_tasks(raw: Any) -> tuple[Task, ...]:
    """Turn raw generator output into Tasks.

    Raises InvalidTask at the first malformed entry. Missing ids become
    ``task-<n>`` (1-based position); missing category/priority/status get
    their defaults.
    """
    if not isinstance(raw, list):
        raise invalid_task(-1, "tasks must be an array", code="E_INVALID_TASKS")

    tasks: list[Task] = []
    seen: set[str] = set()
    for i, item in enumerate(raw):
        task = parse_task(item, i)
        if task.id in seen:
            raise invalid_task(i, f"duplicate task id: {task.id}", code="E_DUPLICATE_ID", field="id")
        seen.add(task.id)
        tasks.append(task)
    return tuple(tasks)


def parse_task(item: Any, index: int) -> Task:
    if not isinstance(item, dict):
        raise invalid_task(index, "task must be an object")

    tid = item.get("id")
    if tid is None:
        tid = f"task-{index + 1}"
    elif isinstance(tid, int) and not isinstance(tid, bool):
        tid = str(tid)
    if not isinstance(tid, str) or not tid.strip():
        raise invalid_task(index, "id must be a non-empty string", code="E_REQUIRED_FIELD", field="id")

    title = item.get("title")
    if not isinstance(title, str) or not title.strip():
        raise invalid_task(index, "title is required and must be a non-empty string", code="E_REQUIRED_FIELD", field="title")

    details = item.get("details")
    if details is None:
        details = ""
    if not isinstance(details, str):
        raise invalid_task(index, "details must be a string", code="E_INVALID_TYPE", field="details")

    category: Optional[str] = "feature"
    if item.get("category") is not None:
        category = normalize_category(item.get("category"))
        if category is None:
            raise invalid_task(
                index,
                f"unknown category: {item.get('category')!r}",
                code="E_INVALID_ENUM",
                field="category",
            )

    priority: Optional[int] = DEFAULT_PRIORITY
    if item.get("priority") is not None:
        priority = normalize_priority(item.get("priority"))
        if priority is None:
            raise invalid_task(
                index,
                "priority must be an integer or one of low/medium/high/critical",
                code="E_INVALID_TYPE",
                field="priority",
            )

    deps_raw = item.get("depends_on")
    if deps_raw is None:
        deps_raw = []
    if not isinstance(deps_raw, list) or not all(isinstance(d, str) and d for d in deps_raw):
        raise invalid_task(index, "depends_on must be an array of ids", code="E_INVALID_TYPE", field="depends_on")

    duration = item.get("estimated_duration")
    if duration is not None and (
        isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0
    ):
        raise invalid_task(
            index,
            "estimated_duration must be a non-negative number",
            code="E_INVALID_TYPE",
            field="estimated_duration",
        )

    status = item.get("status") or "pending"
    if not isinstance(status, str) or status not in ALLOWED_STATUSES:
        raise invalid_task(
            index,
            f"status must be one of {sorted(ALLOWED_STATUSES)}",
            code="E_INVALID_ENUM",
            field="status",
        )

    return Task(
        id=tid.strip(),
        title=title.strip(),
        details=details.strip(),
        category=cast(Category, category),
        priority=cast(int, priority),
        depends_on=tuple(dict.fromkeys(deps_raw)),
        estimated_duration=float(duration) if duration is not None else None,
        status=cast(TaskStatus, status),
    )


def task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "details": task.details,
        "category": task.category,
        "priority": task.priority,
        "depends_on": list(task.depends_on),
        "estimated_duration": task.estimated_duration,
        "status": task.status,
    }
