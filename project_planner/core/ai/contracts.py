from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from project_planner.core.io.parse_tasks import parse_tasks
from project_planner.core.model import ProjectContext, Task, ValidationIssue


class TaskGenerator(Protocol):
    def generate_tasks(
        self, *, prd: str, architecture: str, specifications: str, file_structure: str
    ) -> list[Any]: ...


@dataclass(frozen=True)
class ContextPatch:
    """Partial context update; ``None`` leaves the field unchanged."""

    architecture: Optional[str] = None
    specifications: Optional[str] = None
    file_structure: Optional[str] = None
    tasks: Optional[tuple[Task, ...]] = None
    notes: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return (
            self.architecture is None
            and self.specifications is None
            and self.file_structure is None
            and self.tasks is None
        )


class Refiner(Protocol):
    def refine(self, *, context: ProjectContext, issues: tuple[ValidationIssue, ...]) -> ContextPatch: ...


class Researcher(Protocol):
    def research_task(self, *, context: ProjectContext, task: Task, prior: dict[str, str]) -> str: ...


def parse_context_patch(obj: dict[str, Any]) -> ContextPatch:
    if not isinstance(obj, dict):
        raise ValueError("ContextPatch must be an object")

    text_fields: dict[str, Optional[str]] = {}
    for key in ("architecture", "specifications", "file_structure"):
        value = obj.get(key)
        if value is not None and not isinstance(value, str):
            raise ValueError(f"{key} must be a string or null")
        text_fields[key] = value

    tasks_raw = obj.get("tasks")
    tasks = parse_tasks(tasks_raw) if tasks_raw is not None else None

    notes_raw = obj.get("notes") or []
    if not isinstance(notes_raw, list) or any(not isinstance(x, str) for x in notes_raw):
        raise ValueError("notes must be a list[str]")

    return ContextPatch(
        architecture=text_fields["architecture"],
        specifications=text_fields["specifications"],
        file_structure=text_fields["file_structure"],
        tasks=tasks,
        notes=tuple(notes_raw),
    )
