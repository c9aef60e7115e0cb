from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PlanError(Exception):
    """Base error envelope. Prefer returning/printing these rather than raising raw exceptions."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<plan>"
        return f"{loc}: {self.code}: {self.message}"


class PlanLoadError(PlanError):
    pass


@dataclass(frozen=True)
class InvalidTask(PlanError):
    """Malformed task data at the generator boundary. Always propagated."""

    index: int = -1

    @property
    def reason(self) -> str:
        return self.message


@dataclass(frozen=True)
class CyclicDependency(PlanError):
    """Raised by topological ordering; ``cycle`` is a closed path such as (A, B, A)."""

    cycle: tuple[str, ...] = ()


@dataclass(frozen=True)
class GenerationFailure(PlanError):
    """Task generation failed. Recovered locally with the fallback plan."""

    cause: str = ""


def cyclic_dependency(cycle: tuple[str, ...]) -> CyclicDependency:
    return CyclicDependency(
        code="E_CYCLIC_DEPENDENCY",
        message="dependency cycle detected: " + " -> ".join(cycle),
        path="depends_on",
        cycle=cycle,
    )


def invalid_task(index: int, reason: str, *, code: str = "E_INVALID_TASK", field: str | None = None) -> InvalidTask:
    path = f"tasks[{index}]" if index >= 0 else "tasks"
    if field:
        path = f"{path}.{field}"
    return InvalidTask(code=code, message=reason, path=path, index=index)
