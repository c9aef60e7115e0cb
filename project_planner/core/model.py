from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional


Category = Literal["setup", "architecture", "core", "feature", "testing", "documentation", "deployment"]
TaskStatus = Literal["pending", "blocked", "in_progress", "completed", "failed"]
Severity = Literal["info", "warning", "error"]
Component = Literal["architecture", "fileStructure", "tasks", "dependencies", "prdCoverage"]
CheckStatus = Literal["passed", "warning", "failed"]


ALLOWED_CATEGORIES: set[str] = {
    "setup",
    "architecture",
    "core",
    "feature",
    "testing",
    "documentation",
    "deployment",
}

ALLOWED_STATUSES: set[str] = {"pending", "blocked", "in_progress", "completed", "failed"}

# architecture and core share a bucket.
CATEGORY_RANK: dict[str, int] = {
    "setup": 0,
    "architecture": 1,
    "core": 1,
    "feature": 2,
    "testing": 3,
    "documentation": 4,
    "deployment": 5,
}

CATEGORY_ALIASES: dict[str, str] = {
    "infrastructure": "core",
    "infra": "core",
    "test": "testing",
    "tests": "testing",
    "docs": "documentation",
    "deploy": "deployment",
}

PRIORITY_NAMES: dict[str, int] = {"low": 1, "medium": 2, "high": 3, "critical": 4}
DEFAULT_PRIORITY = 2


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    details: str = ""
    category: Category = "feature"
    priority: int = DEFAULT_PRIORITY
    depends_on: tuple[str, ...] = ()
    estimated_duration: Optional[float] = None
    status: TaskStatus = "pending"

    @property
    def rank(self) -> int:
        return CATEGORY_RANK.get(self.category, len(CATEGORY_RANK))

    @property
    def is_core(self) -> bool:
        return self.category in ("architecture", "core")


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    component: Component
    severity: Severity
    message: str
    affected_task_ids: tuple[str, ...] = ()
    # Unknown id named by a G_DANGLING_DEPENDENCY issue.
    missing_ref: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.severity.upper()} {self.component}: {self.code}: {self.message}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProjectContext:
    """One version of a planning session. Stages return new instances instead of mutating."""

    prd: str = ""
    architecture: str = ""
    specifications: str = ""
    file_structure: str = ""
    tasks: tuple[Task, ...] = ()
    version: int = 0
    last_updated: datetime = field(default_factory=utc_now)

    def task_by_id(self, task_id: str) -> Optional[Task]:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None


@dataclass(frozen=True)
class ExecutionOrder:
    order: tuple[str, ...]
    degraded: bool
    batches: tuple[tuple[str, ...], ...]
    # Closed cycle path that forced the degraded ordering, if any.
    cycle: tuple[str, ...] = ()
    # Heaviest chain by estimated_duration (1 per task when unset).
    critical_path: tuple[str, ...] = ()
    critical_path_length: float = 0.0
    blocking: tuple[str, ...] = ()


def normalize_priority(value: object) -> Optional[int]:
    """Map int/str priorities onto the ordinal scale. Returns None when unrecognized."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        key = value.strip().lower()
        if key in PRIORITY_NAMES:
            return PRIORITY_NAMES[key]
        if key.lstrip("-").isdigit():
            return int(key)
    return None


def normalize_category(value: object) -> Optional[str]:
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    key = CATEGORY_ALIASES.get(key, key)
    return key if key in ALLOWED_CATEGORIES else None
