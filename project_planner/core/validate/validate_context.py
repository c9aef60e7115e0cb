from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Optional

from project_planner.core.graph.dependency_graph import DependencyGraph, build_graph
from project_planner.core.model import CheckStatus, ProjectContext, Task, ValidationIssue
from project_planner.core.validate.rules import RULES, Rule, RuleInput


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    issues: tuple[ValidationIssue, ...]


@dataclass(frozen=True)
class ValidationReport:
    checks: tuple[CheckResult, ...]
    status: CheckStatus
    summary: str

    @property
    def issues(self) -> tuple[ValidationIssue, ...]:
        return tuple(i for c in self.checks for i in c.issues)

    @property
    def total(self) -> int:
        return len(self.checks)

    @property
    def passed(self) -> int:
        return sum(1 for c in self.checks if c.status == "passed")

    @property
    def failed(self) -> int:
        return sum(1 for c in self.checks if c.status == "failed")

    @property
    def warning(self) -> int:
        return sum(1 for c in self.checks if c.status == "warning")

    @property
    def score(self) -> float:
        """Percent of checks that passed; 0 when nothing ran."""
        return 100.0 * self.passed / self.total if self.total else 0.0

    @property
    def errors(self) -> tuple[ValidationIssue, ...]:
        return tuple(i for i in self.issues if i.severity == "error")


def validate(
    context: ProjectContext,
    *,
    graph: Optional[DependencyGraph[Task]] = None,
    order: Optional[Sequence[str]] = None,
    rules: Optional[Iterable[tuple[str, Rule]]] = None,
    disabled_rules: Iterable[str] = (),
    missing_file_error_ratio: float = 0.5,
) -> ValidationReport:
    """Run every consistency rule over a context.

    Heuristic mismatches are reported as issues, never raised. Only a
    structurally invalid context (tasks not a sequence of Task) raises
    TypeError.
    """
    _check_structure(context)

    if graph is None:
        graph = build_graph(context.tasks)
    inp = RuleInput(
        context=context,
        graph=graph,
        order=tuple(order) if order is not None else None,
        missing_file_error_ratio=missing_file_error_ratio,
    )

    skip = set(disabled_rules)
    checks: list[CheckResult] = []
    for name, rule in RULES if rules is None else rules:
        if name in skip:
            continue
        issues = tuple(rule(inp))
        checks.append(CheckResult(name=name, status=_check_status(issues), issues=issues))

    status = _report_status(checks)
    return ValidationReport(checks=tuple(checks), status=status, summary=_summarize(checks, status))


def summarize_issues(issues: Iterable[ValidationIssue]) -> str:
    counts = Counter(i.severity for i in issues)
    return f"errors={counts.get('error', 0)}, warnings={counts.get('warning', 0)}, info={counts.get('info', 0)}"


def _check_structure(context: ProjectContext) -> None:
    if not isinstance(context, ProjectContext):
        raise TypeError(f"expected ProjectContext, got {type(context).__name__}")
    tasks = context.tasks
    if isinstance(tasks, (str, bytes)) or not isinstance(tasks, Sequence):
        raise TypeError("context.tasks must be a sequence of Task")
    for i, t in enumerate(tasks):
        if not isinstance(t, Task):
            raise TypeError(f"context.tasks[{i}] must be a Task, got {type(t).__name__}")


def _check_status(issues: Sequence[ValidationIssue]) -> CheckStatus:
    if any(i.severity == "error" for i in issues):
        return "failed"
    if any(i.severity == "warning" for i in issues):
        return "warning"
    return "passed"


def _report_status(checks: Sequence[CheckResult]) -> CheckStatus:
    if not checks:
        return "warning"
    severities = {i.severity for c in checks for i in c.issues}
    if "error" in severities:
        return "failed"
    if "warning" in severities:
        return "warning"
    return "passed"


def _summarize(checks: Sequence[CheckResult], status: CheckStatus) -> str:
    total = len(checks)
    passed = sum(1 for c in checks if c.status == "passed")
    warned = sum(1 for c in checks if c.status == "warning")
    failed = sum(1 for c in checks if c.status == "failed")
    issues = [i for c in checks for i in c.issues]
    return (
        f"{status.upper()}: {passed}/{total} checks passed "
        f"({warned} warning, {failed} failed; {summarize_issues(issues)})"
    )
