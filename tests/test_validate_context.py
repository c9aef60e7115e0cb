from pathlib import Path

import pytest

from project_planner.core.context import new_context
from project_planner.core.io.load_context import load_context
from project_planner.core.model import ProjectContext, Task, ValidationIssue
from project_planner.core.validate.rules import RULE_NAMES
from project_planner.core.validate.validate_context import validate

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"


def test_basic_context_passes_every_check():
    report = validate(load_context(str(EXAMPLES / "basic-context.yaml")))
    assert report.status == "passed", [str(i) for i in report.issues]
    assert report.total == len(RULE_NAMES)
    assert report.passed == report.total
    assert report.score == 100.0
    assert report.summary.startswith("PASSED: 7/7")


def test_cycle_fails_the_report():
    report = validate(load_context(str(EXAMPLES / "cyclic-tasks.yaml")))
    assert report.status == "failed"
    assert "G_CYCLE" in {i.code for i in report.errors}
    dep_check = next(c for c in report.checks if c.name == "dependency_integrity")
    assert dep_check.status == "failed"
    assert report.score < 100.0


def test_warnings_only_gives_warning_status():
    ctx = new_context(
        "",
        tasks=(Task(id="s", title="Setup", category="setup"), Task(id="c", title="Core", category="core", depends_on=("s",))),
    )
    report = validate(ctx)
    assert report.status == "warning"
    assert report.failed == 0
    assert report.warning >= 1


def test_zero_checks_is_warning():
    report = validate(new_context("x"), rules=())
    assert report.total == 0
    assert report.status == "warning"
    assert report.score == 0.0


def test_disabled_rules_are_skipped():
    ctx = load_context(str(EXAMPLES / "cyclic-tasks.yaml"))
    report = validate(ctx, disabled_rules=("dependency_integrity",))
    assert "dependency_integrity" not in {c.name for c in report.checks}
    assert report.total == len(RULE_NAMES) - 1


def test_custom_rules_run_in_order():
    def always_info(_inp):
        return [ValidationIssue(code="X_INFO", component="tasks", severity="info", message="hi")]

    report = validate(new_context("x"), rules=(("custom", always_info),))
    assert [c.name for c in report.checks] == ["custom"]
    assert report.status == "passed"


def test_structurally_invalid_tasks_raise_type_error():
    bad = ProjectContext(tasks=("not-a-task",))  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        validate(bad)
    with pytest.raises(TypeError):
        validate({"tasks": []})  # type: ignore[arg-type]


def test_validation_never_raises_for_heuristic_mismatch():
    ctx = new_context(
        "- Users must be able to fly",
        architecture="",
        file_structure="",
        tasks=(Task(id="a", title="A", depends_on=("a", "ghost")),),
    )
    report = validate(ctx)
    codes = {i.code for i in report.issues}
    assert {"G_SELF_DEPENDENCY", "G_DANGLING_DEPENDENCY", "P_LOW_COVERAGE", "F_EMPTY_TREE"} <= codes
    assert report.status == "failed"
