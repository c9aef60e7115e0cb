from __future__ import annotations

from project_planner.core.context import new_context
from project_planner.core.graph.dependency_graph import build_graph
from project_planner.core.model import Task
from project_planner.core.validate.rules import (
    RuleInput,
    architecture_completeness,
    dependency_integrity,
    file_references,
    file_references_present,
    file_structure_alignment,
    logical_ordering,
    normalize_requirement,
    prd_coverage,
    requirement_clause,
    requirement_lines,
    task_coverage,
    tree_entries,
)


def _input(*, tasks=(), order=None, ratio=0.5, **text) -> RuleInput:
    ctx = new_context(text.pop("prd", ""), tasks=tasks, **text)
    return RuleInput(context=ctx, graph=build_graph(ctx.tasks), order=order, missing_file_error_ratio=ratio)


def _codes(issues) -> list[str]:
    return [i.code for i in issues]


def test_architecture_completeness_flags_each_missing_topic():
    issues = architecture_completeness(_input(architecture="A single module."))
    assert _codes(issues) == ["A_MISSING_TOPIC", "A_MISSING_TOPIC"]
    assert all(i.severity == "warning" for i in issues)
    messages = " ".join(i.message for i in issues)
    assert "data" in messages and "API" in messages

    full = "Components talk to a REST API service and persist data in a database."
    assert architecture_completeness(_input(architecture=full)) == []


def test_file_structure_alignment_empty_tree_single_warning():
    issues = file_structure_alignment(_input(architecture="React frontend with an API"))
    assert _codes(issues) == ["F_EMPTY_TREE"]


def test_file_structure_alignment_missing_implied_directories():
    tree = "src/\n├── components/\n│   └── Button.tsx\n└── index.ts\n"
    arch = "A React frontend calls a REST API backed by a Postgres database."
    issues = file_structure_alignment(_input(architecture=arch, file_structure=tree))
    messages = [i.message for i in issues]
    assert len(issues) == 2
    assert any("API layer" in m for m in messages)
    assert any("database" in m for m in messages)
    assert all(i.component == "fileStructure" for i in issues)


def test_tree_entries_strip_decoration_and_comments():
    tree = "app/\n├── api/   # http handlers\n│   └── routes.py\n└── tests/\n"
    assert tree_entries(tree) == {"app", "api", "routes.py", "tests"}


def test_file_references_skip_product_names():
    text = "Use Node.js and edit src/server.js, then update README.md and config.yaml."
    assert file_references(text) == ["src/server.js", "README.md", "config.yaml"]


def test_missing_file_reference_warning_then_error_above_ratio():
    tree = "src/\n  main.py\n  util.py\n"
    tasks = (
        Task(id="a", title="Edit main.py", category="setup"),
        Task(id="b", title="Edit util.py", depends_on=("a",)),
        Task(id="c", title="Create cli.py", depends_on=("a",)),
    )
    issues = file_references_present(_input(tasks=tasks, file_structure=tree))
    assert _codes(issues) == ["F_MISSING_FILE_REFERENCE"]
    assert issues[0].severity == "warning"
    assert issues[0].affected_task_ids == ("c",)
    assert issues[0].component == "tasks"

    strict = file_references_present(_input(tasks=tasks, file_structure=tree, ratio=0.0))
    assert [i.severity for i in strict] == ["error"]


def test_file_references_skipped_without_tree():
    tasks = (Task(id="a", title="Edit main.py", category="setup"),)
    assert file_references_present(_input(tasks=tasks)) == []


def test_dependency_integrity_empty_tasks_is_error():
    issues = dependency_integrity(_input())
    assert _codes(issues) == ["T_NO_TASKS"]
    assert issues[0].severity == "error"


def test_dependency_integrity_delegates_to_graph():
    tasks = (Task(id="a", title="A", category="setup", depends_on=("nope",)),)
    assert _codes(dependency_integrity(_input(tasks=tasks))) == ["G_DANGLING_DEPENDENCY"]


def test_task_coverage_setup_and_testing():
    tasks = (Task(id="a", title="A", category="core"),)
    issues = task_coverage(_input(tasks=tasks, architecture="Unit tests run in CI."))
    assert _codes(issues) == ["T_NO_SETUP_TASK", "T_NO_TESTING_TASK"]

    tasks2 = (Task(id="s", title="S", category="setup"), Task(id="t", title="T", category="testing"))
    assert task_coverage(_input(tasks=tasks2, architecture="Unit tests run in CI.")) == []


def test_logical_ordering_feature_without_core():
    tasks = (
        Task(id="setup", title="Setup", category="setup"),
        Task(id="core", title="Core", category="core", depends_on=("setup",)),
        Task(id="f1", title="F1", depends_on=("core",)),
        Task(id="f2", title="F2", depends_on=("setup",)),
    )
    issues = logical_ordering(_input(tasks=tasks))
    assert _codes(issues) == ["O_FEATURE_WITHOUT_CORE"]
    assert issues[0].affected_task_ids == ("f2",)


def test_logical_ordering_setup_not_first_in_given_order():
    tasks = (
        Task(id="setup", title="Setup", category="setup"),
        Task(id="docs", title="Docs", category="documentation"),
    )
    issues = logical_ordering(_input(tasks=tasks, order=("docs", "setup")))
    assert _codes(issues) == ["O_SETUP_NOT_FIRST"]
    assert logical_ordering(_input(tasks=tasks, order=("setup", "docs"))) == []


def test_logical_ordering_skips_order_check_on_cycle():
    tasks = (
        Task(id="x", title="X", category="feature", depends_on=("setup",)),
        Task(id="setup", title="Setup", category="setup", depends_on=("x",)),
    )
    assert logical_ordering(_input(tasks=tasks)) == []


def test_requirement_lines_and_normalization():
    prd = "# Title\nIntro text.\n- Users can log in.\n- The API must be fast!\nFeature: Dark mode\nnothing here\n"
    lines = requirement_lines(prd)
    assert lines == ["- Users can log in.", "- The API must be fast!", "Feature: Dark mode"]
    assert normalize_requirement("- Users can log in.") == "users can log in"
    assert normalize_requirement("Feature: Dark   mode") == "dark mode"
    assert normalize_requirement("1. The API must be fast!") == "the api must be fast"
    assert requirement_clause("- The app must support full-text search.") == "support full text search"
    assert requirement_clause("Users can tag bookmarks, fast") == "tag bookmarks"
    assert requirement_clause("Feature: Dark mode") == "dark mode"
    assert requirement_clause("It should") == "it should"


def test_prd_coverage_thresholds():
    prd = "- Users can log in\n- Users can log out\n- Users can reset passwords\n- Users can delete accounts\n"

    none_covered = prd_coverage(_input(prd=prd, tasks=(Task(id="a", title="Unrelated"),)))
    assert [i.severity for i in none_covered] == ["error"]

    half = (Task(id="a", title="Login", details="Let people log in and log out."),)
    assert [i.severity for i in prd_coverage(_input(prd=prd, tasks=half))] == ["warning"]

    full = (
        Task(id="a", title="Auth", details="Log in and log out flows."),
        Task(id="b", title="Account", details="Reset passwords, then delete accounts on request."),
    )
    assert prd_coverage(_input(prd=prd, tasks=full)) == []


def test_prd_without_requirements_has_no_issue():
    assert prd_coverage(_input(prd="Just a description.", tasks=())) == []


def test_prd_coverage_matches_the_requirement_clause_not_the_whole_line():
    prd = "- The app must support full-text search\n- Users can tag bookmarks\n"
    tasks = (
        Task(id="a", title="Search", details="Support full-text search over bookmarks."),
        Task(id="b", title="Tags", details="Let people tag bookmarks in the UI."),
    )
    assert prd_coverage(_input(prd=prd, tasks=tasks)) == []


def test_file_reference_needs_a_whole_tree_entry():
    tree = "src/\n├── myapp.py\n└── lib/\n    └── helpers.py\n"
    tasks = (
        Task(id="a", title="Edit app.py", category="setup"),
        Task(id="b", title="Refactor src/lib/helpers.py", depends_on=("a",)),
    )
    issues = file_references_present(_input(tasks=tasks, file_structure=tree))
    assert [i.message for i in issues] == ["task references app.py which is not in the file structure"]
    assert issues[0].affected_task_ids == ("a",)
