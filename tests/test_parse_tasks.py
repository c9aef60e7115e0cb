import pytest

from project_planner.core.errors import InvalidTask
from project_planner.core.io.parse_tasks import fallback_tasks, parse_tasks


def test_parse_tasks_normalizes_fields():
    tasks = parse_tasks(
        [
            {"id": "t1", "title": " Setup repo ", "category": "Setup", "priority": "high"},
            {"title": "Build infra", "category": "infrastructure", "priority": None, "depends_on": ["t1", "t1"]},
            {"id": 7, "title": "Docs", "category": "docs", "estimated_duration": 2},
        ]
    )
    assert [t.id for t in tasks] == ["t1", "task-2", "7"]
    assert tasks[0].title == "Setup repo"
    assert tasks[0].category == "setup" and tasks[0].priority == 3
    assert tasks[1].category == "core" and tasks[1].priority == 2
    assert tasks[1].depends_on == ("t1",)
    assert tasks[2].category == "documentation"
    assert tasks[2].estimated_duration == 2.0
    assert all(t.status == "pending" for t in tasks)


def test_non_list_output_is_invalid():
    with pytest.raises(InvalidTask) as exc:
        parse_tasks({"tasks": []})
    assert exc.value.code == "E_INVALID_TASKS"
    assert exc.value.index == -1


def test_missing_title_reports_index():
    with pytest.raises(InvalidTask) as exc:
        parse_tasks([{"id": "a", "title": "A"}, {"id": "b"}])
    assert exc.value.code == "E_REQUIRED_FIELD"
    assert exc.value.index == 1
    assert exc.value.path == "tasks[1].title"
    assert "title" in exc.value.reason


@pytest.mark.parametrize(
    "item,code,field",
    [
        ("just a string", "E_INVALID_TASK", None),
        ({"title": "x", "category": "marketing"}, "E_INVALID_ENUM", "category"),
        ({"title": "x", "priority": "urgent"}, "E_INVALID_TYPE", "priority"),
        ({"title": "x", "depends_on": "a"}, "E_INVALID_TYPE", "depends_on"),
        ({"title": "x", "status": "done"}, "E_INVALID_ENUM", "status"),
        ({"title": "x", "estimated_duration": -1}, "E_INVALID_TYPE", "estimated_duration"),
    ],
)
def test_malformed_task_fields(item, code, field):
    with pytest.raises(InvalidTask) as exc:
        parse_tasks([item])
    assert exc.value.code == code
    assert exc.value.path == (f"tasks[0].{field}" if field else "tasks[0]")


def test_duplicate_ids_rejected():
    with pytest.raises(InvalidTask) as exc:
        parse_tasks([{"id": "a", "title": "A"}, {"id": "a", "title": "B"}])
    assert exc.value.code == "E_DUPLICATE_ID"


def test_fallback_plan_is_two_tasks():
    tasks = fallback_tasks()
    assert [t.title for t in tasks] == ["Initialize Project Setup", "Implement Core Architecture"]
    assert [t.category for t in tasks] == ["setup", "core"]
    assert all(t.depends_on == () for t in tasks)
