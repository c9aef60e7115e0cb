from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from project_planner.core.errors import CyclicDependency
from project_planner.core.graph.dependency_graph import DependencyGraph, build_graph
from project_planner.core.model import Task


NODE_IDS = st.sampled_from(["a", "b", "c", "d", "e", "f", "g"])


def _graph(nodes, edges) -> DependencyGraph[str]:
    g: DependencyGraph[str] = DependencyGraph()
    for n in nodes:
        g.add_node(n, n)
    for a, b in edges:
        g.add_edge(a, b)
    return g


@st.composite
def graphs(draw):
    nodes = draw(st.lists(NODE_IDS, unique=True, min_size=1))
    edges = draw(st.lists(st.tuples(st.sampled_from(nodes), st.sampled_from(nodes)), max_size=15))
    return _graph(nodes, edges)


@st.composite
def dags(draw):
    nodes = draw(st.lists(NODE_IDS, unique=True, min_size=1))
    pairs = [(nodes[i], nodes[j]) for i in range(len(nodes)) for j in range(i)]
    edges = draw(st.lists(st.sampled_from(pairs), max_size=15)) if pairs else []
    return _graph(nodes, edges)


def test_linear_chain_topological_order():
    tasks = [
        Task(id="Setup", title="Setup", category="setup"),
        Task(id="API", title="API", category="core", depends_on=("Setup",)),
        Task(id="UI", title="UI", depends_on=("API",)),
        Task(id="Tests", title="Tests", category="testing", depends_on=("UI",)),
    ]
    g = build_graph(tasks)
    assert g.topological_order() == ("Setup", "API", "UI", "Tests")
    assert not g.has_cycle()


def test_three_cycle_raises_with_path():
    g = _graph(["A", "B", "C"], [("A", "B"), ("B", "C"), ("C", "A")])
    assert g.has_cycle()
    with pytest.raises(CyclicDependency) as exc:
        g.topological_order()
    assert exc.value.code == "E_CYCLIC_DEPENDENCY"
    assert exc.value.cycle == ("A", "B", "C", "A")


def test_executable_set_excludes_blocked_and_completed():
    g = _graph(["Setup", "API", "UI"], [("API", "Setup"), ("UI", "API")])
    assert g.executable_set({"Setup"}) == ("API",)
    assert g.executable_set(set()) == ("Setup",)


def test_dangling_dependency_does_not_raise_level_or_become_executable():
    g: DependencyGraph[str] = DependencyGraph()
    g.add_node("a", "a")
    g.add_edge("a", "ghost")
    assert g.compute_levels()["a"] == 0
    assert g.executable_set(set()) == ()

    g.add_node("b", "b")
    g.add_edge("b", "a")
    assert g.compute_levels()["b"] == 1
    assert g.executable_set({"ghost"}) == ("a",)


def test_critical_path_is_the_heaviest_chain():
    g = _graph(
        ["setup", "db", "api", "docs", "ui"],
        [("db", "setup"), ("api", "db"), ("docs", "setup"), ("ui", "docs")],
    )
    assert g.critical_path() == (("setup", "db", "api"), 3.0)

    hours = {"setup": 1.0, "db": 2.0, "api": 1.0, "docs": 4.0, "ui": 1.0}
    assert g.critical_path(hours.__getitem__) == (("setup", "docs", "ui"), 6.0)


def test_critical_path_skips_cycles_and_placeholders():
    g = _graph(["x", "y", "setup", "core"], [("x", "y"), ("y", "x"), ("core", "setup"), ("core", "ghost")])
    assert g.critical_path() == (("setup", "core"), 2.0)
    assert DependencyGraph().critical_path() == ((), 0.0)


def test_blocking_tasks_have_above_average_dependents():
    g = _graph(
        ["setup", "core", "a", "b", "c"],
        [("core", "setup"), ("a", "setup"), ("b", "setup"), ("c", "core"), ("c", "ghost")],
    )
    # dependents: setup 3, core 1, others 0; average 0.8
    assert g.blocking_tasks() == ("setup", "core")
    assert _graph(["a", "b"], []).blocking_tasks() == ()


def test_two_way_edge_is_a_cycle():
    g: DependencyGraph[str] = DependencyGraph()
    g.add_edge("a", "b")
    assert not g.has_cycle()
    g.add_edge("b", "a")
    assert g.has_cycle()


def test_forward_reference_becomes_node_once_added():
    g: DependencyGraph[str] = DependencyGraph()
    g.add_edge("api", "setup")
    assert "setup" in g
    assert not g.is_materialized("setup")
    g.add_node("setup", "payload")
    assert g.is_materialized("setup")
    assert g.nodes == ("api", "setup")


def test_duplicate_policy_replace_and_keep():
    g_replace: DependencyGraph[str] = DependencyGraph()
    g_replace.add_node("a", "first")
    g_replace.add_node("a", "second")
    assert g_replace.payload("a") == "second"

    g_keep: DependencyGraph[str] = DependencyGraph(on_duplicate="keep")
    g_keep.add_node("a", "first")
    g_keep.add_node("a", "second")
    assert g_keep.payload("a") == "first"

    with pytest.raises(ValueError):
        DependencyGraph(on_duplicate="merge")  # type: ignore[arg-type]


def test_add_node_rejects_empty_id():
    g: DependencyGraph[str] = DependencyGraph()
    with pytest.raises(ValueError):
        g.add_node("", "x")


def test_dependents_and_transitive_dependencies():
    g = _graph(["setup", "core", "ui", "docs"], [("core", "setup"), ("ui", "core"), ("docs", "setup")])
    assert g.dependents("setup") == ("core", "docs")
    assert g.dependencies("ui") == ("core",)
    assert g.transitive_dependencies("ui") == ("setup", "core")
    with pytest.raises(KeyError):
        g.dependents("missing")


def test_levels_chain_and_cycle_members():
    g = _graph(
        ["setup", "core", "ui", "x", "y", "after"],
        [("core", "setup"), ("ui", "core"), ("x", "y"), ("y", "x"), ("after", "x"), ("after", "core")],
    )
    levels = g.compute_levels()
    assert levels["setup"] == 0
    assert levels["core"] == 1
    assert levels["ui"] == 2
    assert levels["x"] == 0 and levels["y"] == 0
    # cyclic deps are not resolvable; only core counts
    assert levels["after"] == 2


def test_cycle_members_reached_through_cross_edges_are_cyclic():
    g = _graph(["a", "b", "y"], [("a", "b"), ("b", "a"), ("a", "y"), ("y", "b")])
    assert g.cyclic_nodes() == {"a", "b", "y"}


def test_deep_chain_does_not_hit_recursion_limit():
    n = 5000
    g: DependencyGraph[int] = DependencyGraph()
    for i in range(n):
        g.add_node(f"t{i}", i)
        if i:
            g.add_edge(f"t{i}", f"t{i - 1}")
    order = g.topological_order()
    assert order[0] == "t0" and order[-1] == f"t{n - 1}"
    assert g.compute_levels()[f"t{n - 1}"] == n - 1


def test_validate_reports_cycle_self_dangling_isolated():
    g: DependencyGraph[str] = DependencyGraph()
    for n in ("a", "b", "self", "lonely", "ref1", "ref2"):
        g.add_node(n, n)
    g.add_edge("a", "b")
    g.add_edge("b", "a")
    g.add_edge("self", "self")
    g.add_edge("ref1", "missing")
    g.add_edge("ref2", "missing")

    issues = g.validate()
    by_code: dict[str, list] = {}
    for i in issues:
        by_code.setdefault(i.code, []).append(i)

    assert len(by_code["G_CYCLE"]) == 1
    assert "a -> b -> a" in by_code["G_CYCLE"][0].message
    assert [i.affected_task_ids for i in by_code["G_SELF_DEPENDENCY"]] == [("self",)]
    assert len(by_code["G_DANGLING_DEPENDENCY"]) == 1
    assert by_code["G_DANGLING_DEPENDENCY"][0].affected_task_ids == ("ref1", "ref2")
    assert [i.affected_task_ids for i in by_code["G_ISOLATED_NODE"]] == [("lonely",)]
    assert {i.severity for i in by_code["G_ISOLATED_NODE"]} == {"warning"}
    assert all(i.component == "dependencies" for i in issues)


def test_single_node_is_not_isolated():
    g = _graph(["only"], [])
    assert g.validate() == []


@settings(max_examples=50, deadline=None)
@given(graphs())
def test_has_cycle_iff_topological_order_raises(g):
    try:
        g.topological_order()
        raised = False
    except CyclicDependency:
        raised = True
    assert raised == g.has_cycle()


@settings(max_examples=50, deadline=None)
@given(dags())
def test_topological_order_respects_every_edge(g):
    order = g.topological_order()
    index = {n: i for i, n in enumerate(order)}
    assert sorted(order) == sorted(g.nodes)
    for a, b in g.edges:
        assert index[b] < index[a]


@settings(max_examples=50, deadline=None)
@given(dags())
def test_levels_increase_along_edges(g):
    levels = g.compute_levels()
    for a, b in g.edges:
        assert levels[a] > levels[b]


@settings(max_examples=50, deadline=None)
@given(graphs(), st.sets(NODE_IDS))
def test_executable_set_never_contains_completed(g, completed):
    ready = g.executable_set(completed)
    assert not set(ready) & completed


@settings(max_examples=50, deadline=None)
@given(
    st.lists(NODE_IDS, unique=True, min_size=1),
    st.lists(st.tuples(NODE_IDS, st.sampled_from(["x1", "x2", "x3", "a", "b"])), max_size=12),
)
def test_one_dangling_issue_per_missing_reference(nodes, edges):
    g = _graph(nodes, edges)
    missing = {b for _, b in edges if b not in nodes} | {a for a, _ in edges if a not in nodes}
    dangling = [i for i in g.validate() if i.code == "G_DANGLING_DEPENDENCY"]
    assert sorted(i.missing_ref for i in dangling) == sorted(missing)
    for issue in dangling:
        assert issue.affected_task_ids == tuple(a for a in g.nodes if (a, issue.missing_ref) in g.edges)
