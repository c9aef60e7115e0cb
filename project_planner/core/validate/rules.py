from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

from project_planner.core.errors import CyclicDependency
from project_planner.core.graph.dependency_graph import DependencyGraph
from project_planner.core.model import ProjectContext, Task, ValidationIssue


# Consistency rules. Each rule is a pure function of RuleInput; the report
# treats every rule as one check.
# - architecture_completeness: A_MISSING_TOPIC
# - file_structure_alignment: F_EMPTY_TREE, F_MISSING_DIRECTORY
# - file_references: F_MISSING_FILE_REFERENCE
# - dependency_integrity: T_NO_TASKS + graph issues (G_*)
# - task_coverage: T_NO_SETUP_TASK, T_NO_TESTING_TASK
# - logical_ordering: O_FEATURE_WITHOUT_CORE, O_SETUP_NOT_FIRST
# - prd_coverage: P_LOW_COVERAGE


@dataclass(frozen=True)
class RuleInput:
    context: ProjectContext
    graph: DependencyGraph[Task]
    order: Optional[tuple[str, ...]] = None
    missing_file_error_ratio: float = 0.5


Rule = Callable[[RuleInput], list[ValidationIssue]]


ARCHITECTURE_TOPICS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("structure", ("component", "module", "layer")),
    ("data", ("data", "storage", "database", "persist")),
    ("API", ("api", "endpoint", "service")),
)

# (label, architecture keywords, directory names satisfying it)
IMPLIED_DIRECTORIES: tuple[tuple[str, tuple[str, ...], tuple[str, ...]], ...] = (
    ("a UI framework", ("react", "vue", "angular", "svelte", "next.js", "frontend", "ui"), ("components", "pages", "ui")),
    ("an API layer", ("api", "rest", "graphql", "endpoint"), ("api", "routes", "server")),
    ("testing", ("test",), ("tests", "test", "spec")),
    ("a database", ("database", "postgres", "mysql", "sqlite", "mongo", "orm"), ("db", "models", "migrations")),
)

FILE_EXTENSIONS = (
    "py", "ts", "tsx", "js", "jsx", "json", "yaml", "yml", "toml", "md",
    "css", "scss", "html", "sql", "go", "rs", "java", "cfg", "ini",
)

_FILE_REF_RE = re.compile(
    r"(?<![\w/.-])((?:[\w.-]+/)*[\w-][\w.-]*\.(?:" + "|".join(FILE_EXTENSIONS) + r"))(?![\w/-])"
)
_TREE_DECORATION_RE = re.compile(r"^[\s│├└─|`+\\-]*")
_REQUIREMENT_RE = re.compile(r"\b(?:must|should|users? can)\b|^\s*(?:[-*+]|\d+[.)])?\s*feature:", re.IGNORECASE)
_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*+#>]+|\d+[.)])\s*")
_FEATURE_PREFIX_RE = re.compile(r"^feature:\s*")
_CLAUSE_RE = re.compile(
    r"(?:\b(?:must|should|users?\s+can)\s+|^\s*(?:[-*+]|\d+[.)])?\s*feature:\s*)([^.,;!?\n]+)", re.IGNORECASE
)
_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")


def mentions(text: str, keywords: tuple[str, ...]) -> bool:
    """Keyword match anchored at a word start: 'component' matches 'components'."""
    pattern = r"(?<!\w)(?:" + "|".join(re.escape(k) for k in keywords) + r")"
    return re.search(pattern, text.lower()) is not None


def tree_entries(file_structure: str) -> set[str]:
    """Every path segment named in a file tree listing (ASCII-art or plain paths), lowercased."""
    out: set[str] = set()
    for line in file_structure.splitlines():
        entry = _TREE_DECORATION_RE.sub("", line).strip()
        # Drop trailing "# comment" annotations.
        entry = entry.split("#", 1)[0].strip()
        for segment in entry.split("/"):
            segment = segment.strip()
            if segment:
                out.add(segment.lower())
    return out


def file_references(text: str) -> list[str]:
    refs: list[str] = []
    for match in _FILE_REF_RE.finditer(text):
        ref = match.group(1)
        # "Node.js" style product names are not files.
        if "/" not in ref and ref.endswith(".js") and ref[:1].isupper():
            continue
        refs.append(ref)
    return refs


def normalize_requirement(text: str) -> str:
    s = _LIST_MARKER_RE.sub("", text.strip()).lower()
    s = _FEATURE_PREFIX_RE.sub("", s)
    s = _PUNCT_RE.sub(" ", s)
    return _SPACE_RE.sub(" ", s).strip()


def requirement_lines(prd: str) -> list[str]:
    return [line.strip() for line in prd.splitlines() if line.strip() and _REQUIREMENT_RE.search(line)]


def requirement_clause(line: str) -> str:
    """Normalized text after the first must/should/user(s) can/feature: keyword.

    "The app must support full-text search." gives "support full text search".
    Falls back to the whole normalized line when no clause follows the keyword.
    """
    match = _CLAUSE_RE.search(line)
    clause = normalize_requirement(match.group(1)) if match else ""
    return clause or normalize_requirement(line)


def architecture_completeness(inp: RuleInput) -> list[ValidationIssue]:
    text = inp.context.architecture
    issues: list[ValidationIssue] = []
    for topic, keywords in ARCHITECTURE_TOPICS:
        if not mentions(text, keywords):
            issues.append(
                ValidationIssue(
                    code="A_MISSING_TOPIC",
                    component="architecture",
                    severity="warning",
                    message=f"architecture does not describe {topic} ({', '.join(keywords)})",
                )
            )
    return issues


def file_structure_alignment(inp: RuleInput) -> list[ValidationIssue]:
    if not inp.context.file_structure.strip():
        return [
            ValidationIssue(
                code="F_EMPTY_TREE",
                component="fileStructure",
                severity="warning",
                message="file structure is empty",
            )
        ]

    entries = tree_entries(inp.context.file_structure)
    issues: list[ValidationIssue] = []
    for label, keywords, dirs in IMPLIED_DIRECTORIES:
        if not mentions(inp.context.architecture, keywords):
            continue
        if not any(d in entries for d in dirs):
            issues.append(
                ValidationIssue(
                    code="F_MISSING_DIRECTORY",
                    component="fileStructure",
                    severity="warning",
                    message=f"architecture mentions {label} but file structure has no {'/'.join(dirs)} directory",
                )
            )
    return issues


def file_references_present(inp: RuleInput) -> list[ValidationIssue]:
    tree = inp.context.file_structure
    if not tree.strip():
        return []

    entries = tree_entries(tree)
    referenced_by: dict[str, list[str]] = {}
    for task in inp.context.tasks:
        for ref in file_references(f"{task.title}\n{task.details}"):
            owners = referenced_by.setdefault(ref, [])
            if task.id not in owners:
                owners.append(task.id)

    if not referenced_by:
        return []

    missing = [ref for ref in referenced_by if ref.rsplit("/", 1)[-1].lower() not in entries]
    ratio = len(missing) / len(referenced_by)
    severity = "error" if ratio > inp.missing_file_error_ratio else "warning"
    return [
        ValidationIssue(
            code="F_MISSING_FILE_REFERENCE",
            component="tasks",
            severity=severity,
            message=f"task references {ref} which is not in the file structure",
            affected_task_ids=tuple(referenced_by[ref]),
        )
        for ref in missing
    ]


def dependency_integrity(inp: RuleInput) -> list[ValidationIssue]:
    if not inp.context.tasks:
        return [
            ValidationIssue(
                code="T_NO_TASKS",
                component="tasks",
                severity="error",
                message="context has no tasks",
            )
        ]
    return inp.graph.validate()


def task_coverage(inp: RuleInput) -> list[ValidationIssue]:
    tasks = inp.context.tasks
    issues: list[ValidationIssue] = []
    if not any(t.category == "setup" for t in tasks):
        issues.append(
            ValidationIssue(
                code="T_NO_SETUP_TASK",
                component="tasks",
                severity="warning",
                message="no setup task found",
            )
        )
    if mentions(inp.context.architecture, ("test",)) and not any(t.category == "testing" for t in tasks):
        issues.append(
            ValidationIssue(
                code="T_NO_TESTING_TASK",
                component="tasks",
                severity="warning",
                message="architecture mentions testing but no testing task found",
            )
        )
    return issues


def logical_ordering(inp: RuleInput) -> list[ValidationIssue]:
    tasks = inp.context.tasks
    by_id = {t.id: t for t in tasks}
    issues: list[ValidationIssue] = []

    core_ids = {t.id for t in tasks if t.is_core}
    if core_ids:
        for t in tasks:
            if t.category == "feature" and not core_ids.intersection(t.depends_on):
                issues.append(
                    ValidationIssue(
                        code="O_FEATURE_WITHOUT_CORE",
                        component="dependencies",
                        severity="warning",
                        message=f"feature task {t.id} does not depend on any architecture/core task",
                        affected_task_ids=(t.id,),
                    )
                )

    order = inp.order
    if order is None:
        try:
            order = inp.graph.topological_order()
        except CyclicDependency:
            return issues

    seen_non_setup = False
    for node_id in order:
        task = by_id.get(node_id)
        if task is None:
            continue
        if task.category != "setup":
            seen_non_setup = True
        elif seen_non_setup:
            issues.append(
                ValidationIssue(
                    code="O_SETUP_NOT_FIRST",
                    component="dependencies",
                    severity="warning",
                    message=f"setup task {task.id} is scheduled after non-setup tasks",
                    affected_task_ids=(task.id,),
                )
            )
    return issues


def prd_coverage(inp: RuleInput) -> list[ValidationIssue]:
    lines = requirement_lines(inp.context.prd)
    if not lines:
        return []

    haystack = normalize_requirement(
        " ".join(f"{t.title} {t.details}" for t in inp.context.tasks)
    )
    uncovered = [line for line in lines if requirement_clause(line) not in haystack]
    coverage = (len(lines) - len(uncovered)) / len(lines)
    if coverage >= 0.8:
        return []

    severity = "error" if coverage < 0.5 else "warning"
    return [
        ValidationIssue(
            code="P_LOW_COVERAGE",
            component="prdCoverage",
            severity=severity,
            message=(
                f"tasks cover {coverage:.0%} of PRD requirements "
                f"({len(uncovered)} of {len(lines)} uncovered)"
            ),
        )
    ]


RULES: tuple[tuple[str, Rule], ...] = (
    ("architecture_completeness", architecture_completeness),
    ("file_structure_alignment", file_structure_alignment),
    ("file_references", file_references_present),
    ("dependency_integrity", dependency_integrity),
    ("task_coverage", task_coverage),
    ("logical_ordering", logical_ordering),
    ("prd_coverage", prd_coverage),
)

RULE_NAMES: tuple[str, ...] = tuple(name for name, _ in RULES)
