from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from project_planner.core.context import new_context
from project_planner.core.errors import InvalidTask, PlanLoadError
from project_planner.core.io.parse_tasks import parse_tasks, task_to_dict
from project_planner.core.model import ExecutionOrder, ProjectContext


TEXT_FIELDS: tuple[str, ...] = ("prd", "architecture", "specifications", "file_structure")


def load_context(path: str) -> ProjectContext:
    """Load a YAML/JSON context file.

    Keys: prd, architecture, specifications, file_structure (strings, all
    optional), tasks (array), version (optional int). Malformed tasks raise
    InvalidTask with ``file`` set.
    """
    p = Path(path)
    data = _read_mapping(p)
    return context_from_dict(data, file=str(p))


def context_from_dict(data: dict[str, Any], *, file: str | None = None) -> ProjectContext:
    text: dict[str, str] = {}
    for key in TEXT_FIELDS:
        value = data.get(key)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise PlanLoadError(
                code="E_INVALID_FIELD",
                message=f"{key} must be a string",
                file=file,
                path=key,
            )
        text[key] = value

    try:
        tasks = parse_tasks(data.get("tasks") if data.get("tasks") is not None else [])
    except InvalidTask as e:
        raise replace(e, file=file) from None

    version = data.get("version", 0)
    if isinstance(version, bool) or not isinstance(version, int) or version < 0:
        raise PlanLoadError(
            code="E_INVALID_FIELD",
            message="version must be a non-negative integer",
            file=file,
            path="version",
        )

    ctx = new_context(
        text["prd"],
        architecture=text["architecture"],
        specifications=text["specifications"],
        file_structure=text["file_structure"],
        tasks=tasks,
    )
    return replace(ctx, version=version)


def load_prd(path: str) -> str:
    p = Path(path)
    if not p.exists():
        raise PlanLoadError(code="E_FILE_NOT_FOUND", message="file does not exist", file=str(p))
    try:
        return p.read_text(encoding="utf-8")
    except OSError as e:  # pragma: no cover
        raise PlanLoadError(code="E_FILE_READ", message=str(e), file=str(p)) from e


def context_to_dict(ctx: ProjectContext, *, execution_order: ExecutionOrder | None = None) -> dict[str, Any]:
    out: dict[str, Any] = {
        "version": ctx.version,
        "last_updated": ctx.last_updated.isoformat(),
        "prd": ctx.prd,
        "architecture": ctx.architecture,
        "specifications": ctx.specifications,
        "file_structure": ctx.file_structure,
        "tasks": [task_to_dict(t) for t in ctx.tasks],
    }
    if execution_order is not None:
        out["execution_order"] = {
            "order": list(execution_order.order),
            "degraded": execution_order.degraded,
            "batches": [list(b) for b in execution_order.batches],
            "critical_path": list(execution_order.critical_path),
            "critical_path_length": execution_order.critical_path_length,
            "blocking": list(execution_order.blocking),
        }
    return out


def dump_yaml(data: dict[str, Any], path: str) -> None:
    p = Path(path)
    if str(p.parent) not in (".", ""):
        p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False, allow_unicode=True)


def _read_mapping(p: Path) -> dict[str, Any]:
    if not p.exists():
        raise PlanLoadError(
            code="E_FILE_NOT_FOUND",
            message="file does not exist",
            file=str(p),
        )

    suffix = p.suffix.lower()
    try:
        raw_text = p.read_text(encoding="utf-8")
    except OSError as e:  # pragma: no cover
        raise PlanLoadError(code="E_FILE_READ", message=str(e), file=str(p)) from e

    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(raw_text)
        elif suffix == ".json":
            data = json.loads(raw_text)
        else:
            raise PlanLoadError(
                code="E_UNSUPPORTED_FORMAT",
                message="supported formats are .yaml/.yml and .json",
                file=str(p),
            )
    except PlanLoadError:
        raise
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        code = "E_YAML_PARSE" if suffix in {".yaml", ".yml"} else "E_JSON_PARSE"
        raise PlanLoadError(code=code, message=str(e), file=str(p)) from e

    if not isinstance(data, dict):
        raise PlanLoadError(
            code="E_INVALID_TOP_LEVEL",
            message="top-level document must be a mapping/object",
            file=str(p),
        )
    return data
