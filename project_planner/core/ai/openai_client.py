from __future__ import annotations

import json
import os
from typing import Any

from project_planner.core.ai.contracts import ContextPatch, parse_context_patch
from project_planner.core.io.load_context import context_to_dict
from project_planner.core.io.parse_tasks import task_to_dict
from project_planner.core.model import ALLOWED_CATEGORIES, ProjectContext, Task, ValidationIssue


GENERATE_PROMPT = """You are a project planner.

Break the project brief into concrete implementation tasks.

Return ONLY a JSON object {"tasks": [...]} (no markdown, no extra text).

Rules:
- Use short unique ids such as "task-1", "task-2".
- category is one of: setup, architecture, core, feature, testing, documentation, deployment.
- priority is 1 (low) to 4 (critical).
- depends_on lists ids of tasks that must finish first. No dependency cycles.
- Start with at least one setup task. Cover every requirement in the brief.
- Mention concrete file paths in details only when they exist in the file structure.
"""

REFINE_PROMPT = """You are reviewing a project plan for consistency.

You receive the current plan and the validation issues found in it.
Return ONLY a JSON object describing the fields to replace:
- architecture / specifications / file_structure: new text, or null to keep.
- tasks: the FULL replacement task list, or null to keep the current tasks.
- notes: short explanations of the changes.

Fix as many issues as possible. Keep task ids stable where tasks survive.
Keep DAG correctness (no dependency cycles).
"""

RESEARCH_PROMPT = """You are researching one implementation task of a project plan.

Return ONLY a JSON object {"notes": "..."} with concise implementation notes:
key libraries, pitfalls and acceptance criteria. Build on the notes already
gathered for the tasks it depends on.
"""


# OpenAI Structured Outputs requirements:
# - For ALL object schemas, `additionalProperties` MUST be present and MUST be false.
# - For ALL object schemas, `required` MUST include EVERY key in `properties`.
# Therefore optional fields use nullable types (e.g., ["string", "null"]).


TASK_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "id": {"type": "string"},
        "title": {"type": "string"},
        "details": {"type": "string"},
        "category": {"type": "string", "enum": sorted(ALLOWED_CATEGORIES)},
        "depends_on": {
            "type": "array",
            "items": {"type": "string"},
        },
        "priority": {"type": ["integer", "null"]},
        "estimated_duration": {"type": ["number", "null"]},
    },
    "required": [
        "id",
        "title",
        "details",
        "category",
        "depends_on",
        "priority",
        "estimated_duration",
    ],
}


TASK_LIST_JSON_SCHEMA: dict[str, Any] = {
    "name": "task_list",
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "tasks": {"type": "array", "items": TASK_SCHEMA},
        },
        "required": ["tasks"],
    },
}


CONTEXT_PATCH_JSON_SCHEMA: dict[str, Any] = {
    "name": "context_patch",
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "architecture": {"type": ["string", "null"]},
            "specifications": {"type": ["string", "null"]},
            "file_structure": {"type": ["string", "null"]},
            "tasks": {"type": ["array", "null"], "items": TASK_SCHEMA},
            "notes": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["architecture", "specifications", "file_structure", "tasks", "notes"],
    },
}


RESEARCH_JSON_SCHEMA: dict[str, Any] = {
    "name": "task_research",
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {"notes": {"type": "string"}},
        "required": ["notes"],
    },
}


class OpenAIPlanClient:
    """TaskGenerator, Refiner and Researcher backed by the OpenAI Responses API."""

    def __init__(self, *, model: str, base_url: str | None = None) -> None:
        self._model = model
        self._base_url = base_url

    def generate_tasks(
        self, *, prd: str, architecture: str, specifications: str, file_structure: str
    ) -> list[Any]:
        obj = self._complete(
            GENERATE_PROMPT,
            _render_user_prompt(
                {
                    "prd": prd,
                    "architecture": architecture,
                    "specifications": specifications,
                    "file_structure": file_structure,
                }
            ),
            TASK_LIST_JSON_SCHEMA,
        )
        # Shape is checked by parse_tasks at the orchestrator boundary.
        return obj.get("tasks")  # type: ignore[return-value]

    def refine(self, *, context: ProjectContext, issues: tuple[ValidationIssue, ...]) -> ContextPatch:
        payload = {
            "context": context_to_dict(context),
            "issues": [
                {
                    "code": i.code,
                    "component": i.component,
                    "severity": i.severity,
                    "message": i.message,
                    "affected_task_ids": list(i.affected_task_ids),
                    "missing_ref": i.missing_ref,
                }
                for i in issues
            ],
        }
        obj = self._complete(REFINE_PROMPT, _render_user_prompt(payload), CONTEXT_PATCH_JSON_SCHEMA)
        return parse_context_patch(obj)

    def research_task(self, *, context: ProjectContext, task: Task, prior: dict[str, str]) -> str:
        payload = {
            "prd": context.prd,
            "architecture": context.architecture,
            "task": task_to_dict(task),
            "dependency_notes": {d: prior[d] for d in task.depends_on if d in prior},
        }
        obj = self._complete(RESEARCH_PROMPT, _render_user_prompt(payload), RESEARCH_JSON_SCHEMA)
        notes = obj.get("notes")
        if not isinstance(notes, str):
            raise RuntimeError("research response is missing notes")
        return notes

    def _complete(self, system: str, user: str, schema: dict[str, Any]) -> dict[str, Any]:
        """One Responses API round trip with a strict JSON schema output format."""
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set")

        try:
            from openai import OpenAI  # type: ignore
        except ImportError as e:
            raise RuntimeError(
                "openai package not installed; install with: pip install openai"
            ) from e

        client = OpenAI(base_url=self._base_url) if self._base_url else OpenAI()

        resp = client.responses.create(
            model=self._model,
            temperature=0,
            input=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            text={
                "format": {
                    "type": "json_schema",
                    "name": schema["name"],
                    "schema": schema["schema"],
                    "strict": True,
                }
            },
        )

        raw_text = _extract_output_text(resp)
        try:
            obj = json.loads(raw_text)
        except json.JSONDecodeError as e:
            snippet = raw_text[:800]
            raise RuntimeError(f"Failed to parse model JSON. First 800 chars: {snippet}") from e
        if not isinstance(obj, dict):
            raise RuntimeError("model output must be a JSON object")
        return obj


def _extract_output_text(resp: Any) -> str:
    """Extract response text robustly across OpenAI SDK response shapes."""
    raw = getattr(resp, "output_text", None)
    if isinstance(raw, str) and raw.strip():
        return raw

    dump = resp.model_dump() if hasattr(resp, "model_dump") else None
    if isinstance(dump, dict):
        out = dump.get("output")
        if isinstance(out, list):
            texts: list[str] = []
            for item in out:
                if not isinstance(item, dict):
                    continue
                content = item.get("content")
                if not isinstance(content, list):
                    continue
                for c in content:
                    t = c.get("text") if isinstance(c, dict) else None
                    if isinstance(t, str) and t.strip():
                        texts.append(t)
            if texts:
                return "\n".join(texts)

    out2 = getattr(resp, "output", None)
    if isinstance(out2, list):
        texts2: list[str] = []
        for item in out2:
            content = getattr(item, "content", None)
            if isinstance(content, list):
                for c in content:
                    t = getattr(c, "text", None)
                    if isinstance(t, str) and t.strip():
                        texts2.append(t)
        if texts2:
            return "\n".join(texts2)

    return str(resp)


def _render_user_prompt(payload: dict[str, Any]) -> str:
    return (
        "CONTEXT_JSON:\n"
        + json.dumps(payload, indent=2, sort_keys=True)
        + "\n\nIf you leave optional fields unset, use null (not empty object)."
        + "\nReturn only the JSON object."
    )
