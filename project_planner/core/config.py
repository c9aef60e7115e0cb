from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Literal, Optional

import yaml

from project_planner.core.validate.rules import RULE_NAMES


AcceptancePolicy = Literal["best", "latest"]


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class PlannerConfig:
    model: str = "gpt-4.1-mini"
    base_url: Optional[str] = None
    workers: int = 3
    max_iterations: int = 3
    consistency_threshold: float = 85.0
    acceptance: AcceptancePolicy = "best"
    group_by_category: bool = True
    missing_file_error_ratio: float = 0.5
    disabled_rules: tuple[str, ...] = ()


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load overrides from a YAML mapping of PlannerConfig field -> value.

    Unknown keys and wrongly typed values raise ConfigError.
    """
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"{p}: invalid YAML: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("config file must be a mapping of option -> value")
    return _coerce(raw, source=str(p))


def load_config(
    path: str | Path | None = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> PlannerConfig:
    """Defaults, then the config file, then environment, then explicit overrides (None values skipped)."""
    cfg = PlannerConfig()
    if path:
        cfg = replace(cfg, **load_config_file(path))

    cfg = replace(cfg, **_from_env(os.environ if env is None else env))

    if overrides:
        cfg = replace(cfg, **_coerce({k: v for k, v in overrides.items() if v is not None}, source="overrides"))
    return cfg


def _from_env(env: Mapping[str, str]) -> dict[str, Any]:
    raw: dict[str, Any] = {}
    model = env.get("PLANNER_MODEL") or env.get("OPENAI_MODEL")
    if model:
        raw["model"] = model
    for var, key, conv in (
        ("PLANNER_MAX_ITERATIONS", "max_iterations", int),
        ("PLANNER_CONSISTENCY_THRESHOLD", "consistency_threshold", float),
        ("PLANNER_WORKERS", "workers", int),
    ):
        value = env.get(var)
        if not value:
            continue
        try:
            raw[key] = conv(value)
        except ValueError as e:
            raise ConfigError(f"{var} must be a number, got {value!r}") from e
    return _coerce(raw, source="environment")


def _coerce(raw: Mapping[str, Any], *, source: str) -> dict[str, Any]:
    known = {f.name for f in fields(PlannerConfig)}
    out: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            raise ConfigError(f"{source}: unknown option '{key}' (choose from: {', '.join(sorted(known))})")

        if key == "model":
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"{source}: model must be a non-empty string")
            out[key] = value.strip()
        elif key == "base_url":
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"{source}: base_url must be a string")
            out[key] = value
        elif key in ("workers", "max_iterations"):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{source}: {key} must be an integer")
            if key == "workers" and value < 1:
                raise ConfigError(f"{source}: workers must be >= 1")
            if key == "max_iterations" and value < 0:
                raise ConfigError(f"{source}: max_iterations must be >= 0")
            out[key] = value
        elif key in ("consistency_threshold", "missing_file_error_ratio"):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{source}: {key} must be a number")
            upper = 100 if key == "consistency_threshold" else 1
            if not 0 <= value <= upper:
                raise ConfigError(f"{source}: {key} must be between 0 and {upper}")
            out[key] = float(value)
        elif key == "acceptance":
            if value not in ("best", "latest"):
                raise ConfigError(f"{source}: acceptance must be 'best' or 'latest'")
            out[key] = value
        elif key == "group_by_category":
            if not isinstance(value, bool):
                raise ConfigError(f"{source}: group_by_category must be a boolean")
            out[key] = value
        elif key == "disabled_rules":
            if not isinstance(value, (list, tuple)) or any(not isinstance(x, str) for x in value):
                raise ConfigError(f"{source}: disabled_rules must be a list of rule names")
            unknown = [x for x in value if x not in RULE_NAMES]
            if unknown:
                raise ConfigError(f"{source}: unknown rule(s): {', '.join(unknown)}")
            out[key] = tuple(value)
    return out
