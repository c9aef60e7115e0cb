from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

import typer

from project_planner.core.ai.openai_client import OpenAIPlanClient
from project_planner.core.ai.orchestrator import OrchestrationOptions, orchestrate
from project_planner.core.config import ConfigError, PlannerConfig, load_config
from project_planner.core.errors import InvalidTask, PlanError, PlanLoadError
from project_planner.core.graph.dependency_graph import build_graph
from project_planner.core.io.load_context import context_to_dict, dump_yaml, load_context, load_prd
from project_planner.core.model import ProjectContext, ValidationIssue
from project_planner.core.order.optimizer import compute_execution_order
from project_planner.core.validate.validate_context import ValidationReport, validate

app = typer.Typer(add_completion=False, no_args_is_help=True)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@app.callback()
def _callback(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level: DEBUG|INFO|WARNING|ERROR"),
) -> None:
    """Project planner CLI."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        _print_errors(
            [
                PlanError(
                    code="E_UNKNOWN_LOG_LEVEL",
                    message=f"unknown log level: {log_level}",
                    path="log_level",
                )
            ]
        )
        raise typer.Exit(code=2)
    logging.basicConfig(level=level, format=LOG_FORMAT)


@app.command("validate")
def validate_cmd(
    path: str = typer.Argument(..., help="Path to a context file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    config: Optional[str] = typer.Option(None, "--config", help="Optional YAML config file"),
) -> None:
    """Validate a project context: dependency graph plus consistency rules."""
    _check_format(format, "E_VALIDATE_UNKNOWN_FORMAT")

    def _emit_json(ok: bool, *, exit_code: int, issues: list[dict[str, Any]], summary: dict | None) -> None:
        error_count = sum(1 for i in issues if i["severity"] == "error")
        payload = {
            "tool": "planner",
            "command": "validate",
            "ok": ok,
            "error_count": error_count,
            "issues": issues,
            "summary": summary,
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        raise typer.Exit(code=exit_code)

    cfg = _load_config_or_exit(config)

    try:
        ctx = load_context(path)
    except PlanLoadError as e:
        if format == "json":
            _emit_json(False, exit_code=1, issues=[_error_item(e, "load")], summary=None)
        _print_errors([e])
        raise typer.Exit(code=1)
    except InvalidTask as e:
        if format == "json":
            _emit_json(False, exit_code=2, issues=[_error_item(e, "validate")], summary=None)
        _print_errors([e])
        raise typer.Exit(code=2)

    report = _run_validation(ctx, cfg)
    failed = report.status == "failed"

    if format == "json":
        _emit_json(
            not failed,
            exit_code=2 if failed else 0,
            issues=[_issue_item(i) for i in report.issues],
            summary=_report_summary(report, ctx),
        )

    for issue in report.issues:
        typer.echo(str(issue), err=issue.severity == "error")
    typer.echo(report.summary)
    if failed:
        raise typer.Exit(code=2)


@app.command("order")
def order_cmd(
    path: str = typer.Argument(..., help="Path to a context file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    group: bool = typer.Option(True, "--group/--no-group", help="Regroup the order into category buckets"),
) -> None:
    """Print the execution order and parallel batches for a context's tasks."""
    _check_format(format, "E_ORDER_UNKNOWN_FORMAT")

    try:
        ctx = load_context(path)
    except PlanLoadError as e:
        _print_errors([e])
        raise typer.Exit(code=1)
    except InvalidTask as e:
        _print_errors([e])
        raise typer.Exit(code=2)

    result = compute_execution_order(build_graph(ctx.tasks), group_by_category=group)
    if result.degraded:
        typer.echo(
            f"WARN: dependency cycle {' -> '.join(result.cycle)}; order is NOT dependency-safe",
            err=True,
        )

    if format == "json":
        payload = {
            "tool": "planner",
            "command": "order",
            "ok": not result.degraded,
            "degraded": result.degraded,
            "cycle": list(result.cycle),
            "order": list(result.order),
            "batches": [list(b) for b in result.batches],
            "critical_path": list(result.critical_path),
            "critical_path_length": result.critical_path_length,
            "blocking": list(result.blocking),
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    typer.echo("Order:")
    for i, tid in enumerate(result.order, start=1):
        task = ctx.task_by_id(tid)
        label = f"[{task.category}] {task.title}" if task is not None else ""
        typer.echo(f"{i}. {tid} {label}".rstrip())
    typer.echo("Batches:")
    for level, batch in enumerate(result.batches):
        typer.echo(f"- {level}: {', '.join(batch)}")
    if result.critical_path:
        typer.echo(f"Critical path ({result.critical_path_length:g}): {' -> '.join(result.critical_path)}")
    if result.blocking:
        typer.echo(f"Blocking: {', '.join(result.blocking)}")


@app.command("plan")
def plan_cmd(
    prd_path: str = typer.Argument(..., help="Path to a PRD / project brief (text or markdown)"),
    out: str = typer.Option(..., "--out", help="Path to write the planned context as YAML"),
    model: Optional[str] = typer.Option(None, "--model"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations"),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Consistency threshold (percent)"),
    workers: Optional[int] = typer.Option(None, "--workers"),
    config: Optional[str] = typer.Option(None, "--config", help="Optional YAML config file"),
    base_url: Optional[str] = typer.Option(None, "--base-url"),
    research: bool = typer.Option(False, "--research/--no-research", help="Research tasks batch by batch"),
) -> None:
    """Generate, validate and refine a task plan from a PRD (bounded refine loop)."""
    try:
        prd = load_prd(prd_path)
    except PlanLoadError as e:
        _print_errors([e])
        raise typer.Exit(code=1)

    if not os.getenv("OPENAI_API_KEY"):
        _print_errors(
            [
                PlanError(
                    code="E_PLAN_NO_API_KEY",
                    message="OPENAI_API_KEY is not set",
                    file=None,
                    path="OPENAI_API_KEY",
                )
            ]
        )
        raise typer.Exit(code=2)

    cfg = _load_config_or_exit(
        config,
        overrides={
            "model": model,
            "max_iterations": max_iterations,
            "consistency_threshold": threshold,
            "workers": workers,
            "base_url": base_url,
        },
    )

    client = OpenAIPlanClient(model=cfg.model, base_url=cfg.base_url)
    try:
        result = orchestrate(
            prd,
            generator=client,
            refiner=client,
            researcher=client if research else None,
            options=OrchestrationOptions.from_config(cfg),
        )
    except InvalidTask as e:
        _print_errors([e])
        raise typer.Exit(code=2)

    data = context_to_dict(result.context, execution_order=result.execution_order)
    data["validation"] = _report_summary(result.report, result.context)
    data["validation"]["issues"] = [_issue_item(i) for i in result.validation_issues]
    if result.research:
        data["research"] = {
            tid: (r.notes if r.ok else {"error": r.error}) for tid, r in result.research.items()
        }
    dump_yaml(data, out)
    typer.echo(
        f"OK: wrote {out} (tasks={len(result.context.tasks)}, iterations={result.iteration_count}, "
        f"score={result.report.score:.0f})"
    )

    for failure in (result.generation_failure, result.refinement_failure):
        if failure is not None:
            typer.echo(f"WARN: {failure}", err=True)
    if result.execution_order.degraded:
        typer.echo("WARN: execution order is degraded (dependency cycle)", err=True)
    if result.report.status == "failed":
        typer.echo("WARN: plan still fails validation:", err=True)
        for issue in result.report.errors:
            typer.echo(str(issue), err=True)
        raise typer.Exit(code=2)


def _run_validation(ctx: ProjectContext, cfg: PlannerConfig) -> ValidationReport:
    graph = build_graph(ctx.tasks)
    order = compute_execution_order(graph, group_by_category=cfg.group_by_category)
    return validate(
        ctx,
        graph=graph,
        order=None if order.degraded else order.order,
        disabled_rules=cfg.disabled_rules,
        missing_file_error_ratio=cfg.missing_file_error_ratio,
    )


def _load_config_or_exit(path: Optional[str], *, overrides: Optional[dict[str, Any]] = None) -> PlannerConfig:
    try:
        return load_config(path, overrides=overrides)
    except FileNotFoundError:
        _print_errors(
            [
                PlanLoadError(
                    code="E_CONFIG_FILE_NOT_FOUND",
                    message=f"config file not found: {path}",
                    file=None,
                    path="config",
                )
            ]
        )
        raise typer.Exit(code=1)
    except ConfigError as e:
        _print_errors(
            [
                PlanError(
                    code="E_CONFIG_INVALID",
                    message=str(e),
                    file=None,
                    path="config",
                )
            ]
        )
        raise typer.Exit(code=2)


def _check_format(format: str, code: str) -> None:
    if format not in ("text", "json"):
        err = PlanError(
            code=code,
            message=f"unknown format: {format} (choose one of: text, json)",
            file=None,
            path="format",
        )
        _print_errors([err])
        raise typer.Exit(code=2)


def _error_item(e: PlanError, source: str) -> dict[str, Any]:
    return {
        "code": e.code,
        "message": e.message,
        "file": e.file,
        "path": e.path,
        "severity": "error",
        "source": source,
    }


def _issue_item(issue: ValidationIssue) -> dict[str, Any]:
    return {
        "code": issue.code,
        "component": issue.component,
        "severity": issue.severity,
        "message": issue.message,
        "affected_task_ids": list(issue.affected_task_ids),
        "missing_ref": issue.missing_ref,
        "source": "validate",
    }


def _report_summary(report: ValidationReport, ctx: ProjectContext) -> dict[str, Any]:
    return {
        "status": report.status,
        "score": round(report.score, 1),
        "total": report.total,
        "passed": report.passed,
        "warning": report.warning,
        "failed": report.failed,
        "task_count": len(ctx.tasks),
        "text": report.summary,
    }


def _print_errors(errors: list[PlanError]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="planner")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
