from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Optional

from project_planner.core.ai.contracts import ContextPatch, Refiner, Researcher, TaskGenerator
from project_planner.core.config import AcceptancePolicy, PlannerConfig
from project_planner.core.context import apply_patch, new_context, with_tasks
from project_planner.core.errors import GenerationFailure
from project_planner.core.graph.dependency_graph import DependencyGraph, build_graph
from project_planner.core.io.parse_tasks import fallback_tasks, parse_tasks
from project_planner.core.model import CheckStatus, ExecutionOrder, ProjectContext, Task, ValidationIssue
from project_planner.core.order.optimizer import compute_execution_order
from project_planner.core.validate.validate_context import ValidationReport, validate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrchestrationOptions:
    max_iterations: int = 3
    consistency_threshold: float = 85.0
    acceptance: AcceptancePolicy = "best"
    workers: int = 3
    group_by_category: bool = True
    missing_file_error_ratio: float = 0.5
    disabled_rules: tuple[str, ...] = ()

    @classmethod
    def from_config(cls, cfg: PlannerConfig) -> "OrchestrationOptions":
        return cls(
            max_iterations=cfg.max_iterations,
            consistency_threshold=cfg.consistency_threshold,
            acceptance=cfg.acceptance,
            workers=cfg.workers,
            group_by_category=cfg.group_by_category,
            missing_file_error_ratio=cfg.missing_file_error_ratio,
            disabled_rules=cfg.disabled_rules,
        )


@dataclass(frozen=True)
class IterationRecord:
    iteration: int
    # Context version this pass committed; None for a rejected candidate.
    version: Optional[int]
    score: float
    status: CheckStatus
    issues: tuple[ValidationIssue, ...]
    accepted: bool


@dataclass(frozen=True)
class ResearchResult:
    task_id: str
    notes: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class OrchestrationResult:
    context: ProjectContext
    validation_issues: tuple[ValidationIssue, ...]
    execution_order: ExecutionOrder
    iteration_count: int
    history: tuple[IterationRecord, ...]
    report: ValidationReport
    generation_failure: Optional[GenerationFailure] = None
    refinement_failure: Optional[GenerationFailure] = None
    research: dict[str, ResearchResult] = field(default_factory=dict)


def orchestrate(
    prd: str,
    *,
    generator: TaskGenerator,
    refiner: Optional[Refiner] = None,
    researcher: Optional[Researcher] = None,
    options: Optional[OrchestrationOptions] = None,
    architecture: str = "",
    specifications: str = "",
    file_structure: str = "",
) -> OrchestrationResult:
    """Generate, validate and refine a task plan for a PRD.

    - Generation failures and empty output fall back to a two-task plan; the
      pipeline never yields zero tasks. Malformed output raises InvalidTask.
    - Implicit setup/core dependencies are injected before validation.
    - The refine loop stops at the consistency threshold, after
      ``max_iterations`` rounds, or when the refiner fails. A failed round
      leaves the last committed context untouched.
    - With acceptance="best" a refinement is committed only if its score is
      at least the committed score; "latest" always commits.
    """
    opts = options or OrchestrationOptions()
    ctx = new_context(
        prd,
        architecture=architecture,
        specifications=specifications,
        file_structure=file_structure,
    )

    logger.info("generate: requesting tasks")
    tasks, generation_failure = _generate(generator, ctx)

    logger.info("inject: adding implicit dependencies to %d tasks", len(tasks))
    ctx = with_tasks(ctx, inject_implicit_dependencies(tasks))

    order, report = _evaluate(ctx, opts)
    history: list[IterationRecord] = [_record(0, ctx, report, accepted=True)]
    _log_iteration(history[-1])

    refinement_failure: Optional[GenerationFailure] = None
    iteration = 0
    while refiner is not None and report.score < opts.consistency_threshold and iteration < opts.max_iterations:
        iteration += 1
        logger.info("refine: iteration %d (score %.1f < %.1f)", iteration, report.score, opts.consistency_threshold)
        try:
            patch = refiner.refine(context=ctx, issues=report.issues)
        except Exception as e:
            refinement_failure = GenerationFailure(
                code="E_REFINEMENT_FAILED",
                message=f"refinement failed: {e}",
                path="refine",
                cause=repr(e),
            )
            logger.warning("refine: iteration %d failed (%s); keeping version %d", iteration, e, ctx.version)
            break

        if patch.is_empty:
            logger.info("refine: iteration %d proposed no changes; stopping", iteration)
            break

        candidate = _apply_refinement(ctx, patch)
        cand_order, cand_report = _evaluate(candidate, opts)
        accepted = opts.acceptance == "latest" or cand_report.score >= report.score
        history.append(_record(iteration, candidate, cand_report, accepted=accepted))
        _log_iteration(history[-1])
        if accepted:
            ctx, order, report = candidate, cand_order, cand_report

    research: dict[str, ResearchResult] = {}
    if researcher is not None:
        logger.info("research: %d batches", len(order.batches))
        research = research_tasks(ctx, order, researcher, workers=opts.workers)

    logger.info("done: version=%d score=%.1f status=%s", ctx.version, report.score, report.status)
    return OrchestrationResult(
        context=ctx,
        validation_issues=report.issues,
        execution_order=order,
        iteration_count=iteration,
        history=tuple(history),
        report=report,
        generation_failure=generation_failure,
        refinement_failure=refinement_failure,
        research=research,
    )


def inject_implicit_dependencies(tasks: tuple[Task, ...]) -> tuple[Task, ...]:
    """Non-setup tasks depend on the first setup task; feature tasks on the first architecture/core task.

    Only applied where no such dependency was declared. Injections that would
    close a cycle are skipped.
    """
    setup = next((t for t in tasks if t.category == "setup"), None)
    core = next((t for t in tasks if t.is_core), None)
    setup_ids = {t.id for t in tasks if t.category == "setup"}
    core_ids = {t.id for t in tasks if t.is_core}

    graph = build_graph(tasks)
    out: list[Task] = []
    for t in tasks:
        deps = list(t.depends_on)
        if setup is not None and t.category != "setup" and not setup_ids.intersection(deps):
            if _can_add(graph, t.id, setup.id):
                deps.append(setup.id)
                graph.add_edge(t.id, setup.id)
        if core is not None and t.category == "feature" and not core_ids.intersection(deps):
            if _can_add(graph, t.id, core.id):
                deps.append(core.id)
                graph.add_edge(t.id, core.id)
        out.append(t if len(deps) == len(t.depends_on) else replace(t, depends_on=tuple(deps)))
    return tuple(out)


def research_tasks(
    ctx: ProjectContext,
    order: ExecutionOrder,
    researcher: Researcher,
    *,
    workers: int,
) -> dict[str, ResearchResult]:
    """Research tasks batch by batch; a batch runs concurrently and sees earlier batches' notes."""
    results: dict[str, ResearchResult] = {}
    prior: dict[str, str] = {}

    for level, batch in enumerate(order.batches):
        snapshot = dict(prior)
        with ThreadPoolExecutor(max_workers=max(1, workers)) as ex:
            futures = {}
            for tid in batch:
                task = ctx.task_by_id(tid)
                if task is None:
                    continue
                futures[ex.submit(researcher.research_task, context=ctx, task=task, prior=snapshot)] = tid
            for f in as_completed(futures):
                tid = futures[f]
                try:
                    results[tid] = ResearchResult(task_id=tid, notes=f.result())
                except Exception as e:
                    logger.warning("research: task %s failed: %s", tid, e)
                    results[tid] = ResearchResult(task_id=tid, error=str(e))

        for tid in batch:
            res = results.get(tid)
            if res is not None and res.ok and res.notes is not None:
                prior[tid] = res.notes
        logger.info("research: batch %d done (%d tasks)", level, len(batch))

    return {tid: results[tid] for tid in order.order if tid in results}


def _generate(generator: TaskGenerator, ctx: ProjectContext) -> tuple[tuple[Task, ...], Optional[GenerationFailure]]:
    try:
        raw = generator.generate_tasks(
            prd=ctx.prd,
            architecture=ctx.architecture,
            specifications=ctx.specifications,
            file_structure=ctx.file_structure,
        )
    except Exception as e:
        failure = GenerationFailure(
            code="E_GENERATION_FAILED",
            message=f"task generation failed: {e}",
            path="generate",
            cause=repr(e),
        )
        logger.warning("generate: %s; using fallback plan", failure.message)
        return fallback_tasks(), failure

    if isinstance(raw, list) and not raw:
        logger.warning("generate: generator returned no tasks; using fallback plan")
        return fallback_tasks(), GenerationFailure(
            code="E_GENERATION_EMPTY",
            message="generator returned no tasks",
            path="generate",
        )

    return parse_tasks(raw), None


def _apply_refinement(ctx: ProjectContext, patch: ContextPatch) -> ProjectContext:
    if patch.tasks is not None:
        tasks = patch.tasks if patch.tasks else fallback_tasks()
        patch = replace(patch, tasks=inject_implicit_dependencies(tasks))
    return apply_patch(ctx, patch)


def _evaluate(ctx: ProjectContext, opts: OrchestrationOptions) -> tuple[ExecutionOrder, ValidationReport]:
    graph = build_graph(ctx.tasks)
    order = compute_execution_order(graph, group_by_category=opts.group_by_category)
    report = validate(
        ctx,
        graph=graph,
        order=None if order.degraded else order.order,
        disabled_rules=opts.disabled_rules,
        missing_file_error_ratio=opts.missing_file_error_ratio,
    )
    return order, report


def _can_add(graph: DependencyGraph[Task], from_id: str, to_id: str) -> bool:
    return from_id != to_id and from_id not in graph.transitive_dependencies(to_id)


def _record(iteration: int, ctx: ProjectContext, report: ValidationReport, *, accepted: bool) -> IterationRecord:
    return IterationRecord(
        iteration=iteration,
        version=ctx.version if accepted else None,
        score=report.score,
        status=report.status,
        issues=report.issues,
        accepted=accepted,
    )


def _log_iteration(rec: IterationRecord) -> None:
    logger.info(
        "validate: iteration=%d version=%s score=%.1f status=%s issues=%d accepted=%s",
        rec.iteration,
        rec.version,
        rec.score,
        rec.status,
        len(rec.issues),
        rec.accepted,
    )
