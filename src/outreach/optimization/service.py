"""
Portfolio optimizer service: the operations exposed to the API.

The service holds no per-solve state. Every solve builds its own constraint
context and candidate list; the repository's draft -> solving transition is
the only thing that serializes solves of the same problem.
"""
import time
import uuid
from collections import Counter
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import structlog

from outreach.config.settings import settings
from outreach.database.repository import OptimizationRepository
from outreach.optimization.analysis import SensitivityAnalyzer, WhatIfAnalyzer
from outreach.optimization.candidates import CandidateGenerator
from outreach.optimization.collaborators import (
    AudienceSource,
    ConstraintDefinitionSource,
    PredictionModel,
    UncertaintyModel,
)
from outreach.optimization.constraints import build_constraint_context, check_violations
from outreach.optimization.export import EXPORT_FORMATS, render_plan
from outreach.optimization.objective import evaluate_objective
from outreach.optimization.solvers import solve_with
from outreach.optimization.types import (
    Allocation,
    Channel,
    ConstraintViolation,
    OptimizationProblem,
    OptimizationResult,
    PlannedAllocation,
    ProblemStatus,
    SensitivityReport,
    SolverType,
    WhatIfRequest,
    WhatIfResult,
)
from outreach.utils.cache import CacheManager
from outreach.utils.exceptions import EmptyAudienceError, InvalidStateError, NotFoundError

logger = structlog.get_logger()

# Lift above which a planned action is expected to produce a response
RESPONSE_LIFT_THRESHOLD = 0.5


class PortfolioOptimizer:
    """Creates, solves and analyzes outreach optimization problems."""

    def __init__(self,
                 repository: OptimizationRepository,
                 audience_source: AudienceSource,
                 constraint_source: ConstraintDefinitionSource,
                 prediction_model: PredictionModel,
                 uncertainty_model: UncertaintyModel,
                 cache: Optional[CacheManager] = None):
        self.repository = repository
        self.audience_source = audience_source
        self.constraint_source = constraint_source
        self.candidate_generator = CandidateGenerator(prediction_model, uncertainty_model)
        self.cache = cache
        self.sensitivity_analyzer = SensitivityAnalyzer()
        self.what_if_analyzer = WhatIfAnalyzer()

    # Problems

    async def create_problem(self, problem: OptimizationProblem) -> OptimizationProblem:
        """Stores a new problem in draft status."""
        if not problem.id:
            problem.id = str(uuid.uuid4())
        problem.status = ProblemStatus.DRAFT

        created = await self.repository.create_problem(problem)
        logger.info(
            "Optimization problem created",
            problem_id=created.id,
            objective=created.objective_metric.value,
            hcp_count=created.hcp_count,
            audience_id=created.audience_id
        )
        return created

    async def get_problem(self, problem_id: str) -> OptimizationProblem:
        problem = await self.repository.get_problem(problem_id)
        if problem is None:
            raise NotFoundError("Problem", problem_id)
        return problem

    async def list_problems(self,
                            status: Optional[ProblemStatus] = None,
                            limit: int = 50) -> List[OptimizationProblem]:
        return await self.repository.list_problems(status=status, limit=limit)

    async def delete_problem(self, problem_id: str) -> None:
        problem = await self.get_problem(problem_id)
        if problem.status == ProblemStatus.SOLVING:
            raise InvalidStateError(
                f"Problem {problem_id} is being solved and cannot be deleted",
                status=problem.status.value
            )

        result_ids = await self.repository.delete_problem(problem_id)
        if self.cache and result_ids:
            await self.cache.invalidate_exports(result_ids, EXPORT_FORMATS)

    # Solving

    async def solve(self,
                    problem_id: str,
                    solver: Optional[SolverType] = None,
                    max_iterations: Optional[int] = None,
                    max_time_ms: Optional[int] = None) -> OptimizationResult:
        """
        Solves a draft problem and stores the result.

        Args:
            problem_id: Problem to solve
            solver: Strategy override, defaults to the problem's preferred solver
            max_iterations: Local search pass budget
            max_time_ms: Wall-clock budget for the whole solve; local search
                gets whatever candidate generation leaves of it

        Returns:
            Stored OptimizationResult

        Raises:
            NotFoundError: Unknown problem
            InvalidStateError: Problem is not in draft status
            EmptyAudienceError: Problem resolves to no HCPs (problem marked failed)
        """
        problem = await self.get_problem(problem_id)

        if not await self.repository.claim_for_solving(problem_id):
            current = await self.repository.get_problem(problem_id)
            status = current.status.value if current else problem.status.value
            raise InvalidStateError(
                f"Problem {problem_id} cannot be solved in status '{status}'",
                status=status
            )

        start = time.perf_counter()
        config = settings.optimizer

        try:
            solver_type = SolverType(solver or problem.preferred_solver or config.default_solver)
            max_iterations = max_iterations or config.default_max_iterations
            max_time_ms = max_time_ms or problem.max_solve_time_ms or config.default_max_solve_time_ms
            exploration_pct = (
                problem.exploration_budget_pct if problem.exploration_budget_pct is not None
                else config.default_exploration_budget_pct
            )

            logger.info(
                "Starting optimization solve",
                problem_id=problem_id,
                solver=solver_type.value,
                objective=problem.objective_metric.value,
                max_iterations=max_iterations,
                max_time_ms=max_time_ms
            )

            hcp_ids = await self._resolve_audience(problem)
            if not hcp_ids:
                raise EmptyAudienceError()

            context = await build_constraint_context(
                problem,
                self.constraint_source,
                default_contact_limit=config.default_contact_limit
            )
            hcp_names = await self.audience_source.get_hcp_names(hcp_ids)
            candidates = await self.candidate_generator.generate(hcp_ids, context, hcp_names)

            remaining_ms = max(0.0, max_time_ms - (time.perf_counter() - start) * 1000)
            output = solve_with(
                solver_type,
                candidates,
                context,
                metric=problem.objective_metric,
                exploration_budget_pct=exploration_pct,
                max_iterations=max_iterations,
                max_time_ms=remaining_ms,
                sense=problem.objective_sense
            )

            objective_value = evaluate_objective(output.allocations, problem.objective_metric)
            violations = check_violations(output.allocations, context, problem)
            solve_time_ms = int((time.perf_counter() - start) * 1000)

            result = self._summarize(
                problem,
                solver_type,
                output.allocations,
                objective_value,
                violations,
                solve_time_ms,
                output.iterations
            )
            planned = self._plan_allocations(problem, output.allocations)

            result = await self.repository.save_result(result, planned)
            await self.repository.update_problem_status(problem_id, ProblemStatus.SOLVED)

        except Exception as e:
            logger.error("Optimization solve failed", problem_id=problem_id, error=str(e))
            await self.repository.update_problem_status(problem_id, ProblemStatus.FAILED)
            raise

        logger.info(
            "Optimization solve complete",
            problem_id=problem_id,
            result_id=result.id,
            solver=solver_type.value,
            objective_value=result.objective_value,
            feasible=result.feasible,
            total_actions=result.total_actions,
            solve_time_ms=result.solve_time_ms,
            iterations=result.iterations
        )
        return result

    async def _resolve_audience(self, problem: OptimizationProblem) -> List[str]:
        """Explicit ids win over a named audience reference."""
        if problem.hcp_ids:
            return list(dict.fromkeys(problem.hcp_ids))
        if problem.audience_id:
            return list(dict.fromkeys(await self.audience_source.resolve_audience(problem.audience_id)))
        return []

    def _summarize(self,
                   problem: OptimizationProblem,
                   solver_type: SolverType,
                   allocations: Sequence[Allocation],
                   objective_value: float,
                   violations: List[ConstraintViolation],
                   solve_time_ms: int,
                   iterations: int) -> OptimizationResult:
        lifts = np.array([a.predicted_lift for a in allocations], dtype=float)
        total_cost = float(sum(a.estimated_cost for a in allocations))
        exploration = [a for a in allocations if a.is_exploration]

        budget_utilization = None
        if problem.budget_limit:
            budget_utilization = total_cost / problem.budget_limit * 100

        return OptimizationResult(
            problem_id=problem.id,
            problem_name=problem.name,
            solver_type=solver_type,
            objective_value=objective_value,
            feasible=not violations,
            total_actions=len(allocations),
            total_hcps=len({a.hcp_id for a in allocations}),
            actions_by_channel={c.value: n for c, n in Counter(a.channel for a in allocations).items()},
            total_budget_used=total_cost,
            budget_utilization=budget_utilization,
            predicted_total_lift=float(lifts.sum()) if allocations else 0.0,
            predicted_engagement_rate=float(lifts.mean()) if allocations else 0.0,
            predicted_response_rate=(
                float(np.mean(lifts > RESPONSE_LIFT_THRESHOLD)) if allocations else 0.0
            ),
            exploration_actions=len(exploration),
            exploration_budget_used=float(sum(a.estimated_cost for a in exploration)),
            constraint_violations=violations,
            solve_time_ms=solve_time_ms,
            iterations=iterations
        )

    @staticmethod
    def _plan_allocations(problem: OptimizationProblem,
                          allocations: Sequence[Allocation]) -> List[PlannedAllocation]:
        planned_date = problem.start_date or datetime.now(UTC)
        return [
            PlannedAllocation(
                id=str(uuid.uuid4()),
                result_id="",
                hcp_id=a.hcp_id,
                hcp_name=a.candidate.hcp_name,
                channel=a.channel,
                action_type=f"{a.channel.value}_outreach",
                planned_date=planned_date,
                predicted_lift=a.predicted_lift,
                confidence=a.candidate.confidence,
                is_exploration=a.is_exploration,
                estimated_cost=a.estimated_cost,
                priority=a.priority,
                selection_reason=a.selection_reason
            )
            for a in allocations
        ]

    # Results

    async def get_result(self, result_id: str) -> OptimizationResult:
        result = await self.repository.get_result(result_id)
        if result is None:
            raise NotFoundError("Result", result_id)
        return result

    async def get_allocations(self,
                              result_id: str,
                              channel: Optional[Channel] = None,
                              limit: Optional[int] = None,
                              offset: int = 0) -> List[PlannedAllocation]:
        await self.get_result(result_id)
        return await self.repository.get_allocations(
            result_id,
            channel=channel,
            limit=limit if limit is not None else settings.optimizer.allocation_page_size,
            offset=offset
        )

    async def analyze_sensitivity(self, result_id: str) -> SensitivityReport:
        result = await self.get_result(result_id)
        problem = await self.get_problem(result.problem_id)
        allocations = await self.repository.get_allocations(result_id)
        return self.sensitivity_analyzer.analyze(problem, result, allocations)

    async def what_if(self, result_id: str, request: WhatIfRequest) -> WhatIfResult:
        result = await self.get_result(result_id)
        return self.what_if_analyzer.analyze(result, request)

    async def export_plan(self, result_id: str, export_format: str = "csv") -> str:
        """Renders a result's allocations as CSV or JSON."""
        if export_format not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {export_format}. Use one of {EXPORT_FORMATS}")

        await self.get_result(result_id)

        if self.cache:
            cached = await self.cache.get_export(result_id, export_format)
            if cached is not None:
                return cached

        allocations = await self.repository.get_allocations(
            result_id, limit=settings.optimizer.export_max_rows
        )
        content = render_plan(allocations, export_format)

        if self.cache:
            await self.cache.cache_export(result_id, export_format, content)

        logger.info("Plan exported", result_id=result_id, format=export_format, rows=len(allocations))
        return content

    def describe(self) -> Dict[str, Any]:
        """Collaborators in use, for health reporting."""
        return {
            "audience_source": type(self.audience_source).__name__,
            "constraint_source": type(self.constraint_source).__name__,
            "prediction_model": type(self.candidate_generator.prediction_model).__name__,
            "uncertainty_model": type(self.candidate_generator.uncertainty_model).__name__,
            "cache": "redis" if self.cache and self.cache.redis_client else "memory"
        }
