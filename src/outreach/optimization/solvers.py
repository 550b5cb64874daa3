"""
Heuristic solvers for the outreach allocation problem.

GreedySolver builds a feasible first-pass allocation (exploration quota
first, then exploitation by predicted lift). LocalSearchSolver refines a
seed allocation with first-improvement channel swaps, re-validating every
trial set against a fresh clone of the baseline context.
"""
import math
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Sequence

import structlog

from outreach.optimization.constraints import ConstraintContext, apply_allocation, can_allocate
from outreach.optimization.objective import evaluate_objective
from outreach.optimization.types import (
    Allocation,
    Candidate,
    ObjectiveMetric,
    ObjectiveSense,
)

logger = structlog.get_logger()


@dataclass
class SolverOutput:
    allocations: List[Allocation]
    iterations: int


class GreedySolver:
    """Fast, deterministic, feasible-by-construction allocation."""

    def __init__(self, exploration_budget_pct: float = 10.0):
        self.exploration_budget_pct = exploration_budget_pct

    def solve(self, candidates: Sequence[Candidate], context: ConstraintContext) -> SolverOutput:
        """
        Runs the two greedy passes.

        Args:
            candidates: Scored candidates
            context: Baseline constraint context (left untouched; a clone is booked)

        Returns:
            SolverOutput with allocations in selection order
        """
        ledger = context.clone()
        allocations: List[Allocation] = []

        exploration_target = math.floor(len(candidates) * self.exploration_budget_pct / 100)

        # sorted() is stable, equal scores keep generation order
        exploration = sorted(
            (c for c in candidates if c.is_exploration),
            key=lambda c: c.exploration_value,
            reverse=True
        )
        exploitation = sorted(
            (c for c in candidates if not c.is_exploration),
            key=lambda c: c.predicted_lift,
            reverse=True
        )

        iterations = 0
        exploration_count = 0

        for candidate in exploration:
            iterations += 1
            if exploration_count >= exploration_target:
                break

            if can_allocate(candidate, ledger):
                allocations.append(Allocation(
                    candidate=candidate,
                    priority=len(allocations),
                    selection_reason=(
                        f"Exploration: high uncertainty (value={candidate.exploration_value:.2f})"
                    )
                ))
                apply_allocation(candidate, ledger)
                exploration_count += 1

        for candidate in exploitation:
            iterations += 1

            if can_allocate(candidate, ledger):
                allocations.append(Allocation(
                    candidate=candidate,
                    priority=len(allocations),
                    selection_reason=f"Exploitation: high predicted lift ({candidate.predicted_lift:.2f})"
                ))
                apply_allocation(candidate, ledger)

        logger.info(
            "Greedy solve complete",
            candidates=len(candidates),
            exploration_target=exploration_target,
            exploration_selected=exploration_count,
            allocations=len(allocations),
            budget_used=ledger.budget_used,
            iterations=iterations
        )
        return SolverOutput(allocations=allocations, iterations=iterations)


class LocalSearchSolver:
    """Hill climbing over single-allocation channel swaps, first improvement."""

    def __init__(self,
                 metric: ObjectiveMetric,
                 max_iterations: int = 1000,
                 max_time_ms: float = 30000,
                 sense: ObjectiveSense = ObjectiveSense.MAXIMIZE):
        self.metric = metric
        self.max_iterations = max_iterations
        self.max_time_ms = max_time_ms
        self.sense = sense

    def solve(self,
              seed: Sequence[Allocation],
              candidates: Sequence[Candidate],
              context: ConstraintContext) -> SolverOutput:
        """
        Improves ``seed`` until a full pass finds no improving swap or the
        iteration/time budget runs out. The clock is only checked between
        passes.

        Returns:
            SolverOutput whose iterations are the number of passes run
        """
        current = list(seed)
        current_score = evaluate_objective(current, self.metric)

        by_hcp: Dict[str, List[Candidate]] = defaultdict(list)
        for candidate in candidates:
            by_hcp[candidate.hcp_id].append(candidate)

        start = time.perf_counter()
        iterations = 0
        swaps = 0
        improved = True

        while improved and iterations < self.max_iterations and self._elapsed_ms(start) < self.max_time_ms:
            improved = False
            iterations += 1

            for index, allocation in enumerate(current):
                taken = {(a.hcp_id, a.channel) for a in current}

                for alternative in by_hcp.get(allocation.hcp_id, []):
                    if alternative.channel == allocation.channel:
                        continue
                    if (alternative.hcp_id, alternative.channel) in taken:
                        continue

                    trial = list(current)
                    trial[index] = Allocation(
                        candidate=alternative,
                        priority=allocation.priority,
                        selection_reason=f"Local search swap from {allocation.channel.value}"
                    )

                    if not self._is_feasible(trial, context):
                        continue

                    trial_score = evaluate_objective(trial, self.metric)
                    if self._improves(trial_score, current_score):
                        current = trial
                        current_score = trial_score
                        swaps += 1
                        improved = True
                        break

                if improved:
                    break

        logger.info(
            "Local search complete",
            passes=iterations,
            swaps=swaps,
            objective=current_score,
            elapsed_ms=round(self._elapsed_ms(start), 2)
        )
        return SolverOutput(allocations=current, iterations=iterations)

    def _is_feasible(self, trial: Sequence[Allocation], context: ConstraintContext) -> bool:
        """Replays the whole trial set against a fresh clone of the baseline."""
        ledger = context.clone()
        for allocation in trial:
            if not can_allocate(allocation.candidate, ledger):
                return False
            apply_allocation(allocation.candidate, ledger)
        return True

    def _improves(self, score: float, incumbent: float) -> bool:
        if self.sense == ObjectiveSense.MINIMIZE:
            return score < incumbent
        return score > incumbent

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000


def solve_with(solver: str,
               candidates: Sequence[Candidate],
               context: ConstraintContext,
               metric: ObjectiveMetric,
               exploration_budget_pct: float,
               max_iterations: int,
               max_time_ms: float,
               sense: ObjectiveSense = ObjectiveSense.MAXIMIZE) -> SolverOutput:
    """
    Runs the named strategy. ``local_search`` seeds from the greedy output and
    reports greedy visits plus local-search passes; anything else is greedy.
    """
    greedy = GreedySolver(exploration_budget_pct).solve(candidates, context)
    if solver != "local_search":
        return greedy

    local = LocalSearchSolver(
        metric=metric,
        max_iterations=max_iterations,
        max_time_ms=max_time_ms,
        sense=sense
    ).solve(greedy.allocations, candidates, context)

    return SolverOutput(
        allocations=local.allocations,
        iterations=greedy.iterations + local.iterations
    )
