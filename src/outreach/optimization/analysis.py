"""
Post-solve analysis over a stored result: sensitivity and what-if estimates.

Both analyzers are read-only and never re-run a solver. The constants below
are deliberate approximations, not dual values from an LP/MIP relaxation;
change them only together with the product owners.
"""
import math
from datetime import datetime, UTC
from typing import Dict, List, Optional, Sequence

import numpy as np
import structlog

from outreach.optimization.types import (
    BudgetSensitivity,
    Channel,
    ChannelSensitivity,
    ConstraintSensitivity,
    ConstraintViolation,
    OptimizationProblem,
    OptimizationResult,
    SensitivityReport,
    ViolationSeverity,
    WhatIfRequest,
    WhatIfResult,
    WhatIfType,
)

logger = structlog.get_logger()

# Budget sensitivity multipliers applied to the budget actually used
OPTIMAL_BUDGET_MULTIPLIER = 1.2
DIMINISHING_RETURNS_MULTIPLIER = 1.5

# Stand-in shadow prices for audited constraints
BINDING_SHADOW_PRICE = 0.1
NON_BINDING_SHADOW_PRICE = 0.05

# What-if: share of the average value per dollar that extra budget keeps
ADDITIONAL_BUDGET_DAMPING = 0.8
# What-if: average cost of one additional action
COST_PER_ADDITIONAL_ACTION = 50
# What-if: objective gain assumed when a violated constraint is lifted
CONSTRAINT_RELAXATION_GAIN = 0.10


class SensitivityAnalyzer:
    """Heuristic marginal-value estimates for budget, constraints and channels."""

    def analyze(self,
                problem: OptimizationProblem,
                result: OptimizationResult,
                allocations: Sequence) -> SensitivityReport:
        budget_sensitivity = None
        if problem.budget_limit is not None:
            budget_sensitivity = self._budget_sensitivity(result)

        return SensitivityReport(
            problem_id=problem.id,
            result_id=result.id,
            budget_sensitivity=budget_sensitivity,
            constraint_sensitivities=[
                self._constraint_sensitivity(v) for v in result.constraint_violations
            ],
            channel_sensitivities=[
                self._channel_sensitivity(channel, allocations) for channel in Channel
            ],
            computed_at=datetime.now(UTC)
        )

    def _budget_sensitivity(self, result: OptimizationResult) -> BudgetSensitivity:
        used = result.total_budget_used or 0.0
        return BudgetSensitivity(
            current_budget=used,
            marginal_value_per_dollar=result.objective_value / max(used, 1),
            optimal_budget=used * OPTIMAL_BUDGET_MULTIPLIER,
            diminishing_returns_at=used * DIMINISHING_RETURNS_MULTIPLIER
        )

    def _constraint_sensitivity(self, violation: ConstraintViolation) -> ConstraintSensitivity:
        binding = violation.severity == ViolationSeverity.ERROR
        return ConstraintSensitivity(
            constraint_type=violation.constraint_type,
            constraint_id=violation.constraint_id,
            shadow_price=BINDING_SHADOW_PRICE if binding else NON_BINDING_SHADOW_PRICE,
            binding=binding,
            slack_amount=violation.affected_count or 0
        )

    def _channel_sensitivity(self, channel: Channel, allocations: Sequence) -> ChannelSensitivity:
        on_channel = [a for a in allocations if a.channel == channel]
        lifts = np.array([a.predicted_lift for a in on_channel], dtype=float)
        total_lift = float(lifts.sum()) if on_channel else 0.0
        total_cost = float(sum(a.estimated_cost or 0 for a in on_channel))

        return ChannelSensitivity(
            channel=channel,
            current_allocation=len(on_channel),
            marginal_lift=float(lifts.mean()) if on_channel else 0.0,
            cost_per_lift=total_cost / total_lift if total_lift > 0 else 0.0
        )


class WhatIfAnalyzer:
    """Fast counterfactual estimates from a stored result."""

    def analyze(self, result: OptimizationResult, request: WhatIfRequest) -> WhatIfResult:
        original = result.objective_value
        new_objective = original
        resolved: List[str] = []
        new_violations: List[Dict[str, str]] = []
        feasibility_changed = False
        affected = 0
        recommendation = ""

        if request.type == WhatIfType.ADD_BUDGET:
            if request.additional_budget:
                increase = request.additional_budget
                marginal = original / (result.total_budget_used or 1)
                potential = increase * marginal * ADDITIONAL_BUDGET_DAMPING
                new_objective = original + potential
                affected = math.floor(increase / COST_PER_ADDITIONAL_ACTION)
                pct = potential / original * 100 if original else 0.0
                recommendation = (
                    f"Adding ${increase:,.0f} could improve objective by ~{potential:.2f} ({pct:.1f}%)"
                )

        elif request.type == WhatIfType.REMOVE_CONSTRAINT:
            violation = self._find_violation(result.constraint_violations, request.constraint_id_to_remove)
            if violation is not None:
                resolved.append(violation.message)
                feasibility_changed = True
                new_objective = original * (1 + CONSTRAINT_RELAXATION_GAIN)
                recommendation = (
                    f"Removing {violation.constraint_type} constraint could improve objective "
                    f"by ~{CONSTRAINT_RELAXATION_GAIN * 100:.0f}%"
                )
            else:
                recommendation = f"No violated constraint matches '{request.constraint_id_to_remove}'"

        elif request.type == WhatIfType.CHANGE_OBJECTIVE:
            if request.new_objective_metric:
                metric = getattr(request.new_objective_metric, "value", request.new_objective_metric)
                recommendation = (
                    f"Changing objective to {metric} would require re-solving. "
                    "Current solution may not be optimal for new objective."
                )

        improvement = new_objective - original
        improvement_percent = improvement / original * 100 if original else 0.0

        logger.info(
            "What-if analysis",
            result_id=result.id,
            type=request.type.value,
            original=original,
            new=new_objective
        )

        return WhatIfResult(
            original_objective_value=original,
            new_objective_value=new_objective,
            improvement=improvement,
            improvement_percent=improvement_percent,
            feasibility_changed=feasibility_changed,
            new_violations=new_violations,
            resolved_violations=resolved,
            affected_allocations=affected,
            recommendation=recommendation
        )

    @staticmethod
    def _find_violation(violations: Sequence[ConstraintViolation],
                        key: Optional[str]) -> Optional[ConstraintViolation]:
        if not key:
            return None
        for violation in violations:
            if violation.constraint_id == key or violation.constraint_type == key:
                return violation
        return None
