"""
Pydantic schemas for API request/response validation.
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Dict, List, Optional, Any
from datetime import datetime

from outreach.config.settings import settings
from outreach.optimization.types import (
    ObjectiveMetric,
    ObjectiveSense,
    OptimizationProblem,
    SolverType,
    WhatIfRequest,
    WhatIfType,
)


class ProblemCreateSchema(BaseModel):
    name: str = Field(..., min_length=1, description="Problem name")
    description: Optional[str] = Field(None, description="Free-text description")
    objective_metric: ObjectiveMetric = Field(..., description="Metric to optimize")
    objective_sense: ObjectiveSense = Field(ObjectiveSense.MAXIMIZE, description="maximize or minimize")

    # Audience: explicit ids win over a named audience
    hcp_ids: List[str] = Field(default_factory=list, description="Explicit HCP ids")
    audience_id: Optional[str] = Field(None, description="Named audience resolved at solve time")
    campaign_id: Optional[str] = Field(None, description="Campaign the plan belongs to")

    budget_limit: Optional[float] = Field(None, ge=0, description="Total budget limit")
    exploration_budget_pct: Optional[float] = Field(
        None, ge=0, le=100, description="Share of candidates reserved for exploration (0-100)"
    )
    planning_horizon_days: int = Field(
        settings.optimizer.default_planning_horizon_days, gt=0, description="Planning horizon in days"
    )
    start_date: Optional[datetime] = Field(None, description="Planned start date for actions")
    end_date: Optional[datetime] = Field(None, description="Planning end date")

    preferred_solver: SolverType = Field(SolverType.GREEDY, description="Default solver")
    max_solve_time_ms: Optional[int] = Field(None, gt=0, description="Local search time budget")

    include_contact_limits: bool = True
    include_compliance_windows: bool = True
    respect_reservations: bool = True
    capacity_constraint_ids: List[str] = Field(
        default_factory=list, description="Capacity definitions that apply to this problem"
    )

    @field_validator('end_date')
    @classmethod
    def validate_end_date(cls, v, info):
        start = info.data.get('start_date')
        if v is not None and start is not None and v < start:
            raise ValueError('end_date must not be before start_date')
        return v

    def to_domain(self) -> OptimizationProblem:
        return OptimizationProblem(
            id="",
            name=self.name,
            description=self.description,
            objective_metric=self.objective_metric,
            objective_sense=self.objective_sense,
            hcp_ids=list(self.hcp_ids),
            audience_id=self.audience_id,
            campaign_id=self.campaign_id,
            budget_limit=self.budget_limit,
            exploration_budget_pct=self.exploration_budget_pct,
            planning_horizon_days=self.planning_horizon_days,
            start_date=self.start_date,
            end_date=self.end_date,
            preferred_solver=self.preferred_solver,
            max_solve_time_ms=self.max_solve_time_ms,
            include_contact_limits=self.include_contact_limits,
            include_compliance_windows=self.include_compliance_windows,
            respect_reservations=self.respect_reservations,
            capacity_constraint_ids=list(self.capacity_constraint_ids)
        )


class SolveRequestSchema(BaseModel):
    solver: Optional[SolverType] = Field(None, description="Overrides the problem's preferred solver")
    max_iterations: Optional[int] = Field(None, gt=0, description="Local search pass budget")
    max_time_ms: Optional[int] = Field(None, gt=0, description="Local search time budget")


class WhatIfRequestSchema(BaseModel):
    type: WhatIfType = Field(..., description="add_budget, remove_constraint or change_objective")
    additional_budget: Optional[float] = Field(None, ge=0)
    constraint_id_to_remove: Optional[str] = None
    new_objective_metric: Optional[ObjectiveMetric] = None

    @model_validator(mode='after')
    def validate_type_arguments(self):
        if self.type == WhatIfType.ADD_BUDGET and not self.additional_budget:
            raise ValueError('additional_budget is required for add_budget')
        return self

    def to_domain(self) -> WhatIfRequest:
        return WhatIfRequest(
            type=self.type,
            additional_budget=self.additional_budget,
            constraint_id_to_remove=self.constraint_id_to_remove,
            new_objective_metric=self.new_objective_metric
        )


class ConstraintViolationSchema(BaseModel):
    constraint_type: str
    constraint_id: Optional[str] = None
    severity: str
    message: str
    affected_count: int


class ProblemResponseSchema(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    audience_id: Optional[str] = None
    campaign_id: Optional[str] = None
    hcp_count: int
    objective_metric: ObjectiveMetric
    objective_sense: ObjectiveSense
    budget_limit: Optional[float] = None
    exploration_budget_pct: Optional[float] = None
    planning_horizon_days: int
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    preferred_solver: SolverType
    max_solve_time_ms: Optional[int] = None
    include_contact_limits: bool
    include_compliance_windows: bool
    respect_reservations: bool
    capacity_constraint_ids: List[str]
    status: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ResultResponseSchema(BaseModel):
    id: str
    problem_id: str
    problem_name: Optional[str] = None
    solver_type: SolverType
    objective_value: float
    feasible: bool
    optimality_gap: Optional[float] = None
    total_actions: int
    total_hcps: int
    actions_by_channel: Dict[str, int]
    total_budget_used: float
    budget_utilization: Optional[float] = None
    predicted_total_lift: float
    predicted_engagement_rate: float
    predicted_response_rate: float
    exploration_actions: int
    exploration_budget_used: float
    exploration_share: float
    constraint_violations: List[ConstraintViolationSchema]
    solve_time_ms: int
    iterations: int
    solved_at: Optional[str] = None


class AllocationResponseSchema(BaseModel):
    id: str
    result_id: str
    hcp_id: str
    hcp_name: str
    channel: str
    action_type: str
    planned_date: str
    predicted_lift: float
    confidence: float
    is_exploration: bool
    estimated_cost: float
    status: str
    selection_reason: str
    priority: int


class WhatIfResponseSchema(BaseModel):
    original_objective_value: float
    new_objective_value: float
    improvement: float
    improvement_percent: float
    feasibility_changed: bool
    new_violations: List[Dict[str, Any]]
    resolved_violations: List[str]
    affected_allocations: int
    recommendation: str
