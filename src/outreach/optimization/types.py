"""
Domain types for portfolio optimization.
Problems, candidates, allocations, results and the derived analysis views.
"""
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum


class ObjectiveMetric(str, Enum):
    TOTAL_ENGAGEMENT_LIFT = "total_engagement_lift"
    ROI = "roi"
    REACH = "reach"
    RESPONSE_RATE = "response_rate"
    RX_LIFT = "rx_lift"


class ObjectiveSense(str, Enum):
    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"


class SolverType(str, Enum):
    GREEDY = "greedy"
    LOCAL_SEARCH = "local_search"


class ProblemStatus(str, Enum):
    DRAFT = "draft"
    SOLVING = "solving"
    SOLVED = "solved"
    FAILED = "failed"


class Channel(str, Enum):
    EMAIL = "email"
    REP_VISIT = "rep_visit"
    WEBINAR = "webinar"
    CONFERENCE = "conference"
    DIGITAL_AD = "digital_ad"
    PHONE = "phone"


class ViolationSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"  # reserved, never produced by the audit today


class WhatIfType(str, Enum):
    ADD_BUDGET = "add_budget"
    REMOVE_CONSTRAINT = "remove_constraint"
    CHANGE_OBJECTIVE = "change_objective"


# Fixed unit cost per action on each channel
CHANNEL_COSTS: Dict[Channel, float] = {
    Channel.EMAIL: 5.0,
    Channel.REP_VISIT: 150.0,
    Channel.WEBINAR: 25.0,
    Channel.CONFERENCE: 500.0,
    Channel.DIGITAL_AD: 10.0,
    Channel.PHONE: 30.0,
}

# Stimulus type the prediction collaborator expects for each channel
CHANNEL_STIMULUS_TYPES: Dict[Channel, str] = {
    Channel.EMAIL: "email_send",
    Channel.REP_VISIT: "rep_visit",
    Channel.WEBINAR: "webinar_invite",
    Channel.CONFERENCE: "conference_meeting",
    Channel.DIGITAL_AD: "digital_ad_impression",
    Channel.PHONE: "phone_call",
}


@dataclass(frozen=True)
class Candidate:
    """A scored (HCP, channel) action that a solver may select."""
    hcp_id: str
    channel: Channel
    predicted_lift: float
    confidence: float
    exploration_value: float
    estimated_cost: float
    is_exploration: bool
    hcp_name: str = "Unknown"


@dataclass(frozen=True)
class Allocation:
    """A selected candidate with its rank and the reason it was picked."""
    candidate: Candidate
    priority: int
    selection_reason: str

    @property
    def hcp_id(self) -> str:
        return self.candidate.hcp_id

    @property
    def channel(self) -> Channel:
        return self.candidate.channel

    @property
    def predicted_lift(self) -> float:
        return self.candidate.predicted_lift

    @property
    def estimated_cost(self) -> float:
        return self.candidate.estimated_cost

    @property
    def is_exploration(self) -> bool:
        return self.candidate.is_exploration


@dataclass
class PlannedAllocation:
    """An allocation as stored against a result."""
    id: str
    result_id: str
    hcp_id: str
    hcp_name: str
    channel: Channel
    action_type: str
    planned_date: datetime
    predicted_lift: float
    confidence: float
    is_exploration: bool
    estimated_cost: float
    priority: int
    selection_reason: str
    status: str = "planned"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses and JSON export."""
        return {
            "id": self.id,
            "result_id": self.result_id,
            "hcp_id": self.hcp_id,
            "hcp_name": self.hcp_name,
            "channel": self.channel.value,
            "action_type": self.action_type,
            "planned_date": self.planned_date.isoformat(),
            "predicted_lift": self.predicted_lift,
            "confidence": self.confidence,
            "is_exploration": self.is_exploration,
            "estimated_cost": self.estimated_cost,
            "status": self.status,
            "selection_reason": self.selection_reason,
            "priority": self.priority,
        }


@dataclass
class ConstraintViolation:
    constraint_type: str  # "budget" or "capacity"
    severity: ViolationSeverity
    message: str
    affected_count: int
    constraint_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "constraint_type": self.constraint_type,
            "constraint_id": self.constraint_id,
            "severity": self.severity.value,
            "message": self.message,
            "affected_count": self.affected_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConstraintViolation":
        return cls(
            constraint_type=data["constraint_type"],
            severity=ViolationSeverity(data.get("severity", "error")),
            message=data.get("message", ""),
            affected_count=int(data.get("affected_count", 0)),
            constraint_id=data.get("constraint_id"),
        )


@dataclass
class OptimizationProblem:
    id: str
    name: str
    objective_metric: ObjectiveMetric
    objective_sense: ObjectiveSense = ObjectiveSense.MAXIMIZE
    description: Optional[str] = None
    audience_id: Optional[str] = None
    campaign_id: Optional[str] = None
    hcp_ids: List[str] = field(default_factory=list)
    budget_limit: Optional[float] = None
    exploration_budget_pct: Optional[float] = None
    planning_horizon_days: int = 30
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    preferred_solver: SolverType = SolverType.GREEDY
    max_solve_time_ms: Optional[int] = None
    include_contact_limits: bool = True
    include_compliance_windows: bool = True
    respect_reservations: bool = True
    capacity_constraint_ids: List[str] = field(default_factory=list)
    status: ProblemStatus = ProblemStatus.DRAFT
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def hcp_count(self) -> int:
        return len(self.hcp_ids)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "audience_id": self.audience_id,
            "campaign_id": self.campaign_id,
            "hcp_count": self.hcp_count,
            "objective_metric": self.objective_metric.value,
            "objective_sense": self.objective_sense.value,
            "budget_limit": self.budget_limit,
            "exploration_budget_pct": self.exploration_budget_pct,
            "planning_horizon_days": self.planning_horizon_days,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "preferred_solver": self.preferred_solver.value,
            "max_solve_time_ms": self.max_solve_time_ms,
            "include_contact_limits": self.include_contact_limits,
            "include_compliance_windows": self.include_compliance_windows,
            "respect_reservations": self.respect_reservations,
            "capacity_constraint_ids": list(self.capacity_constraint_ids),
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class OptimizationResult:
    problem_id: str
    solver_type: SolverType
    objective_value: float
    feasible: bool
    total_actions: int
    total_hcps: int
    actions_by_channel: Dict[str, int]
    total_budget_used: float
    budget_utilization: Optional[float]
    predicted_total_lift: float
    predicted_engagement_rate: float
    predicted_response_rate: float
    exploration_actions: int
    exploration_budget_used: float
    constraint_violations: List[ConstraintViolation]
    solve_time_ms: int
    iterations: int
    id: Optional[str] = None
    problem_name: Optional[str] = None
    optimality_gap: Optional[float] = None  # heuristic solvers cannot bound the gap
    solved_at: Optional[datetime] = None

    @property
    def exploration_share(self) -> float:
        return self.exploration_actions / self.total_actions if self.total_actions else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "problem_id": self.problem_id,
            "problem_name": self.problem_name,
            "solver_type": self.solver_type.value,
            "objective_value": self.objective_value,
            "feasible": self.feasible,
            "optimality_gap": self.optimality_gap,
            "total_actions": self.total_actions,
            "total_hcps": self.total_hcps,
            "actions_by_channel": dict(self.actions_by_channel),
            "total_budget_used": self.total_budget_used,
            "budget_utilization": self.budget_utilization,
            "predicted_total_lift": self.predicted_total_lift,
            "predicted_engagement_rate": self.predicted_engagement_rate,
            "predicted_response_rate": self.predicted_response_rate,
            "exploration_actions": self.exploration_actions,
            "exploration_budget_used": self.exploration_budget_used,
            "exploration_share": self.exploration_share,
            "constraint_violations": [v.to_dict() for v in self.constraint_violations],
            "solve_time_ms": self.solve_time_ms,
            "iterations": self.iterations,
            "solved_at": self.solved_at.isoformat() if self.solved_at else None,
        }


@dataclass
class BudgetSensitivity:
    current_budget: float
    marginal_value_per_dollar: float
    optimal_budget: float
    diminishing_returns_at: float


@dataclass
class ConstraintSensitivity:
    constraint_type: str
    constraint_id: Optional[str]
    shadow_price: float
    binding: bool
    slack_amount: int


@dataclass
class ChannelSensitivity:
    channel: Channel
    current_allocation: int
    marginal_lift: float
    cost_per_lift: float


@dataclass
class SensitivityReport:
    problem_id: str
    result_id: str
    budget_sensitivity: Optional[BudgetSensitivity]
    constraint_sensitivities: List[ConstraintSensitivity]
    channel_sensitivities: List[ChannelSensitivity]
    computed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["computed_at"] = self.computed_at.isoformat()
        for entry in data["channel_sensitivities"]:
            entry["channel"] = Channel(entry["channel"]).value
        return data


@dataclass
class WhatIfRequest:
    type: WhatIfType
    additional_budget: Optional[float] = None
    constraint_id_to_remove: Optional[str] = None
    new_objective_metric: Optional[ObjectiveMetric] = None


@dataclass
class WhatIfResult:
    original_objective_value: float
    new_objective_value: float
    improvement: float
    improvement_percent: float
    feasibility_changed: bool
    new_violations: List[Dict[str, str]]
    resolved_violations: List[str]
    affected_allocations: int
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
