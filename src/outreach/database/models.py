"""
SQLAlchemy database models for optimization problems, results and allocations.
"""
from datetime import datetime, UTC
from sqlalchemy import Column, Integer, String, Float, Text, JSON, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import relationship
import uuid

from outreach.database.connection import Base
from outreach.optimization.types import (
    Channel,
    ConstraintViolation,
    ObjectiveMetric,
    ObjectiveSense,
    OptimizationProblem,
    OptimizationResult,
    PlannedAllocation,
    ProblemStatus,
    SolverType,
)


class OptimizationProblemRecord(Base):
    """Model for optimization problems."""
    __tablename__ = "optimization_problems"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    description = Column(Text)

    # Audience
    audience_id = Column(String)
    campaign_id = Column(String)
    hcp_ids = Column(JSON)

    # Objective
    objective_metric = Column(String, nullable=False)
    objective_sense = Column(String, default="maximize")

    # Budget and planning
    budget_limit = Column(Float)
    exploration_budget_pct = Column(Float)
    planning_horizon_days = Column(Integer, default=30)
    start_date = Column(TIMESTAMP(timezone=True))
    end_date = Column(TIMESTAMP(timezone=True))

    # Solver
    preferred_solver = Column(String, default="greedy")
    max_solve_time_ms = Column(Integer)

    # Constraint toggles
    include_contact_limits = Column(Boolean, default=True)
    include_compliance_windows = Column(Boolean, default=True)
    respect_reservations = Column(Boolean, default=True)
    capacity_constraint_ids = Column(JSON)

    # Status: draft, solving, solved, failed
    status = Column(String, default="draft", index=True)
    created_at = Column(TIMESTAMP(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = Column(TIMESTAMP(timezone=True), default=lambda: datetime.now(UTC))

    # Relationships
    results = relationship("OptimizationResultRecord", back_populates="problem", cascade="all, delete-orphan")

    def to_domain(self) -> OptimizationProblem:
        return OptimizationProblem(
            id=self.id,
            name=self.name,
            description=self.description,
            audience_id=self.audience_id,
            campaign_id=self.campaign_id,
            hcp_ids=list(self.hcp_ids or []),
            objective_metric=ObjectiveMetric(self.objective_metric),
            objective_sense=ObjectiveSense(self.objective_sense or "maximize"),
            budget_limit=self.budget_limit,
            exploration_budget_pct=self.exploration_budget_pct,
            planning_horizon_days=self.planning_horizon_days or 30,
            start_date=self.start_date,
            end_date=self.end_date,
            preferred_solver=SolverType(self.preferred_solver or "greedy"),
            max_solve_time_ms=self.max_solve_time_ms,
            include_contact_limits=bool(self.include_contact_limits),
            include_compliance_windows=bool(self.include_compliance_windows),
            respect_reservations=bool(self.respect_reservations),
            capacity_constraint_ids=list(self.capacity_constraint_ids or []),
            status=ProblemStatus(self.status),
            created_at=self.created_at,
            updated_at=self.updated_at
        )


class OptimizationResultRecord(Base):
    """Model for solver results."""
    __tablename__ = "optimization_results"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    problem_id = Column(String, ForeignKey("optimization_problems.id"), nullable=False, index=True)

    solver_type = Column(String, nullable=False)
    objective_value = Column(Float, nullable=False)
    feasible = Column(Boolean, nullable=False)
    optimality_gap = Column(Float)

    # Summary
    total_actions = Column(Integer)
    total_hcps = Column(Integer)
    actions_by_channel = Column(JSON)
    total_budget_used = Column(Float)
    budget_utilization = Column(Float)
    predicted_total_lift = Column(Float)
    predicted_engagement_rate = Column(Float)
    predicted_response_rate = Column(Float)
    exploration_actions = Column(Integer)
    exploration_budget_used = Column(Float)
    constraint_violations = Column(JSON)

    # Solve statistics
    solve_time_ms = Column(Integer)
    iterations = Column(Integer)
    solved_at = Column(TIMESTAMP(timezone=True), default=lambda: datetime.now(UTC))

    # Relationships
    problem = relationship("OptimizationProblemRecord", back_populates="results")
    allocations = relationship(
        "OptimizationAllocationRecord", back_populates="result", cascade="all, delete-orphan"
    )

    def to_domain(self, problem_name: str = None) -> OptimizationResult:
        return OptimizationResult(
            id=self.id,
            problem_id=self.problem_id,
            problem_name=problem_name,
            solver_type=SolverType(self.solver_type),
            objective_value=self.objective_value,
            feasible=bool(self.feasible),
            optimality_gap=self.optimality_gap,
            total_actions=self.total_actions or 0,
            total_hcps=self.total_hcps or 0,
            actions_by_channel=dict(self.actions_by_channel or {}),
            total_budget_used=self.total_budget_used or 0.0,
            budget_utilization=self.budget_utilization,
            predicted_total_lift=self.predicted_total_lift or 0.0,
            predicted_engagement_rate=self.predicted_engagement_rate or 0.0,
            predicted_response_rate=self.predicted_response_rate or 0.0,
            exploration_actions=self.exploration_actions or 0,
            exploration_budget_used=self.exploration_budget_used or 0.0,
            constraint_violations=[
                ConstraintViolation.from_dict(v) for v in (self.constraint_violations or [])
            ],
            solve_time_ms=self.solve_time_ms or 0,
            iterations=self.iterations or 0,
            solved_at=self.solved_at
        )


class OptimizationAllocationRecord(Base):
    """Model for planned actions belonging to a result."""
    __tablename__ = "optimization_allocations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    result_id = Column(String, ForeignKey("optimization_results.id"), nullable=False, index=True)

    hcp_id = Column(String, nullable=False)
    hcp_name = Column(String)
    channel = Column(String, nullable=False, index=True)
    action_type = Column(String, nullable=False)
    planned_date = Column(TIMESTAMP(timezone=True), nullable=False)

    predicted_lift = Column(Float, nullable=False)
    confidence = Column(Float)
    is_exploration = Column(Boolean, default=False)
    estimated_cost = Column(Float)
    status = Column(String, default="planned")
    selection_reason = Column(Text)
    priority = Column(Integer, nullable=False)

    # Relationships
    result = relationship("OptimizationResultRecord", back_populates="allocations")

    def to_domain(self) -> PlannedAllocation:
        return PlannedAllocation(
            id=self.id,
            result_id=self.result_id,
            hcp_id=self.hcp_id,
            hcp_name=self.hcp_name or "Unknown",
            channel=Channel(self.channel),
            action_type=self.action_type,
            planned_date=self.planned_date,
            predicted_lift=self.predicted_lift,
            confidence=self.confidence or 0.0,
            is_exploration=bool(self.is_exploration),
            estimated_cost=self.estimated_cost or 0.0,
            priority=self.priority,
            selection_reason=self.selection_reason or "",
            status=self.status or "planned"
        )
