"""
Repository for optimization problems, results and allocations.
"""
from datetime import datetime, UTC
from typing import List, Optional, Sequence
import uuid

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from outreach.database.models import (
    OptimizationAllocationRecord,
    OptimizationProblemRecord,
    OptimizationResultRecord,
)
from outreach.optimization.types import (
    Channel,
    OptimizationProblem,
    OptimizationResult,
    PlannedAllocation,
    ProblemStatus,
)

logger = structlog.get_logger()

ALLOCATION_BATCH_SIZE = 100


class OptimizationRepository:
    """Async persistence for the optimizer. Every call runs in its own session."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    # Problems

    async def create_problem(self, problem: OptimizationProblem) -> OptimizationProblem:
        now = datetime.now(UTC)
        record = OptimizationProblemRecord(
            id=problem.id or str(uuid.uuid4()),
            name=problem.name,
            description=problem.description,
            audience_id=problem.audience_id,
            campaign_id=problem.campaign_id,
            hcp_ids=list(problem.hcp_ids),
            objective_metric=problem.objective_metric.value,
            objective_sense=problem.objective_sense.value,
            budget_limit=problem.budget_limit,
            exploration_budget_pct=problem.exploration_budget_pct,
            planning_horizon_days=problem.planning_horizon_days,
            start_date=problem.start_date,
            end_date=problem.end_date,
            preferred_solver=problem.preferred_solver.value,
            max_solve_time_ms=problem.max_solve_time_ms,
            include_contact_limits=problem.include_contact_limits,
            include_compliance_windows=problem.include_compliance_windows,
            respect_reservations=problem.respect_reservations,
            capacity_constraint_ids=list(problem.capacity_constraint_ids),
            status=ProblemStatus.DRAFT.value,
            created_at=now,
            updated_at=now
        )

        async with self.session_maker() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record.to_domain()

    async def get_problem(self, problem_id: str) -> Optional[OptimizationProblem]:
        async with self.session_maker() as session:
            record = await session.get(OptimizationProblemRecord, problem_id)
            return record.to_domain() if record else None

    async def list_problems(self,
                            status: Optional[ProblemStatus] = None,
                            limit: int = 50) -> List[OptimizationProblem]:
        query = select(OptimizationProblemRecord)
        if status is not None:
            query = query.where(OptimizationProblemRecord.status == status.value)
        query = query.order_by(OptimizationProblemRecord.created_at.desc()).limit(limit)

        async with self.session_maker() as session:
            rows = await session.execute(query)
            return [record.to_domain() for record in rows.scalars().all()]

    async def delete_problem(self, problem_id: str) -> List[str]:
        """
        Deletes a problem with its results and allocations.

        Returns:
            Ids of the deleted results, empty when the problem did not exist
        """
        async with self.session_maker() as session:
            record = await session.get(OptimizationProblemRecord, problem_id)
            if record is None:
                return []

            result_ids = list((await session.execute(
                select(OptimizationResultRecord.id).where(OptimizationResultRecord.problem_id == problem_id)
            )).scalars().all())

            if result_ids:
                await session.execute(
                    delete(OptimizationAllocationRecord).where(
                        OptimizationAllocationRecord.result_id.in_(result_ids)
                    )
                )
                await session.execute(
                    delete(OptimizationResultRecord).where(OptimizationResultRecord.id.in_(result_ids))
                )
            await session.execute(
                delete(OptimizationProblemRecord).where(OptimizationProblemRecord.id == problem_id)
            )
            await session.commit()

        logger.info("Problem deleted", problem_id=problem_id, results=len(result_ids))
        return result_ids

    async def claim_for_solving(self, problem_id: str) -> bool:
        """
        Moves a problem from draft to solving in one conditional UPDATE.

        Returns:
            False when the problem was not in draft (another caller won)
        """
        async with self.session_maker() as session:
            outcome = await session.execute(
                update(OptimizationProblemRecord)
                .where(
                    OptimizationProblemRecord.id == problem_id,
                    OptimizationProblemRecord.status == ProblemStatus.DRAFT.value
                )
                .values(status=ProblemStatus.SOLVING.value, updated_at=datetime.now(UTC))
            )
            await session.commit()
            return outcome.rowcount == 1

    async def update_problem_status(self, problem_id: str, status: ProblemStatus) -> None:
        async with self.session_maker() as session:
            await session.execute(
                update(OptimizationProblemRecord)
                .where(OptimizationProblemRecord.id == problem_id)
                .values(status=status.value, updated_at=datetime.now(UTC))
            )
            await session.commit()

    # Results

    async def save_result(self,
                          result: OptimizationResult,
                          allocations: Sequence[PlannedAllocation]) -> OptimizationResult:
        """Stores a result and its allocations; returns the result with its id."""
        result_id = result.id or str(uuid.uuid4())
        solved_at = result.solved_at or datetime.now(UTC)

        record = OptimizationResultRecord(
            id=result_id,
            problem_id=result.problem_id,
            solver_type=result.solver_type.value,
            objective_value=result.objective_value,
            feasible=result.feasible,
            optimality_gap=result.optimality_gap,
            total_actions=result.total_actions,
            total_hcps=result.total_hcps,
            actions_by_channel=dict(result.actions_by_channel),
            total_budget_used=result.total_budget_used,
            budget_utilization=result.budget_utilization,
            predicted_total_lift=result.predicted_total_lift,
            predicted_engagement_rate=result.predicted_engagement_rate,
            predicted_response_rate=result.predicted_response_rate,
            exploration_actions=result.exploration_actions,
            exploration_budget_used=result.exploration_budget_used,
            constraint_violations=[v.to_dict() for v in result.constraint_violations],
            solve_time_ms=result.solve_time_ms,
            iterations=result.iterations,
            solved_at=solved_at
        )

        async with self.session_maker() as session:
            session.add(record)
            await session.flush()

            # Insert allocations in batches
            for start in range(0, len(allocations), ALLOCATION_BATCH_SIZE):
                batch = allocations[start:start + ALLOCATION_BATCH_SIZE]
                session.add_all([self._allocation_record(result_id, a) for a in batch])
                await session.flush()

            await session.commit()

        logger.info(
            "Result saved",
            result_id=result_id,
            problem_id=result.problem_id,
            allocations=len(allocations)
        )

        result.id = result_id
        result.solved_at = solved_at
        return result

    async def get_result(self, result_id: str) -> Optional[OptimizationResult]:
        async with self.session_maker() as session:
            record = await session.get(OptimizationResultRecord, result_id)
            if record is None:
                return None
            problem = await session.get(OptimizationProblemRecord, record.problem_id)
            return record.to_domain(problem_name=problem.name if problem else None)

    async def get_allocations(self,
                              result_id: str,
                              channel: Optional[Channel] = None,
                              limit: Optional[int] = None,
                              offset: int = 0) -> List[PlannedAllocation]:
        """Allocations of a result in ascending priority order."""
        query = select(OptimizationAllocationRecord).where(
            OptimizationAllocationRecord.result_id == result_id
        )
        if channel is not None:
            query = query.where(OptimizationAllocationRecord.channel == channel.value)
        query = query.order_by(OptimizationAllocationRecord.priority.asc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)

        async with self.session_maker() as session:
            rows = await session.execute(query)
            return [record.to_domain() for record in rows.scalars().all()]

    @staticmethod
    def _allocation_record(result_id: str, allocation: PlannedAllocation) -> OptimizationAllocationRecord:
        return OptimizationAllocationRecord(
            id=allocation.id or str(uuid.uuid4()),
            result_id=result_id,
            hcp_id=allocation.hcp_id,
            hcp_name=allocation.hcp_name,
            channel=allocation.channel.value,
            action_type=allocation.action_type,
            planned_date=allocation.planned_date,
            predicted_lift=allocation.predicted_lift,
            confidence=allocation.confidence,
            is_exploration=allocation.is_exploration,
            estimated_cost=allocation.estimated_cost,
            status=allocation.status,
            selection_reason=allocation.selection_reason,
            priority=allocation.priority
        )
