"""
Pytest configuration and fixtures for outreach optimizer tests.
"""
import pytest
import pytest_asyncio
from datetime import datetime, UTC
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool, NullPool
from typing import Dict, List, Optional

from outreach.api.main import app
from outreach.api.dependencies import get_optimizer
from outreach.database.connection import Base
from outreach.database import models  # noqa: F401  registers tables on Base.metadata
from outreach.database.repository import OptimizationRepository
from outreach.optimization.collaborators import (
    CapacityDefinition,
    ChannelPriorPredictionModel,
    InMemoryAudienceSource,
    InMemoryConstraintSource,
    ReservationDefinition,
    StaticUncertaintyModel,
)
from outreach.optimization.service import PortfolioOptimizer
from outreach.optimization.types import (
    Allocation,
    Candidate,
    Channel,
    CHANNEL_COSTS,
    ConstraintViolation,
    ObjectiveMetric,
    OptimizationProblem,
    OptimizationResult,
    PlannedAllocation,
    SolverType,
    ViolationSeverity,
)
from outreach.utils.cache import CacheManager


HCP_NAMES = {
    "hcp-001": "Dr. Ada Okafor",
    "hcp-002": "Dr. Bruno Lindqvist",
    "hcp-003": "Dr. Chen Wei",
}


def make_candidate(hcp_id: str,
                   channel: Channel,
                   lift: float,
                   cost: Optional[float] = None,
                   is_exploration: bool = False,
                   exploration_value: Optional[float] = None,
                   confidence: float = 0.8) -> Candidate:
    return Candidate(
        hcp_id=hcp_id,
        channel=channel,
        predicted_lift=lift,
        confidence=confidence,
        exploration_value=exploration_value if exploration_value is not None else lift + 1.0,
        estimated_cost=cost if cost is not None else CHANNEL_COSTS[channel],
        is_exploration=is_exploration
    )


def make_allocation(candidate: Candidate, priority: int = 0, reason: str = "test") -> Allocation:
    return Allocation(candidate=candidate, priority=priority, selection_reason=reason)


def make_planned(hcp_id: str, channel: Channel, lift: float, priority: int,
                 cost: Optional[float] = None) -> PlannedAllocation:
    return PlannedAllocation(
        id=f"alloc-{priority}",
        result_id="result-1",
        hcp_id=hcp_id,
        hcp_name=HCP_NAMES.get(hcp_id, "Unknown"),
        channel=channel,
        action_type=f"{channel.value}_outreach",
        planned_date=datetime(2024, 3, 1, tzinfo=UTC),
        predicted_lift=lift,
        confidence=0.8,
        is_exploration=False,
        estimated_cost=cost if cost is not None else CHANNEL_COSTS[channel],
        priority=priority,
        selection_reason=f"Exploitation: high predicted lift ({lift:.2f})"
    )


def make_result(objective_value: float = 50.0,
                total_budget_used: float = 500.0,
                violations: Optional[List[ConstraintViolation]] = None,
                actions_by_channel: Optional[Dict[str, int]] = None) -> OptimizationResult:
    violations = violations or []
    return OptimizationResult(
        id="result-1",
        problem_id="problem-1",
        solver_type=SolverType.GREEDY,
        objective_value=objective_value,
        feasible=not violations,
        total_actions=10,
        total_hcps=5,
        actions_by_channel=actions_by_channel or {"email": 10},
        total_budget_used=total_budget_used,
        budget_utilization=None,
        predicted_total_lift=objective_value,
        predicted_engagement_rate=objective_value / 10,
        predicted_response_rate=1.0,
        exploration_actions=0,
        exploration_budget_used=0.0,
        constraint_violations=violations,
        solve_time_ms=12,
        iterations=10
    )


def make_problem(**overrides) -> OptimizationProblem:
    values = dict(
        id="",
        name="Q3 cardiology outreach",
        objective_metric=ObjectiveMetric.TOTAL_ENGAGEMENT_LIFT,
        hcp_ids=["hcp-001", "hcp-002", "hcp-003"],
    )
    values.update(overrides)
    return OptimizationProblem(**values)


@pytest.fixture
def candidate_factory():
    return make_candidate


@pytest.fixture
def allocation_factory():
    return make_allocation


@pytest.fixture
def planned_factory():
    return make_planned


@pytest.fixture
def result_factory():
    return make_result


@pytest.fixture
def problem_factory():
    return make_problem


@pytest.fixture
def constraint_source():
    """Constraint definitions with one email capacity and one exclusive reservation."""
    return InMemoryConstraintSource(
        capacities=[
            CapacityDefinition(id="cap-email", channel=Channel.EMAIL, limit=1),
            CapacityDefinition(id="cap-visit", channel=Channel.REP_VISIT, limit=2),
        ],
        reservations=[
            ReservationDefinition(hcp_id="hcp-reserved", reservation_type="exclusive", status="active"),
        ]
    )


@pytest.fixture
def audience_source():
    return InMemoryAudienceSource(
        audiences={
            "aud-cardiology": ["hcp-001", "hcp-002"],
            "aud-reserved": ["hcp-reserved"],
        },
        hcp_names=HCP_NAMES
    )


def build_test_optimizer(session_maker, audience_source, constraint_source,
                         uncertainty_scores: Optional[Dict[str, float]] = None,
                         cache: Optional[CacheManager] = None) -> PortfolioOptimizer:
    return PortfolioOptimizer(
        repository=OptimizationRepository(session_maker),
        audience_source=audience_source,
        constraint_source=constraint_source,
        prediction_model=ChannelPriorPredictionModel(),
        uncertainty_model=StaticUncertaintyModel(uncertainty_scores or {}),
        cache=cache
    )


@pytest_asyncio.fixture
async def test_db():
    """Create a test database."""
    # Use in-memory SQLite for testing
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async_session_maker = async_sessionmaker(
        engine, expire_on_commit=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_session_maker

    await engine.dispose()


@pytest_asyncio.fixture
async def optimizer(test_db, audience_source, constraint_source):
    """Optimizer over the in-memory database with an in-memory export cache."""
    return build_test_optimizer(test_db, audience_source, constraint_source, cache=CacheManager())


@pytest.fixture
def api_optimizer(tmp_path, audience_source, constraint_source):
    """
    Optimizer over a file database. Every TestClient request runs on its own
    event loop, so connections are never pooled across requests.
    """
    db_path = tmp_path / "outreach_test.db"

    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    session_maker = async_sessionmaker(engine, expire_on_commit=False)

    return build_test_optimizer(session_maker, audience_source, constraint_source, cache=CacheManager())


@pytest.fixture
def client(api_optimizer):
    """Create a test client for the FastAPI app."""
    app.dependency_overrides[get_optimizer] = lambda: api_optimizer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def ready_app(api_optimizer):
    """Marks the app as started without running the lifespan."""
    app.state.optimizer = api_optimizer
    yield app
    app.state.optimizer = None
