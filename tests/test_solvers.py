"""
Greedy and local search solver tests.
"""
import pytest
from collections import Counter

from outreach.optimization.constraints import ConstraintContext, check_violations
from outreach.optimization.objective import evaluate_objective
from outreach.optimization.solvers import GreedySolver, LocalSearchSolver, solve_with
from outreach.optimization.types import Channel, ObjectiveMetric, ObjectiveSense, SolverType


@pytest.fixture
def portfolio(candidate_factory):
    """Twenty HCPs scored on every channel with deterministic, uneven lifts."""
    candidates = []
    for i in range(20):
        for offset, channel in enumerate(Channel):
            lift = float((i * 7 + offset * 3) % 11)
            candidates.append(candidate_factory(
                f"hcp-{i:03d}",
                channel,
                lift,
                is_exploration=(i % 5 == 0),
                exploration_value=lift + 1.5
            ))
    return candidates


@pytest.fixture
def tight_context():
    return ConstraintContext(
        budget_limit=2000.0,
        channel_capacity={Channel.EMAIL: 5, Channel.REP_VISIT: 3},
        contact_limits={f"hcp-{i:03d}": 2 for i in range(20)}
    )


@pytest.fixture
def swap_scenario(candidate_factory):
    """One HCP, one contact allowed, an expensive and a cheap channel."""
    candidates = [
        candidate_factory("hcp-001", Channel.REP_VISIT, 8.0, cost=150.0),
        candidate_factory("hcp-001", Channel.EMAIL, 3.0, cost=5.0),
    ]
    context = ConstraintContext(contact_limits={"hcp-001": 1})
    return candidates, context


class TestGreedySolver:
    """Test the two-pass greedy allocation."""

    def test_deterministic(self, portfolio, tight_context):
        """Identical inputs give identical order and objective."""
        first = GreedySolver(10.0).solve(portfolio, tight_context)
        second = GreedySolver(10.0).solve(portfolio, tight_context)

        assert [(a.hcp_id, a.channel) for a in first.allocations] == \
               [(a.hcp_id, a.channel) for a in second.allocations]
        assert evaluate_objective(first.allocations, ObjectiveMetric.TOTAL_ENGAGEMENT_LIFT) == \
               evaluate_objective(second.allocations, ObjectiveMetric.TOTAL_ENGAGEMENT_LIFT)
        assert first.iterations == second.iterations

    def test_feasible_by_construction(self, portfolio, tight_context, problem_factory):
        """Greedy output respects budget and capacity."""
        output = GreedySolver(10.0).solve(portfolio, tight_context)

        total_cost = sum(a.estimated_cost for a in output.allocations)
        per_channel = Counter(a.channel for a in output.allocations)

        assert total_cost <= 2000.0
        assert per_channel[Channel.EMAIL] <= 5
        assert per_channel[Channel.REP_VISIT] <= 3
        assert check_violations(output.allocations, tight_context, problem_factory(id="p-1")) == []

    def test_priorities_are_contiguous(self, portfolio, tight_context):
        """Priorities run 0..n-1 in selection order."""
        output = GreedySolver(10.0).solve(portfolio, tight_context)
        assert [a.priority for a in output.allocations] == list(range(len(output.allocations)))

    def test_baseline_context_untouched(self, portfolio, tight_context):
        """The solver books on a clone, never on the caller's context."""
        GreedySolver(10.0).solve(portfolio, tight_context)

        assert tight_context.budget_used == 0.0
        assert tight_context.channel_used == {}
        assert tight_context.hcp_contacts == {}

    def test_budget_stops_exploitation(self, candidate_factory):
        """Exploitation takes the highest lifts that still fit the budget."""
        candidates = [candidate_factory(f"hcp-{i}", Channel.EMAIL, float(i), cost=5.0) for i in range(1, 6)]
        context = ConstraintContext(budget_limit=12.0)

        output = GreedySolver(0.0).solve(candidates, context)

        assert [a.hcp_id for a in output.allocations] == ["hcp-5", "hcp-4"]
        assert all(a.selection_reason.startswith("Exploitation: high predicted lift") for a in output.allocations)
        assert output.allocations[0].selection_reason == "Exploitation: high predicted lift (5.00)"

    def test_exploration_quota(self, candidate_factory):
        """Exploration picks are capped at floor(candidates x pct / 100)."""
        exploration = [
            candidate_factory(f"explore-{i}", Channel.EMAIL, 1.0, is_exploration=True, exploration_value=10.0 - i)
            for i in range(5)
        ]
        exploitation = [candidate_factory(f"exploit-{i}", Channel.PHONE, 5.0 - i) for i in range(5)]

        output = GreedySolver(20.0).solve(exploration + exploitation, ConstraintContext())

        explored = [a for a in output.allocations if a.is_exploration]
        assert len(explored) == 2
        assert [a.hcp_id for a in explored] == ["explore-0", "explore-1"]
        assert [a.priority for a in explored] == [0, 1]
        assert explored[0].selection_reason == "Exploration: high uncertainty (value=10.00)"
        assert len(output.allocations) == 7

    def test_iterations_count_visits(self, candidate_factory):
        """Every candidate visited counts, including the one that ends the exploration pass."""
        exploration = [
            candidate_factory(f"explore-{i}", Channel.EMAIL, 1.0, is_exploration=True, exploration_value=10.0 - i)
            for i in range(5)
        ]
        exploitation = [candidate_factory(f"exploit-{i}", Channel.PHONE, 5.0 - i) for i in range(5)]

        output = GreedySolver(20.0).solve(exploration + exploitation, ConstraintContext())

        assert output.iterations == 3 + 5

    def test_infeasible_exploration_does_not_count(self, candidate_factory):
        """A skipped exploration candidate leaves the quota open for the next one."""
        candidates = [
            candidate_factory("explore-costly", Channel.CONFERENCE, 1.0, cost=500.0,
                              is_exploration=True, exploration_value=9.0),
            candidate_factory("explore-cheap", Channel.EMAIL, 1.0, cost=5.0,
                              is_exploration=True, exploration_value=8.0),
        ] + [candidate_factory(f"exploit-{i}", Channel.EMAIL, 2.0, cost=5.0) for i in range(8)]

        output = GreedySolver(10.0).solve(candidates, ConstraintContext(budget_limit=100.0))

        explored = [a.hcp_id for a in output.allocations if a.is_exploration]
        assert explored == ["explore-cheap"]

    def test_equal_lifts_keep_input_order(self, candidate_factory):
        """The lift sort is stable."""
        candidates = [candidate_factory(f"hcp-{i}", Channel.EMAIL, 3.0) for i in range(4)]
        output = GreedySolver(0.0).solve(candidates, ConstraintContext())
        assert [a.hcp_id for a in output.allocations] == ["hcp-0", "hcp-1", "hcp-2", "hcp-3"]

    def test_empty_candidates(self):
        """No candidates gives no allocations and no iterations."""
        output = GreedySolver(10.0).solve([], ConstraintContext())
        assert output.allocations == []
        assert output.iterations == 0


class TestLocalSearchSolver:
    """Test swap-based refinement."""

    def test_improving_swap_accepted(self, swap_scenario):
        """A swap that raises the objective replaces the seed allocation."""
        candidates, context = swap_scenario
        seed = GreedySolver(0.0).solve(candidates, context).allocations
        assert [a.channel for a in seed] == [Channel.REP_VISIT]

        output = LocalSearchSolver(ObjectiveMetric.ROI).solve(seed, candidates, context)

        assert [a.channel for a in output.allocations] == [Channel.EMAIL]
        assert output.allocations[0].priority == 0
        assert output.allocations[0].selection_reason == "Local search swap from rep_visit"
        assert output.iterations == 2

    def test_never_worse_than_greedy(self, portfolio, tight_context):
        """Local search only accepts strict improvements over its seed."""
        for metric in ObjectiveMetric:
            greedy = GreedySolver(10.0).solve(portfolio, tight_context)
            local = LocalSearchSolver(metric, max_iterations=50).solve(
                greedy.allocations, portfolio, tight_context
            )
            assert evaluate_objective(local.allocations, metric) >= evaluate_objective(greedy.allocations, metric)

    def test_result_stays_feasible(self, portfolio, tight_context, problem_factory):
        """Every accepted trial was replayed against a fresh clone."""
        greedy = GreedySolver(10.0).solve(portfolio, tight_context)
        local = LocalSearchSolver(ObjectiveMetric.ROI, max_iterations=50).solve(
            greedy.allocations, portfolio, tight_context
        )

        assert sum(a.estimated_cost for a in local.allocations) <= 2000.0
        assert check_violations(local.allocations, tight_context, problem_factory(id="p-1")) == []
        assert tight_context.budget_used == 0.0

    def test_infeasible_swap_rejected(self, candidate_factory):
        """A better swap that breaks the budget is not taken."""
        candidates = [
            candidate_factory("hcp-001", Channel.EMAIL, 3.0, cost=5.0),
            candidate_factory("hcp-001", Channel.CONFERENCE, 15.0, cost=500.0),
        ]
        context = ConstraintContext(budget_limit=10.0)
        seed = GreedySolver(0.0).solve(candidates, context).allocations

        output = LocalSearchSolver(ObjectiveMetric.TOTAL_ENGAGEMENT_LIFT).solve(seed, candidates, context)

        assert [a.channel for a in output.allocations] == [Channel.EMAIL]

    def test_minimize_accepts_lower_scores(self, swap_scenario):
        """With a minimize sense the lower-lift channel wins."""
        candidates, context = swap_scenario
        seed = GreedySolver(0.0).solve(candidates, context).allocations

        output = LocalSearchSolver(
            ObjectiveMetric.TOTAL_ENGAGEMENT_LIFT,
            sense=ObjectiveSense.MINIMIZE
        ).solve(seed, candidates, context)

        assert [a.channel for a in output.allocations] == [Channel.EMAIL]

    def test_iteration_budget(self, swap_scenario):
        """The pass budget bounds the number of passes."""
        candidates, context = swap_scenario
        seed = GreedySolver(0.0).solve(candidates, context).allocations

        output = LocalSearchSolver(ObjectiveMetric.ROI, max_iterations=1).solve(seed, candidates, context)

        assert output.iterations == 1

    def test_exhausted_time_budget_returns_seed(self, swap_scenario):
        """With no time left no pass runs."""
        candidates, context = swap_scenario
        seed = GreedySolver(0.0).solve(candidates, context).allocations

        output = LocalSearchSolver(ObjectiveMetric.ROI, max_time_ms=0).solve(seed, candidates, context)

        assert output.iterations == 0
        assert output.allocations == seed


class TestSolveWith:
    """Test strategy selection."""

    def test_greedy(self, swap_scenario):
        candidates, context = swap_scenario
        output = solve_with(SolverType.GREEDY, candidates, context, ObjectiveMetric.ROI, 0.0, 100, 1000)
        assert [a.channel for a in output.allocations] == [Channel.REP_VISIT]
        assert output.iterations == 2

    def test_local_search_adds_iterations(self, swap_scenario):
        """Local search reports greedy visits plus its own passes."""
        candidates, context = swap_scenario
        output = solve_with(SolverType.LOCAL_SEARCH, candidates, context, ObjectiveMetric.ROI, 0.0, 100, 1000)
        assert [a.channel for a in output.allocations] == [Channel.EMAIL]
        assert output.iterations == 2 + 2
