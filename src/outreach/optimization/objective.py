"""
Objective evaluation: reduces an allocation set to one number per metric.
"""
from typing import Sequence

import numpy as np

from outreach.optimization.types import ObjectiveMetric

# Share of engagement lift assumed to convert into prescriptions
RX_LIFT_FACTOR = 0.1


def evaluate_objective(allocations: Sequence, metric: ObjectiveMetric) -> float:
    """
    Scores an allocation set.

    Args:
        allocations: Anything exposing ``predicted_lift``, ``estimated_cost``
            and ``hcp_id`` (solver allocations or stored allocations)
        metric: Objective metric; unknown values fall back to total lift

    Returns:
        Objective value, 0.0 for an empty set
    """
    if not allocations:
        return 0.0

    lifts = np.array([a.predicted_lift for a in allocations], dtype=float)

    if metric == ObjectiveMetric.ROI:
        total_cost = float(np.sum([a.estimated_cost for a in allocations]))
        return float(np.sum(lifts)) / total_cost if total_cost > 0 else 0.0
    if metric == ObjectiveMetric.REACH:
        return float(len({a.hcp_id for a in allocations}))
    if metric == ObjectiveMetric.RESPONSE_RATE:
        return float(np.mean(lifts))
    if metric == ObjectiveMetric.RX_LIFT:
        return float(np.sum(lifts * RX_LIFT_FACTOR))

    return float(np.sum(lifts))
