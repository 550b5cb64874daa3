"""
Plan export to CSV and JSON.
"""
import json
from typing import List, Sequence

import pandas as pd

from outreach.optimization.types import PlannedAllocation

CSV_COLUMNS: List[str] = [
    "hcpId", "hcpName", "channel", "actionType", "plannedDate",
    "predictedLift", "confidence", "estimatedCost", "priority", "selectionReason",
]

EXPORT_FORMATS = ("csv", "json")


def render_csv(allocations: Sequence[PlannedAllocation]) -> str:
    """Renders allocations in ascending priority order under the fixed header."""
    ordered = sorted(allocations, key=lambda a: a.priority)
    frame = pd.DataFrame(
        [
            {
                "hcpId": a.hcp_id,
                "hcpName": a.hcp_name,
                "channel": a.channel.value,
                "actionType": a.action_type,
                "plannedDate": a.planned_date.isoformat(),
                "predictedLift": a.predicted_lift,
                "confidence": a.confidence,
                "estimatedCost": a.estimated_cost,
                "priority": a.priority,
                "selectionReason": a.selection_reason or "",
            }
            for a in ordered
        ],
        columns=CSV_COLUMNS
    )
    return frame.to_csv(index=False, lineterminator="\n")


def render_json(allocations: Sequence[PlannedAllocation]) -> str:
    ordered = sorted(allocations, key=lambda a: a.priority)
    return json.dumps([a.to_dict() for a in ordered], indent=2)


def render_plan(allocations: Sequence[PlannedAllocation], export_format: str) -> str:
    if export_format == "csv":
        return render_csv(allocations)
    if export_format == "json":
        return render_json(allocations)
    raise ValueError(f"Unsupported export format: {export_format}. Use one of {EXPORT_FORMATS}")
