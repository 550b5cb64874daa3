"""
Constraint context for a single solve.

The context is a mutable resource ledger (budget, channel usage, contacts
per HCP) plus the point-in-time constraint snapshots it is checked against.
It is built once per solve; solvers and trials work on clones so the
baseline is never mutated.
"""
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Dict, List, Optional, Set, Sequence

import structlog

from outreach.optimization.collaborators import ConstraintDefinitionSource
from outreach.optimization.types import (
    Candidate,
    Channel,
    ConstraintViolation,
    OptimizationProblem,
    ViolationSeverity,
)

logger = structlog.get_logger()


@dataclass
class ConstraintContext:
    budget_limit: Optional[float] = None
    budget_used: float = 0.0
    channel_capacity: Dict[Channel, int] = field(default_factory=dict)
    channel_used: Dict[Channel, int] = field(default_factory=dict)
    hcp_contacts: Dict[str, int] = field(default_factory=dict)
    contact_limits: Dict[str, int] = field(default_factory=dict)
    reserved_hcps: Set[str] = field(default_factory=set)
    compliance_blocked: Set[str] = field(default_factory=set)

    # Toggles copied from the problem
    include_contact_limits: bool = True
    include_compliance_windows: bool = True
    respect_reservations: bool = True

    def clone(self) -> "ConstraintContext":
        """Deep copy: no map or set is shared with the original."""
        return ConstraintContext(
            budget_limit=self.budget_limit,
            budget_used=self.budget_used,
            channel_capacity=dict(self.channel_capacity),
            channel_used=dict(self.channel_used),
            hcp_contacts=dict(self.hcp_contacts),
            contact_limits=dict(self.contact_limits),
            reserved_hcps=set(self.reserved_hcps),
            compliance_blocked=set(self.compliance_blocked),
            include_contact_limits=self.include_contact_limits,
            include_compliance_windows=self.include_compliance_windows,
            respect_reservations=self.respect_reservations,
        )

    def channel_at_capacity(self, channel: Channel) -> bool:
        capacity = self.channel_capacity.get(channel)
        if capacity is None:
            return False
        return self.channel_used.get(channel, 0) >= capacity

    def is_excluded(self, hcp_id: str) -> bool:
        """True when the HCP may not be contacted at all during this solve."""
        if self.respect_reservations and hcp_id in self.reserved_hcps:
            return True
        if self.include_compliance_windows and hcp_id in self.compliance_blocked:
            return True
        return False


async def build_constraint_context(problem: OptimizationProblem,
                                   source: ConstraintDefinitionSource,
                                   default_contact_limit: int = 10,
                                   at: Optional[datetime] = None) -> ConstraintContext:
    """Loads the constraint snapshots that apply to ``problem``."""
    at = at or datetime.now(UTC)

    context = ConstraintContext(
        budget_limit=problem.budget_limit,
        include_contact_limits=problem.include_contact_limits,
        include_compliance_windows=problem.include_compliance_windows,
        respect_reservations=problem.respect_reservations,
    )

    if problem.capacity_constraint_ids:
        context.channel_capacity = await source.get_channel_capacities(problem.capacity_constraint_ids)

    if problem.include_contact_limits:
        limits = await source.get_contact_limits()
        context.contact_limits = {
            hcp_id: limit if limit is not None else default_contact_limit
            for hcp_id, limit in limits.items()
        }

    if problem.respect_reservations:
        context.reserved_hcps = set(await source.get_reserved_hcps())

    if problem.include_compliance_windows:
        context.compliance_blocked = set(await source.get_compliance_blocked_hcps(at))

    logger.info(
        "Constraint context built",
        problem_id=problem.id,
        budget_limit=problem.budget_limit,
        capacities={c.value: v for c, v in context.channel_capacity.items()},
        contact_limits=len(context.contact_limits),
        reserved=len(context.reserved_hcps),
        compliance_blocked=len(context.compliance_blocked)
    )
    return context


def can_allocate(candidate: Candidate, context: ConstraintContext) -> bool:
    """Feasibility predicate; never mutates the context."""
    # Budget check
    if context.budget_limit is not None:
        if context.budget_used + candidate.estimated_cost > context.budget_limit:
            return False

    # Channel capacity check
    if context.channel_at_capacity(candidate.channel):
        return False

    # Contact limit check
    if context.include_contact_limits:
        limit = context.contact_limits.get(candidate.hcp_id)
        if limit is not None and context.hcp_contacts.get(candidate.hcp_id, 0) >= limit:
            return False

    # Reservation and compliance checks
    if context.is_excluded(candidate.hcp_id):
        return False

    return True


def apply_allocation(candidate: Candidate, context: ConstraintContext) -> None:
    """Books an accepted candidate. Call exactly once per accepted candidate."""
    context.budget_used += candidate.estimated_cost
    context.channel_used[candidate.channel] = context.channel_used.get(candidate.channel, 0) + 1
    context.hcp_contacts[candidate.hcp_id] = context.hcp_contacts.get(candidate.hcp_id, 0) + 1


def check_violations(allocations: Sequence,
                     context: ConstraintContext,
                     problem: OptimizationProblem) -> List[ConstraintViolation]:
    """
    Audits a final allocation list for budget and capacity breaches.

    Totals are recomputed from the allocations themselves, not from the
    ledger. Reservation, contact-limit and compliance rules are enforced by
    ``can_allocate`` and are not audited here.
    """
    violations = []

    total_cost = sum(a.estimated_cost for a in allocations)
    if context.budget_limit is not None and total_cost > context.budget_limit:
        overage = total_cost - context.budget_limit
        violations.append(ConstraintViolation(
            constraint_type="budget",
            constraint_id="budget",
            severity=ViolationSeverity.ERROR,
            message=f"Budget exceeded: {total_cost:.2f} > {context.budget_limit}",
            affected_count=int(math.ceil(overage))
        ))

    channel_counts = Counter(a.channel for a in allocations)
    for channel, count in channel_counts.items():
        capacity = context.channel_capacity.get(channel)
        if capacity is not None and count > capacity:
            violations.append(ConstraintViolation(
                constraint_type="capacity",
                constraint_id=f"capacity:{channel.value}",
                severity=ViolationSeverity.ERROR,
                message=f"Channel {channel.value} capacity exceeded: {count} > {capacity}",
                affected_count=count - capacity
            ))

    if violations:
        logger.warning(
            "Constraint violations found",
            problem_id=problem.id,
            violations=[v.message for v in violations]
        )

    return violations
