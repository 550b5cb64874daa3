"""
Interfaces to the external collaborators the optimizer consumes, plus
in-memory implementations used when the service runs standalone.

The optimizer only reads from these: predicted impact, uncertainty,
constraint definitions (capacity, contact limits, reservations, compliance
windows) and audience resolution.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict, List, Optional, Set, Any, Iterable
import json

from outreach.optimization.types import Channel
from outreach.utils.exceptions import CollaboratorError, ConfigurationError


@dataclass(frozen=True)
class Prediction:
    predicted_delta: float
    confidence_lower: float
    confidence_upper: float


class PredictionModel(ABC):
    """Predicts the impact of one stimulus on one HCP through one channel."""

    @abstractmethod
    async def predict(self, hcp_id: str, stimulus_type: str, channel: Channel) -> Prediction:
        pass


class UncertaintyModel(ABC):
    """Scores how uncertain the models are about an HCP, in [0, 1]."""

    @abstractmethod
    async def uncertainty(self, hcp_id: str) -> float:
        pass


class ConstraintDefinitionSource(ABC):
    """Point-in-time snapshots of the constraint definitions."""

    @abstractmethod
    async def get_channel_capacities(self, constraint_ids: Iterable[str]) -> Dict[Channel, int]:
        """Capacity per channel for the given capacity-definition ids."""
        pass

    @abstractmethod
    async def get_contact_limits(self) -> Dict[str, Optional[int]]:
        """Maximum touches per HCP; ``None`` means the default limit applies."""
        pass

    @abstractmethod
    async def get_reserved_hcps(self) -> Set[str]:
        """HCPs held by an active exclusive reservation."""
        pass

    @abstractmethod
    async def get_compliance_blocked_hcps(self, at: datetime) -> Set[str]:
        """HCPs covered by a compliance window active at ``at``."""
        pass


class AudienceSource(ABC):
    """Resolves named audiences to HCP ids and HCP ids to display names."""

    @abstractmethod
    async def resolve_audience(self, audience_id: str) -> List[str]:
        pass

    async def get_hcp_names(self, hcp_ids: Iterable[str]) -> Dict[str, str]:
        return {}


# Base engagement lift per stimulus type
DEFAULT_STIMULUS_LIFT: Dict[str, float] = {
    "rep_visit": 8.0,
    "email_send": 3.0,
    "webinar_invite": 4.0,
    "conference_meeting": 15.0,
    "digital_ad_impression": 1.0,
    "phone_call": 6.0,
}


class ChannelPriorPredictionModel(PredictionModel):
    """Predicts lift from a per-stimulus prior scaled by an optional per-HCP multiplier."""

    def __init__(self,
                 stimulus_lift: Optional[Dict[str, float]] = None,
                 hcp_multipliers: Optional[Dict[str, float]] = None,
                 interval_half_width: float = 0.2):
        self.stimulus_lift = stimulus_lift or dict(DEFAULT_STIMULUS_LIFT)
        self.hcp_multipliers = hcp_multipliers or {}
        self.interval_half_width = interval_half_width

    async def predict(self, hcp_id: str, stimulus_type: str, channel: Channel) -> Prediction:
        if stimulus_type not in self.stimulus_lift:
            raise CollaboratorError(f"Unknown stimulus type: {stimulus_type}")

        delta = self.stimulus_lift[stimulus_type] * self.hcp_multipliers.get(hcp_id, 1.0)
        return Prediction(
            predicted_delta=delta,
            confidence_lower=delta - self.interval_half_width,
            confidence_upper=delta + self.interval_half_width
        )


class StaticUncertaintyModel(UncertaintyModel):
    """Looks uncertainty up in a fixed map, clamped to [0, 1]."""

    def __init__(self, scores: Optional[Dict[str, float]] = None, default: float = 0.5):
        self.scores = scores or {}
        self.default = default

    async def uncertainty(self, hcp_id: str) -> float:
        value = self.scores.get(hcp_id, self.default)
        return min(1.0, max(0.0, float(value)))


@dataclass
class CapacityDefinition:
    id: str
    channel: Channel
    limit: int


@dataclass
class ReservationDefinition:
    hcp_id: str
    reservation_type: str = "exclusive"
    status: str = "active"


@dataclass
class ComplianceWindowDefinition:
    id: str
    start_date: datetime
    end_date: datetime
    affected_hcp_ids: List[str] = field(default_factory=list)

    def is_active(self, at: datetime) -> bool:
        return self.start_date <= at <= self.end_date


def _as_utc(value: str) -> datetime:
    """Parses an ISO timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class InMemoryConstraintSource(ConstraintDefinitionSource):
    """Constraint definitions held in memory, optionally loaded from JSON."""

    def __init__(self,
                 capacities: Optional[List[CapacityDefinition]] = None,
                 contact_limits: Optional[Dict[str, Optional[int]]] = None,
                 reservations: Optional[List[ReservationDefinition]] = None,
                 compliance_windows: Optional[List[ComplianceWindowDefinition]] = None):
        self.capacities = capacities or []
        self.contact_limits = contact_limits or {}
        self.reservations = reservations or []
        self.compliance_windows = compliance_windows or []

    async def get_channel_capacities(self, constraint_ids: Iterable[str]) -> Dict[Channel, int]:
        wanted = set(constraint_ids)
        return {c.channel: c.limit for c in self.capacities if c.id in wanted}

    async def get_contact_limits(self) -> Dict[str, Optional[int]]:
        return dict(self.contact_limits)

    async def get_reserved_hcps(self) -> Set[str]:
        return {
            r.hcp_id for r in self.reservations
            if r.status == "active" and r.reservation_type == "exclusive"
        }

    async def get_compliance_blocked_hcps(self, at: datetime) -> Set[str]:
        blocked = set()
        for window in self.compliance_windows:
            if window.is_active(at):
                blocked.update(window.affected_hcp_ids)
        return blocked

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryConstraintSource":
        """Build from a plain mapping (as found in a constraint definitions file)."""
        try:
            capacities = [
                CapacityDefinition(id=c["id"], channel=Channel(c["channel"]), limit=int(c["limit"]))
                for c in data.get("capacities", [])
            ]
            reservations = [
                ReservationDefinition(
                    hcp_id=r["hcp_id"],
                    reservation_type=r.get("reservation_type", "exclusive"),
                    status=r.get("status", "active")
                )
                for r in data.get("reservations", [])
            ]
            windows = [
                ComplianceWindowDefinition(
                    id=w["id"],
                    start_date=_as_utc(w["start_date"]),
                    end_date=_as_utc(w["end_date"]),
                    affected_hcp_ids=list(w.get("affected_hcp_ids", []))
                )
                for w in data.get("compliance_windows", [])
            ]
            contact_limits = {
                k: int(v) if v is not None else None
                for k, v in data.get("contact_limits", {}).items()
            }
        except (KeyError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid constraint definitions: {e}") from e

        return cls(
            capacities=capacities,
            contact_limits=contact_limits,
            reservations=reservations,
            compliance_windows=windows
        )

    @classmethod
    def from_file(cls, path: str) -> "InMemoryConstraintSource":
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigurationError(f"Constraint definitions file not found: {path}")
        with open(file_path) as f:
            return cls.from_dict(json.load(f))


class InMemoryAudienceSource(AudienceSource):
    """Named audiences and HCP display names held in memory."""

    def __init__(self,
                 audiences: Optional[Dict[str, List[str]]] = None,
                 hcp_names: Optional[Dict[str, str]] = None):
        self.audiences = audiences or {}
        self.hcp_names = hcp_names or {}

    async def resolve_audience(self, audience_id: str) -> List[str]:
        return list(self.audiences.get(audience_id, []))

    async def get_hcp_names(self, hcp_ids: Iterable[str]) -> Dict[str, str]:
        return {h: self.hcp_names[h] for h in hcp_ids if h in self.hcp_names}
