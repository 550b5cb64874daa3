"""
Candidate generation: turns an audience into scored (HCP, channel) actions.

Prediction and uncertainty calls are independent and I/O bound, so they are
fanned out concurrently behind a semaphore. Output order is deterministic
(audience order, then channel order) regardless of completion order.
"""
import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from outreach.config.settings import settings
from outreach.optimization.collaborators import PredictionModel, UncertaintyModel, Prediction
from outreach.optimization.constraints import ConstraintContext
from outreach.optimization.types import (
    Candidate,
    Channel,
    CHANNEL_COSTS,
    CHANNEL_STIMULUS_TYPES,
)

logger = structlog.get_logger()


class CandidateGenerator:
    """Scores every open channel for every eligible HCP."""

    def __init__(self,
                 prediction_model: PredictionModel,
                 uncertainty_model: UncertaintyModel,
                 concurrency: Optional[int] = None,
                 timeout_seconds: Optional[float] = None,
                 default_uncertainty: Optional[float] = None,
                 exploration_threshold: Optional[float] = None,
                 ucb_weight: Optional[float] = None):
        config = settings.optimizer
        self.prediction_model = prediction_model
        self.uncertainty_model = uncertainty_model
        self.concurrency = concurrency or config.candidate_concurrency
        self.timeout_seconds = timeout_seconds or config.collaborator_timeout_seconds
        self.default_uncertainty = (
            default_uncertainty if default_uncertainty is not None else config.default_uncertainty
        )
        self.exploration_threshold = (
            exploration_threshold if exploration_threshold is not None
            else config.exploration_uncertainty_threshold
        )
        self.ucb_weight = ucb_weight if ucb_weight is not None else config.ucb_uncertainty_weight

    async def generate(self,
                       hcp_ids: Sequence[str],
                       context: ConstraintContext,
                       hcp_names: Optional[Dict[str, str]] = None) -> List[Candidate]:
        """
        Generates allocation candidates.

        Args:
            hcp_ids: Resolved audience
            context: Constraint context, read only here
            hcp_names: Optional display names by HCP id

        Returns:
            Flat candidate list; empty for an empty audience
        """
        hcp_names = hcp_names or {}
        semaphore = asyncio.Semaphore(self.concurrency)

        eligible = [h for h in dict.fromkeys(hcp_ids) if not context.is_excluded(h)]
        open_channels = [c for c in Channel if not context.channel_at_capacity(c)]

        uncertainties = await asyncio.gather(
            *(self._bounded(semaphore, self._uncertainty(h)) for h in eligible)
        )

        pairs: List[Tuple[str, float, Channel]] = [
            (hcp_id, uncertainty, channel)
            for hcp_id, uncertainty in zip(eligible, uncertainties)
            for channel in open_channels
        ]
        predictions = await asyncio.gather(
            *(self._bounded(semaphore, self._predict(h, c)) for h, _, c in pairs)
        )

        candidates = []
        failed = 0
        for (hcp_id, uncertainty, channel), prediction in zip(pairs, predictions):
            if prediction is None:
                failed += 1
                continue

            predicted_lift = prediction.predicted_delta
            confidence = 1 - abs(prediction.confidence_upper - prediction.confidence_lower) / 2

            candidates.append(Candidate(
                hcp_id=hcp_id,
                hcp_name=hcp_names.get(hcp_id, "Unknown"),
                channel=channel,
                predicted_lift=predicted_lift,
                confidence=confidence,
                exploration_value=predicted_lift + self.ucb_weight * uncertainty,
                estimated_cost=CHANNEL_COSTS[channel],
                is_exploration=uncertainty > self.exploration_threshold
            ))

        logger.info(
            "Candidates generated",
            audience=len(hcp_ids),
            eligible=len(eligible),
            open_channels=[c.value for c in open_channels],
            candidates=len(candidates),
            failed_predictions=failed
        )
        return candidates

    async def _bounded(self, semaphore: asyncio.Semaphore, coro):
        async with semaphore:
            return await coro

    async def _uncertainty(self, hcp_id: str) -> float:
        try:
            return await asyncio.wait_for(
                self.uncertainty_model.uncertainty(hcp_id),
                timeout=self.timeout_seconds
            )
        except Exception as e:
            logger.warning("Uncertainty unavailable, using default",
                           hcp_id=hcp_id, default=self.default_uncertainty, error=str(e))
            return self.default_uncertainty

    async def _predict(self, hcp_id: str, channel: Channel) -> Optional[Prediction]:
        try:
            return await asyncio.wait_for(
                self.prediction_model.predict(hcp_id, CHANNEL_STIMULUS_TYPES[channel], channel),
                timeout=self.timeout_seconds
            )
        except Exception as e:
            logger.warning("Prediction unavailable, dropping candidate",
                           hcp_id=hcp_id, channel=channel.value, error=str(e))
            return None
