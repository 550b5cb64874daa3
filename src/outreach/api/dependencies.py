"""
FastAPI dependencies for request handling.
"""
from fastapi import HTTPException, Request
from typing import Optional
import structlog

from outreach.config.settings import settings
from outreach.database.repository import OptimizationRepository
from outreach.optimization.collaborators import (
    ChannelPriorPredictionModel,
    InMemoryAudienceSource,
    InMemoryConstraintSource,
    StaticUncertaintyModel,
)
from outreach.optimization.service import PortfolioOptimizer
from outreach.utils.cache import CacheManager

logger = structlog.get_logger()


def build_optimizer(session_maker, cache: Optional[CacheManager] = None) -> PortfolioOptimizer:
    """
    Wires the optimizer with the standalone collaborators.

    Constraint definitions come from ``CONSTRAINT_DEFINITIONS_PATH`` when it
    is set, otherwise no capacities, reservations or compliance windows apply.
    """
    path = settings.optimizer.constraint_definitions_path
    if path:
        constraint_source = InMemoryConstraintSource.from_file(path)
        logger.info("Constraint definitions loaded", path=path)
    else:
        constraint_source = InMemoryConstraintSource()

    return PortfolioOptimizer(
        repository=OptimizationRepository(session_maker),
        audience_source=InMemoryAudienceSource(),
        constraint_source=constraint_source,
        prediction_model=ChannelPriorPredictionModel(),
        uncertainty_model=StaticUncertaintyModel(default=settings.optimizer.default_uncertainty),
        cache=cache
    )


async def get_optimizer(request: Request) -> PortfolioOptimizer:
    """
    Returns the optimizer created at startup.

    Raises:
        HTTPException: 503 if the application has not finished starting
    """
    optimizer = getattr(request.app.state, "optimizer", None)
    if optimizer is None:
        logger.warning("Optimizer requested before startup completed")
        raise HTTPException(status_code=503, detail="Optimizer not initialized")
    return optimizer
