"""
Health check endpoints.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from typing import Dict, Any
from datetime import datetime, UTC

from outreach.config.settings import settings

router = APIRouter()


@router.get("/")
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.env.value,
        "version": "1.0.0"
    }


@router.get("/detailed")
async def detailed_health_check(request: Request) -> Dict[str, Any]:
    """Detailed health check with system information."""
    import psutil
    import sys

    optimizer = getattr(request.app.state, "optimizer", None)

    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.env.value,
        "version": "1.0.0",
        "system": {
            "python_version": sys.version,
            "cpu_usage": psutil.cpu_percent(),
            "memory_usage": psutil.virtual_memory().percent,
            "disk_usage": psutil.disk_usage("/").percent
        },
        "configuration": {
            "default_solver": settings.optimizer.default_solver,
            "default_exploration_budget_pct": settings.optimizer.default_exploration_budget_pct,
            "candidate_concurrency": settings.optimizer.candidate_concurrency,
            "max_solve_time_ms": settings.optimizer.default_max_solve_time_ms
        },
        "collaborators": optimizer.describe() if optimizer else None
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """Kubernetes readiness probe endpoint."""
    if getattr(request.app.state, "optimizer", None) is None:
        return JSONResponse(status_code=503, content={"status": "not ready"})
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Kubernetes liveness probe endpoint."""
    return {"status": "alive"}
