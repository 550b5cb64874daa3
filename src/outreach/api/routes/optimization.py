"""
Outreach portfolio optimization endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from typing import Dict, Any, List, Optional
import structlog

from outreach.api.dependencies import get_optimizer
from outreach.api.schemas import (
    AllocationResponseSchema,
    ProblemCreateSchema,
    ProblemResponseSchema,
    ResultResponseSchema,
    SolveRequestSchema,
    WhatIfRequestSchema,
    WhatIfResponseSchema,
)
from outreach.optimization.service import PortfolioOptimizer
from outreach.optimization.types import Channel, ProblemStatus
from outreach.utils.exceptions import (
    InvalidStateError,
    NotFoundError,
    OptimizationError,
)

router = APIRouter()
logger = structlog.get_logger()


def _to_http_error(e: Exception, action: str, **context) -> HTTPException:
    """Maps service exceptions onto HTTP status codes."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidStateError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, OptimizationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))

    logger.error(f"{action} failed", error=str(e), **context)
    return HTTPException(status_code=500, detail=f"{action} failed: {str(e)}")


# Problems

@router.post("/problems", response_model=ProblemResponseSchema, status_code=201)
async def create_problem(request: ProblemCreateSchema,
                         optimizer: PortfolioOptimizer = Depends(get_optimizer)) -> Dict[str, Any]:
    """Create an optimization problem in draft status."""
    try:
        problem = await optimizer.create_problem(request.to_domain())
        return problem.to_dict()
    except Exception as e:
        raise _to_http_error(e, "Problem creation")


@router.get("/problems", response_model=List[ProblemResponseSchema])
async def list_problems(status: Optional[ProblemStatus] = None,
                        limit: int = Query(50, gt=0, le=500),
                        optimizer: PortfolioOptimizer = Depends(get_optimizer)) -> List[Dict[str, Any]]:
    """List problems, newest first."""
    try:
        problems = await optimizer.list_problems(status=status, limit=limit)
        return [p.to_dict() for p in problems]
    except Exception as e:
        raise _to_http_error(e, "Problem listing")


@router.get("/problems/{problem_id}", response_model=ProblemResponseSchema)
async def get_problem(problem_id: str,
                      optimizer: PortfolioOptimizer = Depends(get_optimizer)) -> Dict[str, Any]:
    """Get a problem by id."""
    try:
        problem = await optimizer.get_problem(problem_id)
        return problem.to_dict()
    except Exception as e:
        raise _to_http_error(e, "Problem retrieval", problem_id=problem_id)


@router.delete("/problems/{problem_id}")
async def delete_problem(problem_id: str,
                         optimizer: PortfolioOptimizer = Depends(get_optimizer)) -> Dict[str, Any]:
    """Delete a problem together with its results."""
    try:
        await optimizer.delete_problem(problem_id)
        return {"problem_id": problem_id, "deleted": True}
    except Exception as e:
        raise _to_http_error(e, "Problem deletion", problem_id=problem_id)


@router.post("/problems/{problem_id}/solve", response_model=ResultResponseSchema)
async def solve_problem(problem_id: str,
                        request: Optional[SolveRequestSchema] = None,
                        optimizer: PortfolioOptimizer = Depends(get_optimizer)) -> Dict[str, Any]:
    """
    Solve a draft problem.

    Returns:
        The stored result summary; allocations are paged separately
    """
    request = request or SolveRequestSchema()
    logger.info("Solve requested", problem_id=problem_id, solver=request.solver)

    try:
        result = await optimizer.solve(
            problem_id,
            solver=request.solver,
            max_iterations=request.max_iterations,
            max_time_ms=request.max_time_ms
        )
        return result.to_dict()
    except Exception as e:
        raise _to_http_error(e, "Optimization", problem_id=problem_id)


# Results

@router.get("/results/{result_id}", response_model=ResultResponseSchema)
async def get_result(result_id: str,
                     optimizer: PortfolioOptimizer = Depends(get_optimizer)) -> Dict[str, Any]:
    """Get a stored result."""
    try:
        result = await optimizer.get_result(result_id)
        return result.to_dict()
    except Exception as e:
        raise _to_http_error(e, "Result retrieval", result_id=result_id)


@router.get("/results/{result_id}/allocations", response_model=List[AllocationResponseSchema])
async def get_allocations(result_id: str,
                          channel: Optional[Channel] = None,
                          limit: Optional[int] = Query(None, gt=0, le=10000),
                          offset: int = Query(0, ge=0),
                          optimizer: PortfolioOptimizer = Depends(get_optimizer)) -> List[Dict[str, Any]]:
    """Page through a result's allocations in priority order."""
    try:
        allocations = await optimizer.get_allocations(result_id, channel=channel, limit=limit, offset=offset)
        return [a.to_dict() for a in allocations]
    except Exception as e:
        raise _to_http_error(e, "Allocation retrieval", result_id=result_id)


@router.get("/results/{result_id}/sensitivity")
async def analyze_sensitivity(result_id: str,
                              optimizer: PortfolioOptimizer = Depends(get_optimizer)) -> Dict[str, Any]:
    """Heuristic sensitivity report for a stored result."""
    try:
        report = await optimizer.analyze_sensitivity(result_id)
        return report.to_dict()
    except Exception as e:
        raise _to_http_error(e, "Sensitivity analysis", result_id=result_id)


@router.post("/results/{result_id}/what-if", response_model=WhatIfResponseSchema)
async def what_if(result_id: str,
                  request: WhatIfRequestSchema,
                  optimizer: PortfolioOptimizer = Depends(get_optimizer)) -> Dict[str, Any]:
    """Estimate the effect of a change without re-solving."""
    try:
        outcome = await optimizer.what_if(result_id, request.to_domain())
        return outcome.to_dict()
    except Exception as e:
        raise _to_http_error(e, "What-if analysis", result_id=result_id)


@router.get("/results/{result_id}/export", response_class=PlainTextResponse)
async def export_plan(result_id: str,
                      format: str = Query("csv", description="csv or json"),
                      optimizer: PortfolioOptimizer = Depends(get_optimizer)) -> PlainTextResponse:
    """Export the allocation plan."""
    try:
        content = await optimizer.export_plan(result_id, format)
    except Exception as e:
        raise _to_http_error(e, "Plan export", result_id=result_id)

    media_type = "text/csv" if format == "csv" else "application/json"
    return PlainTextResponse(
        content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="plan-{result_id}.{format}"'}
    )
