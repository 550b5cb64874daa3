"""
Main FastAPI application for the outreach optimizer.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import structlog
import traceback
import time
from contextlib import asynccontextmanager

from outreach.config.settings import settings
from outreach.api.dependencies import build_optimizer
from outreach.api.routes import optimization, health
from outreach.utils.logging import setup_logging


logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    setup_logging()
    logger.info("Starting outreach optimizer API", environment=settings.env.value)

    # Create necessary directories
    settings.setup_directories()

    # Initialize database connections
    from outreach.database.connection import db_manager
    from outreach.utils.cache import cache_manager

    await db_manager.initialize()

    # Initialize cache with Redis
    redis_client = await db_manager.get_redis()
    await cache_manager.initialize(redis_client)

    app.state.optimizer = build_optimizer(db_manager.async_session_maker, cache_manager)

    logger.info("Outreach optimizer API started successfully")

    yield

    # Shutdown
    logger.info("Shutting down outreach optimizer API")

    try:
        app.state.optimizer = None
        await db_manager.close()
        logger.info("Outreach optimizer API shutdown completed")
    except Exception as e:
        logger.error("Error during shutdown", error=str(e))


# Create FastAPI application
app = FastAPI(
    title="HCP Outreach Optimizer API",
    description="Allocates outreach actions across HCPs and channels under budget and capacity constraints",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.is_development() else None,
    redoc_url="/redoc" if settings.is_development() else None,
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api.cors_origins,
    allow_credentials=True,
    allow_methods=settings.api.cors_methods,
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    start_time = time.time()

    response = await call_next(request)

    process_time = time.time() - start_time

    logger.info(
        "HTTP request processed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time=process_time
    )

    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        exc_info=exc,
        method=request.method,
        url=str(request.url)
    )

    if settings.is_development():
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc),
                "traceback": traceback.format_exc()
            }
        )
    else:
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": "An unexpected error occurred"
            }
        )


# Include routers
app.include_router(health.router, prefix="/api/health", tags=["health"])
app.include_router(optimization.router, prefix="/api/optimization", tags=["optimization"])


@app.get("/api/info")
async def api_info():
    """API information endpoint."""
    return {
        "message": "HCP Outreach Optimizer API",
        "version": "1.0.0",
        "environment": settings.env.value
    }
