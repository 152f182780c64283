"""
Main FastAPI application for Stablecoin Aggregator Service.
Includes lifespan management for the background refresh loop and service initialization.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import time

from .core.config import settings
from .core.logging_config import setup_logging, create_logger
from .api.endpoints import router as api_router
from .services.refresh_coordinator import refresh_coordinator
from .api.schemas import ErrorResponse

# Setup logging first
setup_logging()
logger = create_logger(__name__)

# Global startup time
startup_time = datetime.utcnow()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Handles startup and shutdown of the refresh coordinator.
    """
    logger.info("Starting Stablecoin Aggregator Service", extra={
        "version": settings.app_version,
        "debug": settings.debug
    })

    try:
        await refresh_coordinator.initialize()
        await refresh_coordinator.start_background_refresh()

        logger.info("Stablecoin Aggregator Service started successfully")

        global startup_time
        startup_time = datetime.utcnow()

    except Exception as e:
        logger.error("Failed to start Stablecoin Aggregator Service", extra={
            "error": str(e)
        })
        raise

    yield  # Application is running

    logger.info("Shutting down Stablecoin Aggregator Service")

    try:
        await refresh_coordinator.shutdown()
        logger.info("Stablecoin Aggregator Service shutdown completed")

    except Exception as e:
        logger.error("Error during service shutdown", extra={
            "error": str(e)
        })


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Stablecoin data aggregation across market-data providers with per-source health scoring",
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan
)

# Read-only API
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests and responses."""
    start_time = time.time()

    logger.info("Request received", extra={
        "method": request.method,
        "url": str(request.url),
        "client_ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent")
    })

    try:
        response = await call_next(request)

        process_time = time.time() - start_time

        logger.info("Request completed", extra={
            "method": request.method,
            "url": str(request.url),
            "status_code": response.status_code,
            "process_time": round(process_time, 4),
            "client_ip": request.client.host if request.client else None
        })

        response.headers["X-Process-Time"] = str(process_time)

        return response

    except Exception as e:
        process_time = time.time() - start_time

        logger.error("Request failed", extra={
            "method": request.method,
            "url": str(request.url),
            "error": str(e),
            "process_time": round(process_time, 4),
            "client_ip": request.client.host if request.client else None
        }, exc_info=True)

        return JSONResponse(
            status_code=500,
            content=jsonable_encoder(ErrorResponse(
                error="Internal server error",
                error_code="INTERNAL_ERROR"
            ))
        )


# Include API routes
app.include_router(api_router, tags=["Stablecoin API"])


# Root endpoint
@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint with service information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "docs_url": "/docs" if settings.debug else "disabled",
        "timestamp": datetime.utcnow()
    }


# Readiness check endpoint (for Kubernetes)
@app.get("/ready", include_in_schema=False)
async def ready():
    """Ready once a snapshot has been published and the refresh loop is running."""
    freshness = refresh_coordinator.get_data_freshness()
    tasks_running = refresh_coordinator.are_background_tasks_running()

    if freshness['last_updated'] is not None and tasks_running:
        return {"status": "ready", "data_stale": freshness['is_stale']}

    return JSONResponse(
        status_code=503,
        content={
            "status": "not_ready",
            "tasks": tasks_running,
            "has_data": freshness['last_updated'] is not None
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "stablecoin_aggregator.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True
    )
