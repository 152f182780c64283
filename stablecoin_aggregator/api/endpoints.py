"""
FastAPI endpoints for Stablecoin Aggregator Service.
Serves the latest published snapshot and per-source health.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, HTTPException, Query, Depends

from ..api.schemas import (
    CanonicalStablecoin, HealthResponse, MarketMetrics, PlatformRollup,
    Snapshot, SourceHealthStatus, StablecoinListResponse
)
from ..core.config import settings
from ..core.logging_config import create_logger
from ..services.health_monitor import UnknownSourceError
from ..services.refresh_coordinator import RefreshCoordinator, refresh_coordinator

logger = create_logger(__name__)

# Create API router
router = APIRouter()

# Application startup time for uptime calculation
app_start_time = datetime.utcnow()


def get_coordinator() -> RefreshCoordinator:
    """Dependency returning the process-wide refresh coordinator."""
    return refresh_coordinator


def _require_snapshot(coordinator: RefreshCoordinator) -> Snapshot:
    snapshot = coordinator.get_snapshot()
    if snapshot is None:
        raise HTTPException(
            status_code=503,
            detail="Stablecoin data not available yet"
        )
    return snapshot


@router.get("/health", response_model=HealthResponse)
async def health_check(coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """
    Health check endpoint.
    Returns overall service health including source health, background
    refresh status and data freshness.
    """
    try:
        system_health = coordinator.get_system_health()
        freshness = coordinator.get_data_freshness()

        circuits = {
            source: status.circuit_state
            for source, status in system_health.sources.items()
        }

        uptime_seconds = (datetime.utcnow() - app_start_time).total_seconds()

        return HealthResponse(
            status=system_health.status if system_health.total_sources else "down",
            version=settings.app_version,
            uptime_seconds=uptime_seconds,
            coordinator_state=coordinator.state,
            background_tasks_running=coordinator.are_background_tasks_running(),
            last_data_update=freshness['last_updated'],
            data_stale=freshness['is_stale'],
            active_circuits=circuits
        )

    except Exception as e:
        logger.error("Health check failed", extra={"error": str(e)})
        raise HTTPException(
            status_code=500,
            detail="Health check failed"
        )


@router.get("/v1/stablecoins", response_model=StablecoinListResponse)
async def get_stablecoins(
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of stablecoins to return"),
    coordinator: RefreshCoordinator = Depends(get_coordinator)
):
    """
    Get all stablecoins from the latest snapshot, ordered by market cap.

    Args:
        limit: Optional cap on the number of entries returned
    """
    snapshot = _require_snapshot(coordinator)
    stablecoins = snapshot.stablecoins[:limit] if limit else snapshot.stablecoins

    logger.info("Stablecoins request served", extra={
        "count": len(stablecoins),
        "snapshot_created_at": snapshot.created_at.isoformat()
    })

    return StablecoinListResponse(
        stablecoins=stablecoins,
        metrics=snapshot.metrics,
        total=len(snapshot.stablecoins),
        last_updated=snapshot.created_at
    )


@router.get("/v1/stablecoins/{uri}", response_model=CanonicalStablecoin)
async def get_stablecoin(uri: str, coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """Get one stablecoin by uri or symbol (case-insensitive)."""
    _require_snapshot(coordinator)

    coin = coordinator.get_stablecoin_by_uri(uri)
    if coin is None:
        raise HTTPException(
            status_code=404,
            detail=f"Stablecoin '{uri}' not found"
        )
    return coin


@router.get("/v1/platforms", response_model=List[PlatformRollup])
async def get_platforms(coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """Cross-asset market cap per platform, largest first."""
    return _require_snapshot(coordinator).platform_data


@router.get("/v1/metrics", response_model=MarketMetrics)
async def get_metrics(coordinator: RefreshCoordinator = Depends(get_coordinator)):
    return _require_snapshot(coordinator).metrics


@router.get("/v1/sources")
async def get_sources(coordinator: RefreshCoordinator = Depends(get_coordinator)) -> Dict[str, Any]:
    """
    Configured data sources with their health, plus system-level health
    and data freshness.
    """
    system_health = coordinator.get_system_health()
    return {
        "sources": coordinator.get_data_sources(),
        "system": {
            "status": system_health.status,
            "operational": system_health.operational,
            "average_score": system_health.average_score,
            "healthy_sources": system_health.healthy_sources,
            "total_sources": system_health.total_sources,
            "degraded_mode": system_health.degraded_mode,
            "degraded_reasons": system_health.degraded_reasons,
            "alerts": [alert.dict() for alert in system_health.alerts]
        },
        "freshness": coordinator.get_data_freshness(),
        "timestamp": datetime.utcnow()
    }


@router.get("/v1/sources/{source}/health", response_model=SourceHealthStatus)
async def get_source_health(source: str, coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """Detailed health of one source."""
    try:
        return coordinator.get_source_health(source)
    except UnknownSourceError:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown source '{source}'"
        )
