"""
Pydantic schemas for Stablecoin Aggregator Service.
Covers raw per-source records, canonical reconciled records, the published
snapshot and per-source health reporting.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any, Literal
from pydantic import BaseModel, Field, validator


class DataSource(str, Enum):
    """Built-in market-data sources."""
    CMC = "cmc"
    MESSARI = "messari"
    COINGECKO = "coingecko"
    DEFILLAMA = "defillama"
    CURATED = "curated"


class FetchErrorKind(str, Enum):
    """Categories of source fetch failures."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    SERVER = "server"
    PARSE = "parse"
    UNKNOWN = "unknown"


RETRYABLE_ERROR_KINDS = frozenset({
    FetchErrorKind.NETWORK,
    FetchErrorKind.TIMEOUT,
    FetchErrorKind.RATE_LIMIT,
    FetchErrorKind.SERVER
})


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CoordinatorState(str, Enum):
    """Phases of one refresh cycle."""
    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    AGGREGATING = "aggregating"
    PUBLISHING = "publishing"


class AssetCategory(str, Enum):
    """Broad asset classes a pegged asset can fall into."""
    STABLECOIN = "Stablecoin"
    TOKENIZED_ASSET = "Tokenized Asset"
    OTHER = "Other"


# --- Raw, per-source records -------------------------------------------------

class RawPlatform(BaseModel):
    """Platform/network breakdown entry as reported by one source."""
    name: str = Field(..., description="Provider-specific platform identifier")
    contract_address: Optional[str] = Field(None, description="Token contract address")
    exclude_addresses: List[str] = Field(default_factory=list, description="Addresses excluded from circulating supply")
    total_supply: Optional[float] = Field(None, description="Total supply on this platform")
    circulating_supply: Optional[float] = Field(None, description="Circulating supply on this platform")
    percentage: Optional[float] = Field(None, description="Source-reported share of the asset supply, in percent")
    prev_day: Optional[float] = Field(None, description="Circulating supply one day ago")
    prev_week: Optional[float] = Field(None, description="Circulating supply one week ago")
    prev_month: Optional[float] = Field(None, description="Circulating supply one month ago")


class RawAssetRecord(BaseModel):
    """One stablecoin as reported by a single source, mapped into a stable shape."""
    source: str = Field(..., description="Source identifier")
    source_id: Optional[str] = Field(None, description="Identifier of the asset at the source")
    symbol: str = Field(..., description="Asset symbol")
    name: str = Field(..., description="Asset name")
    slug: Optional[str] = Field(None, description="Source slug")
    price: Optional[float] = Field(None, description="Price in USD")
    market_cap: Optional[float] = Field(None, description="Market capitalization in USD")
    volume_24h: Optional[float] = Field(None, description="24-hour volume in USD")
    circulating_supply: Optional[float] = Field(None, description="Circulating supply")
    total_supply: Optional[float] = Field(None, description="Total supply")
    description: Optional[str] = Field(None, description="Asset description")
    logo_url: Optional[str] = Field(None, description="Logo URL")
    website: Optional[str] = Field(None, description="Project website")
    tags: List[str] = Field(default_factory=list, description="Source tags")
    platforms: List[RawPlatform] = Field(default_factory=list, description="Platform breakdown")
    fetched_at: datetime = Field(default_factory=datetime.utcnow, description="Fetch timestamp")

    @validator('symbol')
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        if not v or not v.strip():
            raise ValueError("Symbol cannot be empty")
        return v.strip().upper()

    @validator('name')
    def validate_name(cls, v: str) -> str:
        """Validate asset name."""
        if not v or not v.strip():
            raise ValueError("Asset name cannot be empty")
        return v.strip()


# --- Canonical records -------------------------------------------------------

class HistoricalSupply(BaseModel):
    """Previous supply values and their deltas against the current supply."""
    prev_day: Optional[float] = None
    prev_week: Optional[float] = None
    prev_month: Optional[float] = None
    day_change: Optional[float] = None
    week_change: Optional[float] = None
    month_change: Optional[float] = None


class PlatformSupply(BaseModel):
    """Supply of one stablecoin on one canonical platform."""
    name: str = Field(..., description="Canonical platform name")
    uri: str = Field(..., description="Platform slug")
    contract_address: Optional[str] = Field(None, description="Token contract address")
    exclude_addresses: List[str] = Field(default_factory=list, description="Addresses excluded from circulating supply")
    total_supply: Optional[float] = Field(None, description="Total supply on this platform")
    circulating_supply: Optional[float] = Field(None, description="Circulating supply on this platform")
    supply_percentage: Optional[float] = Field(None, description="Share of the asset supply, in percent")
    market_cap: Optional[float] = Field(None, description="Market cap contribution in USD")
    historical: HistoricalSupply = Field(default_factory=HistoricalSupply, description="Historical supply")
    provenance: Dict[str, str] = Field(default_factory=dict, description="Field name to source identifier")


class MainMetrics(BaseModel):
    """Resolved asset-level metrics."""
    price: Optional[float] = None
    market_cap: Optional[float] = None
    volume_24h: Optional[float] = None
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None


class FieldConflict(BaseModel):
    """Numeric disagreement between sources for one field."""
    field: str
    values: Dict[str, float]
    spread: float = Field(..., description="(max - min) / max across sources")


class ConfidenceScores(BaseModel):
    """How much the sources behind a canonical record support it, each in [0, 1]."""
    overall: float = 0.0
    market_data: float = 0.0
    supply_data: float = 0.0
    platform_data: float = 0.0
    consensus: float = Field(0.5, description="Agreement of source prices; 0.5 when fewer than two report one")
    source_count: int = 0


class DataQuality(BaseModel):
    """Completeness of the source-reported data for one stablecoin."""
    has_market_data: bool = False
    has_supply_data: bool = False
    has_multiple_sources: bool = False
    missing_fields: List[str] = Field(default_factory=list)


class CanonicalStablecoin(BaseModel):
    """Reconciled representation of one stablecoin across all sources."""
    symbol: str = Field(..., description="Canonical symbol, unique within a snapshot")
    uri: str = Field(..., description="URL-safe identifier")
    name: str = Field(..., description="Asset name")
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    asset_category: AssetCategory = Field(AssetCategory.OTHER, description="Stablecoin, tokenized asset or other")
    pegged_asset: Optional[str] = Field(None, description="Peg target, e.g. USD, EUR or Gold")
    main: MainMetrics = Field(default_factory=MainMetrics)
    confidence: ConfidenceScores = Field(default_factory=ConfidenceScores)
    quality: DataQuality = Field(default_factory=DataQuality)
    provenance: Dict[str, str] = Field(default_factory=dict, description="Field name to source identifier")
    source_records: List[RawAssetRecord] = Field(default_factory=list, description="Per-source records kept for audit")
    conflicts: List[FieldConflict] = Field(default_factory=list)
    platforms: List[PlatformSupply] = Field(default_factory=list)

    @property
    def sources(self) -> List[str]:
        """Source identifiers that contributed to this record, in priority order."""
        seen: List[str] = []
        for record in self.source_records:
            if record.source not in seen:
                seen.append(record.source)
        return seen


# --- Published snapshot ------------------------------------------------------

class PlatformRollup(BaseModel):
    """Cross-asset market cap held on one platform."""
    name: str
    uri: str
    market_cap: float
    coin_count: int = 0
    share: Optional[float] = Field(None, description="Percent of the grand total market cap")
    synthetic: bool = Field(False, description="True for the reconciling Other / Unknown entry")


class MarketMetrics(BaseModel):
    """Aggregate metrics across all stablecoins."""
    total_market_cap: float = 0.0
    total_volume: float = 0.0
    stablecoin_count: int = 0
    platform_count: int = 0
    last_updated: datetime = Field(default_factory=datetime.utcnow)


class SourceResult(BaseModel):
    """Outcome of one source fetch within a refresh cycle."""
    source: str
    success: bool
    skipped: bool = False
    record_count: int = 0
    duration_seconds: float = 0.0
    error_kind: Optional[FetchErrorKind] = None
    error: Optional[str] = None


class Snapshot(BaseModel):
    """Immutable result of one refresh cycle."""
    stablecoins: List[CanonicalStablecoin] = Field(default_factory=list)
    metrics: MarketMetrics = Field(default_factory=MarketMetrics)
    platform_data: List[PlatformRollup] = Field(default_factory=list)
    source_results: List[SourceResult] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    degraded: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        """Pydantic configuration."""
        frozen = True


class RefreshResult(BaseModel):
    """Summary returned by one refresh trigger."""
    success: bool
    published: bool = False
    skipped: bool = Field(False, description="True when the trigger was dropped by single-flight")
    stablecoin_count: int = 0
    duration_seconds: float = 0.0
    source_results: List[SourceResult] = Field(default_factory=list)
    error: Optional[str] = None


# --- Health reporting --------------------------------------------------------

class CircuitBreakerStatus(BaseModel):
    """Model for circuit breaker status."""
    source: str = Field(..., description="Source identifier")
    state: CircuitState = Field(..., description="Current breaker state")
    is_open: bool = Field(..., description="Whether requests are blocked")
    failure_count: int = Field(0, description="Number of consecutive failures")
    opened_at: Optional[datetime] = Field(None, description="When the breaker last opened")
    last_failure: Optional[datetime] = Field(None, description="Last failure timestamp")


class SourceHealthStatus(BaseModel):
    """Derived health of one source."""
    source: str
    score: float = Field(..., ge=0.0, le=1.0, description="Reliability score")
    status: Literal["healthy", "degraded", "critical", "down"]
    degraded: bool
    circuit_state: CircuitState
    consecutive_failures: int = 0
    non_retryable_failures: int = 0
    last_error: Optional[str] = None
    last_error_kind: Optional[FetchErrorKind] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    total_requests: int = 0
    success_rate: Optional[float] = None
    average_response_ms: Optional[float] = None
    p95_response_ms: Optional[float] = None
    error_counts: Dict[str, int] = Field(default_factory=dict)


class HealthAlert(BaseModel):
    """Active alert raised by the health monitor."""
    source: str
    type: Literal["error_rate", "consecutive_failures", "circuit_breaker"]
    severity: Literal["warning", "critical"]
    message: str
    raised_at: datetime = Field(default_factory=datetime.utcnow)


class SystemHealth(BaseModel):
    """Health across all sources."""
    status: Literal["healthy", "degraded", "critical", "down"]
    operational: bool
    average_score: float
    healthy_sources: int
    total_sources: int
    degraded_mode: bool = False
    degraded_reasons: List[str] = Field(default_factory=list)
    alerts: List[HealthAlert] = Field(default_factory=list)
    sources: Dict[str, SourceHealthStatus] = Field(default_factory=dict)


# --- HTTP responses ----------------------------------------------------------

class HealthResponse(BaseModel):
    """Model for health check response."""
    status: Literal["healthy", "degraded", "critical", "down"] = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")
    version: str = Field(..., description="Service version")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    coordinator_state: CoordinatorState = Field(..., description="Current refresh phase")
    background_tasks_running: bool = Field(..., description="Background refresh status")
    last_data_update: Optional[datetime] = Field(None, description="Last published snapshot")
    data_stale: bool = Field(..., description="Whether the published data is older than twice the refresh interval")
    active_circuits: Dict[str, CircuitState] = Field(default_factory=dict, description="Circuit breaker states")


class StablecoinListResponse(BaseModel):
    """Model for the stablecoin list response."""
    stablecoins: List[CanonicalStablecoin]
    metrics: MarketMetrics
    total: int
    last_updated: datetime


class ErrorResponse(BaseModel):
    """Model for error responses."""
    error: str = Field(..., description="Error message")
    error_code: str = Field(..., description="Error code")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
