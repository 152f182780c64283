"""
Configuration management for Stablecoin Aggregator Service.
Uses pydantic-settings for environment variable management.
"""

from typing import Dict, List, Optional
from pydantic import Field, validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application metadata
    app_name: str = Field(default="Stablecoin Aggregator", env="APP_NAME")
    app_version: str = Field(default="1.0.0", env="APP_VERSION")
    debug: bool = Field(default=False, env="DEBUG")
    server_host: str = Field(default="0.0.0.0", env="SERVER_HOST")
    server_port: int = Field(default=8000, env="SERVER_PORT")

    # Data sources
    enabled_sources: str = Field(
        default="cmc,messari,coingecko,defillama,curated",
        env="ENABLED_SOURCES"
    )
    source_priority: Dict[str, int] = Field(
        default={
            "cmc": 10,
            "messari": 8,
            "coingecko": 6,
            "defillama": 4,
            "curated": 2
        },
        env="SOURCE_PRIORITY"
    )
    curated_source: str = Field(default="curated", env="CURATED_SOURCE")

    # API keys for data providers
    cmc_api_key: Optional[str] = Field(default=None, env="CMC_API_KEY")
    messari_api_key: Optional[str] = Field(default=None, env="MESSARI_API_KEY")
    coingecko_api_key: Optional[str] = Field(default=None, env="COINGECKO_API_KEY")
    etherscan_api_key: Optional[str] = Field(default=None, env="ETHERSCAN_API_KEY")

    # Provider endpoints
    cmc_api_url: str = Field(default="https://pro-api.coinmarketcap.com", env="CMC_API_URL")
    messari_api_url: str = Field(default="https://api.messari.io", env="MESSARI_API_URL")
    coingecko_api_url: str = Field(default="https://api.coingecko.com/api/v3", env="COINGECKO_API_URL")
    defillama_api_url: str = Field(default="https://stablecoins.llama.fi", env="DEFILLAMA_API_URL")
    etherscan_api_url: str = Field(default="https://api.etherscan.io/api", env="ETHERSCAN_API_URL")

    # Request handling
    fetch_timeout_seconds: float = Field(default=30.0, env="FETCH_TIMEOUT_SECONDS")
    api_max_retries: int = Field(default=3, env="API_MAX_RETRIES")
    api_retry_delay_seconds: float = Field(default=1.0, env="API_RETRY_DELAY_SECONDS")

    # Background refresh interval (in seconds)
    refresh_interval_seconds: int = Field(default=900, env="REFRESH_INTERVAL_SECONDS")  # 15 minutes

    # Reconciliation
    match_threshold: float = Field(default=0.8, env="MATCH_THRESHOLD")
    conflict_tolerance: float = Field(default=0.01, env="CONFLICT_TOLERANCE")
    min_stablecoin_price: float = Field(default=0.50, env="MIN_STABLECOIN_PRICE")
    max_stablecoin_price: float = Field(default=2.00, env="MAX_STABLECOIN_PRICE")

    # Aggregation tolerances
    supply_percentage_tolerance: float = Field(default=0.01, env="SUPPLY_PERCENTAGE_TOLERANCE")
    market_cap_tolerance: float = Field(default=0.05, env="MARKET_CAP_TOLERANCE")
    rollup_tolerance_usd: float = Field(default=1.0, env="ROLLUP_TOLERANCE_USD")

    # Health scoring
    health_retention_days: int = Field(default=7, env="HEALTH_RETENTION_DAYS")
    health_window_size: int = Field(default=1000, env="HEALTH_WINDOW_SIZE")
    health_degraded_threshold: float = Field(default=0.5, env="HEALTH_DEGRADED_THRESHOLD")
    response_time_threshold_ms: float = Field(default=10000, env="RESPONSE_TIME_THRESHOLD_MS")
    error_rate_threshold: float = Field(default=0.3, env="ERROR_RATE_THRESHOLD")
    min_healthy_sources: int = Field(default=1, env="MIN_HEALTHY_SOURCES")

    # Circuit breaker configuration
    circuit_breaker_failure_threshold: int = Field(default=6, env="CIRCUIT_BREAKER_FAILURE_THRESHOLD")
    circuit_breaker_timeout: int = Field(default=300, env="CIRCUIT_BREAKER_TIMEOUT")
    circuit_breaker_reset_timeout: int = Field(default=300, env="CIRCUIT_BREAKER_RESET_TIMEOUT")

    # Logging configuration
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")

    @validator('enabled_sources')
    def validate_enabled_sources(cls, v: str) -> str:
        """Validate that enabled_sources is a comma-separated string."""
        if not v or not v.strip():
            raise ValueError("enabled_sources cannot be empty")
        return v.strip().lower()

    @validator('source_priority')
    def validate_source_priority(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Normalize source identifiers in the priority map."""
        return {source.strip().lower(): int(weight) for source, weight in v.items()}

    @validator('match_threshold', 'health_degraded_threshold', 'error_rate_threshold')
    def validate_ratio(cls, v: float) -> float:
        """Validate thresholds expressed as ratios."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("threshold must be between 0 and 1")
        return v

    @validator('max_stablecoin_price')
    def validate_price_range(cls, v: float, values: dict) -> float:
        """Validate that the price range is not inverted."""
        minimum = values.get('min_stablecoin_price')
        if minimum is not None and v <= minimum:
            raise ValueError("max_stablecoin_price must be greater than min_stablecoin_price")
        return v

    @validator('circuit_breaker_failure_threshold', 'min_healthy_sources', 'health_window_size')
    def validate_positive(cls, v: int) -> int:
        """Validate counters that must be at least one."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @validator('log_level')
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @validator('log_format')
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = {'json', 'text'}
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {', '.join(valid_formats)}")
        return v.lower()

    def get_enabled_sources_list(self) -> List[str]:
        """Get enabled sources as a list."""
        return [source.strip() for source in self.enabled_sources.split(',') if source.strip()]

    def get_source_priority(self, source: str) -> int:
        """Get the priority weight for a source (0 when unranked)."""
        return self.source_priority.get(source, 0)

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()


# Source configuration
class SourceConfig:
    """Static configuration for the market-data sources."""

    # Requests per minute allowed by each provider's free/basic tier
    RATE_LIMITS = {
        'cmc': 30,
        'messari': 20,
        'coingecko': 10,
        'defillama': 60,
        'etherscan': 300
    }

    ENDPOINTS = {
        'cmc': '/v1/cryptocurrency/listings/latest',
        'messari': '/metrics/v2/stablecoins',
        'coingecko': '/coins/markets',
        'defillama': '/stablecoins'
    }

    # Tag/category used by each provider to mark stablecoins
    STABLECOIN_TAGS = {
        'cmc': 'stablecoin',
        'coingecko': 'stablecoins'
    }

    CMC_LOGO_URL = 'https://s2.coinmarketcap.com/static/img/coins/64x64/{id}.png'


source_config = SourceConfig()
