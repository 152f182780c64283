"""
Stablecoin Aggregator Service
Reconciles stablecoin price, supply and platform data from multiple market-data providers.
"""

__version__ = "1.0.0"
__author__ = "Stablecoin Aggregator Team"
__description__ = "Stablecoin data aggregation service with per-source health scoring and circuit breaker resilience"
