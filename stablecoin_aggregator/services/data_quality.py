"""
Per-stablecoin confidence and data quality scoring.
Scores how well a reconciled record is backed by its sources: how many report
each metric, how closely their prices agree and which fields are missing.
"""

from statistics import median
from typing import Iterable, List, Sequence

from ..api.schemas import ConfidenceScores, DataQuality, MainMetrics, PlatformSupply

# Relative deviation from the median price at which consensus reaches 0
CONSENSUS_TOLERANCE = 0.05
NEUTRAL_CONSENSUS = 0.5

# Fields whose absence is reported on every record
REQUIRED_FIELDS = ('price', 'market_cap', 'circulating_supply')


def compute_consensus(values: Iterable[float]) -> float:
    """
    Agreement between sources on a value, in [0, 1].

    1.0 means every source reports the median; 0.0 means at least one source
    deviates from it by CONSENSUS_TOLERANCE or more. Fewer than two values
    give the neutral NEUTRAL_CONSENSUS.
    """
    values = [float(value) for value in values if value is not None]
    if len(values) < 2:
        return NEUTRAL_CONSENSUS

    mid = median(values)
    if not mid:
        return NEUTRAL_CONSENSUS

    max_relative = max(abs(value - mid) for value in values) / max(1.0, abs(mid))
    return max(0.0, min(1.0, 1.0 - min(1.0, max_relative / CONSENSUS_TOLERANCE)))


def _platform_score(platforms: Sequence[PlatformSupply]) -> float:
    if not platforms:
        return 0.0
    if any(p.total_supply is not None or p.circulating_supply is not None for p in platforms):
        return 1.0
    return 0.5


def compute_confidence(
    price_sources: int,
    market_cap_sources: int,
    supply_sources: int,
    consensus: float,
    platforms: Sequence[PlatformSupply],
    source_count: int
) -> ConfidenceScores:
    """Combine per-metric source coverage and price consensus into confidence scores."""
    coverage = min(1.0, (price_sources + market_cap_sources + supply_sources) / 6)

    market_data = min(1.0, (
        (0.5 if price_sources >= 1 else 0.0)
        + (0.3 if market_cap_sources >= 1 else 0.0)
        + consensus * 0.2
    ))
    supply_data = min(1.0, (
        (0.8 if supply_sources >= 1 else 0.0)
        + (0.2 if supply_sources >= 2 else 0.0)
    ))
    platform_data = _platform_score(platforms)

    weighted = market_data * 0.4 + supply_data * 0.4 + platform_data * 0.2
    overall = min(1.0, weighted * (0.8 + 0.2 * coverage))

    return ConfidenceScores(
        overall=round(overall, 4),
        market_data=round(market_data, 4),
        supply_data=round(supply_data, 4),
        platform_data=platform_data,
        consensus=round(consensus, 4),
        source_count=source_count
    )


def assess_quality(main: MainMetrics, source_count: int) -> DataQuality:
    missing: List[str] = [field for field in REQUIRED_FIELDS if getattr(main, field) is None]
    return DataQuality(
        has_market_data=main.price is not None and main.market_cap is not None,
        has_supply_data=main.circulating_supply is not None or main.total_supply is not None,
        has_multiple_sources=source_count > 1,
        missing_fields=missing
    )
