"""
Supply aggregation for Stablecoin Aggregator.
Derives per-platform and per-asset supply and market cap metrics from
canonical records, and rolls platform market caps up across assets.
"""

from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from ..api.schemas import (
    CanonicalStablecoin, HistoricalSupply, MainMetrics, MarketMetrics,
    PlatformRollup, PlatformSupply
)
from ..core.config import settings
from ..core.logging_config import create_logger
from ..providers.base import FetchError
from ..providers.platform_supply import PlatformSupplyProvider
from .data_quality import assess_quality
from .platform_normalizer import slugify

logger = create_logger(__name__)

OTHER_PLATFORM = "Other / Unknown"


class AggregationWarning(UserWarning):
    """Inconsistent totals or over-allocated supply; recorded and corrected, never fatal."""

    def __init__(self, message: str, symbol: Optional[str] = None):
        self.symbol = symbol
        super().__init__(message)


class AggregationResult:
    """Output of one aggregation pass."""

    def __init__(
        self,
        stablecoins: List[CanonicalStablecoin],
        platform_data: List[PlatformRollup],
        metrics: MarketMetrics,
        warnings: List[AggregationWarning]
    ):
        self.stablecoins = stablecoins
        self.platform_data = platform_data
        self.metrics = metrics
        self.warnings = warnings


def _sum_known(values) -> Optional[float]:
    known = [value for value in values if value is not None]
    return sum(known) if known else None


def _delta(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if current is None or previous is None:
        return None
    return current - previous


class SupplyAggregator:
    """Computes supply and market cap breakdowns from canonical records."""

    def __init__(
        self,
        supply_providers: Optional[Mapping[str, PlatformSupplyProvider]] = None,
        percentage_tolerance: Optional[float] = None,
        market_cap_tolerance: Optional[float] = None,
        rollup_tolerance: Optional[float] = None
    ):
        self.supply_providers = dict(supply_providers or {})
        self.percentage_tolerance = (
            percentage_tolerance if percentage_tolerance is not None else settings.supply_percentage_tolerance
        )
        self.market_cap_tolerance = (
            market_cap_tolerance if market_cap_tolerance is not None else settings.market_cap_tolerance
        )
        self.rollup_tolerance = rollup_tolerance if rollup_tolerance is not None else settings.rollup_tolerance_usd

    def aggregate(self, coins: List[CanonicalStablecoin]) -> AggregationResult:
        """Aggregate every coin, then build the platform rollup and market metrics."""
        warnings: List[AggregationWarning] = []
        aggregated = [self.aggregate_coin(coin, warnings) for coin in coins]
        aggregated.sort(key=lambda coin: (-(coin.main.market_cap or 0.0), coin.symbol))

        platform_data = self.build_platform_rollup(aggregated, warnings)
        metrics = self.compute_metrics(aggregated, platform_data)

        logger.info("Aggregated supply data", extra={
            "stablecoins": len(aggregated),
            "platforms": metrics.platform_count,
            "total_market_cap": metrics.total_market_cap,
            "warnings": len(warnings)
        })
        return AggregationResult(aggregated, platform_data, metrics, warnings)

    # --- Per-coin ---------------------------------------------------------------

    def aggregate_coin(
        self,
        coin: CanonicalStablecoin,
        warnings: Optional[List[AggregationWarning]] = None
    ) -> CanonicalStablecoin:
        """
        Derive the supply breakdown of one coin.

        The platform-derived aggregate replaces the source-reported main
        supply and market cap whenever any platform supply is known.
        """
        warnings = warnings if warnings is not None else []
        main = coin.main
        price = main.price
        platforms = [platform.dict() for platform in coin.platforms]

        if len(platforms) == 1:
            self._fill_single_platform(platforms[0], main)

        effective = [
            p['circulating_supply'] if p['circulating_supply'] is not None else p['total_supply']
            for p in platforms
        ]
        aggregate_total = _sum_known(p['total_supply'] for p in platforms)
        aggregate_circulating = _sum_known(effective)

        if aggregate_circulating:
            market_cap = price * aggregate_circulating if price else main.market_cap
            circulating = aggregate_circulating
            total = aggregate_total if aggregate_total is not None else main.total_supply
            self._check_market_cap(coin, market_cap, warnings)
        else:
            market_cap = main.market_cap
            if market_cap is None and price and main.circulating_supply:
                market_cap = price * main.circulating_supply
            circulating = main.circulating_supply
            total = main.total_supply

        if len(platforms) == 1:
            platform = platforms[0]
            supply = effective[0]
            platform['market_cap'] = price * supply if price and supply else market_cap
            platform['supply_percentage'] = 100.0
        elif platforms:
            for platform, supply in zip(platforms, effective):
                if aggregate_circulating and supply is not None:
                    share = supply / aggregate_circulating
                    platform['supply_percentage'] = share * 100.0
                    platform['market_cap'] = share * market_cap if market_cap is not None else None
                else:
                    platform['market_cap'] = None
            self._clamp_percentages(coin.symbol, platforms, warnings)

        for platform, supply in zip(platforms, effective):
            history = platform['historical']
            platform['historical'] = HistoricalSupply(
                prev_day=history['prev_day'],
                prev_week=history['prev_week'],
                prev_month=history['prev_month'],
                day_change=_delta(supply, history['prev_day']),
                week_change=_delta(supply, history['prev_week']),
                month_change=_delta(supply, history['prev_month'])
            )

        ordered = sorted(
            zip(platforms, effective),
            key=lambda pair: (pair[1] is None, -(pair[1] or 0.0), pair[0]['name'])
        )

        data = coin.dict()
        data['main'] = MainMetrics(
            price=price,
            market_cap=market_cap,
            volume_24h=main.volume_24h,
            circulating_supply=circulating,
            total_supply=total
        )
        data['platforms'] = [PlatformSupply(**platform) for platform, _ in ordered]
        data['quality'] = assess_quality(data['main'], len(coin.sources))
        return CanonicalStablecoin(**data)

    @staticmethod
    def _fill_single_platform(platform: Dict, main: MainMetrics) -> None:
        # The only platform carries the whole coin
        if platform['circulating_supply'] is None and platform['total_supply'] is None:
            supply = main.circulating_supply if main.circulating_supply is not None else main.total_supply
            if supply is not None:
                platform['circulating_supply'] = supply
                platform['provenance']['circulating_supply'] = 'derived'
        if platform['total_supply'] is None and main.total_supply is not None:
            platform['total_supply'] = main.total_supply
            platform['provenance']['total_supply'] = 'derived'

    def _check_market_cap(
        self,
        coin: CanonicalStablecoin,
        computed: Optional[float],
        warnings: List[AggregationWarning]
    ) -> None:
        if not computed:
            return
        limit = computed * (1.0 + self.market_cap_tolerance)
        for record in coin.source_records:
            if record.market_cap is not None and record.market_cap > limit:
                warning = AggregationWarning(
                    f"{coin.symbol}: {record.source} market cap {record.market_cap:,.0f} exceeds "
                    f"platform aggregate {computed:,.0f}",
                    coin.symbol
                )
                warnings.append(warning)
                logger.warning("Source market cap exceeds platform aggregate", extra={
                    "symbol": coin.symbol,
                    "source": record.source,
                    "reported_market_cap": record.market_cap,
                    "aggregate_market_cap": computed
                })

    def _clamp_percentages(self, symbol: str, platforms: List[Dict], warnings: List[AggregationWarning]) -> None:
        for platform in platforms:
            if platform['supply_percentage'] is not None and platform['supply_percentage'] > 100.0:
                platform['supply_percentage'] = 100.0

        total = sum(p['supply_percentage'] for p in platforms if p['supply_percentage'] is not None)
        if total <= 100.0 + self.percentage_tolerance:
            return

        scale = 100.0 / total
        for platform in platforms:
            if platform['supply_percentage'] is not None:
                platform['supply_percentage'] *= scale

        warnings.append(AggregationWarning(
            f"{symbol}: platform supply percentages sum to {total:.2f}%, scaled to 100%",
            symbol
        ))
        logger.warning("Platform supply percentages exceed 100%", extra={
            "symbol": symbol,
            "percentage_total": round(total, 4)
        })

    # --- Cross-asset ------------------------------------------------------------

    def build_platform_rollup(
        self,
        coins: List[CanonicalStablecoin],
        warnings: Optional[List[AggregationWarning]] = None
    ) -> List[PlatformRollup]:
        """Sum every coin's platform contributions into a ranked table."""
        warnings = warnings if warnings is not None else []
        totals: Dict[str, Dict[str, float]] = OrderedDict()

        for coin in coins:
            for platform in coin.platforms:
                if not platform.market_cap:
                    continue
                entry = totals.setdefault(platform.name, {'market_cap': 0.0, 'coin_count': 0})
                entry['market_cap'] += platform.market_cap
                entry['coin_count'] += 1

        grand_total = sum(coin.main.market_cap or 0.0 for coin in coins)
        rollup = [
            PlatformRollup(
                name=name,
                uri=slugify(name),
                market_cap=entry['market_cap'],
                coin_count=int(entry['coin_count'])
            )
            for name, entry in totals.items()
        ]

        difference = grand_total - sum(entry.market_cap for entry in rollup)
        if difference > self.rollup_tolerance:
            rollup.append(PlatformRollup(
                name=OTHER_PLATFORM,
                uri=slugify(OTHER_PLATFORM),
                market_cap=difference,
                coin_count=sum(1 for coin in coins if not any(p.market_cap for p in coin.platforms)),
                synthetic=True
            ))
        elif difference < -self.rollup_tolerance:
            warnings.append(AggregationWarning(
                f"Platform rollup exceeds total market cap by {-difference:,.0f}"
            ))
            logger.warning("Platform rollup exceeds total market cap", extra={
                "grand_total": grand_total,
                "difference": difference
            })

        rollup.sort(key=lambda entry: (-entry.market_cap, entry.name))
        if grand_total > 0:
            for entry in rollup:
                entry.share = entry.market_cap / grand_total * 100.0
        return rollup

    @staticmethod
    def compute_metrics(coins: List[CanonicalStablecoin], platform_data: List[PlatformRollup]) -> MarketMetrics:
        return MarketMetrics(
            total_market_cap=sum(coin.main.market_cap or 0.0 for coin in coins),
            total_volume=sum(coin.main.volume_24h or 0.0 for coin in coins),
            stablecoin_count=len(coins),
            platform_count=sum(1 for entry in platform_data if not entry.synthetic),
            last_updated=datetime.utcnow()
        )

    # --- Platform-level refinement ------------------------------------------------

    async def refine_platform_supplies(self, coins: List[CanonicalStablecoin]) -> List[CanonicalStablecoin]:
        """
        Replace platform supplies with on-chain figures where an explorer
        client is configured for the platform and a contract address is known.
        """
        if not self.supply_providers:
            return coins

        refined = []
        for coin in coins:
            platforms = [platform.dict() for platform in coin.platforms]
            changed = False

            for platform in platforms:
                provider = self.supply_providers.get(platform['name'])
                address = platform['contract_address']
                if provider is None or not address:
                    continue

                try:
                    total = await provider.get_token_total_supply(address)
                    circulating = total
                    if platform['exclude_addresses']:
                        circulating = await provider.get_token_circulating_supply(
                            address, platform['exclude_addresses'], total
                        )
                except FetchError as e:
                    logger.warning("Platform supply lookup failed", extra={
                        "symbol": coin.symbol,
                        "platform": platform['name'],
                        "error": str(e)
                    })
                    if len(platforms) == 1 and coin.main.total_supply is not None:
                        platform['total_supply'] = coin.main.total_supply
                        platform['provenance']['total_supply'] = 'derived'
                        changed = True
                    continue

                platform['total_supply'] = total
                platform['circulating_supply'] = circulating
                provider_name = getattr(provider, 'name', type(provider).__name__)
                platform['provenance']['total_supply'] = provider_name
                platform['provenance']['circulating_supply'] = provider_name
                changed = True

            if changed:
                data = coin.dict()
                data['platforms'] = [PlatformSupply(**platform) for platform in platforms]
                coin = CanonicalStablecoin(**data)
            refined.append(coin)

        return refined
