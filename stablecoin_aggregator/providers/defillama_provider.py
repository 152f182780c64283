"""
DeFiLlama source adapter.
Provides per-chain circulating supply with day/week/month history.
"""

from typing import Any, Dict, List, Optional, Tuple

from .base import BaseSourceFetcher, to_float
from ..api.schemas import DataSource, RawAssetRecord, RawPlatform
from ..core.config import settings, source_config
from ..core.logging_config import create_logger

logger = create_logger(__name__)


def _pegged_amount(value: Any, peg_type: str) -> Optional[float]:
    """Read ``{"peggedUSD": 123.0}``-style amounts, preferring the asset's own peg."""
    if not isinstance(value, dict) or not value:
        return to_float(value)
    if peg_type in value:
        return to_float(value[peg_type])
    return to_float(next(iter(value.values())))


class DefiLlamaFetcher(BaseSourceFetcher):
    """DeFiLlama stablecoins source."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        excluded_peg_types: Tuple[str, ...] = ('peggedBTC',),
        min_circulating: float = 1_000_000,
        **kwargs
    ):
        super().__init__(
            name=DataSource.DEFILLAMA.value,
            base_url=base_url or settings.defillama_api_url,
            **kwargs
        )
        self.excluded_peg_types = excluded_peg_types
        self.min_circulating = min_circulating

    def _get_rate_limit(self) -> int:
        return source_config.RATE_LIMITS['defillama']

    def _get_auth_headers(self) -> Optional[Dict[str, str]]:
        """DeFiLlama is keyless."""
        return None

    async def _fetch_payload(self) -> Any:
        response = await self._make_request(
            method="GET",
            url=f"{self.base_url}{source_config.ENDPOINTS['defillama']}",
            params={'includePrices': 'true'}
        )
        return response.get('peggedAssets', []) if isinstance(response, dict) else response

    def _transform(self, payload: Any) -> List[RawAssetRecord]:
        return self._map_items(payload, self._to_record)

    def _to_record(self, asset: Dict[str, Any]) -> Optional[RawAssetRecord]:
        peg_type = asset.get('pegType') or 'peggedUSD'
        if peg_type in self.excluded_peg_types:
            return None

        circulating = _pegged_amount(asset.get('circulating'), peg_type)
        if circulating is not None and circulating < self.min_circulating:
            return None
        price = to_float(asset.get('price'))

        platforms = []
        for chain, chain_data in (asset.get('chainCirculating') or {}).items():
            if not isinstance(chain_data, dict):
                continue
            supply = _pegged_amount(chain_data.get('current'), peg_type)
            if not supply or supply <= 0:
                continue
            platforms.append(RawPlatform(
                name=chain,
                total_supply=supply,
                circulating_supply=supply,
                percentage=supply / circulating * 100 if circulating else None,
                prev_day=_pegged_amount(chain_data.get('circulatingPrevDay'), peg_type),
                prev_week=_pegged_amount(chain_data.get('circulatingPrevWeek'), peg_type),
                prev_month=_pegged_amount(chain_data.get('circulatingPrevMonth'), peg_type)
            ))

        return RawAssetRecord(
            source=self.name,
            source_id=str(asset.get('id')) if asset.get('id') is not None else None,
            symbol=asset['symbol'],
            name=asset.get('name') or asset['symbol'],
            slug=asset.get('gecko_id') or None,
            price=price,
            market_cap=circulating * price if circulating is not None and price else None,
            circulating_supply=circulating,
            tags=['stablecoin', peg_type] + ([asset['pegMechanism']] if asset.get('pegMechanism') else []),
            platforms=platforms
        )
