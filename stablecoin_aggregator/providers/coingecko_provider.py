"""
CoinGecko source adapter.
Provides stablecoin market data from the CoinGecko stablecoins category.
"""

from typing import Any, Dict, List, Optional

from .base import BaseSourceFetcher, to_float
from ..api.schemas import DataSource, RawAssetRecord
from ..core.config import settings, source_config
from ..core.logging_config import create_logger

logger = create_logger(__name__)


class CoinGeckoFetcher(BaseSourceFetcher):
    """CoinGecko source for stablecoin market data."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        pages: int = 2,
        per_page: int = 250,
        **kwargs
    ):
        super().__init__(
            name=DataSource.COINGECKO.value,
            api_key=api_key if api_key is not None else settings.coingecko_api_key,
            base_url=base_url or settings.coingecko_api_url,
            **kwargs
        )
        self.pages = pages
        self.per_page = per_page

    def _get_rate_limit(self) -> int:
        return source_config.RATE_LIMITS['coingecko']

    def _get_auth_headers(self) -> Optional[Dict[str, str]]:
        """CoinGecko's public tier works without a key; a demo key raises the limits."""
        if not self.api_key:
            return None
        return {'x-cg-demo-api-key': self.api_key}

    async def _fetch_payload(self) -> Any:
        coins: List[Dict[str, Any]] = []
        for page in range(1, self.pages + 1):
            batch = await self._make_request(
                method="GET",
                url=f"{self.base_url}{source_config.ENDPOINTS['coingecko']}",
                params={
                    'vs_currency': 'usd',
                    'category': source_config.STABLECOIN_TAGS['coingecko'],
                    'order': 'market_cap_desc',
                    'per_page': self.per_page,
                    'page': page,
                    'sparkline': 'false'
                }
            )
            if not isinstance(batch, list):
                return batch
            coins.extend(batch)
            if len(batch) < self.per_page:
                break

        logger.debug("Fetched CoinGecko stablecoin pages", extra={"count": len(coins)})
        return coins

    def _transform(self, payload: Any) -> List[RawAssetRecord]:
        return self._map_items(payload, self._to_record)

    def _to_record(self, coin: Dict[str, Any]) -> RawAssetRecord:
        return RawAssetRecord(
            source=self.name,
            source_id=coin.get('id'),
            symbol=coin['symbol'],
            name=coin.get('name') or coin['symbol'],
            slug=coin.get('id'),
            price=to_float(coin.get('current_price')),
            market_cap=to_float(coin.get('market_cap')),
            volume_24h=to_float(coin.get('total_volume')),
            circulating_supply=to_float(coin.get('circulating_supply')),
            total_supply=to_float(coin.get('total_supply')),
            logo_url=coin.get('image'),
            tags=['stablecoin']
        )
