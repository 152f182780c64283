"""
CoinMarketCap source adapter.
Pulls the latest listings and keeps assets tagged as stablecoins.
"""

from typing import Any, Dict, List, Optional

from .base import BaseSourceFetcher, AuthenticationError, to_float
from ..api.schemas import DataSource, RawAssetRecord, RawPlatform
from ..core.config import settings, source_config
from ..core.logging_config import create_logger

logger = create_logger(__name__)


class CoinMarketCapFetcher(BaseSourceFetcher):
    """CoinMarketCap source for stablecoin prices and supplies."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(
            name=DataSource.CMC.value,
            api_key=api_key if api_key is not None else settings.cmc_api_key,
            base_url=base_url or settings.cmc_api_url,
            **kwargs
        )

    def _get_rate_limit(self) -> int:
        return source_config.RATE_LIMITS['cmc']

    def _get_auth_headers(self) -> Optional[Dict[str, str]]:
        """CoinMarketCap uses API key in headers."""
        if not self.api_key:
            return None
        return {'X-CMC_PRO_API_KEY': self.api_key}

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _fetch_payload(self) -> Any:
        if not self.api_key:
            raise AuthenticationError("CoinMarketCap API key is required", self.name)

        response = await self._make_request(
            method="GET",
            url=f"{self.base_url}{source_config.ENDPOINTS['cmc']}",
            params={
                'start': 1,
                'limit': 5000,
                'convert': 'USD',
                'aux': 'platform,tags,circulating_supply,total_supply,max_supply'
            }
        )
        return response.get('data', []) if isinstance(response, dict) else response

    def _transform(self, payload: Any) -> List[RawAssetRecord]:
        return self._map_items(payload, self._to_record)

    def _to_record(self, coin: Dict[str, Any]) -> Optional[RawAssetRecord]:
        tags = coin.get('tags') or []
        if source_config.STABLECOIN_TAGS['cmc'] not in tags:
            return None

        quote = (coin.get('quote') or {}).get('USD') or {}
        price = to_float(quote.get('price'))
        market_cap = to_float(quote.get('market_cap'))

        # CMC's circulating figure lags; derive it from market cap where possible
        if market_cap and price:
            circulating = market_cap / price
        else:
            circulating = to_float(coin.get('circulating_supply'))

        platforms = []
        platform = coin.get('platform')
        if platform:
            platforms.append(RawPlatform(
                name=platform.get('slug') or platform.get('name') or 'Unknown',
                contract_address=platform.get('token_address') or None
            ))

        return RawAssetRecord(
            source=self.name,
            source_id=str(coin['id']),
            symbol=coin['symbol'],
            name=coin.get('name') or coin['symbol'],
            slug=(coin.get('slug') or coin['symbol']).lower(),
            price=price,
            market_cap=market_cap,
            volume_24h=to_float(quote.get('volume_24h')),
            circulating_supply=circulating,
            total_supply=to_float(coin.get('total_supply')),
            logo_url=source_config.CMC_LOGO_URL.format(id=coin['id']),
            tags=list(tags),
            platforms=platforms
        )
