"""
Messari source adapter.
Provides stablecoin supplies with a per-network breakdown.
"""

from typing import Any, Dict, List, Optional

from .base import BaseSourceFetcher, AuthenticationError, to_float
from ..api.schemas import DataSource, RawAssetRecord, RawPlatform
from ..core.config import settings, source_config
from ..core.logging_config import create_logger

logger = create_logger(__name__)

# Messari has shipped the breakdown under several keys over time
_BREAKDOWN_KEYS = ('networkBreakdown', 'network_breakdown', 'breakdown', 'networks', 'chains', 'platforms')


class MessariFetcher(BaseSourceFetcher):
    """Messari source for stablecoin supply and network breakdown."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(
            name=DataSource.MESSARI.value,
            api_key=api_key if api_key is not None else settings.messari_api_key,
            base_url=base_url or settings.messari_api_url,
            **kwargs
        )

    def _get_rate_limit(self) -> int:
        return source_config.RATE_LIMITS['messari']

    def _get_auth_headers(self) -> Optional[Dict[str, str]]:
        if not self.api_key:
            return None
        return {'x-messari-api-key': self.api_key}

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _fetch_payload(self) -> Any:
        if not self.api_key:
            raise AuthenticationError("Messari API key is required", self.name)

        response = await self._make_request(
            method="GET",
            url=f"{self.base_url}{source_config.ENDPOINTS['messari']}"
        )
        return response.get('data', []) if isinstance(response, dict) else response

    def _transform(self, payload: Any) -> List[RawAssetRecord]:
        return self._map_items(payload, self._to_record)

    def _to_record(self, asset: Dict[str, Any]) -> RawAssetRecord:
        supply = asset.get('supply') or {}
        circulating = to_float(supply.get('circulating'))
        market_data = (asset.get('metrics') or {}).get('market_data') or {}
        price = to_float(asset.get('price')) or to_float(market_data.get('price_usd'))

        overview = ((asset.get('profile') or {}).get('general') or {}).get('overview') or {}
        links = overview.get('official_links') or []

        return RawAssetRecord(
            source=self.name,
            source_id=asset.get('id'),
            symbol=asset['symbol'],
            name=asset.get('name') or asset['symbol'],
            slug=(asset.get('slug') or asset['symbol']).lower(),
            price=price,
            market_cap=circulating * price if circulating is not None and price else None,
            volume_24h=to_float(market_data.get('volume_last_24_hours')),
            circulating_supply=circulating,
            total_supply=to_float(supply.get('total')),
            description=overview.get('project_details') or None,
            website=links[0].get('link') if links else None,
            logo_url=((asset.get('profile') or {}).get('images') or {}).get('logo'),
            tags=list(asset.get('tags') or ['stablecoin']),
            platforms=self._network_breakdown(asset)
        )

    @staticmethod
    def _network_breakdown(asset: Dict[str, Any]) -> List[RawPlatform]:
        raw = None
        for key in _BREAKDOWN_KEYS:
            if asset.get(key):
                raw = asset[key]
                break

        if isinstance(raw, dict):
            entries = []
            for value in raw.values():
                entries.extend(value if isinstance(value, list) else [value])
        elif isinstance(raw, list):
            entries = raw
        else:
            return []

        platforms = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            network = entry.get('network') or entry.get('name')
            if not network:
                continue
            amount = to_float(entry.get('supply'))
            if amount is None:
                amount = to_float(entry.get('amount'))
            share = to_float(entry.get('share'))
            if share is None:
                share = to_float(entry.get('percentage'))
            platforms.append(RawPlatform(
                name=network,
                contract_address=entry.get('contract') or entry.get('contract_address') or None,
                total_supply=amount,
                circulating_supply=amount,
                percentage=share
            ))
        return platforms
