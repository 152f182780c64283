"""
Locally curated source.
Hand-maintained stablecoin data that fills gaps and corrects known defects in
upstream provider data, mostly platform contract addresses.
"""

import copy
from typing import Any, Dict, List, Optional

from .base import BaseSourceFetcher, to_float
from ..api.schemas import RawAssetRecord, RawPlatform
from ..core.config import settings
from ..core.logging_config import create_logger

logger = create_logger(__name__)

CURATED_STABLECOINS: List[Dict[str, Any]] = [
    {
        "symbol": "USDT",
        "name": "Tether",
        "platforms": [
            {"name": "Ethereum", "contract_address": "0xdac17f958d2ee523a2206206994597c13d831ec7"},
            {"name": "Tron", "contract_address": "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"},
            {"name": "Bitcoin (Omni)", "contract_address": "31"},
            {"name": "Bitcoin (Liquid)"},
            {"name": "EOS", "contract_address": "tethertether"},
            {"name": "Algorand", "contract_address": "XIU7HGGAJ3QOTATPDSIIHPFVKMICXKHMOR2FJKHTVLII4FAOA3CYZQDLG4"},
            {
                "name": "Bitcoin Cash",
                "contract_address": "9fc89d6b7d5be2eac0b3787c5b8236bca5de641b5bafafc8f450727b63615c11"
            },
        ],
    },
    {
        "symbol": "USDC",
        "name": "USD Coin",
        "platforms": [
            {"name": "Ethereum", "contract_address": "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"},
        ],
    },
    {
        "symbol": "DAI",
        "name": "Dai",
        "platforms": [
            {"name": "Ethereum", "contract_address": "0x6b175474e89094c44da98b954eedeac495271d0f"},
        ],
    },
    {
        "symbol": "USDS",
        "name": "StableUSD",
        "platforms": [
            {"name": "Ethereum", "contract_address": "0xa4bdb11dc0a2bec88d24a3aa1e6bb17201112ebe"},
        ],
    },
    {
        "symbol": "TUSD",
        "name": "TrueUSD",
        "platforms": [
            {"name": "Ethereum", "contract_address": "0x0000000000085d4780B73119b644AE5ecd22b376"},
        ],
    },
    {
        "symbol": "BUSD",
        "name": "Binance USD",
        "platforms": [
            {"name": "Ethereum", "contract_address": "0x4fabb145d64652a948d72533023f6e7a623c7c53"},
        ],
    },
    {
        "symbol": "EURT",
        "name": "Tether EUR",
        "description": (
            "Tether is a fiat-collateralized stablecoin issued primarily on the Ethereum and "
            "Bitcoin blockchains and backed 1:1 by Euros held in bank accounts."
        ),
        "platforms": [
            {"name": "Ethereum", "contract_address": "0xabdf147870235fcfc34153828c769a70b3fae01f"},
            {"name": "Bitcoin (Omni)", "contract_address": "41"},
        ],
    },
    {
        "symbol": "CNHT",
        "name": "Tether CNH",
        "platforms": [
            {"name": "Ethereum", "contract_address": "0x6e109e9dd7fa1a58bc3eff667e8e41fc3cc07aef"},
        ],
    },
    {
        "symbol": "XAUT",
        "name": "Tether Gold",
        "description": (
            "Tether Gold (XAUT) mirrors the value of gold and is issued on the Ethereum blockchain. "
            "Issuance details: https://wallet.tether.to/transparency"
        ),
        "platforms": [
            {"name": "Ethereum", "contract_address": "0x4922a015c4407F87432B179bb209e125432E4a2A"},
        ],
    },
    {
        "symbol": "USDH",
        "name": "HonestCoin",
        "price": 1.0,
        "description": (
            "HonestCoin (USDH) is a regulated, 1 to 1 U.S. Dollar-backed stablecoin."
        ),
        "platforms": [
            {
                "name": "Bitcoin Cash",
                "contract_address": "c4b0d62156b3fa5c8f3436079b5394f7edc1bef5dc1cd2f9d0c4d46f82cca479"
            },
        ],
    },
]


class CuratedFetcher(BaseSourceFetcher):
    """Serves the curated stablecoin list; no network access."""

    provides_market_data = False

    def __init__(self, entries: Optional[List[Dict[str, Any]]] = None, name: Optional[str] = None):
        super().__init__(name=name or settings.curated_source, max_retries=1)
        self._entries = entries if entries is not None else CURATED_STABLECOINS

    async def connect(self) -> None:
        """Nothing to connect to."""

    async def disconnect(self) -> None:
        """Nothing to disconnect from."""

    def _get_rate_limit(self) -> int:
        return 1_000_000

    def _get_auth_headers(self) -> Optional[Dict[str, str]]:
        return None

    async def _fetch_payload(self) -> Any:
        return copy.deepcopy(self._entries)

    def _transform(self, payload: Any) -> List[RawAssetRecord]:
        return self._map_items(payload, self._to_record)

    def _to_record(self, entry: Dict[str, Any]) -> RawAssetRecord:
        return RawAssetRecord(
            source=self.name,
            symbol=entry['symbol'],
            name=entry.get('name') or entry['symbol'],
            price=to_float(entry.get('price')),
            description=entry.get('description'),
            logo_url=entry.get('logo_url'),
            tags=['stablecoin'],
            platforms=[
                RawPlatform(
                    name=platform['name'],
                    contract_address=platform.get('contract_address'),
                    exclude_addresses=list(platform.get('exclude_addresses') or []),
                    total_supply=to_float(platform.get('total_supply'))
                )
                for platform in entry.get('platforms', [])
            ]
        )
