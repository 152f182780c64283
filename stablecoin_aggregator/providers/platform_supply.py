"""
Per-platform token supply lookups.
Explorer clients that report a token's total supply at its contract address,
used to refine platform supplies after reconciliation.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from .base import BaseApiClient, FetchError, ParseError, to_float
from ..api.schemas import FetchErrorKind
from ..core.config import settings, source_config
from ..core.logging_config import create_logger

logger = create_logger(__name__)


class PlatformSupplyProvider(ABC):
    """Token supply lookups on one platform."""

    @abstractmethod
    async def get_token_total_supply(self, address: str) -> float:
        """
        Total supply of the token at ``address``.

        Raises:
            FetchError: If the explorer cannot answer
        """
        pass

    async def get_token_balance(self, address: str, holder: str) -> float:
        """Balance of ``holder`` in the token at ``address``."""
        raise NotImplementedError(f"{type(self).__name__} does not support balance lookups")

    async def get_token_circulating_supply(
        self,
        address: str,
        exclude_addresses: Iterable[str],
        total_supply: Optional[float] = None
    ) -> float:
        """Total supply minus the balances held at excluded (treasury) addresses."""
        if total_supply is None:
            total_supply = await self.get_token_total_supply(address)

        excluded = 0.0
        for holder in exclude_addresses:
            excluded += await self.get_token_balance(address, holder)
        return total_supply - excluded


# Token decimals for the contracts tracked by the curated source
ERC20_DECIMALS: Dict[str, int] = {
    '0xdac17f958d2ee523a2206206994597c13d831ec7': 6,   # USDT
    '0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48': 6,   # USDC
    '0x6b175474e89094c44da98b954eedeac495271d0f': 18,  # DAI
    '0xa4bdb11dc0a2bec88d24a3aa1e6bb17201112ebe': 6,   # USDS
    '0x0000000000085d4780b73119b644ae5ecd22b376': 18,  # TUSD
    '0x4fabb145d64652a948d72533023f6e7a623c7c53': 18,  # BUSD
    '0xabdf147870235fcfc34153828c769a70b3fae01f': 6,   # EURT
    '0x6e109e9dd7fa1a58bc3eff667e8e41fc3cc07aef': 6,   # CNHT
    '0x4922a015c4407f87432b179bb209e125432e4a2a': 6,   # XAUT
}


class EtherscanSupplyProvider(BaseApiClient, PlatformSupplyProvider):
    """Ethereum token supplies via the Etherscan API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        decimals: Optional[Dict[str, int]] = None,
        default_decimals: int = 18,
        **kwargs
    ):
        super().__init__(
            name="etherscan",
            api_key=api_key if api_key is not None else settings.etherscan_api_key,
            base_url=base_url or settings.etherscan_api_url,
            **kwargs
        )
        self.decimals = {address.lower(): places for address, places in (decimals or ERC20_DECIMALS).items()}
        self.default_decimals = default_decimals

    def _get_rate_limit(self) -> int:
        return source_config.RATE_LIMITS['etherscan']

    def _get_auth_headers(self) -> Optional[Dict[str, str]]:
        """Etherscan takes its key as a query parameter."""
        return None

    async def get_token_total_supply(self, address: str) -> float:
        result = await self._query({
            'module': 'stats',
            'action': 'tokensupply',
            'contractaddress': address
        })
        return self._scale(address, result)

    async def get_token_balance(self, address: str, holder: str) -> float:
        result = await self._query({
            'module': 'account',
            'action': 'tokenbalance',
            'contractaddress': address,
            'address': holder,
            'tag': 'latest'
        })
        return self._scale(address, result)

    async def _query(self, params: Dict[str, str]) -> str:
        if self.api_key:
            params = dict(params, apikey=self.api_key)

        response = await self._make_request(method="GET", url=self.base_url, params=params)
        if not isinstance(response, dict):
            raise ParseError(f"Unexpected response from {self.name}", self.name)

        if str(response.get('status')) != '1':
            message = str(response.get('result') or response.get('message') or 'unknown error')
            kind = FetchErrorKind.RATE_LIMIT if 'rate limit' in message.lower() else FetchErrorKind.UNKNOWN
            raise FetchError(f"{self.name} error: {message}", self.name, kind=kind)

        return response.get('result')

    def _scale(self, address: str, raw_amount: str) -> float:
        amount = to_float(raw_amount)
        if amount is None:
            raise ParseError(f"Non-numeric amount from {self.name}: {raw_amount!r}", self.name)
        places = self.decimals.get(address.lower(), self.default_decimals)
        return amount / 10 ** places
