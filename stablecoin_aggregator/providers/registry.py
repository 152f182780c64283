"""
Source registry: lookup of source fetchers keyed by source identifier.
"""

from typing import Dict, Iterable, List, Optional, Type

from .base import BaseSourceFetcher
from .coingecko_provider import CoinGeckoFetcher
from .coinmarketcap_provider import CoinMarketCapFetcher
from .curated_provider import CuratedFetcher
from .defillama_provider import DefiLlamaFetcher
from .messari_provider import MessariFetcher
from ..api.schemas import DataSource
from ..core.config import Settings, settings as default_settings
from ..core.logging_config import create_logger

logger = create_logger(__name__)

FETCHER_CLASSES: Dict[str, Type[BaseSourceFetcher]] = {
    DataSource.CMC.value: CoinMarketCapFetcher,
    DataSource.MESSARI.value: MessariFetcher,
    DataSource.COINGECKO.value: CoinGeckoFetcher,
    DataSource.DEFILLAMA.value: DefiLlamaFetcher,
    DataSource.CURATED.value: CuratedFetcher,
}


class SourceRegistry:
    """
    Catalog of source fetchers.

    Usage:
        registry = SourceRegistry()
        registry.register(CoinGeckoFetcher())
        fetcher = registry.get("coingecko")
    """

    def __init__(self, fetchers: Optional[Iterable[BaseSourceFetcher]] = None):
        self._fetchers: Dict[str, BaseSourceFetcher] = {}
        for fetcher in fetchers or []:
            self.register(fetcher)

    def register(self, fetcher: BaseSourceFetcher) -> None:
        """Register a fetcher under its source name, replacing any previous one."""
        if fetcher.name in self._fetchers:
            logger.warning("Replacing registered source", extra={"source": fetcher.name})
        self._fetchers[fetcher.name] = fetcher
        logger.debug("Registered source", extra={"source": fetcher.name})

    def unregister(self, source: str) -> Optional[BaseSourceFetcher]:
        return self._fetchers.pop(source, None)

    def get(self, source: str) -> BaseSourceFetcher:
        fetcher = self._fetchers.get(source)
        if fetcher is None:
            raise KeyError(
                f"Unknown source '{source}'. "
                f"Available: {list(self._fetchers)}"
            )
        return fetcher

    def __contains__(self, source: str) -> bool:
        return source in self._fetchers

    def __len__(self) -> int:
        return len(self._fetchers)

    @property
    def names(self) -> List[str]:
        return list(self._fetchers)

    def get_all(self) -> List[BaseSourceFetcher]:
        return list(self._fetchers.values())

    def get_active(self) -> List[BaseSourceFetcher]:
        """Registered fetchers that have what they need to run."""
        active = []
        for fetcher in self._fetchers.values():
            if fetcher.is_configured():
                active.append(fetcher)
            else:
                logger.warning("Source not configured, skipping", extra={"source": fetcher.name})
        return active

    async def connect_all(self) -> None:
        for fetcher in self._fetchers.values():
            await fetcher.connect()

    async def disconnect_all(self) -> None:
        for fetcher in self._fetchers.values():
            try:
                await fetcher.disconnect()
            except Exception as e:
                logger.warning("Error disconnecting source", extra={
                    "source": fetcher.name,
                    "error": str(e)
                })

    @classmethod
    def create_default(cls, config: Optional[Settings] = None) -> "SourceRegistry":
        """Build a registry holding one fetcher per enabled source."""
        config = config or default_settings
        registry = cls()

        for source in config.get_enabled_sources_list():
            fetcher_class = FETCHER_CLASSES.get(source)
            if fetcher_class is None:
                logger.warning("No fetcher available for enabled source", extra={"source": source})
                continue
            registry.register(fetcher_class())

        logger.info("Source registry created", extra={"sources": registry.names})
        return registry
