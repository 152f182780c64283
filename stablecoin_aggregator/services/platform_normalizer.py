"""
Platform name normalization.
Maps provider-specific chain/network identifiers to canonical platform names.
"""

import re
from typing import Dict, List, Optional, Tuple

UNKNOWN_PLATFORM = "Unknown"

_SEPARATORS = re.compile(r"[-_\s]+")
_NON_SLUG = re.compile(r"[^a-z0-9]+")

# Provider spellings and ecosystem tags -> canonical name
PLATFORM_ALIASES: Dict[str, str] = {
    # Ethereum
    'ethereum': 'Ethereum',
    'eth': 'Ethereum',
    'erc20': 'Ethereum',
    'erc-20': 'Ethereum',
    'ethereum-pow-ecosystem': 'Ethereum',
    'ethereum-ecosystem': 'Ethereum',
    # Tron
    'tron': 'Tron',
    'trx': 'Tron',
    'trc20': 'Tron',
    'trc-20': 'Tron',
    'tron20-ecosystem': 'Tron',
    # BNB Smart Chain
    'bsc': 'BSC',
    'bnb': 'BSC',
    'binance': 'BSC',
    'binance-smart-chain': 'BSC',
    'binance-chain': 'BSC',
    'bnb-smart-chain': 'BSC',
    'bnb-chain': 'BSC',
    'bep20': 'BSC',
    'bep-20': 'BSC',
    # Layer 1s
    'solana': 'Solana',
    'sol': 'Solana',
    'avalanche': 'Avalanche',
    'avax': 'Avalanche',
    'avalanche-c-chain': 'Avalanche',
    'bitcoin': 'Bitcoin',
    'btc': 'Bitcoin',
    'omni': 'Bitcoin (Omni)',
    'omni-layer': 'Bitcoin (Omni)',
    'bitcoin-cash': 'Bitcoin Cash',
    'bch': 'Bitcoin Cash',
    'bitcoincash': 'Bitcoin Cash',
    'liquid': 'Bitcoin (Liquid)',
    'liquid-network': 'Bitcoin (Liquid)',
    'stellar': 'Stellar',
    'xlm': 'Stellar',
    'algorand': 'Algorand',
    'algo': 'Algorand',
    'cardano': 'Cardano',
    'ada': 'Cardano',
    'near': 'NEAR',
    'near-protocol': 'NEAR',
    'flow': 'Flow',
    'hedera': 'Hedera',
    'hedera-hashgraph': 'Hedera',
    'sui': 'Sui',
    'aptos': 'Aptos',
    'ton': 'TON',
    'eos': 'EOS',
    'tezos': 'Tezos',
    'xtz': 'Tezos',
    'xrp': 'XRP Ledger',
    'xrpl': 'XRP Ledger',
    'ripple': 'XRP Ledger',
    'cronos': 'Cronos',
    'fantom': 'Fantom',
    'ftm': 'Fantom',
    'celo': 'Celo',
    'harmony': 'Harmony',
    'kava': 'Kava',
    'thundercore': 'ThunderCore',
    'klaytn': 'Klaytn',
    'waves': 'Waves',
    # Layer 2s
    'polygon': 'Polygon',
    'matic': 'Polygon',
    'polygon-pos': 'Polygon',
    'matic-network': 'Polygon',
    'arbitrum': 'Arbitrum',
    'arbitrum-one': 'Arbitrum',
    'optimism': 'Optimism',
    'op-mainnet': 'Optimism',
    'optimistic-ethereum': 'Optimism',
    'base': 'Base',
    'zksync': 'zkSync Era',
    'zksync-era': 'zkSync Era',
    'manta': 'Manta',
    'mantle': 'Mantle',
    'linea': 'Linea',
    'scroll': 'Scroll',
    'blast': 'Blast',
    'metis': 'Metis',
    'gnosis': 'Gnosis',
    'xdai': 'Gnosis',
    # Cosmos and parachains
    'moonbeam': 'Moonbeam',
    'moonriver': 'Moonriver',
    'osmosis': 'Osmosis',
    'neutron': 'Neutron',
    'terra': 'Terra',
    'injective': 'Injective',
    'cosmos': 'Cosmos Hub',
    'cosmos-hub': 'Cosmos Hub',
    'juno': 'Juno',
    'evmos': 'Evmos',
    'unknown': UNKNOWN_PLATFORM,
}

# Ordered (keyword, canonical) pairs tried against identifiers missing from the alias table
PLATFORM_KEYWORDS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (('ethereum',), 'Ethereum'),
    (('tron',), 'Tron'),
    (('binance', 'bsc'), 'BSC'),
    (('polygon', 'matic'), 'Polygon'),
    (('solana',), 'Solana'),
    (('avalanche', 'avax'), 'Avalanche'),
    (('arbitrum',), 'Arbitrum'),
    (('optimism',), 'Optimism'),
    (('omni',), 'Bitcoin (Omni)'),
    (('liquid',), 'Bitcoin (Liquid)'),
    (('bitcoin cash', 'bitcoincash'), 'Bitcoin Cash'),
    (('bitcoin', 'btc'), 'Bitcoin'),
    (('fantom', 'ftm'), 'Fantom'),
    (('zksync',), 'zkSync Era'),
    (('cosmos',), 'Cosmos Hub'),
    (('stellar',), 'Stellar'),
    (('algorand',), 'Algorand'),
    (('cardano',), 'Cardano'),
)


def _key(value: str) -> str:
    return " ".join(part for part in _SEPARATORS.split(value.strip().lower()) if part)


def slugify(value: str) -> str:
    """Build a URL-safe identifier ("Bitcoin (Omni)" -> "bitcoin-omni")."""
    return _NON_SLUG.sub("-", value.lower()).strip("-")


class PlatformNormalizer:
    """Deterministic mapping from raw platform identifiers to canonical names."""

    def __init__(self, aliases: Optional[Dict[str, str]] = None):
        table = dict(PLATFORM_ALIASES)
        if aliases:
            table.update(aliases)

        self._aliases: Dict[str, str] = {}
        for alias, canonical in table.items():
            self._aliases[_key(alias)] = canonical
        # Canonical names resolve to themselves
        for canonical in set(table.values()):
            self._aliases.setdefault(_key(canonical), canonical)

    def normalize(self, raw_identifier: Optional[str]) -> str:
        """
        Map a raw platform identifier to its canonical name.

        Resolution order is alias table, keyword heuristics, then a
        capitalized fallback with separators replaced by spaces.
        """
        if not raw_identifier or not str(raw_identifier).strip():
            return UNKNOWN_PLATFORM

        raw = str(raw_identifier)
        key = _key(raw)
        if not key:
            return UNKNOWN_PLATFORM

        canonical = self._aliases.get(key)
        if canonical:
            return canonical

        for keywords, canonical in PLATFORM_KEYWORDS:
            if any(keyword in key for keyword in keywords):
                return canonical

        words = [part for part in _SEPARATORS.split(raw.strip()) if part]
        return " ".join(word[0].upper() + word[1:] for word in words)

    def is_known_platform(self, raw_identifier: Optional[str]) -> bool:
        """True when the identifier resolves to a canonical platform rather than a fallback."""
        normalized = self.normalize(raw_identifier)
        return normalized != UNKNOWN_PLATFORM and normalized in self.get_supported_platforms()

    def get_supported_platforms(self) -> List[str]:
        """Sorted list of canonical platform names known to the alias table."""
        return sorted(set(self._aliases.values()) - {UNKNOWN_PLATFORM})


# Global normalizer instance
platform_normalizer = PlatformNormalizer()


def normalize_platform_name(raw_identifier: Optional[str]) -> str:
    return platform_normalizer.normalize(raw_identifier)
