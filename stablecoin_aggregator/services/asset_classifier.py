"""
Asset classification.
Derives the asset category (stablecoin, tokenized asset) and the peg target
(USD, EUR, Gold, ...) of a reconciled record from its tags, symbol and name.
"""

import re
from typing import Dict, Iterable, Optional, Tuple

from ..api.schemas import AssetCategory

STABLECOIN_TAGS = frozenset({'stablecoin', 'stablecoins'})
TOKENIZED_ASSET_TAGS = frozenset({'tokenized-assets'})
ASSET_BACKED_TAGS = frozenset({'asset-backed-stablecoin'})

# Tag -> tokenized asset subtype, most specific first
TOKENIZED_SUBTYPES: Dict[str, str] = {
    'tokenized-gold': 'Gold',
    'tokenized-silver': 'Silver',
    'tokenized-etfs': 'ETF',
    'tokenized-stock': 'Stocks',
    'tokenized-real-estate': 'Real Estate',
    'tokenized-treasury-bills': 'Treasury Bills',
    'tokenized-commodities': 'Commodities',
}

# Upper-cased codes, words and well-known symbols -> peg target
CURRENCY_ALIASES: Dict[str, str] = {
    # Precious metals
    'XAU': 'Gold',
    'XAG': 'Silver',
    'XAUT': 'Gold',
    'PAXG': 'Gold',
    'GOLD': 'Gold',
    'SILVER': 'Silver',
    # Composite currencies
    'XDR': 'Special Drawing Rights',
    'SDR': 'Special Drawing Rights',
    # Currency words
    'DOLLAR': 'USD',
    'EURO': 'EUR',
    'POUND': 'GBP',
    'YEN': 'JPY',
    'YUAN': 'CNY',
    'RENMINBI': 'CNY',
    'FRANC': 'CHF',
    'RUPEE': 'INR',
    'WON': 'KRW',
    'REAL': 'BRL',
    'PESO': 'MXN',
    'RAND': 'ZAR',
    'RUBLE': 'RUB',
    'ROUBLE': 'RUB',
    'LIRA': 'TRY',
    # Stablecoin symbols
    'USDT': 'USD',
    'USDC': 'USD',
    'BUSD': 'USD',
    'USDP': 'USD',
    'TUSD': 'USD',
    'FDUSD': 'USD',
    'PYUSD': 'USD',
    'DAI': 'USD',
    'USDS': 'USD',
    'USDD': 'USD',
    'USDE': 'USD',
    'USDH': 'USD',
    'GUSD': 'USD',
    'LUSD': 'USD',
    'FRAX': 'USD',
    'EURC': 'EUR',
    'EURS': 'EUR',
    'EURT': 'EUR',
    'CEUR': 'EUR',
    'STASIS': 'EUR',
    'GBPT': 'GBP',
    'QCAD': 'CAD',
    'CADC': 'CAD',
    'AUDX': 'AUD',
    'NZDS': 'NZD',
    'JPYC': 'JPY',
    'CNHT': 'CNY',
    'IDRT': 'IDR',
    'BIDR': 'IDR',
    'THBX': 'THB',
    'BRLT': 'BRL',
    'INRT': 'INR',
    'KRWT': 'KRW',
    'ZZAR': 'ZAR',
    'XSGD': 'SGD',
}

ISO_CURRENCY_CODES: Tuple[str, ...] = (
    'USD', 'EUR', 'GBP', 'JPY', 'CHF', 'CAD', 'AUD', 'NZD', 'SEK', 'NOK',
    'DKK', 'PLN', 'CZK', 'HUF', 'RON', 'BGN', 'RUB', 'TRY', 'CNY', 'HKD',
    'SGD', 'KRW', 'THB', 'MYR', 'IDR', 'PHP', 'VND', 'INR', 'PKR', 'LKR',
    'BDT', 'AED', 'SAR', 'QAR', 'KWD', 'BHD', 'OMR', 'JOD', 'ILS', 'EGP',
    'BRL', 'ARS', 'CLP', 'COP', 'PEN', 'UYU', 'ZAR', 'NGN', 'GHS', 'KES',
    'UGX', 'TZS', 'XOF', 'XAF', 'MAD', 'TND', 'MXN', 'XDR',
)

# Tried in order, so USD wins over e.g. "Real USD" -> BRL
CURRENCY_NAME_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = tuple(
    (code, re.compile(pattern, re.IGNORECASE)) for code, pattern in (
        ('USD', r'\b(?:dollar|usd)\b'),
        ('EUR', r'\b(?:euro|eur)\b'),
        ('GBP', r'\b(?:pound|sterling|gbp)\b'),
        ('JPY', r'\b(?:yen|jpy)\b'),
        ('CNY', r'\b(?:yuan|renminbi|cny)\b'),
        ('CHF', r'\b(?:franc|chf)\b'),
        ('CAD', r'\b(?:canadian\s+dollar|cad)\b'),
        ('AUD', r'\b(?:australian\s+dollar|aud)\b'),
        ('INR', r'\b(?:rupee|inr)\b'),
        ('BRL', r'\b(?:real|brl)\b'),
        ('RUB', r'\b(?:ruble|rouble|rub)\b'),
        ('KRW', r'\b(?:won|krw)\b'),
        ('ZAR', r'\b(?:rand|zar)\b'),
        ('TRY', r'\b(?:lira|try)\b'),
        ('MXN', r'\b(?:peso|mxn)\b'),
    )
)

_CURRENCY_TAG = re.compile(r'^([a-z]{3})-stablecoin$')
_PEGGED_TAG = re.compile(r'^pegged([a-z0-9]+)$')
_SYMBOL_CODE = re.compile(r'^([a-z]{3})[tc]?$|^([a-z]{3})[-_]')
_THREE_LETTER_WORD = re.compile(r'\b([a-z]{3})\b')

_GOLD_SYMBOL = re.compile(r'xau|paxg|xaut')
_SILVER_SYMBOL = re.compile(r'xag')
# Name/slug keyword -> tokenized asset type
_ASSET_KEYWORDS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r'gold'), 'Gold'),
    (re.compile(r'silver'), 'Silver'),
    (re.compile(r'etf'), 'ETF'),
    (re.compile(r'treasury'), 'Treasury Bills'),
    (re.compile(r'stock'), 'Stocks'),
    (re.compile(r'real estate|real-estate|estate'), 'Real Estate'),
)


def _symbol_pattern(code: str) -> re.Pattern:
    code = code.lower()
    return re.compile(rf'^{code}[tc]?$|\b{code}[-_]?(?:token|coin|t)?\b')


class AssetClassifier:
    """Tag- and pattern-driven classification of reconciled assets."""

    def __init__(self, currency_aliases: Optional[Dict[str, str]] = None):
        self._aliases = {code.upper(): target for code, target in CURRENCY_ALIASES.items()}
        if currency_aliases:
            self._aliases.update({code.upper(): target for code, target in currency_aliases.items()})

        codes = list(ISO_CURRENCY_CODES)
        for code in self._aliases:
            if len(code) == 3 and code.isalpha() and code not in codes:
                codes.append(code)
        self._iso_codes = frozenset(codes)
        self._symbol_patterns = tuple((code, _symbol_pattern(code)) for code in codes)

    def classify(
        self,
        tags: Iterable[str],
        name: Optional[str] = None,
        symbol: Optional[str] = None,
        slug: Optional[str] = None
    ) -> Tuple[AssetCategory, Optional[str]]:
        """
        Classify an asset.

        Returns:
            ``(asset_category, pegged_asset)``; ``pegged_asset`` is None when
            nothing identifies the peg target
        """
        tags_lower = [str(tag).lower() for tag in tags if tag]
        name_lower = (name or '').lower()
        symbol_lower = (symbol or '').lower()
        slug_lower = (slug or '').lower()

        category = self.classify_category(tags_lower)
        if category == AssetCategory.STABLECOIN:
            pegged = self._stablecoin_peg(tags_lower, name_lower, symbol_lower, slug_lower)
        else:
            pegged = self._tokenized_type(tags_lower, name_lower, symbol_lower, slug_lower)
        return category, pegged

    def classify_category(self, tags_lower: Iterable[str]) -> AssetCategory:
        tags_lower = list(tags_lower)
        if any(
            tag in STABLECOIN_TAGS or _CURRENCY_TAG.match(tag) or _PEGGED_TAG.match(tag)
            for tag in tags_lower
        ):
            return AssetCategory.STABLECOIN
        if any(tag in TOKENIZED_ASSET_TAGS or tag in TOKENIZED_SUBTYPES for tag in tags_lower):
            return AssetCategory.TOKENIZED_ASSET
        return AssetCategory.OTHER

    def _alias(self, code: str) -> str:
        return self._aliases.get(code, code)

    def _stablecoin_peg(self, tags_lower, name_lower, symbol_lower, slug_lower) -> Optional[str]:
        # Explicit currency tags win over anything inferred
        for tag in tags_lower:
            match = _CURRENCY_TAG.match(tag)
            if match:
                return self._alias(match.group(1).upper())
        for tag in tags_lower:
            match = _PEGGED_TAG.match(tag)
            if match:
                return self._alias(match.group(1).upper())

        detected = self.detect_currency(symbol_lower, name_lower, slug_lower)
        if detected:
            return detected

        if any(tag in ASSET_BACKED_TAGS for tag in tags_lower):
            return self._infer_asset_type(name_lower, symbol_lower, slug_lower)
        return None

    def _tokenized_type(self, tags_lower, name_lower, symbol_lower, slug_lower) -> Optional[str]:
        for tag, label in TOKENIZED_SUBTYPES.items():
            if tag in tags_lower:
                if label == 'Commodities':
                    inferred = self._infer_asset_type(name_lower, symbol_lower, slug_lower)
                    return inferred if inferred in ('Gold', 'Silver') else label
                return label

        if any(tag in TOKENIZED_ASSET_TAGS or tag in ASSET_BACKED_TAGS for tag in tags_lower):
            return self._infer_asset_type(name_lower, symbol_lower, slug_lower)
        return None

    def detect_currency(self, symbol_lower: str, name_lower: str, slug_lower: str = '') -> Optional[str]:
        """Infer the peg currency from symbol, name or slug."""
        alias = self._aliases.get(symbol_lower.upper())
        if alias:
            return alias

        for code, pattern in self._symbol_patterns:
            if symbol_lower and pattern.search(symbol_lower):
                return self._alias(code)

        for code, pattern in CURRENCY_NAME_PATTERNS:
            if pattern.search(name_lower) or pattern.search(slug_lower):
                return self._alias(code)

        match = _SYMBOL_CODE.match(symbol_lower)
        if match:
            code = (match.group(1) or match.group(2)).upper()
            if code in self._iso_codes:
                return self._alias(code)

        for word in _THREE_LETTER_WORD.findall(f"{name_lower} {slug_lower}"):
            if word.upper() in self._iso_codes:
                return self._alias(word.upper())
        return None

    @staticmethod
    def _infer_asset_type(name_lower: str, symbol_lower: str, slug_lower: str) -> str:
        if _GOLD_SYMBOL.search(symbol_lower):
            return 'Gold'
        if _SILVER_SYMBOL.search(symbol_lower):
            return 'Silver'
        for pattern, label in _ASSET_KEYWORDS:
            if pattern.search(name_lower) or pattern.search(slug_lower):
                return label
        return 'Tokenized Asset'


# Global classifier instance
asset_classifier = AssetClassifier()
