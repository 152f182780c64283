"""
Tests for asset classification.

Verifies that:
- Stablecoin tags take precedence over tokenized-asset tags
- Explicit currency tags decide the peg before symbol or name heuristics
- Symbol, name and ISO-code heuristics detect the peg currency
- Tokenized assets resolve to their subtype
- Unrecognized assets stay Other with no peg
"""

import pytest

from stablecoin_aggregator.api.schemas import AssetCategory
from stablecoin_aggregator.services.asset_classifier import AssetClassifier, asset_classifier


class TestCategory:
    @pytest.mark.parametrize("tags", [
        ["stablecoin"],
        ["Stablecoin", "defi"],
        ["usd-stablecoin"],
        ["peggedUSD"],
    ])
    def test_stablecoin_tags(self, tags):
        category, _ = asset_classifier.classify(tags, "Tether", "USDT")
        assert category == AssetCategory.STABLECOIN

    @pytest.mark.parametrize("tags", [["tokenized-assets"], ["tokenized-gold"], ["tokenized-stock"]])
    def test_tokenized_tags(self, tags):
        category, _ = asset_classifier.classify(tags, "Some Asset", "SA")
        assert category == AssetCategory.TOKENIZED_ASSET

    def test_stablecoin_wins_over_tokenized(self):
        category, pegged = asset_classifier.classify(["stablecoin", "tokenized-gold"], "Tether Gold", "XAUT")
        assert category == AssetCategory.STABLECOIN
        assert pegged == "Gold"

    def test_untagged_is_other(self):
        assert asset_classifier.classify([], "Some Token", "ABC") == (AssetCategory.OTHER, None)
        assert asset_classifier.classify(["defi"], "Some Token", "ABC") == (AssetCategory.OTHER, None)


class TestStablecoinPeg:
    @pytest.mark.parametrize("tags, expected", [
        (["eur-stablecoin"], "EUR"),
        (["stablecoin", "peggedEUR"], "EUR"),
        (["xau-stablecoin"], "Gold"),
        (["stablecoin", "peggedVAR"], "VAR"),
    ])
    def test_currency_tags(self, tags, expected):
        # Symbol points at USD; the tag must win
        _, pegged = asset_classifier.classify(tags, "Some Dollar", "USDX")
        assert pegged == expected

    @pytest.mark.parametrize("symbol, name, expected", [
        ("USDT", "Tether", "USD"),
        ("EURC", "Euro Coin", "EUR"),
        ("CNHT", "Tether CNH", "CNY"),
        ("XSGD", "StraitsX SGD", "SGD"),
        ("GBPT", "Pound Token", "GBP"),
        ("USDR", "Real USD", "USD"),
        ("GYEN", "GMO JPY", "JPY"),
        ("ABCD", "Digital Euro", "EUR"),
        ("SGD_X", "Some Coin", "SGD"),
        ("ZZZ1", "Stable NZD", "NZD"),
    ])
    def test_detected_from_symbol_and_name(self, symbol, name, expected):
        _, pegged = asset_classifier.classify(["stablecoin"], name, symbol)
        assert pegged == expected

    def test_asset_backed_infers_type(self):
        _, pegged = asset_classifier.classify(
            ["stablecoin", "asset-backed-stablecoin"], "Acme Silver", "ABC"
        )
        assert pegged == "Silver"

    def test_unknown_peg(self):
        assert asset_classifier.classify(["stablecoin"], "Foo", "FOO") == (AssetCategory.STABLECOIN, None)

    def test_custom_aliases(self):
        classifier = AssetClassifier({"abc": "USD"})
        assert classifier.classify(["stablecoin"], "Foo", "ABC")[1] == "USD"
        assert asset_classifier.classify(["stablecoin"], "Foo", "ABC")[1] is None


class TestTokenizedType:
    @pytest.mark.parametrize("tags, name, symbol, expected", [
        (["tokenized-gold"], "PAX Gold", "PAXG", "Gold"),
        (["tokenized-treasury-bills"], "Ondo Short-Term US Government Bond", "OUSG", "Treasury Bills"),
        (["tokenized-commodities"], "Kinesis Silver", "KAG", "Silver"),
        (["tokenized-commodities"], "Oil Token", "OIL", "Commodities"),
        (["tokenized-assets"], "Backed Tesla Stock", "bTSLA", "Stocks"),
        (["tokenized-assets"], "Some Fund", "FND", "Tokenized Asset"),
    ])
    def test_subtypes(self, tags, name, symbol, expected):
        assert asset_classifier.classify(tags, name, symbol) == (AssetCategory.TOKENIZED_ASSET, expected)

    def test_slug_is_consulted(self):
        _, pegged = asset_classifier.classify(["tokenized-assets"], "Backed", "BIB01", slug="backed-etf-bond")
        assert pegged == "ETF"
