"""
Tests for cross-source reconciliation.

Verifies that:
- Records match by symbol, then by unambiguous name similarity
- Fields resolve from the highest-priority source that has a value
- Platform lists are unioned, with curated data overriding priority
- Every input record appears in the output exactly once
- Records are classified and scored for confidence and data quality
"""

import pytest

from stablecoin_aggregator.api.schemas import AssetCategory
from stablecoin_aggregator.services.merger import (
    StablecoinMerger, levenshtein_distance, name_similarity
)

PRIORITY = {"cmc": 10, "messari": 8, "coingecko": 6, "defillama": 4, "curated": 2}


@pytest.fixture
def merger():
    return StablecoinMerger(match_threshold=0.8, curated_source="curated", conflict_tolerance=0.01)


def _by_symbol(coins):
    return {coin.symbol: coin for coin in coins}


class TestNameSimilarity:
    @pytest.mark.parametrize("left, right", [
        ("USD Coin", "USDCoin"),
        ("TrueUSD", "True USD"),
        ("Dai", "DAI"),
        ("Tether", "tether"),
        ("Stable Dollar", "Stable Dolar"),
    ])
    def test_known_good_pairs_match(self, left, right):
        assert name_similarity(left, right) > 0.8

    @pytest.mark.parametrize("left, right", [
        ("Tether", "Tether USD"),
        ("Tether", "Tether Gold"),
        ("Binance USD", "BUSD"),
        ("USD Coin", "Dai"),
        ("Pax Dollar", "Paxos Standard"),
    ])
    def test_known_bad_pairs_do_not_match(self, left, right):
        assert name_similarity(left, right) <= 0.8

    def test_empty_names_never_match(self):
        assert name_similarity("", "Tether") == 0.0
        assert name_similarity(None, None) == 0.0

    def test_levenshtein(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0


class TestMatching:
    def test_union_of_platforms_from_lower_priority_source(self, merger, record, platform):
        coins = merger.merge({
            "cmc": [record("cmc", "USDT", "Tether", price=1.00, market_cap=80e9)],
            "defillama": [record("defillama", "USDT", "Tether", price=None,
                                 platforms=[platform(name="Tron", circulating_supply=30e9)])],
        }, PRIORITY)

        assert len(coins) == 1
        usdt = coins[0]
        assert usdt.main.price == 1.00
        assert usdt.provenance["price"] == "cmc"
        assert [p.name for p in usdt.platforms] == ["Tron"]
        assert usdt.platforms[0].circulating_supply == 30e9
        assert usdt.sources == ["cmc", "defillama"]

    def test_symbol_match_is_case_insensitive(self, merger, record):
        coins = merger.merge({
            "cmc": [record("cmc", "usdc", "USD Coin")],
            "coingecko": [record("coingecko", "USDC", "USDC")],
        }, PRIORITY)
        assert len(coins) == 1
        assert coins[0].symbol == "USDC"

    def test_unique_name_match_merges(self, merger, record):
        coins = merger.merge({
            "cmc": [record("cmc", "TUSD", "TrueUSD", market_cap=5e8)],
            "messari": [record("messari", "TRUEUSD", "True USD", description="A dollar token")],
        }, PRIORITY)

        assert len(coins) == 1
        assert coins[0].symbol == "TUSD"
        assert coins[0].description == "A dollar token"

    def test_ambiguous_name_match_stays_standalone(self, merger, record):
        coins = merger.merge({
            "cmc": [
                record("cmc", "USDX", "Stable Dollar", market_cap=2e9),
                record("cmc", "USDY", "Stable Dollars", market_cap=1e9),
            ],
            "coingecko": [record("coingecko", "SDL", "Stable Dolar", market_cap=5e8)],
        }, PRIORITY)

        by_symbol = _by_symbol(coins)
        assert set(by_symbol) == {"USDX", "USDY", "SDL"}
        assert by_symbol["SDL"].sources == ["coingecko"]
        assert by_symbol["USDX"].sources == ["cmc"]
        assert by_symbol["USDY"].sources == ["cmc"]

    def test_name_match_ignores_same_source_clusters(self, merger, record):
        coins = merger.merge({
            "cmc": [record("cmc", "USDC", "USD Coin"), record("cmc", "USDCE", "USDCoin")],
        }, PRIORITY)
        assert len(coins) == 2

    def test_every_record_appears_exactly_once(self, merger, record):
        inputs = {
            "cmc": [record("cmc", "USDT", "Tether"), record("cmc", "USDC", "USD Coin")],
            "coingecko": [record("coingecko", "USDT", "Tether"), record("coingecko", "FRAX", "Frax")],
            "defillama": [record("defillama", "DAI", "Dai"), record("defillama", "FRAX", "Frax")],
        }
        coins = merger.merge(inputs, PRIORITY)

        merged = [(r.source, r.symbol) for coin in coins for r in coin.source_records]
        expected = [(r.source, r.symbol) for records in inputs.values() for r in records]
        assert sorted(merged) == sorted(expected)

    def test_symbols_are_unique(self, merger, record):
        coins = merger.merge({
            "cmc": [record("cmc", "USDT", "Tether"), record("cmc", "USDC", "USD Coin")],
            "messari": [record("messari", "USDT", "Tether USD"), record("messari", "USDCE", "USD Coin")],
            "coingecko": [record("coingecko", "USDCE", "Bridged USDC")],
        }, PRIORITY)

        symbols = [coin.symbol for coin in coins]
        assert len(symbols) == len(set(symbols))
        assert set(symbols) == {"USDT", "USDC"}

    def test_empty_input(self, merger):
        assert merger.merge({}, PRIORITY) == []
        assert merger.merge({"cmc": []}, PRIORITY) == []


class TestFieldResolution:
    def test_highest_priority_value_wins_without_averaging(self, merger, record):
        coins = merger.merge({
            "coingecko": [record("coingecko", "DAI", "Dai", price=0.98, market_cap=4.9e9)],
            "cmc": [record("cmc", "DAI", "Dai", price=1.00, market_cap=5.0e9)],
        }, PRIORITY)

        dai = coins[0]
        assert dai.main.price == 1.00
        assert dai.main.market_cap == 5.0e9
        assert dai.provenance["market_cap"] == "cmc"

    def test_missing_fields_fall_through_to_lower_priority(self, merger, record):
        coins = merger.merge({
            "cmc": [record("cmc", "DAI", "Dai", price=1.0)],
            "messari": [record("messari", "DAI", "Dai", website="https://makerdao.com")],
        }, PRIORITY)

        assert coins[0].website == "https://makerdao.com"
        assert coins[0].provenance["website"] == "messari"

    def test_conflicts_recorded(self, merger, record):
        coins = merger.merge({
            "cmc": [record("cmc", "DAI", "Dai", price=1.00)],
            "coingecko": [record("coingecko", "DAI", "Dai", price=0.97)],
        }, PRIORITY)

        conflicts = {conflict.field: conflict for conflict in coins[0].conflicts}
        assert "price" in conflicts
        assert conflicts["price"].values == {"cmc": 1.00, "coingecko": 0.97}
        assert conflicts["price"].spread == pytest.approx(0.03)

    def test_unique_uris(self, merger, record):
        coins = merger.merge({
            "cmc": [
                record("cmc", "USDX", "Stable X", slug="stable"),
                record("cmc", "USDY", "Stable Y", slug="stable"),
            ],
        }, PRIORITY)
        uris = sorted(coin.uri for coin in coins)
        assert uris == ["stable", "stable-usdy"]

    def test_tags_unioned_case_insensitively(self, merger, record):
        coins = merger.merge({
            "cmc": [record("cmc", "DAI", "Dai", tags=["stablecoin", "DeFi"])],
            "coingecko": [record("coingecko", "DAI", "Dai", tags=["Stablecoin", "ethereum"])],
        }, PRIORITY)
        assert coins[0].tags == ["stablecoin", "DeFi", "ethereum"]


class TestPlatforms:
    def test_platform_names_normalized_and_merged(self, merger, record, platform):
        coins = merger.merge({
            "cmc": [record("cmc", "USDT", "Tether", platforms=[platform(name="ethereum", contract_address="0xabc")])],
            "defillama": [record("defillama", "USDT", "Tether", platforms=[
                platform(name="Ethereum", circulating_supply=40e9),
                platform(name="trc20", circulating_supply=30e9),
            ])],
        }, PRIORITY)

        platforms = {p.name: p for p in coins[0].platforms}
        assert set(platforms) == {"Ethereum", "Tron"}
        assert platforms["Ethereum"].contract_address == "0xabc"
        assert platforms["Ethereum"].circulating_supply == 40e9
        assert platforms["Ethereum"].provenance == {"contract_address": "cmc", "circulating_supply": "defillama"}
        assert platforms["Tron"].uri == "tron"

    def test_curated_overrides_priority(self, merger, record, platform):
        coins = merger.merge({
            "cmc": [record("cmc", "USDT", "Tether", platforms=[
                platform(name="Ethereum", contract_address="0xwrong", total_supply=1.0)
            ])],
            "curated": [record("curated", "USDT", "Tether", price=None, platforms=[
                platform(name="Ethereum", contract_address="0xright", exclude_addresses=["0xtreasury"])
            ])],
        }, PRIORITY)

        ethereum = coins[0].platforms[0]
        assert ethereum.contract_address == "0xright"
        assert ethereum.exclude_addresses == ["0xtreasury"]
        assert ethereum.total_supply == 1.0
        assert ethereum.provenance["contract_address"] == "curated"
        assert ethereum.provenance["total_supply"] == "cmc"


class TestDeterminism:
    def test_merge_is_idempotent(self, merger, record, platform):
        inputs = {
            "cmc": [record("cmc", "USDT", "Tether", market_cap=80e9), record("cmc", "USDC", "USD Coin")],
            "defillama": [record("defillama", "USDT", "Tether", platforms=[platform(name="tron")])],
            "coingecko": [record("coingecko", "SDL", "Stable Dolar")],
        }
        first = [coin.dict() for coin in merger.merge(inputs, PRIORITY)]
        second = [coin.dict() for coin in merger.merge(inputs, PRIORITY)]
        assert first == second

    def test_ordered_by_market_cap(self, merger, record):
        coins = merger.merge({
            "cmc": [
                record("cmc", "DAI", "Dai", market_cap=5e9),
                record("cmc", "USDT", "Tether", market_cap=80e9),
                record("cmc", "FRAX", "Frax", market_cap=None),
            ],
        }, PRIORITY)
        assert [coin.symbol for coin in coins] == ["USDT", "DAI", "FRAX"]

    def test_rank_sources_breaks_ties_by_identifier(self):
        ranked = StablecoinMerger.rank_sources(["b", "a", "cmc"], {"cmc": 10, "a": 1, "b": 1})
        assert ranked == ["cmc", "a", "b"]


class TestCuratedOnlyEntries:
    def test_unmatched_curated_entry_is_kept_standalone(self, merger, record, platform):
        coins = merger.merge({
            "cmc": [record("cmc", "USDT", "Tether", market_cap=80e9)],
            "curated": [record("curated", "USDH", "HonestCoin", price=None, platforms=[
                platform(name="Bitcoin Cash", contract_address="c4b0")
            ])],
        }, PRIORITY)

        assert [coin.symbol for coin in coins] == ["USDT", "USDH"]
        usdh = coins[1]
        assert usdh.sources == ["curated"]
        assert usdh.main.price is None
        assert usdh.main.market_cap is None
        assert usdh.provenance == {"name": "curated"}
        assert usdh.quality.missing_fields == ["price", "market_cap", "circulating_supply"]
        assert usdh.platforms[0].contract_address == "c4b0"


class TestClassification:
    def test_peg_from_pegged_tag(self, merger, record):
        coins = merger.merge({
            "defillama": [record("defillama", "USDT", "Tether", tags=["stablecoin", "peggedUSD"])],
        }, PRIORITY)
        assert coins[0].asset_category == AssetCategory.STABLECOIN
        assert coins[0].pegged_asset == "USD"

    @pytest.mark.parametrize("symbol, name, expected", [
        ("EURT", "Tether EUR", "EUR"),
        ("CNHT", "Tether CNH", "CNY"),
        ("XAUT", "Tether Gold", "Gold"),
    ])
    def test_peg_from_symbol(self, merger, record, symbol, name, expected):
        coins = merger.merge({"curated": [record("curated", symbol, name, tags=["stablecoin"])]}, PRIORITY)
        assert coins[0].pegged_asset == expected

    def test_tokenized_asset(self, merger, record):
        coins = merger.merge({
            "coingecko": [record("coingecko", "PAXG", "PAX Gold", tags=["tokenized-gold"])],
        }, PRIORITY)
        assert coins[0].asset_category == AssetCategory.TOKENIZED_ASSET
        assert coins[0].pegged_asset == "Gold"

    def test_untagged_record_is_other(self, merger, record):
        coins = merger.merge({"cmc": [record("cmc", "ABC", "Some Token")]}, PRIORITY)
        assert coins[0].asset_category == AssetCategory.OTHER
        assert coins[0].pegged_asset is None


class TestConfidenceAndQuality:
    def test_agreeing_sources(self, merger, record):
        coins = merger.merge({
            "cmc": [record("cmc", "USDT", "Tether", price=1.0, market_cap=80e9, circulating_supply=80e9)],
            "coingecko": [record("coingecko", "USDT", "Tether", price=1.0, market_cap=79e9)],
        }, PRIORITY)

        confidence = coins[0].confidence
        assert confidence.consensus == 1.0
        assert confidence.market_data == 1.0
        assert confidence.supply_data == 0.8
        assert confidence.platform_data == 0.0
        assert confidence.source_count == 2
        assert confidence.overall == pytest.approx(0.72 * (0.8 + 0.2 * 5 / 6), abs=1e-4)

        quality = coins[0].quality
        assert quality.has_market_data
        assert quality.has_supply_data
        assert quality.has_multiple_sources
        assert quality.missing_fields == []

    def test_disagreeing_prices_lower_consensus(self, merger, record):
        coins = merger.merge({
            "cmc": [record("cmc", "DAI", "Dai", price=1.00)],
            "coingecko": [record("coingecko", "DAI", "Dai", price=0.97)],
        }, PRIORITY)
        assert coins[0].confidence.consensus == pytest.approx(0.7)

    def test_single_source_is_neutral(self, merger, record):
        coins = merger.merge({"cmc": [record("cmc", "DAI", "Dai", price=1.0)]}, PRIORITY)

        assert coins[0].confidence.consensus == 0.5
        assert coins[0].confidence.market_data == pytest.approx(0.6)
        assert not coins[0].quality.has_multiple_sources
        assert not coins[0].quality.has_market_data
        assert coins[0].quality.missing_fields == ["market_cap", "circulating_supply"]

    def test_platform_supply_raises_platform_score(self, merger, record, platform):
        coins = merger.merge({
            "cmc": [record("cmc", "USDT", "Tether", platforms=[platform(name="Ethereum")])],
            "defillama": [record("defillama", "USDC", "USD Coin", platforms=[
                platform(name="Ethereum", circulating_supply=30e9)
            ])],
        }, PRIORITY)

        by_symbol = _by_symbol(coins)
        assert by_symbol["USDT"].confidence.platform_data == 0.5
        assert by_symbol["USDC"].confidence.platform_data == 1.0
