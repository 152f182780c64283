"""
Merger / reconciler for Stablecoin Aggregator.
Matches raw records across sources and resolves each field by source priority
to produce one canonical record per stablecoin.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..api.schemas import (
    CanonicalStablecoin, FieldConflict, HistoricalSupply, MainMetrics,
    PlatformSupply, RawAssetRecord, RawPlatform
)
from ..core.config import settings
from ..core.logging_config import create_logger
from .asset_classifier import AssetClassifier, asset_classifier
from .data_quality import assess_quality, compute_confidence, compute_consensus
from .platform_normalizer import PlatformNormalizer, platform_normalizer, slugify

logger = create_logger(__name__)

# Fields resolved from the highest-priority record that has a value
RESOLVED_FIELDS = (
    'name', 'slug', 'price', 'market_cap', 'volume_24h', 'circulating_supply',
    'total_supply', 'description', 'logo_url', 'website'
)
MAIN_FIELDS = ('price', 'market_cap', 'volume_24h', 'circulating_supply', 'total_supply')
CONFLICT_FIELDS = ('price', 'market_cap', 'circulating_supply')
PLATFORM_FIELDS = (
    'contract_address', 'total_supply', 'circulating_supply', 'percentage',
    'prev_day', 'prev_week', 'prev_month'
)


class MergeError(Exception):
    """Raised when a refresh cycle has nothing usable to reconcile."""


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b)
            ))
        previous = current
    return previous[-1]


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Normalized edit-distance similarity in [0, 1], case-insensitive."""
    left = (a or '').strip().lower()
    right = (b or '').strip().lower()
    if not left or not right:
        return 0.0
    longest = max(len(left), len(right))
    return 1.0 - levenshtein_distance(left, right) / longest


def _has_value(value) -> bool:
    return value is not None and value != ''


class _Cluster:
    """Records believed to describe the same stablecoin, in priority order."""

    def __init__(self):
        self.members: List[Tuple[str, RawAssetRecord]] = []
        self.sources: Set[str] = set()

    def add(self, source: str, record: RawAssetRecord) -> None:
        self.members.append((source, record))
        self.sources.add(source)

    @property
    def symbol(self) -> str:
        return self.members[0][1].symbol

    def similarity(self, name: str) -> float:
        return max(name_similarity(name, record.name) for _, record in self.members)


class StablecoinMerger:
    """Reconciles per-source records into canonical stablecoins."""

    def __init__(
        self,
        normalizer: Optional[PlatformNormalizer] = None,
        match_threshold: Optional[float] = None,
        curated_source: Optional[str] = None,
        conflict_tolerance: Optional[float] = None,
        classifier: Optional[AssetClassifier] = None
    ):
        self.normalizer = normalizer or platform_normalizer
        self.classifier = classifier or asset_classifier
        self.match_threshold = match_threshold if match_threshold is not None else settings.match_threshold
        self.curated_source = curated_source or settings.curated_source
        self.conflict_tolerance = (
            conflict_tolerance if conflict_tolerance is not None else settings.conflict_tolerance
        )

    @staticmethod
    def rank_sources(sources: Iterable[str], priority: Mapping[str, int]) -> List[str]:
        """Sources ordered by descending priority, ties broken by identifier."""
        return sorted(sources, key=lambda source: (-priority.get(source, 0), source))

    def merge(
        self,
        per_source_records: Mapping[str, Sequence[RawAssetRecord]],
        priority: Optional[Mapping[str, int]] = None
    ) -> List[CanonicalStablecoin]:
        """
        Merge records from every source into canonical stablecoins.

        Args:
            per_source_records: Source identifier -> that source's records
            priority: Source identifier -> weight; higher wins field conflicts

        Returns:
            One canonical record per distinct stablecoin, ordered by market
            cap descending. Empty when no source contributed any record.
        """
        priority = priority if priority is not None else settings.source_priority
        ranked = self.rank_sources(
            [source for source, records in per_source_records.items() if records],
            priority
        )
        if not ranked:
            logger.warning("No records to merge")
            return []

        clusters: List[_Cluster] = []
        symbol_index: Dict[str, _Cluster] = {}
        name_matches = 0
        ambiguous = 0

        for source in ranked:
            for record in per_source_records[source]:
                cluster = symbol_index.get(record.symbol)

                if cluster is None:
                    candidates = self._name_candidates(record, source, clusters)
                    if len(candidates) == 1:
                        cluster = candidates[0]
                        name_matches += 1
                        logger.debug("Matched record by name", extra={
                            "source": source,
                            "symbol": record.symbol,
                            "matched_symbol": cluster.symbol
                        })
                    elif len(candidates) > 1:
                        ambiguous += 1
                        logger.info("Ambiguous name match, keeping record standalone", extra={
                            "source": source,
                            "symbol": record.symbol,
                            "candidates": [candidate.symbol for candidate in candidates]
                        })

                if cluster is None:
                    cluster = _Cluster()
                    clusters.append(cluster)

                cluster.add(source, record)
                symbol_index.setdefault(record.symbol, cluster)

        used_uris: Set[str] = set()
        coins = [self._build(cluster, used_uris) for cluster in clusters]
        coins.sort(key=lambda coin: (-(coin.main.market_cap or 0.0), coin.symbol))

        logger.info("Merged source records", extra={
            "sources": ranked,
            "records": sum(len(per_source_records[source]) for source in ranked),
            "stablecoins": len(coins),
            "name_matches": name_matches,
            "ambiguous_matches": ambiguous
        })
        return coins

    def _name_candidates(
        self,
        record: RawAssetRecord,
        source: str,
        clusters: List[_Cluster]
    ) -> List[_Cluster]:
        # A counterpart must come from another source
        return [
            cluster for cluster in clusters
            if source not in cluster.sources and cluster.similarity(record.name) > self.match_threshold
        ]

    # --- Canonical record construction ------------------------------------------

    def _build(self, cluster: _Cluster, used_uris: Set[str]) -> CanonicalStablecoin:
        resolved: Dict[str, object] = {}
        provenance: Dict[str, str] = {}

        for field in RESOLVED_FIELDS:
            for source, record in cluster.members:
                value = getattr(record, field)
                if _has_value(value):
                    resolved[field] = value
                    provenance[field] = source
                    break

        symbol = cluster.symbol
        name = resolved.get('name') or symbol
        uri = self._unique_uri(resolved.get('slug') or symbol, symbol, used_uris)
        tags = self._union_tags(cluster)
        main = MainMetrics(**{field: resolved.get(field) for field in MAIN_FIELDS})
        platforms = self._merge_platforms(cluster)

        category, pegged_asset = self.classifier.classify(tags, name, symbol, resolved.get('slug'))

        prices = self._per_source_values(cluster, 'price')
        supply_sources = (
            set(self._per_source_values(cluster, 'circulating_supply'))
            | set(self._per_source_values(cluster, 'total_supply'))
        )
        source_count = len(cluster.sources)

        return CanonicalStablecoin(
            symbol=symbol,
            uri=uri,
            name=name,
            description=resolved.get('description'),
            logo_url=resolved.get('logo_url'),
            website=resolved.get('website'),
            tags=tags,
            asset_category=category,
            pegged_asset=pegged_asset,
            main=main,
            provenance=provenance,
            source_records=[record for _, record in cluster.members],
            conflicts=self._find_conflicts(cluster),
            platforms=platforms,
            confidence=compute_confidence(
                price_sources=len(prices),
                market_cap_sources=len(self._per_source_values(cluster, 'market_cap')),
                supply_sources=len(supply_sources),
                consensus=compute_consensus(prices.values()),
                platforms=platforms,
                source_count=source_count
            ),
            quality=assess_quality(main, source_count)
        )

    @staticmethod
    def _per_source_values(cluster: _Cluster, field: str) -> Dict[str, float]:
        # First value per source; a source may contribute several records
        values: Dict[str, float] = {}
        for source, record in cluster.members:
            value = getattr(record, field)
            if value is not None and source not in values:
                values[source] = value
        return values

    @staticmethod
    def _unique_uri(base: str, symbol: str, used_uris: Set[str]) -> str:
        uri = slugify(str(base)) or slugify(symbol) or 'stablecoin'
        if uri in used_uris:
            uri = f"{uri}-{slugify(symbol)}"
        candidate, counter = uri, 2
        while candidate in used_uris:
            candidate = f"{uri}-{counter}"
            counter += 1
        used_uris.add(candidate)
        return candidate

    @staticmethod
    def _union_tags(cluster: _Cluster) -> List[str]:
        tags: List[str] = []
        seen: Set[str] = set()
        for _, record in cluster.members:
            for tag in record.tags:
                if tag and tag.lower() not in seen:
                    seen.add(tag.lower())
                    tags.append(tag)
        return tags

    def _find_conflicts(self, cluster: _Cluster) -> List[FieldConflict]:
        conflicts = []
        for field in CONFLICT_FIELDS:
            values = self._per_source_values(cluster, field)
            if len(values) < 2:
                continue
            high, low = max(values.values()), min(values.values())
            if high <= 0:
                continue
            spread = (high - low) / high
            if spread > self.conflict_tolerance:
                conflicts.append(FieldConflict(field=field, values=values, spread=round(spread, 6)))

        if conflicts:
            logger.debug("Source values disagree", extra={
                "symbol": cluster.symbol,
                "fields": [conflict.field for conflict in conflicts]
            })
        return conflicts

    def _merge_platforms(self, cluster: _Cluster) -> List[PlatformSupply]:
        entries: Dict[str, Dict[str, object]] = {}

        for source, record in cluster.members:
            for platform in record.platforms:
                entry = self._platform_entry(entries, platform)
                provenance = entry['provenance']
                for field in PLATFORM_FIELDS:
                    value = getattr(platform, field)
                    if entry[field] is None and _has_value(value):
                        entry[field] = value
                        provenance[field] = source
                if not entry['exclude_addresses'] and platform.exclude_addresses:
                    entry['exclude_addresses'] = list(platform.exclude_addresses)
                    provenance['exclude_addresses'] = source

        # Curated corrections win over numeric priority
        for source, record in cluster.members:
            if source != self.curated_source:
                continue
            for platform in record.platforms:
                entry = self._platform_entry(entries, platform)
                provenance = entry['provenance']
                if _has_value(platform.contract_address):
                    entry['contract_address'] = platform.contract_address
                    provenance['contract_address'] = source
                if platform.exclude_addresses:
                    entry['exclude_addresses'] = list(platform.exclude_addresses)
                    provenance['exclude_addresses'] = source
                if platform.total_supply is not None:
                    entry['total_supply'] = platform.total_supply
                    provenance['total_supply'] = source

        return [
            PlatformSupply(
                name=name,
                uri=slugify(name),
                contract_address=entry['contract_address'],
                exclude_addresses=entry['exclude_addresses'],
                total_supply=entry['total_supply'],
                circulating_supply=entry['circulating_supply'],
                supply_percentage=entry['percentage'],
                historical=HistoricalSupply(
                    prev_day=entry['prev_day'],
                    prev_week=entry['prev_week'],
                    prev_month=entry['prev_month']
                ),
                provenance=entry['provenance']
            )
            for name, entry in entries.items()
        ]

    def _platform_entry(self, entries: Dict[str, Dict[str, object]], platform: RawPlatform) -> Dict[str, object]:
        name = self.normalizer.normalize(platform.name)
        if name not in entries:
            entry: Dict[str, object] = {field: None for field in PLATFORM_FIELDS}
            entry['exclude_addresses'] = []
            entry['provenance'] = {}
            entries[name] = entry
        return entries[name]
