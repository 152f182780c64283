"""
Refresh coordinator for Stablecoin Aggregator.
Runs refresh cycles (fetch, reconcile, aggregate, publish), owns the
published snapshot and the background refresh loop.
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..api.schemas import (
    CanonicalStablecoin, CoordinatorState, FetchErrorKind, RawAssetRecord,
    RefreshResult, Snapshot, SourceHealthStatus, SourceResult, SystemHealth
)
from ..core.config import settings
from ..core.logging_config import create_logger
from ..providers.base import BaseSourceFetcher, FetchError
from ..providers.platform_supply import EtherscanSupplyProvider
from ..providers.registry import SourceRegistry
from .health_monitor import HealthMonitor
from .merger import MergeError, StablecoinMerger
from .supply_aggregator import SupplyAggregator

logger = create_logger(__name__)


class RefreshCoordinator:
    """Drives refresh cycles and serves the latest published snapshot."""

    def __init__(
        self,
        registry: Optional[SourceRegistry] = None,
        health_monitor: Optional[HealthMonitor] = None,
        merger: Optional[StablecoinMerger] = None,
        aggregator: Optional[SupplyAggregator] = None,
        priority: Optional[Mapping[str, int]] = None,
        fetch_timeout: Optional[float] = None,
        min_healthy_sources: Optional[int] = None,
        refresh_interval: Optional[float] = None
    ):
        self.registry = registry
        self.health_monitor = health_monitor or HealthMonitor()
        self.merger = merger or StablecoinMerger()
        self.aggregator = aggregator or SupplyAggregator()
        self.priority = dict(priority) if priority is not None else dict(settings.source_priority)
        self.fetch_timeout = fetch_timeout or settings.fetch_timeout_seconds
        self.min_healthy_sources = (
            min_healthy_sources if min_healthy_sources is not None else settings.min_healthy_sources
        )
        self.refresh_interval = refresh_interval or settings.refresh_interval_seconds

        self._snapshot: Optional[Snapshot] = None
        self._state = CoordinatorState.IDLE
        self._lock = asyncio.Lock()
        self._running_tasks: List[asyncio.Task] = []
        self._shutdown_event = asyncio.Event()
        self._last_refresh: Optional[RefreshResult] = None
        self._last_refresh_at: Optional[datetime] = None

        if self.registry is not None:
            self._register_health_sources()

    async def initialize(self) -> None:
        """Build the default source registry if none was given and connect every fetcher."""
        try:
            logger.info("Initializing refresh coordinator")

            if self.registry is None:
                self.registry = SourceRegistry.create_default()
                self._register_health_sources()

            if not self.aggregator.supply_providers and settings.etherscan_api_key:
                self.aggregator.supply_providers["Ethereum"] = EtherscanSupplyProvider()

            await self.registry.connect_all()
            for provider in self.aggregator.supply_providers.values():
                if isinstance(provider, EtherscanSupplyProvider):
                    await provider.connect()

            logger.info("Refresh coordinator initialized", extra={
                "sources": self.registry.names,
                "supply_providers": list(self.aggregator.supply_providers)
            })

        except Exception as e:
            logger.error("Failed to initialize refresh coordinator", extra={
                "error": str(e)
            })
            raise

    def _register_health_sources(self) -> None:
        for source in self.registry.names:
            self.health_monitor.register_source(source)

    async def shutdown(self) -> None:
        """Stop the background loop and disconnect every fetcher."""
        logger.info("Shutting down refresh coordinator")

        self._shutdown_event.set()

        for task in self._running_tasks:
            if not task.done():
                task.cancel()

        if self._running_tasks:
            await asyncio.gather(*self._running_tasks, return_exceptions=True)
        self._running_tasks = []

        if self.registry is not None:
            await self.registry.disconnect_all()
        for provider in self.aggregator.supply_providers.values():
            if isinstance(provider, EtherscanSupplyProvider):
                await provider.disconnect()

        logger.info("Refresh coordinator shutdown complete")

    # --- Background loop ------------------------------------------------------

    async def start_background_refresh(self) -> None:
        """Start the periodic refresh loop."""
        self._shutdown_event.clear()
        task = asyncio.create_task(self.run_refresh_loop())
        self._running_tasks.append(task)
        logger.info("Background refresh started", extra={
            "interval": self.refresh_interval
        })

    async def run_refresh_loop(self) -> None:
        """Refresh every ``refresh_interval`` seconds until shutdown is signalled."""
        while not self._shutdown_event.is_set():
            try:
                await self.refresh()
            except Exception as e:
                logger.error("Error in refresh loop", extra={
                    "error": str(e)
                }, exc_info=True)

            # Wait for next refresh cycle
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.refresh_interval
                )
                break
            except asyncio.TimeoutError:
                continue

    def are_background_tasks_running(self) -> bool:
        if not self._running_tasks:
            return False
        return any(not task.done() for task in self._running_tasks)

    # --- Refresh cycle --------------------------------------------------------

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def last_refresh(self) -> Optional[RefreshResult]:
        return self._last_refresh

    async def refresh(self) -> RefreshResult:
        """
        Run one refresh cycle.

        A trigger that arrives while a cycle is in flight returns at once
        with ``skipped=True``. A failed cycle leaves the previously
        published snapshot in place.
        """
        if self._lock.locked():
            logger.info("Refresh already in progress, skipping trigger")
            return RefreshResult(success=False, skipped=True)

        async with self._lock:
            started = time.monotonic()
            try:
                result = await self._run_cycle(started)
            finally:
                self._state = CoordinatorState.IDLE

            self._last_refresh = result
            self._last_refresh_at = datetime.utcnow()
            return result

    async def _run_cycle(self, started: float) -> RefreshResult:
        if self.registry is None:
            self.registry = SourceRegistry.create_default()
            self._register_health_sources()

        self._state = CoordinatorState.FETCHING
        per_source, source_results = await self._fetch_all()
        # Sources without market data (curated) never make a cycle usable on their own
        usable = [
            source for source, records in per_source.items()
            if records and self.registry.get(source).provides_market_data
        ]

        if not usable:
            return self._fail(started, source_results, "No usable sources")

        healthy = [source for source in usable if not self.health_monitor.is_degraded(source)]
        degraded = len(healthy) < self.min_healthy_sources
        if degraded and self._snapshot is not None:
            logger.warning("Too few healthy sources, keeping previous snapshot", extra={
                "usable_sources": usable,
                "healthy_sources": healthy,
                "min_healthy_sources": self.min_healthy_sources
            })
            return self._fail(started, source_results, "Too few healthy sources")

        try:
            self._state = CoordinatorState.RECONCILING
            coins = self.merger.merge(per_source, self.priority)
            if not coins:
                raise MergeError("Nothing to reconcile")

            self._state = CoordinatorState.AGGREGATING
            coins = await self.aggregator.refine_platform_supplies(coins)
            aggregated = self.aggregator.aggregate(coins)

        except MergeError as e:
            return self._fail(started, source_results, str(e))

        except Exception as e:
            logger.error("Unexpected error during reconciliation", extra={
                "error": str(e)
            }, exc_info=True)
            return self._fail(started, source_results, str(e))

        self._state = CoordinatorState.PUBLISHING
        snapshot = Snapshot(
            stablecoins=aggregated.stablecoins,
            metrics=aggregated.metrics,
            platform_data=aggregated.platform_data,
            source_results=source_results,
            warnings=[str(warning) for warning in aggregated.warnings],
            degraded=degraded
        )
        self._snapshot = snapshot

        duration = time.monotonic() - started
        logger.info("Published snapshot", extra={
            "stablecoins": len(snapshot.stablecoins),
            "usable_sources": usable,
            "degraded": degraded,
            "warnings": len(snapshot.warnings),
            "duration_seconds": round(duration, 3)
        })
        return RefreshResult(
            success=True,
            published=True,
            stablecoin_count=len(snapshot.stablecoins),
            duration_seconds=duration,
            source_results=source_results
        )

    def _fail(self, started: float, source_results: List[SourceResult], error: str) -> RefreshResult:
        duration = time.monotonic() - started
        logger.error("Refresh cycle failed", extra={
            "error": error,
            "duration_seconds": round(duration, 3),
            "previous_snapshot_kept": self._snapshot is not None
        })
        return RefreshResult(
            success=False,
            duration_seconds=duration,
            source_results=source_results,
            error=error
        )

    async def _fetch_all(self) -> Tuple[Dict[str, List[RawAssetRecord]], List[SourceResult]]:
        per_source: Dict[str, List[RawAssetRecord]] = {}
        results: List[SourceResult] = []
        pending = []

        for fetcher in self.registry.get_active():
            if not self.health_monitor.allow_request(fetcher.name):
                logger.info("Circuit breaker is open, skipping source", extra={
                    "source": fetcher.name
                })
                results.append(SourceResult(source=fetcher.name, success=False, skipped=True))
                continue
            pending.append(fetcher)

        outcomes = await asyncio.gather(*(self._fetch_source(fetcher) for fetcher in pending))
        for fetcher, (records, result) in zip(pending, outcomes):
            results.append(result)
            if records:
                per_source[fetcher.name] = records

        return per_source, results

    async def _fetch_source(self, fetcher: BaseSourceFetcher) -> Tuple[List[RawAssetRecord], SourceResult]:
        """Fetch one source under its own timeout and record the outcome."""
        source = fetcher.name
        started = time.monotonic()
        kind = FetchErrorKind.UNKNOWN
        retryable: Optional[bool] = None

        try:
            records = await asyncio.wait_for(fetcher.fetch(), timeout=self.fetch_timeout)

        except asyncio.TimeoutError:
            kind = FetchErrorKind.TIMEOUT
            error = f"Fetch timed out after {self.fetch_timeout}s"

        except FetchError as e:
            kind, retryable, error = e.kind, e.retryable, str(e)

        except Exception as e:
            logger.error("Unexpected error fetching source", extra={
                "source": source,
                "error": str(e)
            }, exc_info=True)
            error = str(e) or type(e).__name__

        else:
            duration = time.monotonic() - started
            self.health_monitor.record_success(source, duration, len(records))
            return records, SourceResult(
                source=source,
                success=True,
                record_count=len(records),
                duration_seconds=duration
            )

        duration = time.monotonic() - started
        self.health_monitor.record_failure(source, kind, retryable=retryable, message=error)
        return [], SourceResult(
            source=source,
            success=False,
            duration_seconds=duration,
            error_kind=kind,
            error=error
        )

    # --- Consumer API ---------------------------------------------------------

    def get_snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    def get_data(self) -> Optional[Dict[str, Any]]:
        """Latest published stablecoins, metrics and platform rollup, or None before the first publish."""
        snapshot = self._snapshot
        if snapshot is None:
            return None
        return {
            'stablecoins': snapshot.stablecoins,
            'metrics': snapshot.metrics,
            'platform_data': snapshot.platform_data
        }

    def get_stablecoin_by_uri(self, uri: str) -> Optional[CanonicalStablecoin]:
        """Look a stablecoin up by uri or symbol, case-insensitively."""
        snapshot = self._snapshot
        if snapshot is None or not uri:
            return None
        wanted = uri.strip().lower()
        for coin in snapshot.stablecoins:
            if coin.uri.lower() == wanted:
                return coin
        for coin in snapshot.stablecoins:
            if coin.symbol.lower() == wanted:
                return coin
        return None

    def get_source_health(self, source: str) -> SourceHealthStatus:
        return self.health_monitor.get_source_health(source)

    def get_system_health(self) -> SystemHealth:
        return self.health_monitor.get_system_health()

    def get_data_freshness(self) -> Dict[str, Any]:
        """Age of the published snapshot; stale beyond twice the refresh interval."""
        snapshot = self._snapshot
        if snapshot is None:
            return {
                'last_updated': None,
                'age_seconds': None,
                'is_stale': True,
                'degraded': False
            }
        age = datetime.utcnow() - snapshot.created_at
        return {
            'last_updated': snapshot.created_at,
            'age_seconds': age.total_seconds(),
            'is_stale': age > timedelta(seconds=2 * self.refresh_interval),
            'degraded': snapshot.degraded
        }

    def get_data_sources(self) -> List[Dict[str, Any]]:
        """Configured sources with priority, breaker state and last-cycle outcome."""
        if self.registry is None:
            return []

        last_results = {}
        if self._snapshot is not None:
            last_results = {result.source: result for result in self._snapshot.source_results}
        if self._last_refresh is not None:
            last_results.update({result.source: result for result in self._last_refresh.source_results})

        sources = []
        for fetcher in self.registry.get_all():
            health = self.health_monitor.get_source_health(fetcher.name)
            last = last_results.get(fetcher.name)
            sources.append({
                'source': fetcher.name,
                'priority': self.priority.get(fetcher.name, 0),
                'configured': fetcher.is_configured(),
                'status': health.status,
                'score': health.score,
                'circuit_state': health.circuit_state,
                'last_record_count': last.record_count if last else None,
                'last_success': health.last_success
            })
        sources.sort(key=lambda entry: (-entry['priority'], entry['source']))
        return sources


# Global refresh coordinator instance
refresh_coordinator = RefreshCoordinator()
