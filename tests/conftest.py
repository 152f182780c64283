"""Shared fixtures for the stablecoin aggregator tests."""

import asyncio
from datetime import datetime, timedelta
from typing import Any, List, Optional

import pytest

from stablecoin_aggregator.api.schemas import RawAssetRecord, RawPlatform
from stablecoin_aggregator.providers.base import BaseSourceFetcher, FetchError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """Manually advanced wall clock for retention checks."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StubFetcher(BaseSourceFetcher):
    """Source fetcher returning canned records, raising, or hanging."""

    def __init__(
        self,
        name: str,
        records: Optional[List[RawAssetRecord]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0
    ):
        super().__init__(name=name, max_retries=1)
        self.records = records or []
        self.error = error
        self.delay = delay
        self.call_count = 0

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    def _get_rate_limit(self) -> int:
        return 1_000_000

    def _get_auth_headers(self):
        return None

    async def _fetch_payload(self) -> Any:
        self.call_count += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.records)

    def _transform(self, payload: Any) -> List[RawAssetRecord]:
        return payload


def make_record(
    source: str,
    symbol: str,
    name: Optional[str] = None,
    price: Optional[float] = 1.0,
    market_cap: Optional[float] = None,
    circulating_supply: Optional[float] = None,
    platforms: Optional[List[RawPlatform]] = None,
    **kwargs
) -> RawAssetRecord:
    return RawAssetRecord(
        source=source,
        symbol=symbol,
        name=name or symbol,
        price=price,
        market_cap=market_cap,
        circulating_supply=circulating_supply,
        platforms=platforms or [],
        **kwargs
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def record():
    return make_record


@pytest.fixture
def platform():
    return RawPlatform


@pytest.fixture
def stub_fetcher():
    return StubFetcher


@pytest.fixture
def fetch_error():
    return FetchError
