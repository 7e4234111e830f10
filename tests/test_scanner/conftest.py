"""
Shared fixtures for scanner tests.

Provides deterministic price series, record builders and in-memory fake
collaborators (market and signal sources) so pipeline tests never touch
the network.
"""

import pytest
from typing import Dict, Iterable, List, Optional

from scanner.config import ScannerConfig
from scanner.models import (
    CRYPTO,
    NewsItem,
    RawAssetRecord,
    SignalEnrichment,
)
from scanner.sources import MarketDataSource, SignalSource


def trending_prices(n: int = 100, start: float = 100.0, up: float = 1.0, down: float = 0.6) -> List[float]:
    """
    Alternating up/down steps with a net upward drift.

    With the defaults (100 samples) the series ends at 120.6, RSI is ~65,
    the EMAs are strictly ordered 9 > 21 > 50 and the 12-sample spike
    ratio is ~3%.
    """
    prices = [start]
    for i in range(n - 1):
        prices.append(prices[-1] + (up if i % 2 == 0 else -down))
    return prices


class FakeMarketSource(MarketDataSource):
    """In-memory market source with scripted failures."""

    def __init__(
        self,
        assets: Dict[str, List[RawAssetRecord]],
        list_errors: Optional[Dict[str, BaseException]] = None,
        series_errors: Optional[Dict[str, BaseException]] = None,
    ):
        self.assets = assets
        self.list_errors = list_errors or {}
        self.series_errors = series_errors or {}
        self.list_calls: List[str] = []
        self.series_calls: List[str] = []

    async def list_assets(self, asset_class):
        self.list_calls.append(asset_class)
        if asset_class in self.list_errors:
            raise self.list_errors[asset_class]
        return list(self.assets.get(asset_class, []))

    async def load_series(self, record):
        self.series_calls.append(record.symbol)
        if record.symbol in self.series_errors:
            raise self.series_errors[record.symbol]
        return record


class FakeSignalSource(SignalSource):
    """Returns fixed enrichment per symbol; records every call."""

    def __init__(
        self,
        enrichments: Optional[Dict[str, SignalEnrichment]] = None,
        default: Optional[SignalEnrichment] = None,
        errors: Optional[Dict[str, BaseException]] = None,
    ):
        self.enrichments = enrichments or {}
        self.default = default or SignalEnrichment.empty()
        self.errors = errors or {}
        self.calls: List[str] = []

    async def fetch(self, symbol, asset_class):
        self.calls.append(symbol)
        if symbol in self.errors:
            raise self.errors[symbol]
        return self.enrichments.get(symbol, self.default)


@pytest.fixture
def prices():
    """Default trending series that clears every market-stage filter."""
    return trending_prices()


@pytest.fixture
def make_record():
    """Factory for RawAssetRecords built on the trending series."""

    def _make(
        symbol: str = 'SOL',
        asset_class: str = CRYPTO,
        prices: Optional[Iterable[float]] = None,
        price: Optional[float] = None,
        change_24h: float = 5.0,
        volume_24h: float = 20_000_000.0,
        market_cap: Optional[float] = 1_000_000_000.0,
        volumes: Optional[Iterable[float]] = None,
        name: str = '',
    ) -> RawAssetRecord:
        series = list(prices) if prices is not None else trending_prices()
        return RawAssetRecord(
            symbol=symbol,
            name=name or symbol.title(),
            asset_class=asset_class,
            price=price if price is not None else (series[-1] if series else 0.0),
            change_24h=change_24h,
            volume_24h=volume_24h,
            market_cap=market_cap,
            prices=tuple(series),
            volumes=tuple(volumes) if volumes is not None else None,
        )

    return _make


@pytest.fixture
def bullish_enrichment():
    """Enrichment that clears the signal stage with one catalyst headline."""
    return SignalEnrichment(
        mentions=20,
        sentiment=0.8,
        engagement=0,
        influencer=False,
        news=(NewsItem(title='Exchange listing announced', url='https://example.com/a', sentiment=0.8),),
        catalyst=True,
    )


@pytest.fixture
def scanner_config(tmp_path):
    """Config with every path under tmp_path and no retry delay."""
    return ScannerConfig(
        crypto_snapshot_path=str(tmp_path / 'crypto.json'),
        equity_snapshot_path=str(tmp_path / 'stocks.json'),
        ledger_path=str(tmp_path / 'alerted.json'),
        retry_attempts=2,
        retry_delay=0.0,
        request_timeout=5.0,
        max_concurrency=4,
    )


@pytest.fixture
def market_source_factory():
    return FakeMarketSource


@pytest.fixture
def signal_source_factory():
    return FakeSignalSource
