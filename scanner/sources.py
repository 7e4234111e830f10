"""
External collaborators: Market Data Source and Signal Source.

The pipeline depends only on the two abstract interfaces. Reference
adapters are provided for running the scanner from the command line:

- CoinGeckoMarketSource: top coins by market cap with 7-day sparkline
- YahooChartSource: 5-minute equity bars from the v8 chart endpoint
- CompositeMarketSource: routes each asset class to its adapter
- NullSignalSource / StaticSignalSource: deterministic enrichment

Retries are NOT done here; the orchestrator wraps every call in the
shared RetryPolicy.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import httpx

from scanner.models import CRYPTO, EQUITIES, NewsItem, RawAssetRecord, SignalEnrichment

logger = logging.getLogger(__name__)

COINGECKO_BASE_URL = 'https://api.coingecko.com/api/v3'
YAHOO_CHART_URL = 'https://query1.finance.yahoo.com/v8/finance/chart/{symbol}'

_USER_AGENT = 'Mozilla/5.0 (compatible; market-scanner/1.0)'


class MarketDataError(Exception):
    """Malformed or unusable collection-level payload from a market source."""


# =============================================================================
# INTERFACES
# =============================================================================


class MarketDataSource(ABC):
    """Supplies RawAssetRecords per asset class."""

    @abstractmethod
    async def list_assets(self, asset_class: str) -> List[RawAssetRecord]:
        """Return the asset universe for a class (collection-level call)."""

    async def load_series(self, record: RawAssetRecord) -> Optional[RawAssetRecord]:
        """
        Return the record with its price/volume series filled in.

        Sources that deliver series with the listing return the record
        unchanged. None signals the asset is unavailable this run.
        """
        return record


class SignalSource(ABC):
    """Supplies SignalEnrichment per symbol."""

    @abstractmethod
    async def fetch(self, symbol: str, asset_class: str) -> SignalEnrichment:
        """Return social/news metrics; empty values are valid."""


# =============================================================================
# CATALYST DETECTION
# =============================================================================


def detect_catalyst(news: Iterable[NewsItem], keywords: Sequence[str]) -> bool:
    """True when any news title contains a curated catalyst keyword."""
    lowered = [k.lower() for k in keywords]
    for item in news:
        title = item.title.lower()
        if any(keyword in title for keyword in lowered):
            return True
    return False


def parse_enrichment(data: Mapping[str, Any]) -> SignalEnrichment:
    """Build a SignalEnrichment from a plain dict (fixture or API payload)."""
    news = tuple(
        NewsItem(
            title=str(item.get('title', '')),
            url=str(item.get('url', '')),
            time=str(item.get('time', '')),
            sentiment=float(item.get('sentiment', 0.5)),
        )
        for item in data.get('news', []) or []
    )
    return SignalEnrichment(
        mentions=int(data.get('mentions', 0) or 0),
        sentiment=float(data.get('sentiment', 0.0) or 0.0),
        engagement=int(data.get('engagement', 0) or 0),
        influencer=bool(data.get('influencer', False)),
        news=news,
        catalyst=bool(data.get('catalyst', False)),
    )


# =============================================================================
# SIGNAL SOURCES
# =============================================================================


class NullSignalSource(SignalSource):
    """Returns empty enrichment for every symbol."""

    async def fetch(self, symbol: str, asset_class: str) -> SignalEnrichment:
        return SignalEnrichment.empty()


class StaticSignalSource(SignalSource):
    """
    Deterministic enrichment from a mapping keyed by symbol.

    Unknown symbols get empty enrichment.
    """

    def __init__(self, fixtures: Mapping[str, Any]):
        self._fixtures: Dict[str, SignalEnrichment] = {}
        for symbol, value in fixtures.items():
            if isinstance(value, SignalEnrichment):
                self._fixtures[symbol.upper()] = value
            else:
                self._fixtures[symbol.upper()] = parse_enrichment(value)

    @classmethod
    def from_file(cls, path: str) -> 'StaticSignalSource':
        """Load fixtures from a JSON object keyed by symbol."""
        data = json.loads(Path(path).read_text())
        if not isinstance(data, dict):
            raise ValueError(f"Signal fixture file must hold a JSON object: {path}")
        logger.info(f"Loaded signal fixtures for {len(data)} symbols from {path}")
        return cls(data)

    async def fetch(self, symbol: str, asset_class: str) -> SignalEnrichment:
        return self._fixtures.get(symbol.upper(), SignalEnrichment.empty())


# =============================================================================
# MARKET SOURCES
# =============================================================================


class _HttpSource:
    """Shared httpx plumbing: injected client or one client per call."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 15.0):
        self._client = client
        self._timeout = timeout

    async def _get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        merged = {'User-Agent': _USER_AGENT, **(headers or {})}
        if self._client is not None:
            response = await self._client.get(url, params=params, headers=merged)
            response.raise_for_status()
            return response.json()

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, params=params, headers=merged)
            response.raise_for_status()
            return response.json()


class CoinGeckoMarketSource(_HttpSource, MarketDataSource):
    """
    Top coins by market cap from CoinGecko ``/coins/markets``.

    The 7-day sparkline (hourly samples) is delivered with the listing, so
    ``load_series`` is a no-op. No per-sample volume is available. With
    hourly samples the default 12-sample spike window spans ~12 hours
    (see ``ScannerConfig.crypto_spike_window``).
    """

    def __init__(
        self,
        universe_size: int = 100,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        super().__init__(client=client, timeout=timeout)
        self.universe_size = universe_size
        self.api_key = api_key

    async def list_assets(self, asset_class: str) -> List[RawAssetRecord]:
        if asset_class != CRYPTO:
            raise ValueError(f"CoinGeckoMarketSource only serves '{CRYPTO}'")

        params = {
            'vs_currency': 'usd',
            'order': 'market_cap_desc',
            'per_page': self.universe_size,
            'page': 1,
            'sparkline': 'true',
            'price_change_percentage': '24h',
        }
        headers = {'x-cg-demo-api-key': self.api_key} if self.api_key else None
        payload = await self._get_json(
            f"{COINGECKO_BASE_URL}/coins/markets", params=params, headers=headers
        )
        if not isinstance(payload, list):
            raise MarketDataError(
                f"CoinGecko markets payload is {type(payload).__name__}, expected list"
            )

        records = []
        for coin in payload:
            record = self._parse_coin(coin)
            if record is not None:
                records.append(record)

        logger.debug(f"CoinGecko: {len(payload)} coins -> {len(records)} records")
        return records

    @staticmethod
    def _parse_coin(coin: Any) -> Optional[RawAssetRecord]:
        try:
            sparkline = (coin.get('sparkline_in_7d') or {}).get('price') or []
            return RawAssetRecord(
                symbol=coin['symbol'],
                name=coin.get('name', ''),
                asset_class=CRYPTO,
                price=float(coin['current_price']),
                change_24h=float(coin.get('price_change_percentage_24h') or 0.0),
                volume_24h=float(coin.get('total_volume') or 0.0),
                market_cap=float(coin['market_cap']) if coin.get('market_cap') else None,
                prices=tuple(float(p) for p in sparkline if p is not None),
                source_id=coin.get('id', ''),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.debug(f"CoinGecko skip malformed coin entry: {e}")
            return None


class YahooChartSource(_HttpSource, MarketDataSource):
    """
    Equity quotes and 5-minute bars from the Yahoo v8 chart endpoint.

    ``list_assets`` returns bare records for the configured symbols; each
    ``load_series`` call fetches one chart.
    """

    def __init__(
        self,
        symbols: Sequence[str],
        interval: str = '5m',
        chart_range: str = '5d',
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        super().__init__(client=client, timeout=timeout)
        self.symbols = [s.upper() for s in symbols]
        self.interval = interval
        self.chart_range = chart_range

    async def list_assets(self, asset_class: str) -> List[RawAssetRecord]:
        if asset_class != EQUITIES:
            raise ValueError(f"YahooChartSource only serves '{EQUITIES}'")
        return [RawAssetRecord(symbol=s, asset_class=EQUITIES) for s in self.symbols]

    async def load_series(self, record: RawAssetRecord) -> Optional[RawAssetRecord]:
        payload = await self._get_json(
            YAHOO_CHART_URL.format(symbol=record.symbol),
            params={'interval': self.interval, 'range': self.chart_range},
        )
        return self._parse_chart(record.symbol, payload)

    @staticmethod
    def _parse_chart(symbol: str, payload: Any) -> Optional[RawAssetRecord]:
        try:
            result = payload['chart']['result']
        except (KeyError, TypeError):
            raise MarketDataError(f"Unexpected chart payload for {symbol}")
        if not result:
            logger.debug(f"Yahoo: no chart data for {symbol}")
            return None

        chart = result[0]
        meta = chart.get('meta', {})
        quote = (chart.get('indicators', {}).get('quote') or [{}])[0]
        closes = quote.get('close') or []
        raw_volumes = quote.get('volume') or []

        prices: List[float] = []
        volumes: List[float] = []
        for i, close in enumerate(closes):
            if close is None:
                continue
            prices.append(float(close))
            vol = raw_volumes[i] if i < len(raw_volumes) else None
            volumes.append(float(vol) if vol is not None else 0.0)

        price = float(meta.get('regularMarketPrice') or (prices[-1] if prices else 0.0))
        prev_close = meta.get('previousClose') or meta.get('chartPreviousClose')
        change = ((price - prev_close) / prev_close * 100) if prev_close else 0.0

        return RawAssetRecord(
            symbol=symbol,
            name=meta.get('longName') or meta.get('shortName') or symbol,
            asset_class=EQUITIES,
            price=price,
            change_24h=change,
            volume_24h=float(meta.get('regularMarketVolume') or sum(volumes)),
            prices=tuple(prices),
            volumes=tuple(volumes) if volumes else None,
        )


class CompositeMarketSource(MarketDataSource):
    """Routes each asset class to a dedicated source."""

    def __init__(self, sources: Mapping[str, MarketDataSource]):
        self._sources = dict(sources)

    def _source_for(self, asset_class: str) -> MarketDataSource:
        try:
            return self._sources[asset_class]
        except KeyError:
            raise ValueError(f"No market source configured for '{asset_class}'")

    async def list_assets(self, asset_class: str) -> List[RawAssetRecord]:
        return await self._source_for(asset_class).list_assets(asset_class)

    async def load_series(self, record: RawAssetRecord) -> Optional[RawAssetRecord]:
        return await self._source_for(record.asset_class).load_series(record)
