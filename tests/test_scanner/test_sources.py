"""Tests for collaborator adapters (no network: httpx.MockTransport)."""

import asyncio
import json

import httpx
import pytest

from scanner.config import DEFAULT_CATALYST_KEYWORDS
from scanner.models import CRYPTO, EQUITIES, NewsItem, RawAssetRecord, SignalEnrichment
from scanner.sources import (
    CoinGeckoMarketSource,
    CompositeMarketSource,
    MarketDataError,
    MarketDataSource,
    NullSignalSource,
    StaticSignalSource,
    YahooChartSource,
    detect_catalyst,
    parse_enrichment,
)


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _coin(symbol='sol', price=150.0, market_cap=6.5e10, sparkline=None):
    return {
        'id': f'{symbol}-id',
        'symbol': symbol,
        'name': symbol.title(),
        'current_price': price,
        'market_cap': market_cap,
        'total_volume': 2.5e9,
        'price_change_percentage_24h': 3.2,
        'sparkline_in_7d': {'price': sparkline if sparkline is not None else [1.0, 2.0, None, 3.0]},
    }


class TestCatalyst:

    def test_keyword_in_title(self):
        news = [NewsItem(title='Token gets Coinbase LISTING next week')]
        assert detect_catalyst(news, DEFAULT_CATALYST_KEYWORDS)

    def test_no_keyword(self):
        news = [NewsItem(title='Market drifts sideways')]
        assert not detect_catalyst(news, DEFAULT_CATALYST_KEYWORDS)

    def test_empty_news(self):
        assert not detect_catalyst([], DEFAULT_CATALYST_KEYWORDS)


class TestSignalSources:

    def test_null_source_is_empty(self):
        result = asyncio.run(NullSignalSource().fetch('BTC', CRYPTO))
        assert result == SignalEnrichment.empty()

    def test_static_source_lookup(self):
        source = StaticSignalSource({'btc': {'mentions': 40, 'sentiment': 0.7}})
        result = asyncio.run(source.fetch('BTC', CRYPTO))
        assert result.mentions == 40
        assert result.sentiment == 0.7

    def test_static_source_unknown_symbol(self):
        source = StaticSignalSource({})
        assert asyncio.run(source.fetch('XYZ', EQUITIES)) == SignalEnrichment.empty()

    def test_static_source_from_file(self, tmp_path):
        path = tmp_path / 'signals.json'
        path.write_text(json.dumps({
            'SOL': {
                'mentions': 25,
                'sentiment': 0.9,
                'influencer': True,
                'news': [{'title': 'Mainnet upgrade', 'sentiment': 0.7}],
            }
        }))
        source = StaticSignalSource.from_file(str(path))
        result = asyncio.run(source.fetch('sol', CRYPTO))
        assert result.influencer
        assert result.news[0].title == 'Mainnet upgrade'
        assert result.news_sentiment == pytest.approx(0.7)

    def test_from_file_rejects_list(self, tmp_path):
        path = tmp_path / 'signals.json'
        path.write_text('[]')
        with pytest.raises(ValueError):
            StaticSignalSource.from_file(str(path))

    def test_parse_enrichment_defaults(self):
        result = parse_enrichment({})
        assert result == SignalEnrichment.empty()


class TestCoinGecko:

    def test_list_assets(self):
        captured = {}

        def handler(request):
            captured['params'] = dict(request.url.params)
            return httpx.Response(200, json=[_coin('sol'), _coin('btc', market_cap=None)])

        async def run():
            async with _client(handler) as client:
                return await CoinGeckoMarketSource(universe_size=50, client=client).list_assets(CRYPTO)

        records = asyncio.run(run())
        assert captured['params']['per_page'] == '50'
        assert captured['params']['sparkline'] == 'true'
        assert [r.symbol for r in records] == ['SOL', 'BTC']
        assert records[0].prices == (1.0, 2.0, 3.0)
        assert records[0].source_id == 'sol-id'
        assert records[0].volumes is None
        assert records[1].market_cap is None

    def test_skips_malformed_entries(self):
        def handler(request):
            return httpx.Response(200, json=[_coin('sol'), {'symbol': 'bad'}])

        async def run():
            async with _client(handler) as client:
                return await CoinGeckoMarketSource(client=client).list_assets(CRYPTO)

        assert [r.symbol for r in asyncio.run(run())] == ['SOL']

    def test_non_list_payload_is_fatal(self):
        def handler(request):
            return httpx.Response(200, json={'status': {'error_code': 429}})

        async def run():
            async with _client(handler) as client:
                return await CoinGeckoMarketSource(client=client).list_assets(CRYPTO)

        with pytest.raises(MarketDataError):
            asyncio.run(run())

    def test_http_error_raised(self):
        def handler(request):
            return httpx.Response(503)

        async def run():
            async with _client(handler) as client:
                return await CoinGeckoMarketSource(client=client).list_assets(CRYPTO)

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(run())

    def test_api_key_header(self):
        seen = {}

        def handler(request):
            seen['key'] = request.headers.get('x-cg-demo-api-key')
            return httpx.Response(200, json=[])

        async def run():
            async with _client(handler) as client:
                return await CoinGeckoMarketSource(api_key='demo', client=client).list_assets(CRYPTO)

        asyncio.run(run())
        assert seen['key'] == 'demo'

    def test_wrong_class(self):
        with pytest.raises(ValueError):
            asyncio.run(CoinGeckoMarketSource().list_assets(EQUITIES))


class TestYahooChart:

    CHART = {
        'chart': {
            'result': [{
                'meta': {
                    'regularMarketPrice': 103.0,
                    'previousClose': 100.0,
                    'regularMarketVolume': 5_000_000,
                    'longName': 'Example Corp',
                },
                'indicators': {'quote': [{
                    'close': [101.0, None, 102.0, 103.0],
                    'volume': [1000, 500, None, 3000],
                }]},
            }],
            'error': None,
        }
    }

    def test_list_assets_from_symbols(self):
        source = YahooChartSource(['aapl', 'msft'])
        records = asyncio.run(source.list_assets(EQUITIES))
        assert [r.symbol for r in records] == ['AAPL', 'MSFT']
        assert all(r.asset_class == EQUITIES for r in records)

    def test_load_series(self):
        seen = {}

        def handler(request):
            seen['path'] = request.url.path
            seen['params'] = dict(request.url.params)
            return httpx.Response(200, json=self.CHART)

        async def run():
            async with _client(handler) as client:
                source = YahooChartSource(['AAPL'], client=client)
                return await source.load_series(RawAssetRecord(symbol='AAPL', asset_class=EQUITIES))

        record = asyncio.run(run())
        assert seen['path'].endswith('/AAPL')
        assert seen['params'] == {'interval': '5m', 'range': '5d'}
        assert record.prices == (101.0, 102.0, 103.0)
        assert record.volumes == (1000.0, 0.0, 3000.0)
        assert record.price == 103.0
        assert record.change_24h == pytest.approx(3.0)
        assert record.volume_24h == 5_000_000
        assert record.name == 'Example Corp'

    def test_empty_result(self):
        assert YahooChartSource._parse_chart('AAPL', {'chart': {'result': None}}) is None

    def test_malformed_payload(self):
        with pytest.raises(MarketDataError):
            YahooChartSource._parse_chart('AAPL', {'unexpected': True})


class TestCompositeSource:

    def test_routes_by_class(self):
        crypto = NullListing([RawAssetRecord(symbol='BTC', asset_class=CRYPTO)])
        equities = NullListing([RawAssetRecord(symbol='SPY', asset_class=EQUITIES)])
        source = CompositeMarketSource({CRYPTO: crypto, EQUITIES: equities})
        assert asyncio.run(source.list_assets(EQUITIES))[0].symbol == 'SPY'
        record = asyncio.run(source.load_series(RawAssetRecord(symbol='BTC', asset_class=CRYPTO)))
        assert record.symbol == 'BTC'

    def test_unknown_class(self):
        with pytest.raises(ValueError):
            asyncio.run(CompositeMarketSource({}).list_assets(CRYPTO))


class NullListing(MarketDataSource):
    """Listing stub relying on the default series passthrough."""

    def __init__(self, records):
        self.records = records

    async def list_assets(self, asset_class):
        return self.records
