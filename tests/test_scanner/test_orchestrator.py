"""End-to-end tests for ScanOrchestrator with fake collaborators."""

import asyncio
import json
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from scanner.config import CascadeThresholds
from scanner.ledger import AlertLedger
from scanner.models import CRYPTO, EQUITIES, Indicators, NewsItem, SignalEnrichment
from scanner.notifier import AlertNotifier
from scanner.orchestrator import ScanOrchestrator, ScanStats, run_scan
from scanner.risk import EXIT_HOLD
from scanner.scoring import MESSAGE_BULLISH
from scanner.snapshot import SnapshotWriter
from scanner.sources import MarketDataError, MarketDataSource


def _read(path):
    with open(path) as f:
        return json.load(f)


class SlowMarketSource(MarketDataSource):

    async def list_assets(self, asset_class):
        await asyncio.sleep(1)
        return []


class TestAssess:
    """Pure evaluation of a single asset (no I/O)."""

    @pytest.fixture
    def orchestrator(self, scanner_config, market_source_factory):
        return ScanOrchestrator(scanner_config, market_source_factory({}))

    @pytest.fixture
    def indicators(self):
        return Indicators(
            rsi=55.0,
            ema_short=51.0,
            ema_mid=50.0,
            ema_long=48.0,
            atr=1.0,
            vwap=50.0 / 1.005,
            ema_aligned=True,
            spike_ratio=0.05,
            spike_ok=True,
            rvol=1.0,
            current_price=50.0,
        )

    def test_bullish_scenario(self, orchestrator, make_record, indicators, bullish_enrichment):
        """Price 50, 20M volume, +5%, RSI 55, aligned EMAs, 0.5% from VWAP."""
        record = make_record(price=50.0, volume_24h=20_000_000.0, change_24h=5.0)
        asset = orchestrator.assess(
            record, indicators, bullish_enrichment, CascadeThresholds.crypto_defaults()
        )
        assert asset is not None
        assert asset.score >= 65
        assert asset.message == MESSAGE_BULLISH
        assert asset.risk.exit == EXIT_HOLD
        assert asset.new_alert is False

    def test_idempotent(self, orchestrator, make_record, indicators, bullish_enrichment):
        record = make_record(price=50.0)
        thresholds = CascadeThresholds.crypto_defaults()
        first = orchestrator.assess(record, indicators, bullish_enrichment, thresholds)
        second = orchestrator.assess(record, indicators, bullish_enrichment, thresholds)
        assert first == second

    def test_below_score_floor(self, orchestrator, make_record, indicators, bullish_enrichment):
        thresholds = replace(CascadeThresholds.crypto_defaults(), score_floor=95)
        assert orchestrator.assess(make_record(price=50.0), indicators, bullish_enrichment, thresholds) is None

    def test_zero_atr_rejected(self, orchestrator, make_record, indicators, bullish_enrichment):
        flat = replace(indicators, atr=0.0)
        thresholds = CascadeThresholds.crypto_defaults()
        assert orchestrator.assess(make_record(price=50.0), flat, bullish_enrichment, thresholds) is None

    def test_missing_indicators(self, orchestrator, make_record, bullish_enrichment):
        thresholds = CascadeThresholds.crypto_defaults()
        assert orchestrator.assess(make_record(), None, bullish_enrichment, thresholds) is None

    def test_requires_market_source(self, scanner_config):
        with pytest.raises(ValueError):
            ScanOrchestrator(scanner_config)


class TestRun:
    """Full runs against fake market and signal sources."""

    @pytest.fixture
    def signals(self, signal_source_factory, bullish_enrichment):
        return signal_source_factory(default=bullish_enrichment)

    def _orchestrator(self, config, market, signals, **kwargs):
        return ScanOrchestrator(config, market, signals, **kwargs)

    def test_bullish_asset_published(self, scanner_config, market_source_factory, make_record, signals):
        market = market_source_factory({CRYPTO: [make_record('SOL')]})
        result = self._orchestrator(scanner_config, market, signals).run_sync()

        assert [a.symbol for a in result['results'][CRYPTO]] == ['SOL']
        assert result['errors'] == {}

        snapshot = _read(scanner_config.crypto_snapshot_path)
        entry = snapshot['data'][0]
        assert entry['symbol'] == 'SOL'
        assert entry['newAlert'] is True
        assert entry['message'] == MESSAGE_BULLISH
        assert 'error' not in snapshot

        ledger = _read(scanner_config.ledger_path)
        assert ledger['alerted'] == ['SOL']

    def test_empty_class_writes_empty_snapshot(self, scanner_config, market_source_factory, signals):
        market = market_source_factory({})
        self._orchestrator(scanner_config, market, signals).run_sync()
        assert _read(scanner_config.equity_snapshot_path)['data'] == []

    def test_short_series_excluded(self, scanner_config, market_source_factory, make_record, signals):
        """10 samples: excluded without error, never enriched."""
        short = make_record('TINY', prices=[100.0 + i for i in range(10)])
        market = market_source_factory({CRYPTO: [short, make_record('SOL')]})
        result = self._orchestrator(scanner_config, market, signals).run_sync()

        assert [a.symbol for a in result['results'][CRYPTO]] == ['SOL']
        stats = result['stats'][CRYPTO]
        assert stats['indicator_rejected'] == 1
        assert stats['errors'] == 0
        assert 'TINY' not in signals.calls

    def test_spike_window_applied_per_class(self, scanner_config, market_source_factory, make_record, signals, prices):
        """A spike 50 samples back only counts when the crypto window reaches it."""
        prices[50] = 300.0
        market = market_source_factory({CRYPTO: [make_record('SOL', prices=prices)]})

        result = self._orchestrator(scanner_config, market, signals).run_sync()
        assert [a.symbol for a in result['results'][CRYPTO]] == ['SOL']

        scanner_config.crypto_spike_window = 60
        result = self._orchestrator(scanner_config, market, signals, ledger=AlertLedger()).run_sync()
        assert result['results'][CRYPTO] == []
        assert result['stats'][CRYPTO]['cascade_rejected'] == 1

    def test_market_rejection_skips_enrichment(self, scanner_config, market_source_factory, make_record, signals):
        thin = make_record('THIN', volume_24h=10.0)
        market = market_source_factory({CRYPTO: [thin]})
        result = self._orchestrator(scanner_config, market, signals).run_sync()
        assert result['results'][CRYPTO] == []
        assert result['stats'][CRYPTO]['cascade_rejected'] == 1
        assert signals.calls == []

    def test_signal_stage_rejection(self, scanner_config, market_source_factory, make_record, signal_source_factory):
        market = market_source_factory({CRYPTO: [make_record('SOL')]})
        quiet = signal_source_factory()
        result = self._orchestrator(scanner_config, market, quiet).run_sync()
        assert result['results'][CRYPTO] == []
        assert result['stats'][CRYPTO]['enriched'] == 1
        assert result['stats'][CRYPTO]['cascade_rejected'] == 1

    def test_all_collaborators_fail(self, scanner_config, market_source_factory, signal_source_factory):
        """Every call fails: failure snapshots with error, no crash."""
        market = market_source_factory(
            {}, list_errors={CRYPTO: ConnectionError('down'), EQUITIES: ConnectionError('down')}
        )
        signals = signal_source_factory(errors={'ANY': ConnectionError('down')})
        result = self._orchestrator(scanner_config, market, signals).run_sync()

        assert set(result['errors']) == {CRYPTO, EQUITIES}
        for path in (scanner_config.crypto_snapshot_path, scanner_config.equity_snapshot_path):
            snapshot = _read(path)
            assert snapshot['data'] == []
            assert snapshot['error']
        # Retried before giving up
        assert market.list_calls.count(CRYPTO) == scanner_config.retry_attempts

    def test_class_branches_independent(self, scanner_config, market_source_factory, make_record, signals):
        market = market_source_factory(
            {EQUITIES: [make_record('AAPL', asset_class=EQUITIES, market_cap=None)]},
            list_errors={CRYPTO: MarketDataError('malformed payload')},
        )
        result = self._orchestrator(scanner_config, market, signals).run_sync()

        assert CRYPTO in result['errors']
        assert EQUITIES not in result['errors']
        assert [a.symbol for a in result['results'][EQUITIES]] == ['AAPL']
        assert _read(scanner_config.crypto_snapshot_path)['error']
        # Malformed payloads are not retried
        assert market.list_calls.count(CRYPTO) == 1

    def test_failure_preserves_last_good(self, scanner_config, market_source_factory, make_record, signals):
        good = market_source_factory({CRYPTO: [make_record('SOL')]})
        self._orchestrator(scanner_config, good, signals).run_sync()

        bad = market_source_factory({}, list_errors={CRYPTO: ConnectionError('down')})
        result = self._orchestrator(scanner_config, bad, signals).run_sync()

        assert CRYPTO in result['errors']
        snapshot = _read(scanner_config.crypto_snapshot_path)
        assert [e['symbol'] for e in snapshot['data']] == ['SOL']
        assert 'error' not in snapshot

    def test_asset_failure_does_not_abort_siblings(self, scanner_config, market_source_factory, make_record, signals):
        market = market_source_factory(
            {CRYPTO: [make_record('SOL'), make_record('ADA')]},
            series_errors={'ADA': TimeoutError('slow')},
        )
        result = self._orchestrator(scanner_config, market, signals).run_sync()

        assert [a.symbol for a in result['results'][CRYPTO]] == ['SOL']
        assert result['stats'][CRYPTO]['errors'] == 1
        assert CRYPTO not in result['errors']

    def test_unexpected_asset_error_contained(self, scanner_config, market_source_factory, make_record, signal_source_factory, bullish_enrichment):
        market = market_source_factory({CRYPTO: [make_record('SOL'), make_record('BAD')]})
        signals = signal_source_factory(default=bullish_enrichment, errors={'BAD': KeyError('oops')})
        result = self._orchestrator(scanner_config, market, signals).run_sync()
        assert [a.symbol for a in result['results'][CRYPTO]] == ['SOL']
        assert result['stats'][CRYPTO]['errors'] == 1

    def test_ledger_dedup_across_runs(self, scanner_config, market_source_factory, make_record, signals):
        market = market_source_factory({CRYPTO: [make_record('SOL')]})

        self._orchestrator(scanner_config, market, signals).run_sync()
        first_version = _read(scanner_config.ledger_path)['version']

        result = self._orchestrator(scanner_config, market, signals).run_sync()
        assert result['results'][CRYPTO][0].new_alert is False
        assert result['stats'][CRYPTO]['new_alerts'] == 0
        assert _read(scanner_config.crypto_snapshot_path)['data'][0]['newAlert'] is False
        assert _read(scanner_config.ledger_path)['version'] == first_version

    def test_snapshot_new_only(self, scanner_config, market_source_factory, make_record, signals):
        scanner_config.snapshot_new_only = True
        market = market_source_factory({CRYPTO: [make_record('SOL')]})
        self._orchestrator(scanner_config, market, signals).run_sync()
        self._orchestrator(scanner_config, market, signals).run_sync()
        assert _read(scanner_config.crypto_snapshot_path)['data'] == []

    def test_injected_ledger(self, scanner_config, market_source_factory, make_record, signals):
        ledger = AlertLedger(alerted=['SOL'])
        market = market_source_factory({CRYPTO: [make_record('SOL')]})
        result = self._orchestrator(scanner_config, market, signals, ledger=ledger).run_sync()
        assert result['results'][CRYPTO][0].new_alert is False

    def test_duplicate_symbols_dropped(self, scanner_config, market_source_factory, make_record, signals):
        market = market_source_factory({CRYPTO: [make_record('SOL'), make_record('sol', volume_24h=1.0)]})
        result = self._orchestrator(scanner_config, market, signals).run_sync()
        assert result['stats'][CRYPTO]['listed'] == 1
        assert [a.symbol for a in result['results'][CRYPTO]] == ['SOL']

    def test_sorted_by_score_then_symbol(self, scanner_config, market_source_factory, make_record, signal_source_factory, bullish_enrichment):
        stronger = replace(bullish_enrichment, influencer=True)
        signals = signal_source_factory(default=bullish_enrichment, enrichments={'ZEC': stronger})
        market = market_source_factory({CRYPTO: [make_record('SOL'), make_record('ADA'), make_record('ZEC')]})
        result = self._orchestrator(scanner_config, market, signals).run_sync()
        assert [a.symbol for a in result['results'][CRYPTO]] == ['ZEC', 'ADA', 'SOL']

    def test_catalyst_detected_from_headlines(self, scanner_config, market_source_factory, make_record, signal_source_factory, bullish_enrichment):
        plain = replace(
            bullish_enrichment,
            catalyst=False,
            news=(NewsItem(title='Major partnership with payments firm', sentiment=0.8),),
        )
        signals = signal_source_factory(default=plain)
        market = market_source_factory({CRYPTO: [make_record('SOL')]})
        result = self._orchestrator(scanner_config, market, signals).run_sync()
        assert result['results'][CRYPTO][0].enrichment.catalyst is True

    def test_dry_run_writes_nothing(self, scanner_config, market_source_factory, make_record, signals, tmp_path):
        market = market_source_factory({CRYPTO: [make_record('SOL')]})
        writer = SnapshotWriter(dry_run=True)
        result = self._orchestrator(scanner_config, market, signals, writer=writer).run_sync()
        assert [a.symbol for a in result['results'][CRYPTO]] == ['SOL']
        assert not (tmp_path / 'crypto.json').exists()
        assert not (tmp_path / 'alerted.json').exists()

    def test_run_timeout_is_class_failure(self, scanner_config, signals):
        scanner_config.run_timeout = 0.05
        scanner_config.asset_classes = [CRYPTO]
        result = self._orchestrator(scanner_config, SlowMarketSource(), signals).run_sync()
        assert 'exceeded' in result['errors'][CRYPTO]
        assert _read(scanner_config.crypto_snapshot_path)['error']

    def test_notifier_gets_new_alerts_only(self, scanner_config, market_source_factory, make_record, signals):
        notifier = MagicMock()
        market = market_source_factory({CRYPTO: [make_record('SOL')]})
        self._orchestrator(scanner_config, market, signals, notifier=notifier).run_sync()
        self._orchestrator(scanner_config, market, signals, notifier=notifier).run_sync()

        crypto_calls = [c for c in notifier.notify.call_args_list if c.args[0] == CRYPTO]
        assert [a.symbol for a in crypto_calls[0].args[1]] == ['SOL']
        assert crypto_calls[1].args[1] == []

    def test_discord_summary_reports_run_counts(self, scanner_config, market_source_factory, make_record, signals):
        scanner_config.asset_classes = [CRYPTO]
        market = market_source_factory({CRYPTO: [make_record('SOL'), make_record('ADA')]})
        notifier = AlertNotifier('https://discord.example/webhook')
        with patch('scanner.notifier.requests.post', return_value=MagicMock(status_code=204)) as post:
            self._orchestrator(scanner_config, market, signals, notifier=notifier).run_sync()

        content = post.call_args.kwargs['json']['content']
        assert 'Universe: 2 | Scored: 2 | New: 2 | Errors: 0' in content
        assert 'ADA' in content and 'SOL' in content

    def test_run_scan_function(self, scanner_config, market_source_factory, make_record, signals, tmp_path):
        market = market_source_factory({CRYPTO: [make_record('SOL')]})
        result = run_scan(scanner_config, market, signals, dry_run=True)
        assert [a.symbol for a in result['results'][CRYPTO]] == ['SOL']
        assert not (tmp_path / 'crypto.json').exists()


class TestScanStats:

    def test_to_dict(self):
        stats = ScanStats(asset_class=CRYPTO, listed=3, errors=1)
        data = stats.to_dict()
        assert data['asset_class'] == CRYPTO
        assert data['listed'] == 3
        assert data['errors'] == 1
        assert data['error'] is None
