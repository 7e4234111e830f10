"""
Run orchestrator for the market screening pipeline.

Drives one run across asset classes:

    list assets -> load series -> indicators -> market cascade
        -> enrichment -> signal cascade -> risk + score -> score floor
        -> ledger -> snapshot -> notify

Asset classes run concurrently and are independent: a fatal failure in one
class writes that class's failure snapshot and leaves the other untouched.
Within a class, per-asset work fans out as tasks bounded by a semaphore;
the class coroutine is the only place results are accumulated and the
ledger is mutated.

Usage:
    from scanner.orchestrator import ScanOrchestrator
    orchestrator = ScanOrchestrator(config, market_source, signal_source)
    report = orchestrator.run_sync()
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from scanner.cascade import FilterCascade
from scanner.config import CascadeThresholds, ScannerConfig
from scanner.indicators import compute_indicators
from scanner.ledger import AlertLedger
from scanner.models import Indicators, RawAssetRecord, ScoredAsset, SignalEnrichment
from scanner.notifier import AlertNotifier
from scanner.retry import RetryPolicy
from scanner.risk import compute_risk
from scanner.scoring import AssetScorer
from scanner.snapshot import SnapshotWriter
from scanner.sources import (
    MarketDataError,
    MarketDataSource,
    NullSignalSource,
    SignalSource,
    detect_catalyst,
)

logger = logging.getLogger(__name__)

# Per-asset outcomes
OUTCOME_UNAVAILABLE = 'unavailable'
OUTCOME_INDICATOR_REJECTED = 'indicator_rejected'
OUTCOME_CASCADE_REJECTED = 'cascade_rejected'
OUTCOME_BELOW_FLOOR = 'below_floor'
OUTCOME_SCORED = 'scored'
OUTCOME_ERROR = 'error'

REJECT_RISK = 'risk'
REJECT_SCORE_FLOOR = 'score_floor'


@dataclass
class ScanStats:
    """Counters for one asset-class run."""

    asset_class: str
    listed: int = 0
    series_loaded: int = 0
    indicator_rejected: int = 0
    cascade_rejected: int = 0
    enriched: int = 0
    below_floor: int = 0
    scored: int = 0
    new_alerts: int = 0
    errors: int = 0
    duration: float = 0.0
    error: Optional[str] = None

    def tally(self, result: '_AssetResult') -> None:
        if result.series_loaded:
            self.series_loaded += 1
        if result.enriched:
            self.enriched += 1
        if result.outcome == OUTCOME_INDICATOR_REJECTED:
            self.indicator_rejected += 1
        elif result.outcome == OUTCOME_CASCADE_REJECTED:
            self.cascade_rejected += 1
        elif result.outcome == OUTCOME_BELOW_FLOOR:
            self.below_floor += 1
        elif result.outcome == OUTCOME_SCORED:
            self.scored += 1
        elif result.outcome == OUTCOME_ERROR:
            self.errors += 1

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class _AssetResult:
    symbol: str
    outcome: str
    asset: Optional[ScoredAsset] = None
    series_loaded: bool = False
    enriched: bool = False
    reason: Optional[str] = None


@dataclass
class ClassResult:
    """Outcome of one asset-class branch."""

    asset_class: str
    assets: List[ScoredAsset] = field(default_factory=list)
    stats: Optional[ScanStats] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class ScanOrchestrator:
    """
    Runs the screening pipeline for the configured asset classes.

    All collaborators are injected; defaults are built from the config.
    """

    def __init__(
        self,
        config: Optional[ScannerConfig] = None,
        market_source: Optional[MarketDataSource] = None,
        signal_source: Optional[SignalSource] = None,
        ledger: Optional[AlertLedger] = None,
        writer: Optional[SnapshotWriter] = None,
        notifier: Optional[AlertNotifier] = None,
        scorer: Optional[AssetScorer] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        if market_source is None:
            raise ValueError("ScanOrchestrator requires a market_source")

        self.config = config or ScannerConfig()
        self.market_source = market_source
        self.signal_source = signal_source or NullSignalSource()
        self.ledger = ledger
        self.writer = writer or SnapshotWriter(
            preserve_last_good=self.config.preserve_last_good
        )
        self.notifier = notifier
        self.scorer = scorer or AssetScorer()
        self.retry = retry_policy or RetryPolicy(
            max_attempts=self.config.retry_attempts,
            delay=self.config.retry_delay,
            backoff=self.config.retry_backoff,
            timeout=self.config.request_timeout,
        )

    # =========================================================================
    # PURE EVALUATION
    # =========================================================================

    def assess(
        self,
        record: RawAssetRecord,
        indicators: Optional[Indicators],
        enrichment: SignalEnrichment,
        thresholds: CascadeThresholds,
    ) -> Optional[ScoredAsset]:
        """
        Cascade, risk, score and floor for one asset. No I/O.

        Returns:
            ScoredAsset (``new_alert`` False), or None when excluded
        """
        _, asset = self._evaluate(record, indicators, enrichment, thresholds)
        return asset

    def _evaluate(
        self,
        record: RawAssetRecord,
        indicators: Optional[Indicators],
        enrichment: SignalEnrichment,
        thresholds: CascadeThresholds,
    ) -> Tuple[Optional[str], Optional[ScoredAsset]]:
        reason = FilterCascade(thresholds).evaluate(record, indicators, enrichment)
        if reason is not None:
            return reason, None

        risk = compute_risk(
            indicators.current_price, indicators.atr,
            indicators.ema_short, indicators.ema_mid,
        )
        if risk is None:
            return REJECT_RISK, None

        breakdown = self.scorer.score_breakdown(indicators, enrichment, indicators.rvol)
        final = self.scorer.finalize(breakdown.total)
        if final < thresholds.score_floor:
            return REJECT_SCORE_FLOOR, None

        return None, ScoredAsset(
            record=record,
            indicators=indicators,
            enrichment=enrichment,
            score=final,
            message=self.scorer.message_for(final),
            risk=risk,
            breakdown=breakdown,
        )

    @staticmethod
    def rank(assets: List[ScoredAsset]) -> List[ScoredAsset]:
        """Order by score descending, then symbol."""
        return sorted(assets, key=lambda a: (-a.score, a.symbol))

    @staticmethod
    def _dedup(records: List[RawAssetRecord]) -> List[RawAssetRecord]:
        """Keep the first record per symbol."""
        seen = set()
        unique = []
        for record in records:
            if record.symbol in seen:
                logger.debug(f"Dropping duplicate record for {record.symbol}")
                continue
            seen.add(record.symbol)
            unique.append(record)
        return unique

    # =========================================================================
    # PER-ASSET PIPELINE
    # =========================================================================

    async def _enrich(self, record: RawAssetRecord) -> SignalEnrichment:
        enrichment = await self.retry.call(
            self.signal_source.fetch, record.symbol, record.asset_class,
            description=f"signals {record.symbol}",
        )
        if enrichment is None:
            enrichment = SignalEnrichment.empty()
        if not enrichment.catalyst and detect_catalyst(
            enrichment.news, self.config.catalyst_keywords
        ):
            enrichment = replace(enrichment, catalyst=True)
        return enrichment

    async def _process_asset(
        self,
        record: RawAssetRecord,
        cascade: FilterCascade,
        semaphore: asyncio.Semaphore,
    ) -> _AssetResult:
        """Run one asset through the pipeline. Never raises on asset errors."""
        result = _AssetResult(symbol=record.symbol, outcome=OUTCOME_UNAVAILABLE)

        async with semaphore:
            try:
                loaded = await self.retry.call(
                    self.market_source.load_series, record,
                    description=f"series {record.symbol}",
                )
                if loaded is None:
                    logger.debug(f"{record.symbol}: no series available")
                    return result
                result.series_loaded = True

                indicators = compute_indicators(
                    loaded.prices, loaded.volumes, self.config.ema_periods,
                    spike_window=self.config.spike_window_for(loaded.asset_class),
                )
                if indicators is None:
                    logger.debug(
                        f"{record.symbol}: indicators unavailable "
                        f"({len(loaded.prices)} samples)"
                    )
                    result.outcome = OUTCOME_INDICATOR_REJECTED
                    return result

                reason = cascade.market_rejection(loaded, indicators)
                if reason is not None:
                    logger.debug(f"{record.symbol} rejected by {reason} filter")
                    result.outcome = OUTCOME_CASCADE_REJECTED
                    result.reason = reason
                    return result

                enrichment = await self._enrich(loaded)
                result.enriched = True

                reason, asset = self._evaluate(
                    loaded, indicators, enrichment, cascade.thresholds
                )
                if asset is None:
                    logger.debug(f"{record.symbol} rejected by {reason} filter")
                    result.reason = reason
                    result.outcome = (
                        OUTCOME_BELOW_FLOOR if reason == REJECT_SCORE_FLOOR
                        else OUTCOME_CASCADE_REJECTED
                    )
                    return result

                result.outcome = OUTCOME_SCORED
                result.asset = asset
                return result

            except self.retry.retry_on as e:
                logger.warning(f"{record.symbol}: skipped after upstream failure: {e!r}")
                result.outcome = OUTCOME_ERROR
                result.reason = str(e)
                return result
            except Exception as e:
                logger.warning(f"{record.symbol}: processing error: {e!r}")
                result.outcome = OUTCOME_ERROR
                result.reason = str(e)
                return result

    # =========================================================================
    # CLASS BRANCH
    # =========================================================================

    async def run_class(
        self, asset_class: str, ledger: AlertLedger
    ) -> Tuple[List[ScoredAsset], ScanStats]:
        """
        Run one asset class end to end and write its snapshot.

        Raises on collection-level failure; the caller writes the failure
        snapshot.
        """
        start = time.time()
        stats = ScanStats(asset_class=asset_class)
        thresholds = self.config.thresholds_for(asset_class)
        cascade = FilterCascade(thresholds)

        logger.info(f"[{asset_class}] Listing assets...")
        records = await self.retry.call(
            self.market_source.list_assets, asset_class,
            description=f"list_assets {asset_class}",
        )
        if not isinstance(records, list):
            raise MarketDataError(
                f"list_assets returned {type(records).__name__}, expected list"
            )
        records = self._dedup(records)
        stats.listed = len(records)
        logger.info(f"[{asset_class}] Universe: {stats.listed} assets")

        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))
        tasks = [
            asyncio.ensure_future(self._process_asset(r, cascade, semaphore))
            for r in records
        ]

        scored: List[ScoredAsset] = []
        try:
            for future in asyncio.as_completed(tasks):
                result = await future
                stats.tally(result)
                if result.asset is not None:
                    scored.append(result.asset)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        ranked = self.rank(scored)
        flagged = [
            replace(asset, new_alert=ledger.should_alert(asset.symbol))
            for asset in ranked
        ]
        new_alerts = [a for a in flagged if a.new_alert]
        stats.new_alerts = len(new_alerts)

        published = new_alerts if self.config.snapshot_new_only else flagged
        self.writer.write_snapshot(self.config.snapshot_path_for(asset_class), published)

        # Record only after the snapshot is out
        for asset in new_alerts:
            ledger.record(asset.symbol)

        stats.duration = round(time.time() - start, 2)
        logger.info(
            f"[{asset_class}] Complete: listed={stats.listed} "
            f"loaded={stats.series_loaded} "
            f"indicator_rejected={stats.indicator_rejected} "
            f"cascade_rejected={stats.cascade_rejected} "
            f"below_floor={stats.below_floor} scored={stats.scored} "
            f"new={stats.new_alerts} errors={stats.errors} "
            f"({stats.duration:.1f}s)"
        )

        if self.notifier is not None and not self.writer.dry_run:
            await asyncio.to_thread(
                self.notifier.notify, asset_class, new_alerts, stats.to_dict()
            )

        return published, stats

    async def _run_class_safe(self, asset_class: str, ledger: AlertLedger) -> ClassResult:
        """Run a class branch; fatal failures become a failure snapshot."""
        try:
            if self.config.run_timeout is not None:
                assets, stats = await asyncio.wait_for(
                    self.run_class(asset_class, ledger),
                    timeout=self.config.run_timeout,
                )
            else:
                assets, stats = await self.run_class(asset_class, ledger)
            return ClassResult(asset_class=asset_class, assets=assets, stats=stats)

        except asyncio.TimeoutError:
            message = f"{asset_class} run exceeded {self.config.run_timeout}s"
        except Exception as e:
            message = f"{asset_class} run failed: {e}"

        logger.error(message)
        path = self.config.snapshot_path_for(asset_class)
        try:
            self.writer.write_failure_snapshot(path, message)
        except OSError as e:
            logger.error(f"Could not write failure snapshot {path}: {e}")

        return ClassResult(
            asset_class=asset_class,
            stats=ScanStats(asset_class=asset_class, error=message),
            error=message,
        )

    # =========================================================================
    # RUN
    # =========================================================================

    def _load_ledger(self) -> AlertLedger:
        if self.ledger is not None:
            return self.ledger
        return AlertLedger.load(
            self.config.ledger_path, expiry_hours=self.config.ledger_expiry_hours
        )

    async def run(self) -> Dict:
        """
        Execute one run across all configured asset classes.

        Returns:
            Dict with ``results`` (asset class -> ScoredAsset list),
            ``stats`` (asset class -> counters), ``errors`` (asset class ->
            message, failed classes only) and ``ledger_version``
        """
        start = time.time()
        ledger = self._load_ledger()
        classes = list(self.config.asset_classes)
        logger.info(f"Scan started: {', '.join(classes)} (ledger: {len(ledger)} symbols)")

        outcomes = await asyncio.gather(
            *(self._run_class_safe(c, ledger) for c in classes),
            return_exceptions=True,
        )

        results: Dict[str, List[ScoredAsset]] = {}
        stats: Dict[str, Dict] = {}
        errors: Dict[str, str] = {}
        for asset_class, outcome in zip(classes, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"{asset_class} branch raised: {outcome!r}")
                errors[asset_class] = str(outcome)
                results[asset_class] = []
                continue
            results[asset_class] = outcome.assets
            stats[asset_class] = outcome.stats.to_dict()
            if outcome.failed:
                errors[asset_class] = outcome.error

        if ledger.is_dirty and not self.writer.dry_run:
            try:
                ledger.save(self.config.ledger_path if ledger.path is None else None)
            except OSError as e:
                logger.error(f"Failed to save alert ledger: {e}")

        duration = time.time() - start
        logger.info(
            f"Scan complete in {duration:.1f}s: "
            + ', '.join(f"{c}={len(results.get(c, []))}" for c in classes)
            + (f" (failed: {', '.join(errors)})" if errors else '')
        )

        return {
            'results': results,
            'stats': stats,
            'errors': errors,
            'ledger_version': ledger.version,
            'duration_seconds': round(duration, 1),
        }

    def run_sync(self) -> Dict:
        """Run in a fresh event loop."""
        return asyncio.run(self.run())


def run_scan(
    config: Optional[ScannerConfig] = None,
    market_source: Optional[MarketDataSource] = None,
    signal_source: Optional[SignalSource] = None,
    dry_run: bool = False,
) -> Dict:
    """
    Convenience function for one run (e.g., from cron).

    Loads config from environment when none is given.
    """
    config = config or ScannerConfig.from_env()
    orchestrator = ScanOrchestrator(
        config=config,
        market_source=market_source,
        signal_source=signal_source,
        writer=SnapshotWriter(preserve_last_good=config.preserve_last_good, dry_run=dry_run),
        notifier=AlertNotifier(config.discord_webhook_url, config.alert_max_symbols),
    )
    return orchestrator.run_sync()
