"""
Market Screening Pipeline.

Polls crypto and equity market data, computes technical indicators, runs a
filter cascade and composite score, deduplicates against an alert ledger
and publishes one JSON snapshot per asset class:

  Market source -> Indicators -> Market cascade -> Enrichment
  -> Signal cascade -> Risk + Score -> Score floor -> Ledger
  -> data/crypto.json, data/stocks.json
"""

from scanner.config import CascadeThresholds, ScannerConfig
from scanner.models import (
    ASSET_CLASSES,
    CRYPTO,
    EQUITIES,
    Indicators,
    NewsItem,
    RawAssetRecord,
    RiskPlan,
    ScoreBreakdown,
    ScoredAsset,
    SignalEnrichment,
)
from scanner.indicators import compute_indicators
from scanner.risk import compute_risk
from scanner.cascade import FilterCascade, passes_cascade
from scanner.scoring import AssetScorer, score
from scanner.ledger import AlertLedger
from scanner.snapshot import SnapshotWriter, write_failure_snapshot, write_snapshot
from scanner.retry import RetryPolicy
from scanner.sources import (
    MarketDataError,
    MarketDataSource,
    SignalSource,
    NullSignalSource,
    StaticSignalSource,
)
from scanner.orchestrator import ScanOrchestrator, ScanStats, run_scan

__all__ = [
    'ASSET_CLASSES',
    'CRYPTO',
    'EQUITIES',
    'AlertLedger',
    'AssetScorer',
    'CascadeThresholds',
    'FilterCascade',
    'Indicators',
    'MarketDataError',
    'MarketDataSource',
    'NewsItem',
    'NullSignalSource',
    'RawAssetRecord',
    'RetryPolicy',
    'RiskPlan',
    'ScanOrchestrator',
    'ScanStats',
    'ScannerConfig',
    'ScoreBreakdown',
    'ScoredAsset',
    'SignalEnrichment',
    'SignalSource',
    'SnapshotWriter',
    'StaticSignalSource',
    'compute_indicators',
    'compute_risk',
    'passes_cascade',
    'run_scan',
    'score',
    'write_failure_snapshot',
    'write_snapshot',
]
