"""
Market scanner configuration.

Cascade thresholds per asset class, score floors, indicator periods, paths
and collaborator retry settings. All values can be overridden via
environment variables prefixed with ``SCANNER_``.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from config.settings import get_discord_webhook_url, load_config
from scanner.models import CRYPTO, EQUITIES


@dataclass
class CascadeThresholds:
    """Filter cascade thresholds for one asset class."""

    # Market stage
    price_min: float = 0.0
    price_max: float = float('inf')
    volume_min: float = 0.0
    market_cap_min: Optional[float] = None  # Crypto only
    market_cap_max: Optional[float] = None
    change_min: float = -100.0
    change_max: float = 1000.0
    rsi_min: float = 0.0
    rsi_max: float = 100.0
    rvol_min: float = 0.0
    vwap_max_diff: float = float('inf')

    # Signal stage
    min_mentions: int = 0
    min_sentiment: float = 0.0
    min_news_sentiment: float = 0.0

    # Final score-based stage
    score_floor: int = 0

    @classmethod
    def crypto_defaults(cls) -> 'CascadeThresholds':
        return cls(
            price_min=0.0001,
            price_max=100_000.0,
            volume_min=5_000_000.0,
            market_cap_min=10_000_000.0,
            market_cap_max=50_000_000_000.0,
            change_min=-5.0,
            change_max=25.0,
            rsi_min=40.0,
            rsi_max=70.0,
            rvol_min=1.0,
            vwap_max_diff=3.0,
            min_mentions=10,
            min_sentiment=0.6,
            min_news_sentiment=0.4,
            score_floor=50,
        )

    @classmethod
    def equity_defaults(cls) -> 'CascadeThresholds':
        return cls(
            price_min=1.0,
            price_max=500.0,
            volume_min=1_000_000.0,
            change_min=-3.0,
            change_max=15.0,
            rsi_min=40.0,
            rsi_max=70.0,
            rvol_min=1.0,
            vwap_max_diff=2.0,
            min_mentions=10,
            min_sentiment=0.6,
            min_news_sentiment=0.4,
            score_floor=45,
        )


# Curated catalyst keywords matched against news titles (case-insensitive)
DEFAULT_CATALYST_KEYWORDS: Tuple[str, ...] = (
    'partnership', 'listing', 'listed on', 'launch', 'upgrade', 'mainnet',
    'etf', 'approval', 'approved', 'acquisition', 'merger', 'earnings beat',
    'raises guidance', 'fda', 'contract', 'buyback',
)


@dataclass
class ScannerConfig:
    """Configuration for the market screening pipeline."""

    crypto: CascadeThresholds = field(default_factory=CascadeThresholds.crypto_defaults)
    equities: CascadeThresholds = field(default_factory=CascadeThresholds.equity_defaults)

    # Asset classes to run
    asset_classes: List[str] = field(default_factory=lambda: [CRYPTO, EQUITIES])

    # Indicator engine
    ema_periods: Tuple[int, int, int] = (9, 21, 50)
    # Spike-check samples: hourly sparkline for crypto (~12h), 5-minute bars for equities (~1h)
    crypto_spike_window: int = 12
    equity_spike_window: int = 12

    # Universe
    crypto_universe_size: int = 100  # Top N coins by market cap
    equity_symbols: List[str] = field(default_factory=lambda: [
        'SPY', 'QQQ', 'AAPL', 'MSFT', 'NVDA', 'AMD', 'TSLA', 'META',
        'AMZN', 'GOOG', 'PLTR', 'COIN', 'HOOD', 'SOFI', 'MU',
    ])

    # Paths
    crypto_snapshot_path: str = 'data/crypto.json'
    equity_snapshot_path: str = 'data/stocks.json'
    ledger_path: str = 'data/alerted.json'

    # Snapshot policy
    preserve_last_good: bool = True  # Keep last good snapshot on failure
    snapshot_new_only: bool = False  # Publish only newly alerted symbols

    # Ledger expiry (None = permanent dedup)
    ledger_expiry_hours: Optional[float] = None

    # Collaborator calls
    request_timeout: float = 15.0
    retry_attempts: int = 3
    retry_delay: float = 2.0
    retry_backoff: float = 1.0  # 1.0 = fixed delay
    max_concurrency: int = 8
    run_timeout: Optional[float] = None  # Per class branch, seconds

    # Polling
    poll_interval_seconds: int = 300

    # Enrichment
    catalyst_keywords: Tuple[str, ...] = DEFAULT_CATALYST_KEYWORDS

    # Alerting
    discord_webhook_url: str = ''
    alert_max_symbols: int = 10

    def thresholds_for(self, asset_class: str) -> CascadeThresholds:
        """Return the cascade thresholds for an asset class."""
        if asset_class == CRYPTO:
            return self.crypto
        if asset_class == EQUITIES:
            return self.equities
        raise ValueError(f"Unknown asset class: {asset_class}")

    def snapshot_path_for(self, asset_class: str) -> str:
        """Return the snapshot file path for an asset class."""
        if asset_class == CRYPTO:
            return self.crypto_snapshot_path
        if asset_class == EQUITIES:
            return self.equity_snapshot_path
        raise ValueError(f"Unknown asset class: {asset_class}")

    def spike_window_for(self, asset_class: str) -> int:
        """Return the spike-check window (samples) for an asset class."""
        if asset_class == CRYPTO:
            return self.crypto_spike_window
        if asset_class == EQUITIES:
            return self.equity_spike_window
        raise ValueError(f"Unknown asset class: {asset_class}")

    @classmethod
    def from_env(cls) -> 'ScannerConfig':
        """Create config with environment variable overrides (.env included)."""
        load_config()
        cfg = cls()

        if v := os.environ.get('SCANNER_ASSET_CLASSES'):
            cfg.asset_classes = [c.strip().lower() for c in v.split(',') if c.strip()]
        if v := os.environ.get('SCANNER_EQUITY_SYMBOLS'):
            cfg.equity_symbols = [s.strip().upper() for s in v.split(',') if s.strip()]
        if v := os.environ.get('SCANNER_CRYPTO_UNIVERSE_SIZE'):
            cfg.crypto_universe_size = int(v)

        if v := os.environ.get('SCANNER_CRYPTO_SNAPSHOT_PATH'):
            cfg.crypto_snapshot_path = v
        if v := os.environ.get('SCANNER_EQUITY_SNAPSHOT_PATH'):
            cfg.equity_snapshot_path = v
        if v := os.environ.get('SCANNER_LEDGER_PATH'):
            cfg.ledger_path = v

        if v := os.environ.get('SCANNER_PRESERVE_LAST_GOOD'):
            cfg.preserve_last_good = v.lower() in ('true', '1')
        if v := os.environ.get('SCANNER_SNAPSHOT_NEW_ONLY'):
            cfg.snapshot_new_only = v.lower() in ('true', '1')
        if v := os.environ.get('SCANNER_LEDGER_EXPIRY_HOURS'):
            cfg.ledger_expiry_hours = float(v)

        if v := os.environ.get('SCANNER_REQUEST_TIMEOUT'):
            cfg.request_timeout = float(v)
        if v := os.environ.get('SCANNER_RETRY_ATTEMPTS'):
            cfg.retry_attempts = int(v)
        if v := os.environ.get('SCANNER_RETRY_DELAY'):
            cfg.retry_delay = float(v)
        if v := os.environ.get('SCANNER_MAX_CONCURRENCY'):
            cfg.max_concurrency = int(v)
        if v := os.environ.get('SCANNER_CRYPTO_SPIKE_WINDOW'):
            cfg.crypto_spike_window = int(v)
        if v := os.environ.get('SCANNER_EQUITY_SPIKE_WINDOW'):
            cfg.equity_spike_window = int(v)
        if v := os.environ.get('SCANNER_RUN_TIMEOUT'):
            cfg.run_timeout = float(v)
        if v := os.environ.get('SCANNER_POLL_INTERVAL'):
            cfg.poll_interval_seconds = int(v)

        if v := os.environ.get('SCANNER_CRYPTO_SCORE_FLOOR'):
            cfg.crypto.score_floor = int(v)
        if v := os.environ.get('SCANNER_EQUITY_SCORE_FLOOR'):
            cfg.equities.score_floor = int(v)
        if v := os.environ.get('SCANNER_MIN_MENTIONS'):
            cfg.crypto.min_mentions = int(v)
            cfg.equities.min_mentions = int(v)
        if v := os.environ.get('SCANNER_MIN_SENTIMENT'):
            cfg.crypto.min_sentiment = float(v)
            cfg.equities.min_sentiment = float(v)

        cfg.discord_webhook_url = get_discord_webhook_url() or ''

        return cfg
