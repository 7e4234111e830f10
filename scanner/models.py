"""
Data models for the market screening pipeline.

Records flow one way through the pipeline and are never mutated in place:
each stage produces a new value (``dataclasses.replace``) so a record can be
re-run through the cascade and scorer with identical results.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

CRYPTO = 'crypto'
EQUITIES = 'equities'
ASSET_CLASSES: Tuple[str, ...] = (CRYPTO, EQUITIES)

# Dashboard chart length (7 days of hourly samples)
_SPARKLINE_SAMPLES = 168


@dataclass(frozen=True)
class RawAssetRecord:
    """
    One polled asset as handed over by the Market Data Source.

    ``prices`` is chronological (oldest first). ``volumes`` is optional and,
    when present, aligned 1:1 with ``prices``.
    """

    symbol: str
    name: str = ''
    asset_class: str = CRYPTO
    price: float = 0.0
    change_24h: float = 0.0
    volume_24h: float = 0.0
    market_cap: Optional[float] = None
    prices: Tuple[float, ...] = ()
    volumes: Optional[Tuple[float, ...]] = None
    source_id: str = ''  # Upstream identifier (e.g. CoinGecko coin id)

    def __post_init__(self):
        object.__setattr__(self, 'symbol', self.symbol.strip().upper())
        object.__setattr__(self, 'prices', tuple(float(p) for p in self.prices))
        if self.volumes is not None:
            object.__setattr__(
                self, 'volumes', tuple(float(v) for v in self.volumes)
            )


@dataclass(frozen=True)
class Indicators:
    """Technical indicators derived from a price/volume series."""

    rsi: float
    ema_short: float
    ema_mid: float
    ema_long: float
    atr: float
    vwap: float
    ema_aligned: bool
    spike_ratio: float
    spike_ok: bool
    rvol: float
    current_price: float
    ema_periods: Tuple[int, int, int] = (9, 21, 50)

    @property
    def vwap_diff_pct(self) -> float:
        """Distance from VWAP in percent (0.0 when VWAP is unavailable)."""
        if self.vwap <= 0:
            return 0.0
        return abs(self.current_price - self.vwap) / self.vwap * 100


@dataclass(frozen=True)
class NewsItem:
    """A single news headline attached to an asset."""

    title: str
    url: str = ''
    time: str = ''
    sentiment: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'url': self.url,
            'time': self.time,
            'sentiment': self.sentiment,
        }


@dataclass(frozen=True)
class SignalEnrichment:
    """Social and news metrics supplied by the External Signal Source."""

    mentions: int = 0
    sentiment: float = 0.0
    engagement: int = 0
    influencer: bool = False
    news: Tuple[NewsItem, ...] = ()
    catalyst: bool = False

    @classmethod
    def empty(cls) -> 'SignalEnrichment':
        return cls()

    @property
    def news_sentiment(self) -> float:
        """Average news sentiment; an empty news list is neutral (0.5)."""
        if not self.news:
            return 0.5
        return sum(item.sentiment for item in self.news) / len(self.news)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mentions': self.mentions,
            'sentiment': self.sentiment,
            'engagement': self.engagement,
            'influencer': self.influencer,
            'catalyst': self.catalyst,
            'newsSentiment': round(self.news_sentiment, 3),
        }


@dataclass(frozen=True)
class RiskPlan:
    """ATR-derived stop, target and position size for a scored asset."""

    stop_loss: float
    take_profit: float
    position_size: str  # Percent of notional, e.g. "6.67%"
    entry: float
    exit: str  # "EMA Bearish Cross" or "Hold"
    atr_percent: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stopLoss': self.stop_loss,
            'takeProfit': self.take_profit,
            'positionSize': self.position_size,
            'entry': self.entry,
            'exit': self.exit,
            'atrPercent': round(self.atr_percent, 4),
        }


@dataclass(frozen=True)
class ScoreBreakdown:
    """Category subscores before and after weighting."""

    technical: float = 0.0
    social: float = 0.0
    news: float = 0.0
    risk: float = 0.0
    total: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            'technical': round(self.technical, 2),
            'social': round(self.social, 2),
            'news': round(self.news, 2),
            'risk': round(self.risk, 2),
            'total': round(self.total, 2),
        }


@dataclass(frozen=True)
class ScoredAsset:
    """Terminal entity of the pipeline, written to a snapshot."""

    record: RawAssetRecord
    indicators: Indicators
    enrichment: SignalEnrichment
    score: int
    message: str
    risk: RiskPlan
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    new_alert: bool = False

    @property
    def symbol(self) -> str:
        return self.record.symbol

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the dashboard snapshot shape."""
        rec = self.record
        ind = self.indicators
        short_p, mid_p, long_p = ind.ema_periods

        return {
            'id': rec.source_id or rec.symbol.lower(),
            'symbol': rec.symbol,
            'name': rec.name,
            'assetClass': rec.asset_class,
            'price': ind.current_price,
            'change24h': rec.change_24h,
            'volume': rec.volume_24h,
            'marketCap': rec.market_cap,
            'rsi': round(ind.rsi, 2),
            f'ema{short_p}': ind.ema_short,
            f'ema{mid_p}': ind.ema_mid,
            f'ema{long_p}': ind.ema_long,
            'emaAligned': ind.ema_aligned,
            'atr': ind.atr,
            'vwap': ind.vwap,
            'vwapDiff': round(ind.vwap_diff_pct, 3),
            'rvol': round(ind.rvol, 3),
            'spikeRatio': round(ind.spike_ratio, 4),
            'social': self.enrichment.to_dict(),
            'news': [item.to_dict() for item in self.enrichment.news],
            'score': self.score,
            'message': self.message,
            'scoreBreakdown': self.breakdown.to_dict(),
            'risk': self.risk.to_dict(),
            'newAlert': self.new_alert,
            'sparkline': list(rec.prices[-_SPARKLINE_SAMPLES:]),
        }
