"""
Filter cascade: ordered, short-circuiting predicates an asset must clear.

The market stage (price, volume, market cap, change, spike, RSI, EMA
alignment, RVOL, VWAP) runs before enrichment so rejected assets never cost
a Signal Source call. The signal stage (social, news) runs after.
A failing predicate is a normal exclusion, not an error.
"""

import logging
from typing import Callable, List, Optional, Tuple

from scanner.config import CascadeThresholds
from scanner.models import CRYPTO, Indicators, RawAssetRecord, SignalEnrichment

logger = logging.getLogger(__name__)

MarketPredicate = Callable[[RawAssetRecord, Optional[Indicators], CascadeThresholds], bool]
SignalPredicate = Callable[[SignalEnrichment, CascadeThresholds], bool]


def _price_in_range(record, indicators, t) -> bool:
    return t.price_min <= record.price <= t.price_max


def _volume_sufficient(record, indicators, t) -> bool:
    return record.volume_24h >= t.volume_min


def _market_cap_in_range(record, indicators, t) -> bool:
    if record.asset_class != CRYPTO:
        return True
    if t.market_cap_min is None and t.market_cap_max is None:
        return True
    if record.market_cap is None:
        return False
    if t.market_cap_min is not None and record.market_cap < t.market_cap_min:
        return False
    if t.market_cap_max is not None and record.market_cap > t.market_cap_max:
        return False
    return True


def _change_in_range(record, indicators, t) -> bool:
    return t.change_min <= record.change_24h <= t.change_max


def _indicators_valid(record, indicators, t) -> bool:
    return indicators is not None and indicators.spike_ok


def _rsi_in_range(record, indicators, t) -> bool:
    return t.rsi_min <= indicators.rsi <= t.rsi_max


def _ema_aligned(record, indicators, t) -> bool:
    return indicators.ema_aligned


def _rvol_sufficient(record, indicators, t) -> bool:
    return indicators.rvol >= t.rvol_min


def _near_vwap(record, indicators, t) -> bool:
    # No volume data means no VWAP to compare against
    if indicators.vwap <= 0:
        return True
    return indicators.vwap_diff_pct <= t.vwap_max_diff


def _social_sufficient(enrichment, t) -> bool:
    return (
        enrichment.mentions >= t.min_mentions
        and enrichment.sentiment >= t.min_sentiment
    )


def _news_sentiment_sufficient(enrichment, t) -> bool:
    return enrichment.news_sentiment >= t.min_news_sentiment


# Cheap checks first; order does not change the outcome
MARKET_STAGE: Tuple[Tuple[str, MarketPredicate], ...] = (
    ('price', _price_in_range),
    ('volume', _volume_sufficient),
    ('market_cap', _market_cap_in_range),
    ('change_24h', _change_in_range),
    ('indicators', _indicators_valid),
    ('rsi', _rsi_in_range),
    ('ema_alignment', _ema_aligned),
    ('rvol', _rvol_sufficient),
    ('vwap', _near_vwap),
)

SIGNAL_STAGE: Tuple[Tuple[str, SignalPredicate], ...] = (
    ('social', _social_sufficient),
    ('news_sentiment', _news_sentiment_sufficient),
)


class FilterCascade:
    """Evaluates the predicate chain for one asset class."""

    def __init__(self, thresholds: CascadeThresholds):
        self.thresholds = thresholds

    @property
    def predicate_names(self) -> List[str]:
        return [name for name, _ in MARKET_STAGE] + [name for name, _ in SIGNAL_STAGE]

    def market_rejection(
        self, record: RawAssetRecord, indicators: Optional[Indicators]
    ) -> Optional[str]:
        """Return the first failing market-stage predicate, or None."""
        for name, predicate in MARKET_STAGE:
            if not predicate(record, indicators, self.thresholds):
                return name
        return None

    def signal_rejection(self, enrichment: SignalEnrichment) -> Optional[str]:
        """Return the first failing signal-stage predicate, or None."""
        for name, predicate in SIGNAL_STAGE:
            if not predicate(enrichment, self.thresholds):
                return name
        return None

    def evaluate(
        self,
        record: RawAssetRecord,
        indicators: Optional[Indicators],
        enrichment: Optional[SignalEnrichment] = None,
    ) -> Optional[str]:
        """
        Run the full cascade.

        Args:
            record: Raw asset record
            indicators: Indicators (None = rejected by the indicator engine)
            enrichment: Signal enrichment; None evaluates the market stage only

        Returns:
            Name of the first failing predicate, or None if all pass
        """
        reason = self.market_rejection(record, indicators)
        if reason is not None or enrichment is None:
            return reason
        return self.signal_rejection(enrichment)

    def passes(
        self,
        record: RawAssetRecord,
        indicators: Optional[Indicators],
        enrichment: Optional[SignalEnrichment] = None,
    ) -> bool:
        reason = self.evaluate(record, indicators, enrichment)
        if reason is not None:
            logger.debug(f"{record.symbol} rejected by {reason} filter")
            return False
        return True


def passes_cascade(
    record: RawAssetRecord,
    indicators: Optional[Indicators],
    thresholds: CascadeThresholds,
    enrichment: Optional[SignalEnrichment] = None,
) -> bool:
    """Functional form of ``FilterCascade.passes``."""
    return FilterCascade(thresholds).passes(record, indicators, enrichment)
