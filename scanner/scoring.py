"""
Composite scoring for screened assets.

Scores 0-100 starting from a neutral base of 50, adding four weighted
category subscores: Technical (40%), Social (30%), News (20%), Risk (10%).
Each category is bounded before weighting, so no single signal can
dominate the composite.
"""

import logging
import math
from typing import Tuple

from scanner.models import Indicators, ScoreBreakdown, SignalEnrichment

logger = logging.getLogger(__name__)

BASE_SCORE = 50.0

WEIGHT_TECHNICAL = 0.4
WEIGHT_SOCIAL = 0.3
WEIGHT_NEWS = 0.2
WEIGHT_RISK = 0.1

# RSI sweet spot: momentum without being overbought
RSI_TARGET = 60.0

MESSAGE_STRONG_BUY = 'strong buy — multiple confirmations'
MESSAGE_BULLISH = 'bullish — good technicals and sentiment'
MESSAGE_NEUTRAL = 'neutral'
MESSAGE_CAUTION = 'caution — mixed signals'
MESSAGE_AVOID = 'avoid — weak technicals or negative sentiment'

_MESSAGE_STEPS: Tuple[Tuple[int, str], ...] = (
    (80, MESSAGE_STRONG_BUY),
    (65, MESSAGE_BULLISH),
    (50, MESSAGE_NEUTRAL),
    (35, MESSAGE_CAUTION),
)


class AssetScorer:
    """Scores assets from indicators and signal enrichment."""

    def score(
        self,
        indicators: Indicators,
        enrichment: SignalEnrichment,
        rvol: float,
    ) -> Tuple[int, str]:
        """
        Compute composite score and validation message.

        Returns:
            Tuple of (score 0-100, message)
        """
        breakdown = self.score_breakdown(indicators, enrichment, rvol)
        final = self.finalize(breakdown.total)
        return final, self.message_for(final)

    def score_breakdown(
        self,
        indicators: Indicators,
        enrichment: SignalEnrichment,
        rvol: float,
    ) -> ScoreBreakdown:
        """Weighted category subscores and the unclamped total."""
        technical = self._score_technical(indicators, rvol) * WEIGHT_TECHNICAL
        social = self._score_social(enrichment) * WEIGHT_SOCIAL
        news = self._score_news(enrichment) * WEIGHT_NEWS
        risk = self._score_risk(indicators) * WEIGHT_RISK

        return ScoreBreakdown(
            technical=technical,
            social=social,
            news=news,
            risk=risk,
            total=BASE_SCORE + technical + social + news + risk,
        )

    @staticmethod
    def finalize(total: float) -> int:
        """Round half up and clamp to [0, 100]."""
        return int(min(100, max(0, math.floor(total + 0.5))))

    @staticmethod
    def message_for(score: int) -> str:
        """Step function from final score to categorical message."""
        for floor, message in _MESSAGE_STEPS:
            if score >= floor:
                return message
        return MESSAGE_AVOID

    @staticmethod
    def _score_technical(indicators: Indicators, rvol: float) -> float:
        """RSI proximity (20) + EMA alignment (20) + VWAP proximity (10) + RVOL (10)."""
        rsi_term = max(0.0, 20 - abs(indicators.rsi - RSI_TARGET) / 2)
        ema_term = 20.0 if indicators.ema_aligned else 0.0

        vwap_term = 0.0
        if indicators.vwap > 0:
            vwap_term = max(0.0, 10 - indicators.vwap_diff_pct)

        rvol_term = min(10.0, max(0.0, rvol) * 2)
        return rsi_term + ema_term + vwap_term + rvol_term

    @staticmethod
    def _score_social(enrichment: SignalEnrichment) -> float:
        """Mentions (15) + sentiment (15) + engagement (10) + influencer (10)."""
        mention_term = min(15.0, max(0, enrichment.mentions) / 10)
        sentiment_term = min(15.0, max(0.0, enrichment.sentiment) * 15)
        engagement_term = min(10.0, max(0, enrichment.engagement) / 1000)
        influencer_term = 10.0 if enrichment.influencer else 0.0
        return mention_term + sentiment_term + engagement_term + influencer_term

    @staticmethod
    def _score_news(enrichment: SignalEnrichment) -> float:
        """Item count (10) + news sentiment (10) + catalyst (10)."""
        count_term = min(10.0, len(enrichment.news) * 2)
        sentiment_term = 0.0
        if enrichment.news:
            sentiment_term = min(10.0, max(0.0, enrichment.news_sentiment) * 10)
        catalyst_term = 10.0 if enrichment.catalyst else 0.0
        return count_term + sentiment_term + catalyst_term

    @staticmethod
    def _score_risk(indicators: Indicators) -> float:
        """Anti-manipulation guard: full marks when the spike check passed."""
        return 10.0 if indicators.spike_ok else 0.0


def score(
    indicators: Indicators, enrichment: SignalEnrichment, rvol: float
) -> Tuple[int, str]:
    """Functional form of ``AssetScorer.score``."""
    return AssetScorer().score(indicators, enrichment, rvol)
