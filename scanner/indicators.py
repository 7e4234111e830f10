"""
Indicator engine: RSI, EMAs, ATR, VWAP, relative volume and spike ratio.

Pure functions over a chronological price series. A series that is too
short (or contains unusable samples) yields ``None`` - a normal exclusion
for the caller, never an exception.

Lookbacks:
- EMA/ATR/VWAP use the most recent 100 samples
- RSI uses the most recent 24 samples
- Spike ratio uses the most recent ``spike_window`` samples (default 12).
  The span depends on the source cadence: ~1 hour of 5-minute equity bars,
  ~12 hours of the hourly CoinGecko sparkline.
"""

import logging
import math
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from scanner.models import Indicators

logger = logging.getLogger(__name__)

MIN_SAMPLES = 50
INDICATOR_LOOKBACK = 100
RSI_LOOKBACK = 24
RSI_PERIOD = 14
ATR_PERIOD = 14
SPIKE_WINDOW = 12
MAX_SPIKE_RATIO = 0.5
RVOL_LOOKBACK = 20


def compute_indicators(
    prices: Sequence[float],
    volumes: Optional[Sequence[float]] = None,
    periods: Tuple[int, int, int] = (9, 21, 50),
    spike_window: int = SPIKE_WINDOW,
) -> Optional[Indicators]:
    """
    Compute indicators for a price series.

    Args:
        prices: Chronological price samples (oldest first)
        volumes: Optional per-sample volumes aligned 1:1 with prices
        periods: Short, mid and long EMA periods
        spike_window: Samples in the anti-manipulation spike check

    Returns:
        Indicators, or None when the series cannot produce valid indicators
    """
    if prices is None or len(prices) < MIN_SAMPLES:
        return None

    series = np.asarray(prices, dtype=float)
    if not np.all(np.isfinite(series)) or np.any(series <= 0):
        logger.debug("Rejecting series with non-finite or non-positive samples")
        return None

    vol_series = _aligned_volumes(series, volumes)

    window = series[-INDICATOR_LOOKBACK:]
    short_p, mid_p, long_p = periods

    ema_short = calculate_ema(window, short_p)
    ema_mid = calculate_ema(window, mid_p)
    ema_long = calculate_ema(window, long_p)

    spike_ratio = calculate_spike_ratio(series, window=spike_window)

    vwap = 0.0
    rvol = 1.0
    if vol_series is not None:
        vwap = calculate_vwap(window, vol_series[-INDICATOR_LOOKBACK:])
        rvol = calculate_rvol(vol_series)

    return Indicators(
        rsi=calculate_rsi(series[-RSI_LOOKBACK:]),
        ema_short=ema_short,
        ema_mid=ema_mid,
        ema_long=ema_long,
        atr=calculate_atr(window),
        vwap=vwap,
        ema_aligned=ema_short > ema_mid > ema_long,
        spike_ratio=spike_ratio,
        spike_ok=spike_ratio <= MAX_SPIKE_RATIO,
        rvol=rvol,
        current_price=float(series[-1]),
        ema_periods=(short_p, mid_p, long_p),
    )


def _aligned_volumes(
    prices: np.ndarray, volumes: Optional[Sequence[float]]
) -> Optional[np.ndarray]:
    """Return the volume series if usable, else None."""
    if volumes is None:
        return None
    if len(volumes) != len(prices):
        logger.debug(
            f"Volume series misaligned ({len(volumes)} vs {len(prices)} prices), ignoring"
        )
        return None
    vol = np.asarray(volumes, dtype=float)
    if not np.all(np.isfinite(vol)) or np.any(vol < 0):
        return None
    return vol


def calculate_rsi(prices: Sequence[float], period: int = RSI_PERIOD) -> float:
    """
    Wilder RSI.

    Seeds average gain/loss with the simple mean of the first ``period``
    deltas, then applies Wilder smoothing to the remainder.
    """
    deltas = np.diff(np.asarray(prices, dtype=float))
    if len(deltas) < period:
        return 50.0

    gains = np.clip(deltas, 0, None)
    losses = np.clip(-deltas, 0, None)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))

    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0

    rs = avg_gain / avg_loss
    rsi = 100 - (100 / (1 + rs))
    return float(min(100.0, max(0.0, rsi)))


def calculate_ema(prices: Sequence[float], period: int) -> float:
    """Exponential moving average, last value."""
    ema = pd.Series(prices, dtype=float).ewm(span=period, adjust=False).mean()
    return float(ema.iloc[-1])


def calculate_atr(prices: Sequence[float], period: int = ATR_PERIOD) -> float:
    """
    ATR from a close-only series.

    True range degenerates to the absolute close-to-close move; smoothed
    with Wilder's alpha = 1/period.
    """
    closes = pd.Series(prices, dtype=float)
    true_range = closes.diff().abs().iloc[1:]
    if true_range.empty:
        return 0.0
    atr = true_range.ewm(alpha=1 / period, adjust=False).mean()
    return float(atr.iloc[-1])


def calculate_vwap(prices: Sequence[float], volumes: Sequence[float]) -> float:
    """Volume-weighted average price (0.0 when total volume is zero)."""
    p = np.asarray(prices, dtype=float)
    v = np.asarray(volumes, dtype=float)
    total_volume = float(v.sum())
    if total_volume <= 0:
        return 0.0
    return float((p * v).sum() / total_volume)


def calculate_rvol(volumes: Sequence[float], lookback: int = RVOL_LOOKBACK) -> float:
    """Current volume vs trailing average of the preceding ``lookback`` samples."""
    vol = np.asarray(volumes, dtype=float)
    if len(vol) < lookback + 1:
        return 1.0

    avg_volume = float(vol[-(lookback + 1):-1].mean())
    if avg_volume > 0:
        return float(vol[-1] / avg_volume)
    return 1.0


def calculate_spike_ratio(prices: Sequence[float], window: int = SPIKE_WINDOW) -> float:
    """(max - min) / min over the most recent ``window`` samples."""
    recent = np.asarray(prices, dtype=float)[-window:]
    low = float(recent.min())
    if low <= 0 or math.isnan(low):
        return 0.0
    return float((recent.max() - low) / low)
