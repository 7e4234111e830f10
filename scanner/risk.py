"""
Risk calculator.

Turns current price and ATR into a stop-loss / take-profit pair with an
asymmetric 1:2 risk/reward (1.5 ATR stop, 3 ATR target) and a position
size inversely proportional to volatility, capped at 10% of notional.
"""

from typing import Optional

from scanner.models import RiskPlan

STOP_ATR_MULTIPLE = 1.5
TARGET_ATR_MULTIPLE = 3.0
MAX_POSITION_PCT = 10.0

EXIT_BEARISH_CROSS = 'EMA Bearish Cross'
EXIT_HOLD = 'Hold'


def compute_risk(
    current_price: float,
    atr: float,
    short_ema: float,
    mid_ema: float,
) -> Optional[RiskPlan]:
    """
    Compute the risk plan for an asset.

    Args:
        current_price: Last price (entry)
        atr: Average True Range in price units
        short_ema: Short EMA, used for the exit condition
        mid_ema: Mid EMA, used for the exit condition

    Returns:
        RiskPlan, or None when sizing is undefined (zero ATR, bad price)

    Example:
        >>> plan = compute_risk(100.0, 2.0, 101.0, 100.0)
        >>> # ATR% = 2 -> stop 97.0, target 106.0, size 10.00% (capped from 50)
    """
    if current_price <= 0 or atr < 0:
        return None

    atr_percent = atr / current_price * 100
    if atr_percent == 0:
        return None

    stop_loss = current_price * (1 - atr_percent * STOP_ATR_MULTIPLE / 100)
    take_profit = current_price * (1 + atr_percent * TARGET_ATR_MULTIPLE / 100)
    position_size = min(MAX_POSITION_PCT, (1 / atr_percent) * 100)

    return RiskPlan(
        stop_loss=stop_loss,
        take_profit=take_profit,
        position_size=f"{position_size:.2f}%",
        entry=current_price,
        exit=EXIT_BEARISH_CROSS if short_ema < mid_ema else EXIT_HOLD,
        atr_percent=atr_percent,
    )
