"""
MA/EMA evaluation over closed-candle close prices.

The last element of every price series is treated as the most recently
CLOSED candle. Callers drop the still-forming candle before calling in,
otherwise readings flap while the candle develops.
"""

import math
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd
from ta.trend import EMAIndicator, SMAIndicator

from exceptions import InsufficientDataError
from signal_models import IndicatorSpec

# "at" band per timeframe, as a fraction of the indicator value.
# Higher timeframes get wider bands because their candles are larger.
AT_THRESHOLDS = {
    '15m': 0.0005,
    '1h': 0.001,
    '2h': 0.0015,
    '4h': 0.002,
    '12h': 0.003,
    '1d': 0.005,
    '3d': 0.007,
    '1w': 0.01,
}
DEFAULT_AT_THRESHOLD = 0.002


def at_threshold(timeframe: str) -> float:
    return AT_THRESHOLDS.get(timeframe, DEFAULT_AT_THRESHOLD)


def required_candles(period: int) -> int:
    """Closed candles to request so an EMA has converged from its seed value"""
    return math.ceil(period * 2.5)


def moving_average(prices: Sequence[float], kind: str, period: int) -> List[float]:
    """
    MA or EMA series aligned to the tail of ``prices``.

    Output length is len(prices) - (period - 1); element -1 corresponds to
    the last closed candle.
    """
    if len(prices) < period:
        raise InsufficientDataError(period, len(prices))

    close = pd.Series(np.asarray(prices, dtype=float))
    if kind == 'ema':
        series = EMAIndicator(close, window=period).ema_indicator()
    else:
        series = SMAIndicator(close, window=period).sma_indicator()

    return [float(v) for v in series.iloc[period - 1:]]


def evaluate(prices: Sequence[float], spec: IndicatorSpec) -> List[float]:
    return moving_average(prices, spec.kind, spec.period)


def classify(price: float, indicator_value: float, timeframe: str) -> Tuple[bool, bool, bool, float]:
    """Returns (above, below, at, diff_percent) of price against indicator_value"""
    diff_percent = abs(price - indicator_value) / indicator_value
    return (
        price > indicator_value,
        price < indicator_value,
        diff_percent <= at_threshold(timeframe),
        diff_percent,
    )
