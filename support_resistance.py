"""
Support/resistance labelling for readings that are already "at" an indicator.

Only a clean approach counts: the 3 candles before the current one must all
sit beyond the "at" band on the same side. Choppy history gets no label.
"""

from typing import Optional, Sequence

LOOKBACK_CANDLES = 3


def classify(price_history: Sequence[float], indicator_history: Sequence[float],
             threshold: float) -> Optional[str]:
    """
    Series are tail-aligned (last element = current closed candle).

    Returns "support" when price approached from above, "resistance" when it
    approached from below, None otherwise.
    """
    if len(price_history) < LOOKBACK_CANDLES + 1 or len(indicator_history) < LOOKBACK_CANDLES + 1:
        return None

    all_above = True
    all_below = True
    for i in range(1, LOOKBACK_CANDLES + 1):
        price = price_history[-1 - i]
        value = indicator_history[-1 - i]
        diff = (price - value) / value
        if diff <= threshold:
            all_above = False
        if diff >= -threshold:
            all_below = False

    if all_above:
        return 'support'
    if all_below:
        return 'resistance'
    return None


def classify_cluster(price_history: Sequence[float], ema13: Sequence[float], ema25: Sequence[float],
                     ema32: Sequence[float], threshold: float) -> Optional[str]:
    """Same test against the cluster top (support) and cluster bottom (resistance)"""
    needed = LOOKBACK_CANDLES + 1
    if min(len(price_history), len(ema13), len(ema25), len(ema32)) < needed:
        return None

    all_above_top = True
    all_below_bottom = True
    for i in range(1, LOOKBACK_CANDLES + 1):
        price = price_history[-1 - i]
        members = (ema13[-1 - i], ema25[-1 - i], ema32[-1 - i])
        top = max(members)
        bottom = min(members)
        if (price - top) / top <= threshold:
            all_above_top = False
        if (price - bottom) / bottom >= -threshold:
            all_below_bottom = False

    if all_above_top:
        return 'support'
    if all_below_bottom:
        return 'resistance'
    return None
