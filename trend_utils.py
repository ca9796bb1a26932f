from typing import Dict, Optional, Sequence, Tuple

from indicator_evaluator import at_threshold
from signal_models import CLUSTER_PERIODS, ClusterReading
from support_resistance import classify_cluster


def cluster_bounds(ema13: float, ema25: float, ema32: float) -> Tuple[float, float, float]:
    """Returns (min, max, mid) of the EMA 13/25/32 zone"""
    low = min(ema13, ema25, ema32)
    high = max(ema13, ema25, ema32)
    return low, high, (low + high) / 2


def read_cluster(price: float, series_by_period: Dict[int, Sequence[float]], timeframe: str,
                 price_history: Optional[Sequence[float]] = None) -> ClusterReading:
    """
    Position of price against the trend cluster of one timeframe.

    Price is "at" the cluster when it sits inside [min, max] or within the
    timeframe's at-band of the midpoint. Above/below need price fully
    outside the zone. S/R is labelled only for "at" readings and only when
    price_history is given.
    """
    ema13, ema25, ema32 = (series_by_period[p] for p in CLUSTER_PERIODS)
    low, high, mid = cluster_bounds(ema13[-1], ema25[-1], ema32[-1])
    threshold = at_threshold(timeframe)

    at_cluster = abs(price - mid) / mid <= threshold or low <= price <= high

    support_resistance = None
    if at_cluster and price_history is not None:
        support_resistance = classify_cluster(price_history, ema13, ema25, ema32, threshold)

    return ClusterReading(
        cluster_min=low,
        cluster_max=high,
        cluster_mid=mid,
        above_cluster=price > high,
        below_cluster=price < low,
        at_cluster=at_cluster,
        support_resistance=support_resistance,
    )


def cluster_state(reading: ClusterReading) -> str:
    """above / below / at / away, checked in that order"""
    if reading.above_cluster:
        return 'above'
    if reading.below_cluster:
        return 'below'
    if reading.at_cluster:
        return 'at'
    return 'away'
