"""
Turns closed-candle close series into per-indicator SignalSnapshots.
"""

import dataclasses
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from exceptions import InsufficientDataError
from indicator_evaluator import at_threshold, classify, evaluate
from signal_models import IndicatorSpec, SignalSnapshot, SnapshotMap, cluster_specs
from support_resistance import classify as classify_support_resistance
from trend_utils import read_cluster

logger = logging.getLogger(__name__)


def snapshot_for_spec(closes: Sequence[float], spec: IndicatorSpec,
                      detect_support_resistance: bool = True) -> Tuple[SignalSnapshot, List[float]]:
    """Evaluate one indicator and classify the last closed price against it"""
    values = evaluate(closes, spec)
    price = float(closes[-1])
    value = values[-1]
    above, below, at, diff_percent = classify(price, value, spec.timeframe)

    support_resistance = None
    if at and detect_support_resistance:
        support_resistance = classify_support_resistance(closes, values, at_threshold(spec.timeframe))

    snapshot = SignalSnapshot(
        price=price,
        indicator_value=value,
        above_indicator=above,
        below_indicator=below,
        at_indicator=at,
        diff_percent=diff_percent,
        timeframe=spec.timeframe,
        support_resistance=support_resistance,
    )
    return snapshot, values


def build_snapshots(closes_by_timeframe: Dict[str, Sequence[float]], specs: Iterable[IndicatorSpec],
                    cluster_timeframes: Iterable[str] = (), detect_support_resistance: bool = True,
                    symbol: Optional[str] = None) -> SnapshotMap:
    """
    Snapshot every spec that has enough data; specs without data are skipped.

    Every cluster timeframe whose three EMAs all evaluated gets a shared
    ClusterReading attached to each member snapshot.
    """
    cluster_timeframes = list(dict.fromkeys(cluster_timeframes))
    wanted = list(specs)
    for tf in cluster_timeframes:
        wanted.extend(cluster_specs(tf))

    snapshots: SnapshotMap = {}
    series: Dict[IndicatorSpec, List[float]] = {}

    for spec in dict.fromkeys(wanted):
        closes = closes_by_timeframe.get(spec.timeframe)
        if not closes:
            logger.debug(f"No closes for {symbol or '?'} {spec.timeframe}, skipping {spec.label}")
            continue
        try:
            snapshots[spec], series[spec] = snapshot_for_spec(closes, spec, detect_support_resistance)
        except InsufficientDataError as e:
            logger.debug(f"Skipping {spec.label} for {symbol or '?'}: {e}")

    for tf in cluster_timeframes:
        members = cluster_specs(tf)
        if not all(member in series for member in members):
            continue
        closes = closes_by_timeframe[tf]
        reading = read_cluster(
            float(closes[-1]),
            {member.period: series[member] for member in members},
            tf,
            price_history=closes if detect_support_resistance else None,
        )
        for member in members:
            snapshots[member] = dataclasses.replace(snapshots[member], cluster=reading)

    return snapshots
