import pytest

from signal_models import IndicatorSpec, cluster_specs
from snapshot_builder import build_snapshots, snapshot_for_spec
from trend_utils import cluster_state, read_cluster

EMA200_4H = IndicatorSpec('4h', 'ema', 200)
MA100_1D = IndicatorSpec('1d', 'ma', 100)


def rising(n, start=100.0):
    return [start + i for i in range(n)]


def test_rising_series_is_above_its_ema():
    snapshot, values = snapshot_for_spec(rising(500), EMA200_4H)

    assert snapshot.price == 599.0
    assert snapshot.indicator_value == values[-1]
    assert snapshot.above_indicator and not snapshot.below_indicator
    assert not snapshot.at_indicator
    assert snapshot.support_resistance is None


def test_ma_snapshot_matches_simple_average():
    closes = [float(i) for i in range(1, 251)]

    snapshot, _ = snapshot_for_spec(closes, MA100_1D)

    assert snapshot.indicator_value == pytest.approx(sum(range(151, 251)) / 100)


def test_specs_without_data_are_skipped():
    snapshots = build_snapshots({'4h': rising(500), '1d': rising(50)}, [EMA200_4H, MA100_1D])

    assert EMA200_4H in snapshots
    assert MA100_1D not in snapshots


def test_missing_timeframe_is_skipped():
    snapshots = build_snapshots({'4h': rising(500)}, [EMA200_4H, IndicatorSpec('1w', 'ema', 200)])

    assert list(snapshots) == [EMA200_4H]


def test_cluster_reading_is_attached_to_every_member():
    closes = [100.0] * 80

    snapshots = build_snapshots({'4h': closes}, [], cluster_timeframes=['4h'])

    members = cluster_specs('4h')
    assert set(snapshots) == set(members)
    readings = [snapshots[m].cluster for m in members]
    assert readings[0] is not None
    assert readings[0] == readings[1] == readings[2]
    assert readings[0].at_cluster
    assert not readings[0].above_cluster and not readings[0].below_cluster
    assert readings[0].support_resistance is None


def test_cluster_above_on_strong_uptrend():
    snapshots = build_snapshots({'1h': rising(100)}, [], cluster_timeframes=['1h'])

    reading = snapshots[cluster_specs('1h')[0]].cluster
    assert reading.above_cluster
    assert cluster_state(reading) == 'above'


def test_incomplete_cluster_gets_no_reading():
    # 30 closes: EMA13 and EMA25 evaluate, EMA32 does not
    snapshots = build_snapshots({'4h': rising(30)}, [], cluster_timeframes=['4h'])

    assert IndicatorSpec('4h', 'ema', 32) not in snapshots
    assert all(s.cluster is None for s in snapshots.values())


def test_read_cluster_at_within_band_of_mid():
    series = {13: [100.0] * 4, 25: [101.0] * 4, 32: [99.0] * 4}

    inside = read_cluster(100.5, series, '4h')
    outside = read_cluster(103.0, series, '4h')

    assert inside.cluster_mid == 100.0
    assert inside.at_cluster
    assert outside.above_cluster and not outside.at_cluster
    assert cluster_state(outside) == 'above'


def test_read_cluster_labels_support_from_history():
    series = {13: [100.0] * 4, 25: [101.0] * 4, 32: [99.0] * 4}

    reading = read_cluster(100.0, series, '4h', price_history=[105.0, 104.0, 103.0, 100.0])

    assert reading.support_resistance == 'support'
