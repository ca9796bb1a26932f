from typing import Dict, List, Optional

import pytest

from exceptions import UpstreamUnavailableError
from indicator_evaluator import classify
from signal_models import ClusterReading, SignalSnapshot


def make_snapshot(price: float, value: float, timeframe: str = '4h',
                  support_resistance: Optional[str] = None,
                  cluster: Optional[ClusterReading] = None) -> SignalSnapshot:
    above, below, at, diff_percent = classify(price, value, timeframe)
    return SignalSnapshot(
        price=price,
        indicator_value=value,
        above_indicator=above,
        below_indicator=below,
        at_indicator=at,
        diff_percent=diff_percent,
        timeframe=timeframe,
        support_resistance=support_resistance,
        cluster=cluster,
    )


def make_cluster(low: float, high: float, price: float, support_resistance: Optional[str] = None) -> ClusterReading:
    mid = (low + high) / 2
    return ClusterReading(
        cluster_min=low,
        cluster_max=high,
        cluster_mid=mid,
        above_cluster=price > high,
        below_cluster=price < low,
        at_cluster=low <= price <= high,
        support_resistance=support_resistance,
    )


class FakeUniverse:
    def __init__(self, symbols: List[str]):
        self.symbols = list(symbols)
        self.calls = 0

    async def get_ranked_symbols(self, limit: int = 100) -> List[str]:
        self.calls += 1
        return self.symbols[:limit]


class FakeFetcher:
    """Rising close series per symbol; symbols in ``failing`` raise UpstreamUnavailableError"""

    def __init__(self, failing=(), start: float = 100.0, step: float = 1.0):
        self.failing = set(failing)
        self.start = start
        self.step = step
        self.requests: List[tuple] = []

    async def get_closes(self, symbol: str, timeframe: str, count: int) -> List[float]:
        self.requests.append((symbol, timeframe, count))
        if symbol in self.failing:
            raise UpstreamUnavailableError(f"No candle data for {symbol} {timeframe}")
        return [self.start + i * self.step for i in range(count)]


class FakeNotifier:
    def __init__(self, succeed: bool = True, error: Optional[Exception] = None):
        self.succeed = succeed
        self.error = error
        self.sent: List[tuple] = []
        self.configured = True

    async def send(self, destination, message: str) -> bool:
        self.sent.append((destination, message))
        if self.error is not None:
            raise self.error
        return self.succeed


class FakeScanner:
    """Serves canned snapshots per symbol"""

    def __init__(self, snapshots: Optional[Dict[str, Dict]] = None, universe: Optional[FakeUniverse] = None):
        self.snapshots = snapshots or {}
        self.universe = universe or FakeUniverse(list(self.snapshots))
        self.failing_symbols = set()

    async def snapshot_many(self, symbols, specs, cluster_timeframes=(), detect_support_resistance=True):
        for symbol in symbols:
            if symbol in self.failing_symbols:
                raise RuntimeError(f"boom {symbol}")
        return {symbol: self.snapshots.get(symbol) for symbol in symbols}


@pytest.fixture
def notifier():
    return FakeNotifier()
