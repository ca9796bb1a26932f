import asyncio

import pytest

from data_fetcher import (
    TIMEFRAME_MS,
    DataFetcher,
    RankedSymbol,
    SymbolUniverse,
    TickerUniverseProvider,
    futures_symbol_to_spot,
    normalize_pair,
    rows_to_closed_candles,
    to_unified,
)
from exceptions import UpstreamUnavailableError

NOW_MS = 1_700_000_000_000
FIFTEEN = TIMEFRAME_MS['15m']


def ohlcv_rows(n, interval=FIFTEEN, now_ms=NOW_MS):
    # last row is the candle still forming at now_ms
    first_open = (now_ms // interval) * interval - (n - 1) * interval
    return [[first_open + i * interval, 1.0, 2.0, 0.5, 100.0 + i, 10.0] for i in range(n)]


class FakeExchange:
    def __init__(self, rows=None, tickers=None, error=None, delay=0.0):
        self.rows = rows
        self.tickers = tickers
        self.error = error
        self.delay = delay
        self.ohlcv_calls = []
        self.ticker_calls = 0
        self.closed = False

    async def fetch_ohlcv(self, symbol, timeframe, since=None, limit=None):
        self.ohlcv_calls.append((symbol, timeframe, limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.rows

    async def fetch_tickers(self):
        self.ticker_calls += 1
        if self.error:
            raise self.error
        return self.tickers

    async def close(self):
        self.closed = True


def make_fetcher(futures, spot=None, timeout=1.0):
    return DataFetcher(
        futures_exchange=futures,
        spot_exchange=spot or FakeExchange(error=RuntimeError('spot down')),
        bybit_exchange=FakeExchange(),
        timeout=timeout,
        clock=lambda: NOW_MS / 1000,
    )


def test_symbol_helpers():
    assert futures_symbol_to_spot('1000PEPEUSDT') == 'PEPEUSDT'
    assert futures_symbol_to_spot('BTCUSDT') == 'BTCUSDT'
    assert normalize_pair('btc') == 'BTCUSDT'
    assert normalize_pair('ETH/USDT') == 'ETHUSDT'
    assert to_unified('BTCUSDT') == 'BTC/USDT:USDT'
    assert to_unified('BTCUSDT', 'spot') == 'BTC/USDT'


def test_forming_candle_is_dropped():
    candles = rows_to_closed_candles(ohlcv_rows(5), '15m', NOW_MS)

    assert len(candles) == 4
    assert all(c.close_time < NOW_MS for c in candles)
    assert candles[-1].close == 103.0
    assert candles[-1].quote_volume == pytest.approx(1030.0)


def test_get_closed_candles_requests_one_extra():
    futures = FakeExchange(rows=ohlcv_rows(11))
    fetcher = make_fetcher(futures)

    candles = asyncio.run(fetcher.get_closed_candles('BTCUSDT', '15m', 10))

    assert futures.ohlcv_calls == [('BTC/USDT:USDT', '15m', 11)]
    assert len(candles) == 10
    assert candles[0].open_time < candles[-1].open_time


def test_falls_back_to_spot_without_1000_prefix():
    futures = FakeExchange(error=RuntimeError('symbol not found'))
    spot = FakeExchange(rows=ohlcv_rows(6))
    fetcher = make_fetcher(futures, spot)

    closes = asyncio.run(fetcher.get_closes('1000PEPEUSDT', '15m', 5))

    assert spot.ohlcv_calls[0][0] == 'PEPE/USDT'
    assert closes == [100.0, 101.0, 102.0, 103.0, 104.0]


def test_timeout_falls_back_then_raises():
    futures = FakeExchange(rows=ohlcv_rows(6), delay=1.0)
    fetcher = make_fetcher(futures, timeout=0.01)

    with pytest.raises(UpstreamUnavailableError):
        asyncio.run(fetcher.get_closed_candles('BTCUSDT', '15m', 5))


def test_close_closes_every_exchange():
    futures, spot = FakeExchange(), FakeExchange()
    fetcher = DataFetcher(futures_exchange=futures, spot_exchange=spot, bybit_exchange=FakeExchange())

    asyncio.run(fetcher.close())

    assert futures.closed and spot.closed and fetcher.bybit.closed


TICKERS = {
    'BTC/USDT:USDT': {'quoteVolume': 5e9},
    'ETH/USDT:USDT': {'quoteVolume': 3e9},
    '1000PEPE/USDT:USDT': {'quoteVolume': 1e9},
    'USDC/USDT:USDT': {'quoteVolume': 9e9},
    'BTC/USD:BTC': {'quoteVolume': 8e9},
    'SOL/USDT': {'quoteVolume': 7e9},
    'DOGE/USDT:USDT': {'quoteVolume': None},
}


def test_provider_ranks_usdt_swaps_by_volume():
    provider = TickerUniverseProvider('binance-futures', FakeExchange(tickers=TICKERS), 'swap')

    ranked = asyncio.run(provider.fetch_ranked(10))

    assert [r.symbol for r in ranked] == ['BTCUSDT', 'ETHUSDT', '1000PEPEUSDT']
    assert ranked[2].spot_symbol == 'PEPEUSDT'
    assert all(r.source == 'binance-futures' for r in ranked)


def test_spot_provider_only_takes_spot_pairs():
    provider = TickerUniverseProvider('binance-spot', FakeExchange(tickers=TICKERS), 'spot')

    ranked = asyncio.run(provider.fetch_ranked(10))

    assert [r.symbol for r in ranked] == ['SOLUSDT']


def test_provider_failure_returns_none():
    provider = TickerUniverseProvider('bybit', FakeExchange(error=RuntimeError('451')), 'swap')

    assert asyncio.run(provider.fetch_ranked(10)) is None


class StaticProvider:
    def __init__(self, name, symbols):
        self.name = name
        self.symbols = symbols
        self.calls = 0

    async def fetch_ranked(self, limit):
        self.calls += 1
        if self.symbols is None:
            return None
        return [RankedSymbol(s, s, 1.0, self.name) for s in self.symbols][:limit]


def test_universe_falls_through_to_next_provider():
    down = StaticProvider('binance-futures', None)
    bybit = StaticProvider('bybit', ['BTCUSDT', 'ETHUSDT'])
    spot = StaticProvider('binance-spot', ['XRPUSDT'])
    universe = SymbolUniverse([down, bybit, spot])

    ranked = asyncio.run(universe.get_ranked(10))

    assert [r.source for r in ranked] == ['bybit', 'bybit']
    assert spot.calls == 0


def test_universe_caches_until_ttl_or_invalidate():
    now = [0.0]
    provider = StaticProvider('binance-futures', ['BTCUSDT', 'ETHUSDT', 'SOLUSDT'])
    universe = SymbolUniverse([provider], ttl_seconds=300, clock=lambda: now[0])

    async def scenario():
        first = await universe.get_ranked_symbols(2)
        now[0] = 100
        second = await universe.get_ranked_symbols(3)
        calls_before_expiry = provider.calls
        now[0] = 401
        await universe.get_ranked_symbols(3)
        calls_after_expiry = provider.calls
        universe.invalidate()
        await universe.get_ranked_symbols(3)
        return first, second, calls_before_expiry, calls_after_expiry

    first, second, before, after = asyncio.run(scenario())

    assert first == ['BTCUSDT', 'ETHUSDT']
    assert second == ['BTCUSDT', 'ETHUSDT', 'SOLUSDT']
    assert before == 1
    assert after == 2
    assert provider.calls == 3


def test_universe_all_providers_failing_is_empty():
    universe = SymbolUniverse([StaticProvider('a', None), StaticProvider('b', None)])

    assert asyncio.run(universe.get_ranked_symbols(10)) == []
