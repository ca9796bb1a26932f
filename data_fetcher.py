import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import ccxt.async_support as ccxt

from config import Config
from exceptions import UpstreamUnavailableError

TIMEFRAME_MS = {
    '15m': 15 * 60_000,
    '1h': 60 * 60_000,
    '2h': 2 * 60 * 60_000,
    '4h': 4 * 60 * 60_000,
    '12h': 12 * 60 * 60_000,
    '1d': 24 * 60 * 60_000,
    '3d': 3 * 24 * 60 * 60_000,
    '1w': 7 * 24 * 60 * 60_000,
}


@dataclass(frozen=True)
class Candle:
    open_time: int  # ms
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int  # ms
    quote_volume: float


@dataclass(frozen=True)
class RankedSymbol:
    symbol: str        # display / futures id, e.g. 1000PEPEUSDT
    spot_symbol: str   # spot id, e.g. PEPEUSDT
    quote_volume: float
    source: str


def futures_symbol_to_spot(symbol: str) -> str:
    """1000PEPEUSDT -> PEPEUSDT (futures list some coins per 1000 units)"""
    if symbol.startswith('1000'):
        return symbol[4:]
    return symbol


def normalize_pair(coin: str) -> str:
    """btc -> BTCUSDT, BTC/USDT -> BTCUSDT"""
    s = coin.upper().replace('/', '').replace(':USDT', '').strip()
    return s if s.endswith('USDT') else f"{s}USDT"


def to_unified(symbol: str, market: str = 'swap') -> str:
    """BTCUSDT -> BTC/USDT:USDT (swap) or BTC/USDT (spot)"""
    base = symbol[:-4] if symbol.endswith('USDT') else symbol
    return f"{base}/USDT:USDT" if market == 'swap' else f"{base}/USDT"


def from_unified(unified: str) -> str:
    """BTC/USDT:USDT -> BTCUSDT"""
    return unified.split(':')[0].replace('/', '')


def is_tradeable_usdt(symbol: str, excluded_bases: Sequence[str] = Config.EXCLUDED_BASES) -> bool:
    return symbol.endswith('USDT') and not any(symbol.startswith(base) for base in excluded_bases)


def rows_to_closed_candles(rows: Sequence[Sequence[float]], timeframe: str, now_ms: int) -> List[Candle]:
    """ccxt OHLCV rows -> Candles, dropping any candle whose period has not elapsed"""
    interval = TIMEFRAME_MS[timeframe]
    candles = []
    for ts, o, h, l, c, v in (row[:6] for row in rows):
        open_time = int(ts)
        close_time = open_time + interval - 1
        if close_time >= now_ms:
            continue
        candles.append(Candle(
            open_time=open_time,
            open=float(o),
            high=float(h),
            low=float(l),
            close=float(c),
            volume=float(v),
            close_time=close_time,
            # ccxt rows carry base volume only
            quote_volume=float(v) * float(c),
        ))
    return candles


class TickerUniverseProvider:
    """Ranks one exchange market's USDT pairs by 24h quote volume"""

    def __init__(self, name: str, exchange, market: str = 'swap', timeout: float = Config.FETCH_TIMEOUT_SECONDS):
        self.name = name
        self.exchange = exchange
        self.market = market
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    async def fetch_ranked(self, limit: int) -> Optional[List[RankedSymbol]]:
        try:
            tickers = await asyncio.wait_for(self.exchange.fetch_tickers(), timeout=self.timeout)
        except Exception as e:
            self.logger.warning(f"✗ {self.name} tickers failed: {e}")
            return None

        ranked: List[RankedSymbol] = []
        for unified, ticker in (tickers or {}).items():
            is_swap = unified.endswith(':USDT')
            if self.market == 'swap' and not is_swap:
                continue
            if self.market == 'spot' and (':' in unified or not unified.endswith('/USDT')):
                continue
            symbol = from_unified(unified)
            if not is_tradeable_usdt(symbol):
                continue
            quote_volume = ticker.get('quoteVolume')
            if quote_volume is None:
                continue
            ranked.append(RankedSymbol(
                symbol=symbol,
                spot_symbol=futures_symbol_to_spot(symbol) if self.market == 'swap' else symbol,
                quote_volume=float(quote_volume),
                source=self.name,
            ))

        if not ranked:
            return None
        ranked.sort(key=lambda r: r.quote_volume, reverse=True)
        self.logger.info(f"✓ {self.name}: got {min(limit, len(ranked))} coins, top 5: "
                         f"{', '.join(r.symbol for r in ranked[:5])}")
        return ranked[:limit]


class SymbolUniverse:
    """
    Top symbols by 24h volume from the first provider that answers.
    The ranked list is cached for ``ttl_seconds``.
    """

    def __init__(self, providers: Sequence[TickerUniverseProvider],
                 ttl_seconds: float = Config.SYMBOL_CACHE_TTL_SECONDS,
                 max_symbols: int = Config.MAX_SYMBOLS_TO_SCAN,
                 clock: Callable[[], float] = time.monotonic):
        self.providers = list(providers)
        self.ttl_seconds = ttl_seconds
        self.max_symbols = max_symbols
        self._clock = clock
        self._cached: Optional[List[RankedSymbol]] = None
        self._cached_at: Optional[float] = None
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

    def _cache_valid(self) -> bool:
        return (self._cached is not None and self._cached_at is not None
                and self._clock() - self._cached_at < self.ttl_seconds)

    def invalidate(self):
        self._cached = None
        self._cached_at = None
        self.logger.info("Symbol universe cache cleared")

    async def get_ranked(self, limit: int = 100, force_refresh: bool = False) -> List[RankedSymbol]:
        async with self._lock:
            if not force_refresh and self._cache_valid():
                return self._cached[:limit]

            wanted = max(limit, self.max_symbols)
            for provider in self.providers:
                ranked = await provider.fetch_ranked(wanted)
                if ranked:
                    self._cached = ranked
                    self._cached_at = self._clock()
                    return ranked[:limit]

            self.logger.error("All symbol providers failed - no coins available")
            return []

    async def get_ranked_symbols(self, limit: int = 100) -> List[str]:
        return [r.symbol for r in await self.get_ranked(limit)]


class DataFetcher:
    """
    Closed-candle market data from Binance USDT-M futures, falling back to
    Binance spot (with the 1000-prefix stripped) when futures has no answer.
    """

    def __init__(self, futures_exchange=None, spot_exchange=None, bybit_exchange=None,
                 timeout: float = Config.FETCH_TIMEOUT_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.futures = futures_exchange if futures_exchange is not None else ccxt.binanceusdm({'enableRateLimit': True})
        self.spot = spot_exchange if spot_exchange is not None else ccxt.binance({'enableRateLimit': True})
        self.bybit = bybit_exchange if bybit_exchange is not None else ccxt.bybit({
            'enableRateLimit': True,
            'options': {'defaultType': 'swap'},
        })
        self.timeout = timeout
        self._clock = clock
        self.logger = logging.getLogger(__name__)

    def build_universe(self, ttl_seconds: float = Config.SYMBOL_CACHE_TTL_SECONDS) -> SymbolUniverse:
        """Binance futures -> Bybit linear -> Binance spot"""
        return SymbolUniverse([
            TickerUniverseProvider('binance-futures', self.futures, 'swap', self.timeout),
            TickerUniverseProvider('bybit', self.bybit, 'swap', self.timeout),
            TickerUniverseProvider('binance-spot', self.spot, 'spot', self.timeout),
        ], ttl_seconds=ttl_seconds)

    async def get_closed_candles(self, symbol: str, timeframe: str, count: int) -> List[Candle]:
        """
        Up to ``count`` most recent CLOSED candles, oldest first.
        Raises UpstreamUnavailableError when no market answers in time.
        """
        if timeframe not in TIMEFRAME_MS:
            raise ValueError(f"Unsupported timeframe: {timeframe}")

        attempts = [
            (self.futures, to_unified(symbol, 'swap')),
            (self.spot, to_unified(futures_symbol_to_spot(symbol), 'spot')),
        ]
        last_error: Optional[Exception] = None
        for exchange, unified in attempts:
            try:
                # +1 for the candle that is still forming
                rows = await asyncio.wait_for(
                    exchange.fetch_ohlcv(unified, timeframe, None, min(count + 1, 1000)),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError as e:
                last_error = e
                self.logger.debug(f"Timeout fetching {unified} {timeframe}")
                continue
            except Exception as e:
                last_error = e
                self.logger.debug(f"Error fetching {unified} {timeframe}: {e}")
                continue

            if rows:
                candles = rows_to_closed_candles(rows, timeframe, int(self._clock() * 1000))
                return candles[-count:]

        raise UpstreamUnavailableError(f"No candle data for {symbol} {timeframe}") from last_error

    async def get_closes(self, symbol: str, timeframe: str, count: int) -> List[float]:
        return [c.close for c in await self.get_closed_candles(symbol, timeframe, count)]

    async def close(self):
        for exchange in (self.futures, self.spot, self.bybit):
            try:
                await exchange.close()
            except Exception as e:
                self.logger.debug(f"Error closing exchange session: {e}")
