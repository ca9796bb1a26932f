"""
Runs parsed queries over the top-volume symbol universe.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from config import Config
from data_fetcher import DataFetcher, SymbolUniverse, normalize_pair
from exceptions import UpstreamUnavailableError
from indicator_evaluator import required_candles
from query_parser import parse, validate
from signal_matcher import matches
from signal_models import IndicatorSpec, Query, QueryResult, SnapshotMap, cluster_specs
from snapshot_builder import build_snapshots


def position_of(snapshot) -> str:
    """above / below / at / away, checked in that order"""
    if snapshot.above_indicator:
        return 'above'
    if snapshot.below_indicator:
        return 'below'
    if snapshot.at_indicator:
        return 'at'
    return 'away'


def _detail_for(snapshots: SnapshotMap, query: Query) -> Dict[str, Dict]:
    specs = list(query.required_specs())
    for tf in query.cluster_timeframes():
        specs.extend(cluster_specs(tf))
    return {spec.key: snapshots[spec].to_dict() for spec in dict.fromkeys(specs) if spec in snapshots}


def run_query(text_or_query: Union[str, Query],
              symbol_snapshots: Mapping[str, Optional[SnapshotMap]]) -> QueryResult:
    """
    Match every symbol's snapshots against the query.

    Pure: no I/O. Symbols whose snapshots are None never match.
    """
    query = parse(text_or_query) if isinstance(text_or_query, str) else text_or_query
    errors = validate(query)
    if errors:
        return QueryResult(parsed=query, errors=errors, message=f"Could not understand query: {'; '.join(errors)}")

    result = QueryResult(parsed=query, total=len(symbol_snapshots))
    for symbol, snapshots in symbol_snapshots.items():
        if snapshots and matches(snapshots, query):
            result.matched_symbols.append(symbol)
            result.details[symbol] = _detail_for(snapshots, query)

    result.message = f"Found {len(result.matched_symbols)} of {result.total} coins where {query.describe()}"
    return result


def format_scan_result(result: QueryResult, limit: int = 50) -> str:
    if not result.ok:
        return f"❌ {result.message}"
    lines = [f"🔎 {result.message}"]
    for symbol in result.matched_symbols[:limit]:
        details = result.details.get(symbol, {})
        price = next(iter(details.values()), {}).get('price')
        lines.append(f"• {symbol}" + (f"  ${price:,.6g}" if price is not None else ""))
    if len(result.matched_symbols) > limit:
        lines.append(f"... and {len(result.matched_symbols) - limit} more")
    return "\n".join(lines)


class MarketScanner:
    def __init__(self, fetcher: DataFetcher, universe: SymbolUniverse,
                 concurrency: int = Config.CONCURRENT_ANALYSIS_LIMIT,
                 max_symbols: int = Config.MAX_SYMBOLS_TO_SCAN):
        self.fetcher = fetcher
        self.universe = universe
        self.max_symbols = max_symbols
        self._semaphore = asyncio.Semaphore(concurrency)
        self.logger = logging.getLogger(__name__)

    async def _fetch_closes(self, symbol: str, counts: Dict[str, int]) -> Dict[str, List[float]]:
        timeframes = list(counts)
        results = await asyncio.gather(
            *(self.fetcher.get_closes(symbol, tf, counts[tf]) for tf in timeframes),
            return_exceptions=True,
        )
        closes = {}
        for tf, result in zip(timeframes, results):
            if isinstance(result, UpstreamUnavailableError):
                self.logger.debug(f"{symbol} {tf}: {result}")
            elif isinstance(result, Exception):
                self.logger.warning(f"Unexpected error fetching {symbol} {tf}: {result}")
            elif result:
                closes[tf] = result
        return closes

    async def snapshot_symbol(self, symbol: str, specs: Sequence[IndicatorSpec],
                              cluster_timeframes: Iterable[str] = (),
                              detect_support_resistance: bool = True) -> Optional[SnapshotMap]:
        """One candle fetch per timeframe, sized for its largest period. None when nothing evaluated."""
        cluster_timeframes = list(cluster_timeframes)
        counts: Dict[str, int] = {}
        for spec in list(specs) + [s for tf in cluster_timeframes for s in cluster_specs(tf)]:
            counts[spec.timeframe] = max(counts.get(spec.timeframe, 0), required_candles(spec.period))
        if not counts:
            return None

        async with self._semaphore:
            closes = await self._fetch_closes(symbol, counts)
        if not closes:
            return None

        snapshots = build_snapshots(closes, specs, cluster_timeframes, detect_support_resistance, symbol)
        return snapshots or None

    async def snapshot_many(self, symbols: Sequence[str], specs: Sequence[IndicatorSpec],
                            cluster_timeframes: Iterable[str] = (),
                            detect_support_resistance: bool = True) -> Dict[str, Optional[SnapshotMap]]:
        cluster_timeframes = list(cluster_timeframes)
        results = await asyncio.gather(
            *(self.snapshot_symbol(s, specs, cluster_timeframes, detect_support_resistance) for s in symbols),
            return_exceptions=True,
        )
        snapshots: Dict[str, Optional[SnapshotMap]] = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, Exception):
                self.logger.debug(f"Snapshot failed for {symbol}: {result}")
                snapshots[symbol] = None
            else:
                snapshots[symbol] = result
        return snapshots

    async def scan(self, text: str) -> QueryResult:
        query = parse(text)
        errors = validate(query)
        if errors:
            return run_query(query, {})

        symbols = await self.universe.get_ranked_symbols(self.max_symbols)
        if not symbols:
            return QueryResult(parsed=query, errors=['No symbols available'],
                               message='Could not load the symbol list from any exchange')

        self.logger.info(f"🔍 Scanning {len(symbols)} coins: {query.describe()}")
        snapshots = await self.snapshot_many(symbols, query.required_specs(), query.cluster_timeframes(),
                                             query.needs_support_resistance())
        result = run_query(query, snapshots)
        self.logger.info(f"✅ {result.message}")
        return result

    async def lookup_price(self, coin: str) -> Optional[Dict]:
        """Last closed 15m price of a coin"""
        symbol = normalize_pair(coin)
        try:
            candles = await self.fetcher.get_closed_candles(symbol, '15m', 1)
        except UpstreamUnavailableError as e:
            self.logger.warning(f"Price lookup failed for {symbol}: {e}")
            return None
        if not candles:
            return None
        return {'symbol': symbol, 'price': candles[-1].close, 'close_time': candles[-1].close_time}

    async def lookup_indicator_value(self, query: Query) -> Optional[Dict]:
        """Value of each requested indicator for the query's coin"""
        if not query.coin:
            return None
        symbol = normalize_pair(query.coin)
        snapshots = await self.snapshot_symbol(symbol, query.required_specs(), query.cluster_timeframes())
        if not snapshots:
            return None

        values = {}
        for spec in query.required_specs():
            snapshot = snapshots.get(spec)
            if snapshot is None:
                continue
            values[spec.key] = {
                'label': spec.label,
                'value': snapshot.indicator_value,
                'price': snapshot.price,
                'diff_percent': snapshot.diff_percent,
                'position': position_of(snapshot),
            }
        return {'symbol': symbol, 'values': values} if values else None

    async def answer(self, text: str) -> str:
        """Dispatch a free-text question by intent and render a reply"""
        query = parse(text)
        errors = validate(query)
        if errors:
            return f"❌ Could not understand query: {'; '.join(errors)}"

        if query.intent == 'price':
            quote = await self.lookup_price(query.coin)
            if quote is None:
                return f"❌ No price data for {query.coin}"
            return f"💰 {quote['symbol']}: ${quote['price']:,.6g}"

        if query.intent == 'indicator_value':
            reading = await self.lookup_indicator_value(query)
            if reading is None:
                return f"❌ No indicator data for {query.coin}"
            lines = [f"📊 {reading['symbol']}"]
            for item in reading['values'].values():
                lines.append(
                    f"{item['label']}: ${item['value']:,.6g} (price ${item['price']:,.6g}, "
                    f"{item['position']}, {item['diff_percent'] * 100:.2f}%)"
                )
            return "\n".join(lines)

        return format_scan_result(await self.scan(text))
