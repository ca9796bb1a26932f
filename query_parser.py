"""
Free-text query interpreter for MA/EMA screening.

Handles a bounded grammar of trading shorthand, e.g.
    "4hEMA200 volume>5M"
    "show me coins above 1d MA100 and below 4h EMA200"
    "coins at daily trend as support"
    "4h MA100 between 1d EMA13 and 1d EMA25"
    "price between 4h MA100 and 1d EMA200"
    "1d MA100 < EMA200 < MA300"
    "1h EMA200 above 1d MA100"

parse() never raises; validate() lists what is missing.
"""

import re
from typing import List, Optional, Tuple

from signal_models import (
    TIMEFRAMES,
    BetweenRelation,
    ComparisonRelation,
    IndicatorCondition,
    IndicatorSpec,
    OrderRelation,
    PositionalRelationship,
    PriceBetweenRelation,
    Query,
    cluster_specs,
    valid_periods,
)

DEFAULT_TIMEFRAME = '1d'
TIMEFRAME_ALIASES = {'daily': '1d', 'hourly': '1h', 'weekly': '1w'}

_TF = r"\d+[mhdw]|daily|hourly|weekly"
INDICATOR_PATTERN = re.compile(rf"(?:({_TF})\s*)?(ema|ma)\s*(\d+)", re.IGNORECASE)
INDICATOR_MENTION = re.compile(r"(ema|ma)\s*\d+", re.IGNORECASE)
TIMEFRAME_TOKEN = re.compile(rf"(?<![a-z0-9])({_TF})", re.IGNORECASE)
TREND_PATTERN = re.compile(rf"(?:({_TF})\s+)?trend", re.IGNORECASE)

COIN_ALIASES = {
    'BITCOIN': 'BTC',
    'ETHEREUM': 'ETH',
    'BINANCE': 'BNB',
    'SOLANA': 'SOL',
    'RIPPLE': 'XRP',
    'CARDANO': 'ADA',
    'DOGECOIN': 'DOGE',
    'POLYGON': 'MATIC',
    'POLKADOT': 'DOT',
    'AVALANCHE': 'AVAX',
    'CHAINLINK': 'LINK',
    'LITECOIN': 'LTC',
}
COIN_PATTERN = re.compile(r"\b([A-Z]{2,5})(?=[\s?!.,]|$|USDT)")
# Words of the query grammar that look like tickers
COIN_STOP_WORDS = {
    'EMA', 'MA', 'PRICE', 'VOLUME', 'ABOVE', 'BELOW', 'OVER', 'UNDER', 'WHAT', 'WHATS', 'THE', 'OF',
    'FOR', 'IS', 'ARE', 'SHOW', 'ME', 'FIND', 'LIST', 'COIN', 'COINS', 'USDT', 'AND', 'OR', 'AT', 'AS',
    'IN', 'ON', 'WHERE', 'WITH', 'ALL', 'ANY', 'TREND', 'DAILY', 'WEEKLY', 'ORDER', 'VALUE', 'COST',
    'WORTH', 'NOW', 'TOP',
}


# ---------------------------------------------------------------------------
# Token helpers
# ---------------------------------------------------------------------------

def normalize_timeframe(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    token = token.lower()
    token = TIMEFRAME_ALIASES.get(token, token)
    return token if token in TIMEFRAMES else None


def default_timeframe(text: str) -> str:
    """First valid timeframe code or alias in the text, else 1d"""
    for match in TIMEFRAME_TOKEN.finditer(text.lower()):
        timeframe = normalize_timeframe(match.group(1))
        if timeframe:
            return timeframe
    return DEFAULT_TIMEFRAME


def extract_indicators(text: str) -> List[Tuple[Optional[str], str, int]]:
    """
    (timeframe or None, kind, period) per indicator mention, in text order.
    Periods outside the valid set for the kind are dropped.
    """
    found = []
    for match in INDICATOR_PATTERN.finditer(text.lower()):
        timeframe = normalize_timeframe(match.group(1))
        kind = match.group(2).lower()
        period = int(match.group(3))
        if period not in valid_periods(kind):
            continue
        found.append((timeframe, kind, period))
    return found


def extract_support_resistance(text: str) -> Optional[str]:
    lowered = text.lower()
    if re.search(r"\bsupport\b", lowered):
        return 'support'
    if re.search(r"\bresistance\b", lowered):
        return 'resistance'
    return None


def detect_combinator(text: str) -> str:
    return 'OR' if re.search(r"\bor\b", text, re.IGNORECASE) else 'AND'


def extract_coin(text: str) -> Optional[str]:
    upper = text.upper()
    for alias, symbol in COIN_ALIASES.items():
        if alias in upper:
            return symbol
    for match in COIN_PATTERN.finditer(upper):
        candidate = match.group(1)
        if candidate not in COIN_STOP_WORDS:
            return candidate
    return None


# ---------------------------------------------------------------------------
# Positional relationships
# ---------------------------------------------------------------------------

def detect_positioning(text: str) -> Optional[str]:
    lowered = text.lower()
    if re.search(r"\bbetween\b", lowered):
        return 'between'

    has_order_keywords = re.search(r"\b(ascending|descending|order)\b", lowered) is not None
    has_order_symbols = '<' in lowered or '>' in lowered
    has_multiple = len(INDICATOR_MENTION.findall(lowered)) >= 2

    if (has_order_keywords or has_order_symbols) and has_multiple:
        return 'order'

    no_coins_keyword = re.search(r"\b(coins?|show|find|list)\b", lowered) is None
    has_comparison = re.search(r"\b(above|below|over|under)\b", lowered) is not None
    if has_multiple and no_coins_keyword and has_comparison:
        return 'comparison'

    return None


def detect_price_position(text: str, num_indicators: int, direction: str = 'ascending') -> Optional[int]:
    """
    Slot price occupies in an order query, counted in the query's own
    operator ('<' for ascending, '>' for descending). None = any interior gap.
    """
    lowered = text.lower()
    price_index = lowered.find('price')
    if price_index == -1:
        return None

    op = '<' if direction == 'ascending' else '>'
    before_count = lowered[:price_index].count(op)
    after_count = lowered[price_index:].count(op)

    if re.search(rf"price\s*{op}", lowered) and before_count == 0:
        return 0
    if re.search(rf"{op}\s*price", lowered) and after_count == 0:
        return num_indicators
    if before_count > 0:
        return before_count
    return None


def _order_direction(text: str) -> str:
    # '<' / "ascending" take precedence over '>' / "descending"
    ascending = re.search(r"\bascending\b", text) is not None or '<' in text
    descending = re.search(r"\bdescending\b", text) is not None or '>' in text
    return 'descending' if descending and not ascending else 'ascending'


def parse_positional(text: str, fallback_timeframe: Optional[str] = None) -> Optional[PositionalRelationship]:
    lowered = text.lower()
    positioning = detect_positioning(lowered)
    if positioning is None:
        return None

    fallback = fallback_timeframe or default_timeframe(lowered)
    specs = [IndicatorSpec(tf or fallback, kind, period) for tf, kind, period in extract_indicators(lowered)]
    includes_price = re.search(r"\bprice\b", lowered) is not None

    if positioning == 'between':
        if includes_price and len(specs) >= 2:
            return PriceBetweenRelation(lower=specs[0], upper=specs[1])
        if len(specs) >= 3:
            return BetweenRelation(target=specs[0], lower=specs[1], upper=specs[2])
        return None

    if positioning == 'order' and len(specs) >= 2:
        direction = _order_direction(lowered)
        return OrderRelation(
            indicators=tuple(specs),
            direction=direction,
            include_price=includes_price,
            price_position=detect_price_position(lowered, len(specs), direction) if includes_price else None,
        )

    if positioning == 'comparison' and len(specs) >= 2:
        op = 'above' if re.search(r"\b(above|over)\b", lowered) else 'below'
        return ComparisonRelation(target=specs[0], reference=specs[1], op=op)

    return None


# ---------------------------------------------------------------------------
# Independent conditions
# ---------------------------------------------------------------------------

def _part_comparison(part: str) -> str:
    if '<' in part:
        return 'below'
    if re.search(r"\bbelow\b", part):
        return 'below'
    if re.search(r"\bat\b", part):
        return 'at'
    return 'above'


def _trend_comparison(part: str) -> str:
    if re.search(r"\bbelow\b", part):
        return 'below'
    if re.search(r"\bat\b", part):
        return 'at'
    return 'above'


def extract_conditions(text: str, combinator: Optional[str] = None,
                       fallback_timeframe: Optional[str] = None) -> List[IndicatorCondition]:
    combinator = combinator or detect_combinator(text)
    fallback = fallback_timeframe or default_timeframe(text)
    separator = r"\s+or\s+" if combinator == 'OR' else r"\s+and\s+"
    sr_filter = extract_support_resistance(text)

    conditions: List[IndicatorCondition] = []
    for part in re.split(separator, text, flags=re.IGNORECASE):
        lowered = part.lower()

        trend = TREND_PATTERN.search(lowered)
        if trend:
            timeframe = normalize_timeframe(trend.group(1)) or fallback
            comparison = _trend_comparison(lowered)
            if sr_filter and comparison == 'above':
                comparison = 'at'
            for spec in cluster_specs(timeframe):
                conditions.append(IndicatorCondition(
                    spec=spec,
                    comparison=comparison,
                    support_resistance=sr_filter,
                    is_cluster_member=True,
                    cluster_timeframe=timeframe,
                ))
            continue

        comparison = _part_comparison(lowered)
        if sr_filter and comparison == 'above':
            comparison = 'at'
        for timeframe, kind, period in extract_indicators(lowered):
            conditions.append(IndicatorCondition(
                spec=IndicatorSpec(timeframe or fallback, kind, period),
                comparison=comparison,
                support_resistance=sr_filter,
            ))

    return conditions


def detect_intent(text: str, coin: Optional[str]) -> str:
    lowered = text.lower()
    mentions_indicator = (INDICATOR_MENTION.search(lowered) is not None
                          or re.search(r"\b(ema|ma)\b", lowered) is not None)
    scan_words = re.search(r"\b(show|find|list|coins?)\b", lowered) is not None

    if mentions_indicator and coin and not scan_words:
        return 'indicator_value'
    if re.search(r"\b(price|cost|value|worth)\b", lowered) and not mentions_indicator:
        return 'price'
    return 'scan'


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def parse(text: str) -> Query:
    text = (text or '').strip()
    fallback = default_timeframe(text)

    positional = parse_positional(text, fallback)
    if positional is not None:
        return Query(text=text, intent='positioning', positional=positional)

    combinator = detect_combinator(text)
    coin = extract_coin(text)
    return Query(
        text=text,
        intent=detect_intent(text, coin),
        conditions=tuple(extract_conditions(text, combinator, fallback)),
        combinator=combinator,
        coin=coin,
    )


def validate(query: Query) -> List[str]:
    errors: List[str] = []
    positional = query.positional

    if query.intent == 'price' and not query.coin:
        errors.append('Could not identify coin for price query')

    if query.intent == 'indicator_value':
        if not query.coin:
            errors.append('Could not identify coin')
        if not query.conditions:
            errors.append('Could not identify indicator (EMA/MA)')

    if query.intent == 'positioning':
        if positional is None:
            errors.append('Could not parse indicator positioning query')
        elif isinstance(positional, BetweenRelation):
            if not (positional.target and positional.lower and positional.upper):
                errors.append('Between query requires target and two bounds')
        elif isinstance(positional, PriceBetweenRelation):
            if not (positional.lower and positional.upper):
                errors.append('Price between query requires two indicators')
        elif isinstance(positional, OrderRelation):
            if len(positional.indicators) < 2:
                errors.append('Order query requires at least 2 indicators')
        elif isinstance(positional, ComparisonRelation):
            if not (positional.target and positional.reference):
                errors.append('Comparison query requires target and reference indicators')

    if query.intent == 'scan' and not query.conditions:
        errors.append('Could not identify any indicators (EMA/MA)')

    return errors
