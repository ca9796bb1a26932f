"""
Signal data models for the crypto MA/EMA screener and alert bot
"""

from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Tuple, Union

TIMEFRAMES = ('15m', '1h', '2h', '4h', '12h', '1d', '3d', '1w')
MA_PERIODS = (100, 300)
EMA_PERIODS = (13, 25, 32, 200)
CLUSTER_PERIODS = (13, 25, 32)  # "trend" = EMA 13/25/32 zone

COMPARISONS = ('above', 'below', 'at')
SR_FILTERS = ('support', 'resistance')
COMBINATORS = ('AND', 'OR')
ORDER_DIRECTIONS = ('ascending', 'descending')


def valid_periods(kind: str) -> Tuple[int, ...]:
    return EMA_PERIODS if kind == 'ema' else MA_PERIODS


@dataclass(frozen=True)
class IndicatorSpec:
    """One moving average on one timeframe, e.g. 4h EMA200"""
    timeframe: str
    kind: str  # "ma" or "ema"
    period: int

    def __post_init__(self):
        if self.timeframe not in TIMEFRAMES:
            raise ValueError(f"Invalid timeframe: {self.timeframe}")
        if self.kind not in ('ma', 'ema'):
            raise ValueError(f"Unknown indicator type: {self.kind}")
        if self.period not in valid_periods(self.kind):
            raise ValueError(f"Invalid {self.kind.upper()} period: {self.period}")

    @property
    def key(self) -> str:
        return f"{self.timeframe}_{self.kind}{self.period}"

    @property
    def label(self) -> str:
        return f"{self.timeframe} {self.kind.upper()}{self.period}"


def cluster_specs(timeframe: str) -> List[IndicatorSpec]:
    return [IndicatorSpec(timeframe, 'ema', period) for period in CLUSTER_PERIODS]


@dataclass(frozen=True)
class IndicatorCondition:
    """Price compared against one indicator (or a trend cluster member)"""
    spec: IndicatorSpec
    comparison: str = 'above'
    support_resistance: Optional[str] = None
    is_cluster_member: bool = False
    cluster_timeframe: Optional[str] = None

    def describe(self) -> str:
        if self.is_cluster_member:
            text = f"{self.comparison} {self.cluster_timeframe} Trend (EMA 13/25/32)"
        else:
            text = f"{self.comparison} {self.spec.label}"
        if self.support_resistance:
            text += f" as {self.support_resistance}"
        return text


# ---------------------------------------------------------------------------
# Positional relationships (indicator vs indicator / price)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ComparisonRelation:
    kind: ClassVar[str] = 'comparison'
    target: IndicatorSpec
    reference: IndicatorSpec
    op: str  # "above" or "below"

    def specs(self) -> List[IndicatorSpec]:
        return [self.target, self.reference]

    def describe(self) -> str:
        return f"{self.target.label} is {self.op} {self.reference.label}"


@dataclass(frozen=True)
class BetweenRelation:
    kind: ClassVar[str] = 'between'
    target: IndicatorSpec
    lower: IndicatorSpec
    upper: IndicatorSpec

    def specs(self) -> List[IndicatorSpec]:
        return [self.target, self.lower, self.upper]

    def describe(self) -> str:
        return f"{self.target.label} is between {self.lower.label} and {self.upper.label}"


@dataclass(frozen=True)
class PriceBetweenRelation:
    kind: ClassVar[str] = 'price_between'
    lower: IndicatorSpec
    upper: IndicatorSpec

    def specs(self) -> List[IndicatorSpec]:
        return [self.lower, self.upper]

    def describe(self) -> str:
        return f"price is between {self.lower.label} and {self.upper.label}"


@dataclass(frozen=True)
class OrderRelation:
    """
    Strictly monotonic ordering of indicator values.

    price_position is the slot price must occupy when include_price is set:
    0 = before the first indicator, len(indicators) = after the last,
    k = between indicators k-1 and k, None = any interior gap.
    """
    kind: ClassVar[str] = 'order'
    indicators: Tuple[IndicatorSpec, ...]
    direction: str = 'ascending'
    include_price: bool = False
    price_position: Optional[int] = None

    def __post_init__(self):
        if self.direction not in ORDER_DIRECTIONS:
            raise ValueError(f"Invalid order direction: {self.direction}")

    def specs(self) -> List[IndicatorSpec]:
        return list(self.indicators)

    def describe(self) -> str:
        joiner = ' < ' if self.direction == 'ascending' else ' > '
        order_str = joiner.join(spec.label for spec in self.indicators)
        if self.include_price:
            return f"{order_str} with price in {self.direction} order"
        return f"{order_str} ({self.direction} order)"


PositionalRelationship = Union[ComparisonRelation, BetweenRelation, PriceBetweenRelation, OrderRelation]


@dataclass(frozen=True)
class Query:
    """
    Parsed free-text query.

    Either independent conditions (combined with AND/OR) or a single
    positional relationship, never both.
    """
    text: str
    intent: str = 'scan'  # scan | positioning | indicator_value | price
    conditions: Tuple[IndicatorCondition, ...] = ()
    combinator: str = 'AND'
    positional: Optional[PositionalRelationship] = None
    coin: Optional[str] = None

    def __post_init__(self):
        if self.positional is not None and self.conditions:
            raise ValueError("Query cannot mix positional relationship and independent conditions")
        if self.combinator not in COMBINATORS:
            raise ValueError(f"Invalid combinator: {self.combinator}")

    @property
    def is_positional(self) -> bool:
        return self.positional is not None

    def required_specs(self) -> List[IndicatorSpec]:
        specs = self.positional.specs() if self.is_positional else [c.spec for c in self.conditions]
        return list(dict.fromkeys(specs))

    def cluster_timeframes(self) -> List[str]:
        return list(dict.fromkeys(
            c.cluster_timeframe for c in self.conditions if c.is_cluster_member and c.cluster_timeframe
        ))

    def needs_support_resistance(self) -> bool:
        return any(c.comparison == 'at' or c.support_resistance for c in self.conditions)

    def describe(self) -> str:
        if self.is_positional:
            return self.positional.describe()
        parts: List[str] = []
        seen_clusters = set()
        for cond in self.conditions:
            if cond.is_cluster_member:
                # one entry per cluster instead of three EMA lines
                if cond.cluster_timeframe in seen_clusters:
                    continue
                seen_clusters.add(cond.cluster_timeframe)
            parts.append(cond.describe())
        return f" {self.combinator} ".join(parts)


# ---------------------------------------------------------------------------
# Evaluated readings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClusterReading:
    """Price position against the EMA 13/25/32 zone of one timeframe"""
    cluster_min: float
    cluster_max: float
    cluster_mid: float
    above_cluster: bool
    below_cluster: bool
    at_cluster: bool
    support_resistance: Optional[str] = None


@dataclass(frozen=True)
class SignalSnapshot:
    """Latest closed-candle reading of price against one indicator"""
    price: float
    indicator_value: float
    above_indicator: bool
    below_indicator: bool
    at_indicator: bool
    diff_percent: float
    timeframe: str
    support_resistance: Optional[str] = None
    cluster: Optional[ClusterReading] = None

    def to_dict(self) -> Dict:
        data = {
            'price': self.price,
            'indicator_value': self.indicator_value,
            'above_indicator': self.above_indicator,
            'below_indicator': self.below_indicator,
            'at_indicator': self.at_indicator,
            'diff_percent': self.diff_percent,
            'timeframe': self.timeframe,
            'support_resistance': self.support_resistance,
        }
        if self.cluster is not None:
            data.update({
                'cluster_min': self.cluster.cluster_min,
                'cluster_max': self.cluster.cluster_max,
                'cluster_mid': self.cluster.cluster_mid,
                'above_cluster': self.cluster.above_cluster,
                'below_cluster': self.cluster.below_cluster,
                'at_cluster': self.cluster.at_cluster,
                'cluster_support_resistance': self.cluster.support_resistance,
            })
        return data


SnapshotMap = Dict[IndicatorSpec, SignalSnapshot]


@dataclass
class QueryResult:
    """Outcome of running a query over a batch of symbol snapshots"""
    parsed: Query
    matched_symbols: List[str] = field(default_factory=list)
    details: Dict[str, Dict[str, Dict]] = field(default_factory=dict)
    total: int = 0
    errors: List[str] = field(default_factory=list)
    message: str = ''

    @property
    def ok(self) -> bool:
        return not self.errors
