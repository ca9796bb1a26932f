"""
Applies a parsed Query to one symbol's snapshots.
"""

from typing import List, Optional

from signal_models import (
    BetweenRelation,
    ComparisonRelation,
    IndicatorCondition,
    OrderRelation,
    PositionalRelationship,
    PriceBetweenRelation,
    Query,
    SignalSnapshot,
    SnapshotMap,
)


def condition_matches(snapshot: Optional[SignalSnapshot], condition: IndicatorCondition) -> bool:
    if snapshot is None:
        return False

    if condition.is_cluster_member and snapshot.cluster is not None:
        cluster = snapshot.cluster
        if condition.comparison == 'above':
            hit = cluster.above_cluster
        elif condition.comparison == 'below':
            hit = cluster.below_cluster
        else:
            hit = cluster.at_cluster
        if not hit:
            return False
        if condition.support_resistance:
            return condition.support_resistance in (cluster.support_resistance, snapshot.support_resistance)
        return True

    if condition.comparison == 'above':
        hit = snapshot.above_indicator
    elif condition.comparison == 'below':
        hit = snapshot.below_indicator
    else:
        hit = snapshot.at_indicator
    if not hit:
        return False
    if condition.support_resistance:
        return snapshot.support_resistance == condition.support_resistance
    return True


def _order_matches(values: List[float], price: Optional[float], relation: OrderRelation) -> bool:
    ascending = relation.direction == 'ascending'
    for current, following in zip(values, values[1:]):
        if ascending and current >= following:
            return False
        if not ascending and current <= following:
            return False

    if not relation.include_price:
        return True
    if price is None:
        return False

    def inside(a: float, b: float) -> bool:
        # strictly between two neighbours in listed order
        return a < price < b if ascending else a > price > b

    position = relation.price_position
    if position == 0:
        return price < values[0] if ascending else price > values[0]
    if position == len(values):
        return price > values[-1] if ascending else price < values[-1]
    if position is not None:
        return inside(values[position - 1], values[position])
    return any(inside(a, b) for a, b in zip(values, values[1:]))


def positional_matches(snapshots: SnapshotMap, relation: PositionalRelationship) -> bool:
    specs = relation.specs()
    if any(spec not in snapshots for spec in specs):
        return False

    if isinstance(relation, ComparisonRelation):
        target = snapshots[relation.target].indicator_value
        reference = snapshots[relation.reference].indicator_value
        return target > reference if relation.op == 'above' else target < reference

    if isinstance(relation, BetweenRelation):
        target = snapshots[relation.target].indicator_value
        bounds = (snapshots[relation.lower].indicator_value, snapshots[relation.upper].indicator_value)
        return min(bounds) <= target <= max(bounds)

    if isinstance(relation, PriceBetweenRelation):
        lower = snapshots[relation.lower]
        price = lower.price
        bounds = (lower.indicator_value, snapshots[relation.upper].indicator_value)
        return min(bounds) <= price <= max(bounds)

    if isinstance(relation, OrderRelation):
        values = [snapshots[spec].indicator_value for spec in relation.indicators]
        price = snapshots[relation.indicators[0]].price
        return _order_matches(values, price, relation)

    return False


def matches(snapshots: Optional[SnapshotMap], query: Query) -> bool:
    """True when the symbol satisfies the query. Missing data never raises."""
    if not snapshots:
        return False

    if query.is_positional:
        return positional_matches(snapshots, query.positional)

    if not query.conditions:
        return False

    results = (condition_matches(snapshots.get(cond.spec), cond) for cond in query.conditions)
    if query.combinator == 'OR':
        return any(results)
    return all(results)
