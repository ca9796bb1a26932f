import pytest

from query_parser import default_timeframe, extract_coin, parse, validate
from signal_models import (
    BetweenRelation,
    ComparisonRelation,
    IndicatorSpec,
    OrderRelation,
    PriceBetweenRelation,
    Query,
)


def test_compact_token_with_volume_clause():
    query = parse("4hEMA200 volume>5M")

    assert query.positional is None
    assert query.combinator == 'AND'
    assert len(query.conditions) == 1
    condition = query.conditions[0]
    assert condition.spec == IndicatorSpec('4h', 'ema', 200)
    assert condition.comparison == 'above'
    assert condition.support_resistance is None
    assert validate(query) == []


def test_ascending_order_of_three_indicators():
    query = parse("1d MA100 < EMA200 < MA300")

    relation = query.positional
    assert isinstance(relation, OrderRelation)
    assert relation.indicators == (
        IndicatorSpec('1d', 'ma', 100),
        IndicatorSpec('1d', 'ema', 200),
        IndicatorSpec('1d', 'ma', 300),
    )
    assert relation.direction == 'ascending'
    assert relation.include_price is False
    assert query.conditions == ()
    assert query.intent == 'positioning'


def test_price_between_two_indicators():
    query = parse("price between 4h MA100 and 1d EMA200")

    assert query.positional == PriceBetweenRelation(
        lower=IndicatorSpec('4h', 'ma', 100),
        upper=IndicatorSpec('1d', 'ema', 200),
    )


def test_indicator_between_two_indicators():
    query = parse("4h MA100 between 1d EMA13 and 1d EMA25")

    assert query.positional == BetweenRelation(
        target=IndicatorSpec('4h', 'ma', 100),
        lower=IndicatorSpec('1d', 'ema', 13),
        upper=IndicatorSpec('1d', 'ema', 25),
    )


def test_indicator_compared_to_indicator():
    query = parse("1h EMA200 above 1d MA100")

    assert query.positional == ComparisonRelation(
        target=IndicatorSpec('1h', 'ema', 200),
        reference=IndicatorSpec('1d', 'ma', 100),
        op='above',
    )


def test_positional_indicator_without_timeframe_uses_document_timeframe():
    query = parse("4h MA100 above EMA200")

    assert query.is_positional
    assert query.positional == ComparisonRelation(
        target=IndicatorSpec('4h', 'ma', 100),
        reference=IndicatorSpec('4h', 'ema', 200),
        op='above',
    )


def test_order_relation_rejects_unknown_direction():
    with pytest.raises(ValueError):
        OrderRelation(indicators=(IndicatorSpec('1d', 'ma', 100), IndicatorSpec('1d', 'ema', 200)),
                      direction='sideways')


def test_coins_keyword_keeps_independent_conditions():
    query = parse("show me coins above 1d MA100 and below 4h EMA200")

    assert query.positional is None
    assert query.combinator == 'AND'
    assert [(c.spec, c.comparison) for c in query.conditions] == [
        (IndicatorSpec('1d', 'ma', 100), 'above'),
        (IndicatorSpec('4h', 'ema', 200), 'below'),
    ]
    assert query.describe() == "above 1d MA100 AND below 4h EMA200"


def test_or_combinator():
    query = parse("coins above 1d EMA200 or below 4h MA100")

    assert query.combinator == 'OR'
    assert [c.comparison for c in query.conditions] == ['above', 'below']


def test_trend_expands_to_cluster_with_support_filter():
    query = parse("coins at daily trend as support")

    assert [c.spec for c in query.conditions] == [
        IndicatorSpec('1d', 'ema', 13),
        IndicatorSpec('1d', 'ema', 25),
        IndicatorSpec('1d', 'ema', 32),
    ]
    assert all(c.is_cluster_member and c.cluster_timeframe == '1d' for c in query.conditions)
    assert all(c.comparison == 'at' and c.support_resistance == 'support' for c in query.conditions)
    assert query.cluster_timeframes() == ['1d']
    assert query.describe() == "at 1d Trend (EMA 13/25/32) as support"


def test_support_keyword_forces_at():
    query = parse("coins above 4h EMA200 as support")

    assert query.conditions[0].comparison == 'at'
    assert query.conditions[0].support_resistance == 'support'


def test_resistance_filter_is_global():
    query = parse("coins at 4h EMA200 and at 1d MA100 as resistance")

    assert [c.support_resistance for c in query.conditions] == ['resistance', 'resistance']


def test_less_than_sign_always_means_below():
    query = parse("coins above < 4h EMA200")

    assert query.conditions[0].comparison == 'below'


def test_order_direction_prefers_ascending_when_both_signs_appear():
    query = parse("1d EMA13 > EMA25 < EMA32")

    assert isinstance(query.positional, OrderRelation)
    assert query.positional.direction == 'ascending'


def test_descending_order():
    query = parse("1d EMA13 > EMA25 > EMA32")

    assert query.positional.direction == 'descending'


def test_descending_keyword():
    query = parse("4h EMA13 EMA25 EMA32 descending order")

    assert query.positional.direction == 'descending'


@pytest.mark.parametrize('text,slot', [
    ("price < 1d MA100 < EMA200", 0),
    ("1d MA100 < price < EMA200", 1),
    ("1d MA100 < EMA200 < price", 2),
])
def test_price_slot_in_order(text, slot):
    relation = parse(text).positional

    assert relation.include_price is True
    assert relation.price_position == slot


def test_invalid_period_is_dropped_silently():
    query = parse("coins above 4h EMA50")

    assert query.conditions == ()
    assert validate(query) == ['Could not identify any indicators (EMA/MA)']


def test_unqualified_indicator_inherits_document_timeframe():
    query = parse("coins above EMA200 and below MA100 on 4h")

    assert {c.spec.timeframe for c in query.conditions} == {'4h'}


def test_default_timeframe():
    assert default_timeframe("coins above ema200") == '1d'
    assert default_timeframe("weekly ema200 and 4h ma100") == '1w'
    assert default_timeframe("coins above ema200 on 12h") == '12h'


@pytest.mark.parametrize('text', ["", "   ", "???", "between", "<>< ema", "price between and"])
def test_parse_is_total(text):
    query = parse(text)

    assert isinstance(query, Query)
    assert validate(query)


def test_price_intent_with_coin_name():
    query = parse("what is the price of bitcoin")

    assert query.intent == 'price'
    assert query.coin == 'BTC'
    assert validate(query) == []


def test_indicator_value_intent():
    query = parse("btc 4h ema200")

    assert query.intent == 'indicator_value'
    assert query.coin == 'BTC'
    assert query.conditions[0].spec == IndicatorSpec('4h', 'ema', 200)


def test_price_intent_without_coin_fails_validation():
    assert validate(parse("what is the price")) == ['Could not identify coin for price query']


def test_coin_stop_words_are_not_coins():
    assert extract_coin("SHOW ME COINS ABOVE THE TREND") is None
    assert extract_coin("is SOL above 1d ema200") == 'SOL'


def test_query_rejects_both_shapes():
    spec = IndicatorSpec('4h', 'ema', 200)
    relation = ComparisonRelation(target=spec, reference=IndicatorSpec('1d', 'ma', 100), op='above')

    with pytest.raises(ValueError):
        Query(text='x', conditions=parse("coins above 4h ema200").conditions, positional=relation)


def test_invalid_spec_is_rejected():
    with pytest.raises(ValueError):
        IndicatorSpec('5m', 'ema', 200)
    with pytest.raises(ValueError):
        IndicatorSpec('4h', 'ma', 200)
