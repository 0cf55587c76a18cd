from datetime import datetime, timedelta

from conftest import NOW, make_cart, make_line, make_rule

from quickshop_pricing.engine.models import CustomerContext, EvaluationContext
from quickshop_pricing.engine.rule_normalizer import normalize


def run(rules, cart=None, customer=None, **context_fields):
    cart = cart or make_cart(make_line("l1", 10000))
    context = EvaluationContext(now=NOW, customer=customer, **context_fields)
    return normalize(rules, NOW, customer, cart, context)


def eligible_ids(out):
    return [r.rule_id for r in out.eligible]


def test_valid_automatic_rule_is_eligible():
    out = run([make_rule("A", "percentage", value=10)])
    assert eligible_ids(out) == ["A"]
    assert not out.errors


def test_invalid_rule_is_reported_not_fatal():
    """A malformed rule is skipped with an error; the rest still go through."""
    out = run([
        {"rule_id": "BROKEN", "type": "buy_x_get_y", "buy_quantity": 2},
        {"rule_id": "OK", "type": "percentage", "value": 10},
    ])
    assert eligible_ids(out) == ["OK"]
    assert [(e.rule_id, e.field) for e in out.errors] == [("BROKEN", "get_quantity")]


def test_duplicate_rule_id_keeps_first():
    out = run([make_rule("A", "percentage", value=10), make_rule("A", "percentage", value=50)])
    assert len(out.eligible) == 1
    assert out.eligible[0].params.percent == 10
    assert out.errors[0].field == "rule_id"


def test_inactive_rule_dropped():
    out = run([make_rule("A", "percentage", value=10, active="false")])
    assert out.eligible == []
    assert out.dropped["A"] == "inactive"


def test_active_window():
    start = (NOW + timedelta(days=1)).isoformat()
    out = run([
        make_rule("FUTURE", "percentage", value=10, starts_at=start),
        make_rule("PAST", "percentage", value=10, ends_at="2026-06-14"),
        make_rule("TODAY", "percentage", value=10, ends_at="2026-06-15"),
    ])
    assert eligible_ids(out) == ["TODAY"]
    assert out.dropped["FUTURE"] == "outside active window"
    assert out.dropped["PAST"] == "outside active window"


def test_naive_window_compared_as_utc():
    rule = make_rule("A", "percentage", value=10, starts_at=datetime(2026, 6, 15, 11, 59))
    assert eligible_ids(run([rule])) == ["A"]

    rule = make_rule("B", "percentage", value=10, starts_at=datetime(2026, 6, 15, 12, 1))
    assert eligible_ids(run([rule])) == []


def test_usage_limits():
    rules = [
        make_rule("GLOBAL", "percentage", value=10, max_uses=5),
        make_rule("PER", "percentage", value=10, max_uses_per_customer=1),
    ]
    out = run(rules, usage_counts={"GLOBAL": 5}, customer_usage_counts={"PER": 0})
    assert eligible_ids(out) == ["PER"]
    assert out.dropped["GLOBAL"].startswith("usage limit reached")

    out = run(rules, usage_counts={"GLOBAL": 4}, customer_usage_counts={"PER": 1})
    assert eligible_ids(out) == ["GLOBAL"]


def test_code_rules_need_redemption():
    rule = make_rule("C", "percentage", value=10, code="SAVE10")
    assert eligible_ids(run([rule])) == []
    assert eligible_ids(run([rule], redeemed_codes=(" save10 ",))) == ["C"]
    assert run([rule], redeemed_codes=("OTHER",)).dropped["C"] == "code not redeemed"


def test_audience_filters():
    rules = [
        make_rule("MEMBERS", "free_shipping", members_only=True),
        make_rule("FIRST", "percentage", value=10, first_order_only=True),
        make_rule("VIP", "percentage", value=10, customer_tags="vip;staff"),
        make_rule("GOLD", "percentage", value=10, loyalty_tiers="gold"),
    ]
    assert eligible_ids(run(rules)) == []

    customer = CustomerContext(customer_id="c1", tags=("vip",), loyalty_tier="gold", is_first_order=True, is_member=True)
    assert eligible_ids(run(rules, customer=customer)) == ["MEMBERS", "FIRST", "VIP", "GOLD"]

    guest = CustomerContext(customer_id="c2", tags=("new",), loyalty_tier="silver")
    out = run(rules, customer=guest)
    assert out.dropped == {
        "MEMBERS": "members only",
        "FIRST": "first order only",
        "VIP": "customer tags do not match",
        "GOLD": "loyalty tier does not match",
    }


def test_cart_minimums():
    cart = make_cart(make_line("l1", 3000, 2), make_line("l2", 1000, 1))  # 70.00, 3 items
    rules = [
        make_rule("AMOUNT-OK", "percentage", value=10, minimum_amount=7000),
        make_rule("AMOUNT-LOW", "percentage", value=10, minimum_amount=7001),
        make_rule("QTY-OK", "percentage", value=10, minimum_quantity=3),
        make_rule("QTY-LOW", "percentage", value=10, minimum_quantity=4),
    ]
    out = run(rules, cart=cart)
    assert eligible_ids(out) == ["AMOUNT-OK", "QTY-OK"]
    assert "below minimum" in out.dropped["AMOUNT-LOW"]
    assert "below minimum" in out.dropped["QTY-LOW"]


def test_drop_trace_is_recorded():
    out = run([make_rule("A", "percentage", value=10, active=False)])
    assert out.trace[0].step == "Rule Dropped"
    assert "A: inactive" in out.trace[0].description
