"""Effect of each discount kind on its own, against original prices."""
from conftest import make_cart, make_line, make_rule

from quickshop_pricing.engine.applicator import apply, select_tier
from quickshop_pricing.engine.models import DiscountKind
from quickshop_pricing.engine.rule_matcher import match_lines
from quickshop_pricing.engine.rule_parser import parse_rule


def effect(rule, cart, running=None):
    return apply(rule, match_lines(rule, cart.lines), cart, running)


def by_line(discount):
    return {adj.line_id: adj.amount for adj in discount.adjustments}


def test_percentage_rounds_each_line():
    cart = make_cart(make_line("l1", 333), make_line("l2", 335))
    result = effect(make_rule("P", "percentage", value=10), cart)
    assert by_line(result) == {"l1": 33, "l2": 34}
    assert result.amount == 67
    assert result.kind is DiscountKind.PERCENTAGE
    assert result.description == "10% off"


def test_percentage_uses_running_totals():
    cart = make_cart(make_line("l1", 10000))
    result = effect(make_rule("P", "percentage", value=50), cart, running=[5000])
    assert result.amount == 2500


def test_fixed_amount_remainder_goes_to_first_line():
    """10.00 off three equal lines: 3.34 / 3.33 / 3.33."""
    cart = make_cart(make_line("l1", 1000), make_line("l2", 1000), make_line("l3", 1000))
    result = effect(make_rule("F", "fixed_amount", value=1000), cart)
    assert by_line(result) == {"l1": 334, "l2": 333, "l3": 333}


def test_fixed_amount_capped_at_matched_subtotal():
    cart = make_cart(make_line("l1", 300), make_line("l2", 200))
    result = effect(make_rule("F", "fixed_amount", value=1000), cart)
    assert by_line(result) == {"l1": 300, "l2": 200}
    assert result.amount == 500
    assert result.clamped_amount == 500


def test_fixed_amount_per_unit():
    cart = make_cart(make_line("l1", 1000, 2), make_line("l2", 500, 1))
    result = effect(make_rule("F", "fixed_amount", value=100, per_unit=True), cart)
    assert result.amount == 300
    assert by_line(result) == {"l1": 240, "l2": 60}


def test_buy_x_pay_y_full_blocks_only():
    """4 units of 10.00 on 3-for-2: one block, the 4th unit pays full price."""
    cart = make_cart(make_line("l1", 1000, 4))
    result = effect(make_rule("B", "buy_x_pay_y", buy_quantity=3, pay_quantity=2), cart)
    assert result.amount == 1000

    short = make_cart(make_line("l1", 1000, 2))
    assert effect(make_rule("B", "buy_x_pay_y", buy_quantity=3, pay_quantity=2), short).amount == 0


def test_buy_x_pay_y_block_spans_lines():
    cart = make_cart(make_line("l1", 1200, 1), make_line("l2", 600, 2))
    result = effect(make_rule("B", "buy_x_pay_y", buy_quantity=3, pay_quantity=2), cart)
    # Block value 24.00, pays 16.00; split by unit value
    assert result.amount == 800
    assert by_line(result) == {"l1": 400, "l2": 400}


def test_buy_x_pay_y_fixed_block_price():
    cart = make_cart(make_line("l1", 1000, 5))
    result = effect(make_rule("B", "buy_x_pay_y", buy_quantity=2, pay_amount=1500), cart)
    assert result.amount == 1000  # two blocks of 5.00 off
    assert result.description == "Buy 2 for 15.00"


def test_buy_x_get_y_counts_free_units_per_full_set():
    """5 units on buy-2-get-1: two full sets, two free units."""
    cart = make_cart(make_line("l1", 1000, 5))
    result = effect(make_rule("G", "buy_x_get_y", buy_quantity=2, get_quantity=1), cart)
    assert result.amount == 2000
    assert [(g.line_id, g.quantity, g.amount) for g in result.free_items] == [("l1", 2, 2000)]


def test_buy_x_get_y_frees_cheapest_units():
    cart = make_cart(make_line("l1", 1000, 2), make_line("l2", 400, 1))
    result = effect(make_rule("G", "buy_x_get_y", buy_quantity=2, get_quantity=1), cart)
    assert by_line(result) == {"l2": 400}

    half = effect(make_rule("G", "buy_x_get_y", buy_quantity=2, get_quantity=1, get_discount_percent=50), cart)
    assert by_line(half) == {"l2": 200}
    assert half.free_items[0].quantity == 1


def test_buy_x_get_y_reward_from_other_lines():
    cart = make_cart(
        make_line("shirt", 5000, 2, categories=("apparel",)),
        make_line("socks", 1500, 3, categories=("socks",)),
    )
    rule = make_rule("G", "buy_x_get_y", buy_quantity=2, get_quantity=1, category_ids="apparel", get_category_ids="socks")
    result = effect(rule, cart)
    assert by_line(result) == {"socks": 1500}


def test_buy_x_get_y_bounded_by_reward_units():
    cart = make_cart(
        make_line("shirt", 5000, 6, categories=("apparel",)),
        make_line("socks", 1500, 1, categories=("socks",)),
    )
    rule = make_rule("G", "buy_x_get_y", buy_quantity=2, get_quantity=1, category_ids="apparel", get_category_ids="socks")
    assert effect(rule, cart).amount == 1500


def test_quantity_discount_picks_highest_tier():
    rule = make_rule("Q", "quantity_discount", quantity_tiers="2:5;4:10")
    three = effect(rule, make_cart(make_line("l1", 1000, 3)))
    four = effect(rule, make_cart(make_line("l1", 1000, 4)))
    one = effect(rule, make_cart(make_line("l1", 1000, 1)))

    assert three.amount == 150
    assert four.amount == 400
    assert four.description == "Buy 4+ get 10% off"
    assert one.amount == 0
    assert not one.has_effect


def test_select_tier():
    tiers = parse_rule({"rule_id": "Q", "type": "quantity_discount", "quantity_tiers": "5:15;2:5"}).params.tiers
    assert select_tier(tiers, 1) is None
    assert select_tier(tiers, 4).min_quantity == 2
    assert select_tier(tiers, 9).min_quantity == 5


def test_spend_x_pay_y():
    """Spend 200.00, pay 150.00: 180.00 gets nothing, 220.00 gets 70.00 off."""
    rule = make_rule("S", "spend_x_pay_y", spend_amount=20000, pay_amount=15000)
    assert effect(rule, make_cart(make_line("l1", 18000))).amount == 0

    result = effect(rule, make_cart(make_line("l1", 12000), make_line("l2", 10000)))
    assert result.amount == 7000
    assert sum(by_line(result).values()) == 7000


def test_free_shipping_has_effect_without_amount():
    result = effect(make_rule("FS", "free_shipping"), make_cart(make_line("l1", 1000)))
    assert result.free_shipping
    assert result.amount == 0
    assert result.has_effect
    assert result.adjustments == []


def test_no_matched_lines_means_no_effect():
    cart = make_cart(make_line("l1", 1000, categories=("home",)))
    result = effect(make_rule("P", "percentage", value=10, category_ids="apparel"), cart)
    assert result.amount == 0
    assert not result.has_effect
