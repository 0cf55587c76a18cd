"""
Discount Applicator - Computes the monetary effect of one rule on the cart.

Every function here works on the *running* line totals handed in by the
resolver, never on the caller's cart. Amounts are integer minor units and
the line adjustments of a result always add up to its amount exactly.
"""
from collections import defaultdict
from typing import Optional, Sequence, assert_never

from .models import (
    AppliedDiscount,
    BuyXGetYParams,
    BuyXPayYParams,
    CartSnapshot,
    DiscountRule,
    FixedAmountParams,
    FreeItemGrant,
    FreeShippingParams,
    LineAdjustment,
    PercentageParams,
    QuantityDiscountParams,
    QuantityTier,
    SpendXPayYParams,
)
from .money import allocate, percent_of, scale, split_evenly, to_decimal
from .rule_matcher import LineMatch, match_lines
from .rule_parser import describe_rule


def _percentage(match: LineMatch, running: Sequence[int], percent) -> dict[int, int]:
    # Rounded per line, independently
    return {i: min(running[i], percent_of(running[i], percent)) for i in match.indices}


def _proportional(
    amount: int, match: LineMatch, weights: Sequence[int], running: Sequence[int]
) -> dict[int, int]:
    """Spread `amount` over matched lines by `weights`, capped at running totals."""
    caps = [running[i] for i in match.indices]
    return dict(zip(match.indices, allocate(amount, weights, caps)))


def _fixed_amount(
    params: FixedAmountParams, match: LineMatch, cart: CartSnapshot, running: Sequence[int]
) -> tuple[dict[int, int], int]:
    """Returns (amount per line, requested amount)."""
    if match.is_empty:
        return {}, 0
    amount = params.amount * match.matched_quantity if params.per_unit else params.amount
    # A line capped at its running total drops the excess; other lines keep their share
    weights = [cart.lines[i].original_total for i in match.indices]
    return _proportional(amount, match, weights, running), amount


def _units(match: LineMatch, cart: CartSnapshot, running: Sequence[int]) -> list[tuple[int, int]]:
    """Expand matched lines into (line index, unit value) pairs, in cart order."""
    units = []
    for i in match.indices:
        for value in split_evenly(running[i], cart.lines[i].quantity):
            units.append((i, value))
    return units


def _buy_x_pay_y(
    params: BuyXPayYParams, match: LineMatch, cart: CartSnapshot, running: Sequence[int]
) -> dict[int, int]:
    block_size = params.buy_quantity
    units = _units(match, cart, running)
    amounts: dict[int, int] = defaultdict(int)

    # Full blocks only; a trailing partial block pays full price
    for start in range(0, len(units) - block_size + 1, block_size):
        block = units[start:start + block_size]
        block_value = sum(value for _, value in block)
        if params.pay_amount is not None:
            discount = max(0, block_value - params.pay_amount)
        else:
            discount = block_value - scale(block_value, params.pay_quantity, block_size)
        if discount <= 0:
            continue

        per_line: dict[int, int] = {}
        for i, value in block:
            per_line[i] = per_line.get(i, 0) + value
        indices = list(per_line)
        values = [per_line[i] for i in indices]
        for i, share in zip(indices, allocate(discount, values, values)):
            amounts[i] += share

    return dict(amounts)


def _buy_x_get_y(
    rule: DiscountRule,
    params: BuyXGetYParams,
    match: LineMatch,
    cart: CartSnapshot,
    running: Sequence[int],
) -> tuple[dict[int, int], dict[int, int]]:
    """Returns (amount per line, free units per line)."""
    free_units = (match.matched_quantity // params.buy_quantity) * params.get_quantity
    if free_units <= 0:
        return {}, {}

    get_match = match_lines(rule, cart.lines, params.get_targeting) if params.get_targeting else match

    # Cheapest unit first; cart order breaks ties. Units already at zero are skipped.
    pool = []
    for i in get_match.indices:
        for value in split_evenly(running[i], cart.lines[i].quantity):
            if value > 0:
                pool.append((value, i))
    pool.sort()
    chosen = pool[:free_units]

    value_per_line: dict[int, int] = defaultdict(int)
    units_per_line: dict[int, int] = defaultdict(int)
    for value, i in chosen:
        value_per_line[i] += value
        units_per_line[i] += 1

    amounts = {
        i: min(running[i], percent_of(value, params.get_discount_percent))
        for i, value in value_per_line.items()
    }
    return amounts, dict(units_per_line)


def select_tier(tiers: Sequence[QuantityTier], quantity: int) -> Optional[QuantityTier]:
    """Highest tier whose threshold `quantity` meets, or None."""
    for tier in sorted(tiers, key=lambda t: t.min_quantity, reverse=True):
        if quantity >= tier.min_quantity:
            return tier
    return None


def _spend_x_pay_y(
    params: SpendXPayYParams, match: LineMatch, cart: CartSnapshot, running: Sequence[int]
) -> dict[int, int]:
    matched_subtotal = sum(running[i] for i in match.indices)
    if matched_subtotal < params.spend_amount:
        return {}
    # Weighted by running totals; no share exceeds its line
    weights = [running[i] for i in match.indices]
    return _proportional(matched_subtotal - params.pay_amount, match, weights, running)


def apply(
    rule: DiscountRule,
    match: LineMatch,
    cart: CartSnapshot,
    running: Optional[Sequence[int]] = None,
) -> AppliedDiscount:
    """
    Compute the effect of `rule` on the matched lines.

    `running` holds the current line totals (index-aligned with cart.lines);
    it defaults to the original totals. Rules with nothing to act on return
    a zero-effect AppliedDiscount.
    """
    if running is None:
        running = [line.original_total for line in cart.lines]

    result = AppliedDiscount(
        rule_id=rule.rule_id,
        kind=rule.kind,
        code=rule.code,
        title=rule.title,
        description=describe_rule(rule),
    )

    params = rule.params
    free_units: dict[int, int] = {}

    if isinstance(params, PercentageParams):
        amounts = _percentage(match, running, params.percent)
    elif isinstance(params, FixedAmountParams):
        amounts, requested = _fixed_amount(params, match, cart, running)
        result.clamped_amount = requested - sum(amounts.values())
    elif isinstance(params, FreeShippingParams):
        result.free_shipping = True
        amounts = {}
    elif isinstance(params, BuyXPayYParams):
        amounts = _buy_x_pay_y(params, match, cart, running)
    elif isinstance(params, BuyXGetYParams):
        amounts, free_units = _buy_x_get_y(rule, params, match, cart, running)
    elif isinstance(params, QuantityDiscountParams):
        tier = select_tier(params.tiers, match.matched_quantity)
        if tier is None:
            amounts = {}
        else:
            amounts = _percentage(match, running, tier.percent)
            pct = format(to_decimal(tier.percent).normalize(), "f")
            result.description = f"Buy {tier.min_quantity}+ get {pct}% off"
    elif isinstance(params, SpendXPayYParams):
        amounts = _spend_x_pay_y(params, match, cart, running)
    else:
        assert_never(params)

    for i in sorted(amounts):
        amount = amounts[i]
        if amount <= 0:
            continue
        line = cart.lines[i]
        result.adjustments.append(LineAdjustment(line_id=line.line_id, amount=amount))
        if i in free_units:
            result.free_items.append(FreeItemGrant(
                line_id=line.line_id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                quantity=free_units[i],
                amount=amount,
            ))
    result.amount = sum(adj.amount for adj in result.adjustments)
    return result
