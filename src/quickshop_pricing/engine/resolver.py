"""
Combination Resolver - Decides which discounts combine and produces the final price.

Resolution order:
1. Rank candidates: priority (lower first), automatic before code,
   larger standalone amount, then rule id
2. Walk the ranking; drop a candidate that shares a line with an accepted
   discount when either of the two is exclusive
3. Apply accepted discounts one after another on the running line totals
4. Clamp every line adjustment at the line's running total
"""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .applicator import apply
from .models import (
    AppliedDiscount,
    CartSnapshot,
    DiscountRule,
    EvaluationContext,
    LineAdjustment,
    PricedLine,
    PricingResult,
)
from .rule_matcher import LineMatch
from .rule_parser import format_amount

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """An eligible rule with its match and its effect on the original prices."""
    rule: DiscountRule
    match: LineMatch
    standalone: AppliedDiscount


def precedence_key(candidate: Candidate) -> tuple:
    rule = candidate.rule
    return (
        rule.priority,
        0 if rule.is_automatic else 1,
        -candidate.standalone.amount,
        rule.rule_id,
    )


def _conflicts(a: Candidate, b: Candidate) -> set[str]:
    if a.rule.stackable and b.rule.stackable:
        return set()
    return a.standalone.touched_line_ids & b.standalone.touched_line_ids


def resolve_exclusivity(candidates: Sequence[Candidate]) -> tuple[list[Candidate], list[tuple[Candidate, Candidate]]]:
    """
    Split candidates into (accepted, dropped) in precedence order.

    Each dropped entry is (loser, winner).
    """
    accepted: list[Candidate] = []
    dropped: list[tuple[Candidate, Candidate]] = []
    for candidate in sorted(candidates, key=precedence_key):
        winner = next((a for a in accepted if _conflicts(candidate, a)), None)
        if winner is not None:
            dropped.append((candidate, winner))
        else:
            accepted.append(candidate)
    return accepted, dropped


def _clamp(effect: AppliedDiscount, running: list[int], index_of: dict[str, int]) -> None:
    """Cut adjustments down to the running totals and update them in place."""
    kept = []
    clamped = 0
    for adj in effect.adjustments:
        i = index_of[adj.line_id]
        take = min(adj.amount, running[i])
        clamped += adj.amount - take
        if take > 0:
            running[i] -= take
            kept.append(LineAdjustment(line_id=adj.line_id, amount=take))

    effect.adjustments = kept
    effect.clamped_amount += clamped
    effect.amount = sum(adj.amount for adj in kept)

    taken = {adj.line_id: adj.amount for adj in kept}
    grants = []
    for grant in effect.free_items:
        if grant.line_id in taken:
            grant.amount = taken[grant.line_id]
            grants.append(grant)
    effect.free_items = grants


def combine(
    candidates: Sequence[Candidate],
    cart: CartSnapshot,
    context: Optional[EvaluationContext] = None,
    result: Optional[PricingResult] = None,
) -> PricingResult:
    """Resolve stacking and exclusivity and price the cart."""
    result = result or PricingResult(currency=cart.currency, subtotal=cart.subtotal)
    shipping_amount = context.shipping_amount if context else 0

    # Zero-effect rules take no part in exclusivity
    live = []
    for c in candidates:
        if c.standalone.has_effect:
            live.append(c)
        else:
            result.add_trace("No Effect", f"{c.rule.rule_id} matched nothing it can discount")

    accepted, dropped = resolve_exclusivity(live)
    for loser, winner in dropped:
        shared = ", ".join(sorted(_conflicts(loser, winner)))
        result.add_trace(
            "Exclusive Conflict",
            f"{loser.rule.rule_id} dropped in favour of {winner.rule.rule_id} on lines {shared}",
        )
        logger.debug("Discount %s dropped, conflicts with %s", loser.rule.rule_id, winner.rule.rule_id)

    index_of = {line.line_id: i for i, line in enumerate(cart.lines)}
    running = [line.original_total for line in cart.lines]
    rules_per_line: list[list[str]] = [[] for _ in cart.lines]
    touched_by: list[list[Candidate]] = [[] for _ in cart.lines]

    for candidate in accepted:
        # A line held by an exclusive discount is off limits, and an exclusive
        # discount cannot land on a line another discount already touched.
        view = list(running)
        for i, holders in enumerate(touched_by):
            if any(not (h.rule.stackable and candidate.rule.stackable) for h in holders):
                view[i] = 0

        effect = apply(candidate.rule, candidate.match, cart, view)
        _clamp(effect, running, index_of)

        if effect.clamped_amount:
            result.add_trace(
                "Clamped",
                f"{candidate.rule.rule_id} limited to keep lines at or above zero",
                format_amount(effect.clamped_amount),
            )

        if not effect.has_effect:
            result.add_trace("No Effect", f"{candidate.rule.rule_id} has nothing left to discount")
            continue

        for adj in effect.adjustments:
            i = index_of[adj.line_id]
            rules_per_line[i].append(effect.rule_id)
            touched_by[i].append(candidate)

        result.applied_discounts.append(effect)
        result.free_shipping = result.free_shipping or effect.free_shipping
        result.add_trace(
            "Discount Applied",
            f"{effect.rule_id} ({effect.kind.value}) {effect.description}",
            format_amount(effect.amount),
        )

    for i, line in enumerate(cart.lines):
        result.lines.append(PricedLine(
            line_id=line.line_id,
            product_id=line.product_id,
            variant_id=line.variant_id,
            name=line.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            original_total=line.original_total,
            final_total=running[i],
            applied_rule_ids=rules_per_line[i],
        ))

    result.discount_total = sum(d.amount for d in result.applied_discounts)
    result.final_subtotal = sum(running)
    result.shipping_amount = shipping_amount
    result.shipping_total = 0 if result.free_shipping else shipping_amount
    result.grand_total = result.final_subtotal + result.shipping_total
    result.add_trace("Total", "Subtotal after discounts", format_amount(result.final_subtotal))
    return result
