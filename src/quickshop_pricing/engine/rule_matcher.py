"""
Rule Matcher - Resolves a rule's targeting to the cart lines it applies to.

Used by the discount engine before applying each rule. A rule that matches
nothing is not an error; it simply has no effect.
"""
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .models import AppliesTo, CartLine, DiscountRule, Targeting


@dataclass
class LineMatch:
    """Cart lines selected by a rule, in cart order."""
    indices: list[int] = field(default_factory=list)
    matched_quantity: int = 0
    reasons: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.indices


def line_matches(line: CartLine, targeting: Targeting) -> Optional[str]:
    """
    Check a single line against a targeting block.

    Returns the match reason, or None if the line is not selected.
    """
    categories = set(line.category_ids)

    # Exclusions first
    if line.product_id in targeting.exclude_product_ids:
        return None
    if categories.intersection(targeting.exclude_category_ids):
        return None

    if targeting.applies_to is AppliesTo.ALL:
        return "all products"

    if targeting.applies_to is AppliesTo.PRODUCTS:
        if line.product_id in targeting.product_ids:
            return f"product={line.product_id}"
        return None

    if targeting.applies_to is AppliesTo.VARIANTS:
        if line.variant_id is not None and line.variant_id in targeting.variant_ids:
            return f"variant={line.variant_id}"
        return None

    if targeting.applies_to is AppliesTo.CATEGORIES:
        shared = sorted(categories.intersection(targeting.category_ids))
        if shared:
            return f"category={','.join(shared)}"
        return None

    raise ValueError(f"Unknown targeting mode: {targeting.applies_to!r}")


def match_lines(
    rule: DiscountRule,
    lines: Sequence[CartLine],
    targeting: Optional[Targeting] = None,
) -> LineMatch:
    """
    Find the cart lines `rule` applies to.

    `targeting` overrides the rule's own targeting (used for the "get" side
    of buy_x_get_y).
    """
    targeting = targeting or rule.targeting
    match = LineMatch()
    for i, line in enumerate(lines):
        reason = line_matches(line, targeting)
        if reason is None:
            continue
        match.indices.append(i)
        match.matched_quantity += line.quantity
        match.reasons.append(f"{line.line_id}: {reason}")
    return match
