"""
Discount Engine - Prices a cart against the store's discount rules.

Pipeline:
1. Validate the cart snapshot (corrupt input is fatal)
2. Normalize rules: drop malformed, inactive, expired, exhausted,
   unredeemed-code, wrong-audience and below-minimum rules
3. Match each eligible rule to cart lines
4. Compute each rule's standalone effect on the original prices
5. Resolve exclusivity and stack the survivors on running prices

The whole pipeline is a pure function of (cart, rules, context): no I/O,
no globals, and the caller's objects are never mutated.
"""
import logging
from typing import Optional, Sequence

from ..config.settings import Settings
from .applicator import apply
from .errors import InvalidCartError
from .models import CartSnapshot, EvaluationContext, PricingResult
from .resolver import Candidate, combine
from .rule_matcher import match_lines
from .rule_normalizer import RuleInput, normalize

logger = logging.getLogger(__name__)


def validate_cart(cart: CartSnapshot) -> None:
    """Raise InvalidCartError if any line is structurally invalid."""
    if not cart.currency or not str(cart.currency).strip():
        raise InvalidCartError("currency code is required")

    seen = set()
    for line in cart.lines:
        if not line.line_id:
            raise InvalidCartError("line id is required")
        if line.line_id in seen:
            raise InvalidCartError("duplicate line id", line.line_id)
        seen.add(line.line_id)

        if isinstance(line.unit_price, bool) or not isinstance(line.unit_price, int):
            raise InvalidCartError("unit price must be an integer amount of minor units", line.line_id)
        if line.unit_price < 0:
            raise InvalidCartError(f"negative unit price {line.unit_price}", line.line_id)
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int):
            raise InvalidCartError("quantity must be an integer", line.line_id)
        if line.quantity <= 0:
            raise InvalidCartError(f"quantity must be positive, got {line.quantity}", line.line_id)


def calculate_pricing(
    cart: CartSnapshot,
    rules: Sequence[RuleInput],
    context: EvaluationContext,
) -> PricingResult:
    """
    Price `cart` against `rules`.

    Args:
        cart: Immutable cart snapshot (minor units)
        rules: DiscountRule objects or raw definition dicts, in any order
        context: now, redeemed codes, customer, usage counts, shipping

    Returns:
        PricingResult with per-line prices, applied discounts, warnings and trace

    Raises:
        InvalidCartError: the cart cannot be priced
    """
    validate_cart(cart)

    customer = context.customer or cart.customer
    result = PricingResult(currency=cart.currency, subtotal=cart.subtotal)
    result.add_trace("Cart", f"{len(cart.lines)} lines, {cart.item_count} items", str(cart.subtotal))

    normalized = normalize(rules, context.now, customer, cart, context)
    result.trace.extend(normalized.trace)
    result.validation_errors.extend(normalized.errors)
    for err in normalized.errors:
        result.add_warning(str(err))

    candidates = []
    for rule in normalized.eligible:
        match = match_lines(rule, cart.lines)
        if match.reasons:
            result.add_trace("Rule Match", f"{rule.rule_id} matched {match.matched_quantity} units", "; ".join(match.reasons))
        else:
            result.add_trace("Rule Match", f"{rule.rule_id} matched no lines")
        candidates.append(Candidate(rule=rule, match=match, standalone=apply(rule, match, cart)))

    combine(candidates, cart, context, result)

    logger.debug(
        "Priced cart: subtotal=%s discount=%s rules=%s applied=%s",
        result.subtotal, result.discount_total, len(rules), len(result.applied_discounts),
    )
    return result


class DiscountEngine:
    """
    Holds the store's current rule definitions and prices carts against them.

    The rule list is replaced wholesale on reload and never mutated, so one
    instance can serve concurrent requests.
    """

    def __init__(self, rules: Sequence[RuleInput] = (), settings: Optional[Settings] = None):
        self.settings = settings
        self.rules: tuple[RuleInput, ...] = tuple(rules)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DiscountEngine":
        """Load the compiled rule set named in settings (empty if not compiled yet)."""
        from ..rules.compile_rules import load_compiled_rules

        return cls(rules=load_compiled_rules(settings.compiled_rules), settings=settings)

    def reload_data(self):
        """Re-read compiled rules from disk."""
        if self.settings is None:
            return
        from ..rules.compile_rules import load_compiled_rules

        self.rules = tuple(load_compiled_rules(self.settings.compiled_rules))
        logger.info("Reloaded %d discount rules", len(self.rules))

    def calculate(
        self,
        cart: CartSnapshot,
        context: EvaluationContext,
        rules: Optional[Sequence[RuleInput]] = None,
    ) -> PricingResult:
        """Calculate discounts with full traceability; `rules` overrides the loaded set."""
        return calculate_pricing(cart, self.rules if rules is None else rules, context)
