"""
Rule Normalizer - Filters the raw rule set down to the rules eligible right now.

Pure filter: no side effects, no persistence. Usage counters come from the
caller. A malformed rule is reported and skipped; it never aborts the run.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence, Union

from .errors import RuleValidationError
from .models import (
    CartSnapshot,
    CustomerContext,
    DiscountRule,
    EvaluationContext,
    TraceStep,
    normalize_code,
)
from .rule_parser import parse_rule, validate_rule

logger = logging.getLogger(__name__)

RuleInput = Union[DiscountRule, dict]


@dataclass
class NormalizedRules:
    """Outcome of normalization: eligible rules plus what was dropped and why."""
    eligible: list[DiscountRule] = field(default_factory=list)
    errors: list[RuleValidationError] = field(default_factory=list)
    dropped: dict[str, str] = field(default_factory=dict)  # rule_id -> reason
    trace: list[TraceStep] = field(default_factory=list)

    def drop(self, rule: DiscountRule, reason: str):
        self.dropped[rule.rule_id] = reason
        self.trace.append(TraceStep("Rule Dropped", f"{rule.rule_id}: {reason}"))
        logger.debug("Rule %s dropped: %s", rule.rule_id, reason)


def comparable(moment: datetime, reference: datetime) -> datetime:
    """Naive datetimes are taken as UTC when compared with aware ones."""
    if (moment.tzinfo is None) == (reference.tzinfo is None):
        return moment
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def in_window(rule: DiscountRule, now: datetime) -> bool:
    """True if `now` falls inside the rule's [starts_at, ends_at] window."""
    if rule.starts_at is not None and now < comparable(rule.starts_at, now):
        return False
    if rule.ends_at is not None and now > comparable(rule.ends_at, now):
        return False
    return True


def usage_exhausted(rule: DiscountRule, context: EvaluationContext) -> Optional[str]:
    """Return a reason if a global or per-customer usage limit is used up."""
    limits = rule.usage
    if limits.max_uses is not None:
        used = context.usage_counts.get(rule.rule_id, 0)
        if used >= limits.max_uses:
            return f"usage limit reached ({used}/{limits.max_uses})"
    if limits.max_uses_per_customer is not None:
        used = context.customer_usage_counts.get(rule.rule_id, 0)
        if used >= limits.max_uses_per_customer:
            return f"per-customer limit reached ({used}/{limits.max_uses_per_customer})"
    return None


def audience_mismatch(rule: DiscountRule, customer: Optional[CustomerContext]) -> Optional[str]:
    """Return a reason if the customer is outside the rule's audience."""
    audience = rule.audience
    if audience.members_only and not (customer and customer.is_member):
        return "members only"
    if audience.first_order_only and not (customer and customer.is_first_order):
        return "first order only"
    if audience.customer_tags:
        tags = set(customer.tags) if customer else set()
        if not tags.intersection(audience.customer_tags):
            return "customer tags do not match"
    if audience.loyalty_tiers:
        tier = customer.loyalty_tier if customer else None
        if tier not in audience.loyalty_tiers:
            return "loyalty tier does not match"
    return None


def _coerce(raw: RuleInput) -> DiscountRule:
    rule = raw if isinstance(raw, DiscountRule) else parse_rule(raw)
    return validate_rule(rule)


def normalize(
    rules: Sequence[RuleInput],
    now: datetime,
    customer: Optional[CustomerContext],
    cart: CartSnapshot,
    context: Optional[EvaluationContext] = None,
) -> NormalizedRules:
    """
    Filter `rules` to those eligible for this cart at `now`.

    Drop order: malformed, inactive, outside window, usage exhausted,
    code not redeemed, audience mismatch, cart minimums unmet.
    """
    context = context or EvaluationContext(now=now, customer=customer)
    codes = context.normalized_codes()
    subtotal = cart.subtotal
    item_count = cart.item_count

    out = NormalizedRules()
    seen: set[str] = set()

    for raw in rules:
        try:
            rule = _coerce(raw)
        except RuleValidationError as e:
            out.errors.append(e)
            out.trace.append(TraceStep("Rule Invalid", str(e)))
            logger.warning("Skipping invalid discount rule: %s", e)
            continue

        if rule.rule_id in seen:
            err = RuleValidationError(rule.rule_id, "rule_id", "duplicate rule id, later definition ignored")
            out.errors.append(err)
            out.trace.append(TraceStep("Rule Invalid", str(err)))
            logger.warning("Skipping invalid discount rule: %s", err)
            continue
        seen.add(rule.rule_id)

        if not rule.active:
            out.drop(rule, "inactive")
            continue

        if not in_window(rule, now):
            out.drop(rule, "outside active window")
            continue

        reason = usage_exhausted(rule, context)
        if reason:
            out.drop(rule, reason)
            continue

        if rule.code is not None and normalize_code(rule.code) not in codes:
            out.drop(rule, "code not redeemed")
            continue

        reason = audience_mismatch(rule, customer)
        if reason:
            out.drop(rule, reason)
            continue

        if rule.minimum_amount is not None and subtotal < rule.minimum_amount:
            out.drop(rule, f"cart subtotal {subtotal} below minimum {rule.minimum_amount}")
            continue

        if rule.minimum_quantity is not None and item_count < rule.minimum_quantity:
            out.drop(rule, f"cart item count {item_count} below minimum {rule.minimum_quantity}")
            continue

        out.eligible.append(rule)
        out.trace.append(TraceStep("Rule Eligible", rule.rule_id, rule.kind.value))

    return out
