"""
Rule Parser - Converts raw discount definitions into engine rules and validates them.

Raw definitions are flat dicts as stored by the admin settings (and as written
by the rule compiler). Parsing is strict about types; validation is strict about
the kind-specific parameters each discount needs.
"""
from datetime import datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from .errors import RuleValidationError
from .models import (
    AppliesTo,
    Audience,
    BuyXGetYParams,
    BuyXPayYParams,
    DiscountKind,
    DiscountRule,
    FixedAmountParams,
    FreeShippingParams,
    PercentageParams,
    QuantityDiscountParams,
    QuantityTier,
    SpendXPayYParams,
    Targeting,
    UsageLimits,
)
from .money import to_decimal

UNKNOWN_RULE_ID = "<unknown>"

# Older exports used singular names
_APPLIES_TO_ALIASES = {
    "all": AppliesTo.ALL,
    "member": AppliesTo.ALL,  # membership is an audience concern, see parse_rule
    "product": AppliesTo.PRODUCTS,
    "products": AppliesTo.PRODUCTS,
    "variant": AppliesTo.VARIANTS,
    "variants": AppliesTo.VARIANTS,
    "category": AppliesTo.CATEGORIES,
    "categories": AppliesTo.CATEGORIES,
}


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _parse_int(rule_id: str, raw: dict, key: str) -> Optional[int]:
    value = raw.get(key)
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise RuleValidationError(rule_id, key, f"'{key}' must be an integer")
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise RuleValidationError(rule_id, key, f"'{key}' must be an integer")
    if number != number.to_integral_value():
        raise RuleValidationError(rule_id, key, f"'{key}' must be a whole number of minor units")
    return int(number)


def _parse_decimal(rule_id: str, raw: dict, key: str) -> Optional[Decimal]:
    value = raw.get(key)
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise RuleValidationError(rule_id, key, f"'{key}' must be a number")
    try:
        return to_decimal(value.strip() if isinstance(value, str) else value)
    except InvalidOperation:
        raise RuleValidationError(rule_id, key, f"'{key}' must be a number")


def _parse_bool(raw: dict, key: str, default: bool) -> bool:
    value = raw.get(key)
    if _is_blank(value):
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def _parse_ids(rule_id: str, raw: dict, key: str) -> tuple[str, ...]:
    value = raw.get(key)
    if _is_blank(value):
        return ()
    if isinstance(value, str):
        value = value.split(";")
    elif not isinstance(value, (list, tuple, set, frozenset)):
        raise RuleValidationError(rule_id, key, f"'{key}' must be a list of ids or a ;-separated string")
    return tuple(str(v).strip() for v in value if not _is_blank(v))


def _parse_datetime(rule_id: str, raw: dict, key: str, end_of_day: bool = False) -> Optional[datetime]:
    value = raw.get(key)
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise RuleValidationError(rule_id, key, f"'{key}' must be an ISO date or datetime")
    # A bare date as an end bound covers the whole day
    if end_of_day and len(text) == 10:
        parsed = datetime.combine(parsed.date(), time.max)
    return parsed


def _parse_tiers(rule_id: str, raw: dict) -> tuple[QuantityTier, ...]:
    value = raw.get("quantity_tiers")
    if _is_blank(value):
        return ()
    if isinstance(value, str):
        # "2:10;3:20" as written in the rules CSV
        entries = []
        for chunk in value.split(";"):
            if not chunk.strip():
                continue
            qty, _, pct = chunk.partition(":")
            entries.append({"min_quantity": qty, "percent": pct})
        value = entries
    elif not isinstance(value, (list, tuple)):
        raise RuleValidationError(rule_id, "quantity_tiers", "'quantity_tiers' must be a list of tiers")

    tiers = []
    for entry in value:
        if not isinstance(entry, dict):
            raise RuleValidationError(rule_id, "quantity_tiers", "each tier must have min_quantity and percent")
        min_qty = _parse_int(rule_id, entry, "min_quantity")
        percent = _parse_decimal(rule_id, entry, "percent")
        if min_qty is None or percent is None:
            raise RuleValidationError(rule_id, "quantity_tiers", "each tier must have min_quantity and percent")
        tiers.append(QuantityTier(min_quantity=min_qty, percent=percent))
    return tuple(tiers)


def _parse_targeting(rule_id: str, raw: dict, prefix: str = "") -> Targeting:
    applies_raw = str(raw.get(f"{prefix}applies_to") or "").strip().lower()
    applies_to = _APPLIES_TO_ALIASES.get(applies_raw)
    if applies_to is None:
        # Infer from whichever id list is filled in
        if _parse_ids(rule_id, raw, f"{prefix}variant_ids"):
            applies_to = AppliesTo.VARIANTS
        elif _parse_ids(rule_id, raw, f"{prefix}product_ids"):
            applies_to = AppliesTo.PRODUCTS
        elif _parse_ids(rule_id, raw, f"{prefix}category_ids"):
            applies_to = AppliesTo.CATEGORIES
        else:
            applies_to = AppliesTo.ALL
    return Targeting(
        applies_to=applies_to,
        product_ids=_parse_ids(rule_id, raw, f"{prefix}product_ids"),
        variant_ids=_parse_ids(rule_id, raw, f"{prefix}variant_ids"),
        category_ids=_parse_ids(rule_id, raw, f"{prefix}category_ids"),
        exclude_product_ids=_parse_ids(rule_id, raw, f"{prefix}exclude_product_ids"),
        exclude_category_ids=_parse_ids(rule_id, raw, f"{prefix}exclude_category_ids"),
    )


def _has_get_targeting(raw: dict) -> bool:
    return any(
        not _is_blank(raw.get(key))
        for key in ("get_applies_to", "get_product_ids", "get_variant_ids", "get_category_ids")
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_rule(raw: dict) -> DiscountRule:
    """
    Build a DiscountRule from a raw definition dict.

    Raises RuleValidationError when a field cannot be parsed or the kind is
    unknown. Kind-specific completeness is checked by validate_rule().
    """
    rule_id = str(raw.get("rule_id") or raw.get("id") or "").strip()
    if not rule_id:
        raise RuleValidationError(UNKNOWN_RULE_ID, "rule_id", "rule_id is required")

    kind_raw = str(raw.get("type") or raw.get("kind") or "").strip().lower()
    if not kind_raw:
        raise RuleValidationError(rule_id, "type")
    try:
        kind = DiscountKind(kind_raw)
    except ValueError:
        raise RuleValidationError(rule_id, "type", f"unknown discount type '{kind_raw}'")

    if kind is DiscountKind.PERCENTAGE:
        params = PercentageParams(percent=_parse_decimal(rule_id, raw, "value"))
    elif kind is DiscountKind.FIXED_AMOUNT:
        params = FixedAmountParams(
            amount=_parse_int(rule_id, raw, "value"),
            per_unit=_parse_bool(raw, "per_unit", False),
        )
    elif kind is DiscountKind.FREE_SHIPPING:
        params = FreeShippingParams()
    elif kind is DiscountKind.BUY_X_PAY_Y:
        params = BuyXPayYParams(
            buy_quantity=_parse_int(rule_id, raw, "buy_quantity"),
            pay_quantity=_parse_int(rule_id, raw, "pay_quantity"),
            pay_amount=_parse_int(rule_id, raw, "pay_amount"),
        )
    elif kind is DiscountKind.BUY_X_GET_Y:
        percent = _parse_decimal(rule_id, raw, "get_discount_percent")
        params = BuyXGetYParams(
            buy_quantity=_parse_int(rule_id, raw, "buy_quantity"),
            get_quantity=_parse_int(rule_id, raw, "get_quantity"),
            get_discount_percent=Decimal(100) if percent is None else percent,
            get_targeting=_parse_targeting(rule_id, raw, prefix="get_") if _has_get_targeting(raw) else None,
        )
    elif kind is DiscountKind.QUANTITY_DISCOUNT:
        params = QuantityDiscountParams(tiers=_parse_tiers(rule_id, raw))
    else:
        params = SpendXPayYParams(
            spend_amount=_parse_int(rule_id, raw, "spend_amount"),
            pay_amount=_parse_int(rule_id, raw, "pay_amount"),
        )

    code = raw.get("code")
    code = None if _is_blank(code) else str(code).strip()

    priority = _parse_int(rule_id, raw, "priority")

    return DiscountRule(
        rule_id=rule_id,
        params=params,
        title=None if _is_blank(raw.get("title")) else str(raw["title"]).strip(),
        targeting=_parse_targeting(rule_id, raw),
        audience=Audience(
            members_only=(
                _parse_bool(raw, "members_only", False)
                or str(raw.get("applies_to") or "").strip().lower() == "member"
            ),
            customer_tags=_parse_ids(rule_id, raw, "customer_tags"),
            loyalty_tiers=_parse_ids(rule_id, raw, "loyalty_tiers"),
            first_order_only=_parse_bool(raw, "first_order_only", False),
        ),
        code=code,
        stackable=_parse_bool(raw, "stackable", True),
        priority=50 if priority is None else priority,
        usage=UsageLimits(
            max_uses=_parse_int(rule_id, raw, "max_uses"),
            max_uses_per_customer=_parse_int(rule_id, raw, "max_uses_per_customer"),
        ),
        starts_at=_parse_datetime(rule_id, raw, "starts_at"),
        ends_at=_parse_datetime(rule_id, raw, "ends_at", end_of_day=True),
        active=_parse_bool(raw, "active", True),
        minimum_amount=_parse_int(rule_id, raw, "minimum_amount"),
        minimum_quantity=_parse_int(rule_id, raw, "minimum_quantity"),
    )


def _percent_in_range(value) -> bool:
    return value is not None and Decimal(0) < to_decimal(value) <= Decimal(100)


def _targeting_errors(rule_id: str, targeting: Targeting, prefix: str = "") -> list[RuleValidationError]:
    required = {
        AppliesTo.PRODUCTS: ("product_ids", targeting.product_ids),
        AppliesTo.VARIANTS: ("variant_ids", targeting.variant_ids),
        AppliesTo.CATEGORIES: ("category_ids", targeting.category_ids),
    }
    if targeting.applies_to in required:
        field_name, ids = required[targeting.applies_to]
        if not ids:
            return [RuleValidationError(
                rule_id, f"{prefix}{field_name}",
                f"at least one id is required in '{prefix}{field_name}' when targeting {targeting.applies_to.value}",
            )]
    return []


def validate_rule_definition(rule: DiscountRule) -> list[RuleValidationError]:
    """
    Check a parsed rule and return every problem found (empty list = valid).

    Used by admin forms and the rules API, which want all errors at once.
    """
    errors: list[RuleValidationError] = []
    rid = rule.rule_id
    p = rule.params

    if isinstance(p, PercentageParams):
        if p.percent is None:
            errors.append(RuleValidationError(rid, "value"))
        elif not _percent_in_range(p.percent):
            errors.append(RuleValidationError(rid, "value", "percentage must be between 0 and 100"))
    elif isinstance(p, FixedAmountParams):
        if p.amount is None:
            errors.append(RuleValidationError(rid, "value"))
        elif p.amount <= 0:
            errors.append(RuleValidationError(rid, "value", "fixed amount must be greater than 0"))
    elif isinstance(p, FreeShippingParams):
        pass
    elif isinstance(p, BuyXPayYParams):
        if p.buy_quantity is None:
            errors.append(RuleValidationError(rid, "buy_quantity"))
        elif p.buy_quantity <= 0:
            errors.append(RuleValidationError(rid, "buy_quantity", "buy quantity must be greater than 0"))
        if p.pay_quantity is None and p.pay_amount is None:
            errors.append(RuleValidationError(rid, "pay_quantity", "one of 'pay_quantity' or 'pay_amount' is required"))
        elif p.pay_quantity is not None and p.pay_amount is not None:
            errors.append(RuleValidationError(rid, "pay_amount", "set either 'pay_quantity' or 'pay_amount', not both"))
        elif p.pay_quantity is not None:
            if p.pay_quantity <= 0 or (p.buy_quantity is not None and p.pay_quantity >= p.buy_quantity):
                errors.append(RuleValidationError(rid, "pay_quantity", "pay quantity must be between 1 and buy quantity - 1"))
        elif p.pay_amount <= 0:
            errors.append(RuleValidationError(rid, "pay_amount", "pay amount must be greater than 0"))
    elif isinstance(p, BuyXGetYParams):
        if p.buy_quantity is None:
            errors.append(RuleValidationError(rid, "buy_quantity"))
        elif p.buy_quantity <= 0:
            errors.append(RuleValidationError(rid, "buy_quantity", "buy quantity must be greater than 0"))
        if p.get_quantity is None:
            errors.append(RuleValidationError(rid, "get_quantity"))
        elif p.get_quantity <= 0:
            errors.append(RuleValidationError(rid, "get_quantity", "get quantity must be greater than 0"))
        if not _percent_in_range(p.get_discount_percent):
            errors.append(RuleValidationError(rid, "get_discount_percent", "get discount percent must be between 0 and 100"))
        if p.get_targeting is not None:
            errors.extend(_targeting_errors(rid, p.get_targeting, prefix="get_"))
    elif isinstance(p, QuantityDiscountParams):
        if not p.tiers:
            errors.append(RuleValidationError(rid, "quantity_tiers"))
        seen = set()
        for tier in p.tiers:
            if tier.min_quantity <= 0:
                errors.append(RuleValidationError(rid, "quantity_tiers", "tier min_quantity must be greater than 0"))
            if not _percent_in_range(tier.percent):
                errors.append(RuleValidationError(rid, "quantity_tiers", "tier percent must be between 0 and 100"))
            if tier.min_quantity in seen:
                errors.append(RuleValidationError(rid, "quantity_tiers", f"duplicate tier threshold {tier.min_quantity}"))
            seen.add(tier.min_quantity)
    elif isinstance(p, SpendXPayYParams):
        if p.spend_amount is None:
            errors.append(RuleValidationError(rid, "spend_amount"))
        elif p.spend_amount <= 0:
            errors.append(RuleValidationError(rid, "spend_amount", "spend amount must be greater than 0"))
        if p.pay_amount is None:
            errors.append(RuleValidationError(rid, "pay_amount"))
        elif p.pay_amount <= 0:
            errors.append(RuleValidationError(rid, "pay_amount", "pay amount must be greater than 0"))
        elif p.spend_amount is not None and p.pay_amount >= p.spend_amount:
            errors.append(RuleValidationError(rid, "pay_amount", "pay amount must be less than spend amount"))
    else:
        errors.append(RuleValidationError(rid, "type", f"unsupported discount parameters {type(p).__name__}"))

    errors.extend(_targeting_errors(rid, rule.targeting))

    if rule.starts_at and rule.ends_at and rule.starts_at > rule.ends_at:
        errors.append(RuleValidationError(rid, "ends_at", "start date must be before end date"))
    for name in ("minimum_amount", "minimum_quantity"):
        value = getattr(rule, name)
        if value is not None and value < 0:
            errors.append(RuleValidationError(rid, name, f"'{name}' cannot be negative"))
    for name in ("max_uses", "max_uses_per_customer"):
        value = getattr(rule.usage, name)
        if value is not None and value < 0:
            errors.append(RuleValidationError(rid, name, f"'{name}' cannot be negative"))

    return errors


def validate_rule(rule: DiscountRule) -> DiscountRule:
    """Raise the first RuleValidationError for `rule`, or return it unchanged."""
    errors = validate_rule_definition(rule)
    if errors:
        raise errors[0]
    return rule


def format_amount(amount: int) -> str:
    """Minor units → '12.50'."""
    sign = "-" if amount < 0 else ""
    amount = abs(amount)
    return f"{sign}{amount // 100}.{amount % 100:02d}"


def _format_percent(value) -> str:
    text = format(to_decimal(value).normalize(), "f")
    return f"{text}%"


def describe_rule(rule: DiscountRule) -> str:
    """Short customer-facing description of a discount."""
    p = rule.params
    if isinstance(p, PercentageParams):
        return f"{_format_percent(p.percent)} off"
    if isinstance(p, FixedAmountParams):
        suffix = " per item" if p.per_unit else ""
        return f"{format_amount(p.amount)} off{suffix}"
    if isinstance(p, FreeShippingParams):
        return "Free shipping"
    if isinstance(p, BuyXPayYParams):
        if p.pay_amount is not None:
            return f"Buy {p.buy_quantity} for {format_amount(p.pay_amount)}"
        return f"Buy {p.buy_quantity}, pay for {p.pay_quantity}"
    if isinstance(p, BuyXGetYParams):
        if to_decimal(p.get_discount_percent) == Decimal(100):
            return f"Buy {p.buy_quantity}, get {p.get_quantity} free"
        return f"Buy {p.buy_quantity}, get {p.get_quantity} at {_format_percent(p.get_discount_percent)} off"
    if isinstance(p, QuantityDiscountParams):
        if not p.tiers:
            return "Quantity discount"
        first = min(p.tiers, key=lambda t: t.min_quantity)
        return f"Buy {first.min_quantity}+ get {_format_percent(first.percent)} off"
    if isinstance(p, SpendXPayYParams):
        return f"Spend {format_amount(p.spend_amount)}, pay {format_amount(p.pay_amount)}"
    return "Discount"
