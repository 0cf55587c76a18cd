"""
Rule Compiler - Validates discount definitions from CSV and compiles them to JSON.

Reads rules.csv (the admin settings export), validates every row against the
discount schema, and outputs compiled_rules.json for the engine and the API.
"""
import csv
import json
from pathlib import Path
from datetime import datetime
from typing import Optional

from quickshop_pricing.engine.errors import RuleValidationError
from quickshop_pricing.engine.models import (
    BuyXGetYParams,
    BuyXPayYParams,
    DiscountRule,
    FixedAmountParams,
    PercentageParams,
    QuantityDiscountParams,
    SpendXPayYParams,
    Targeting,
)
from quickshop_pricing.engine.rule_parser import parse_rule, validate_rule_definition


CSV_COLUMNS = [
    'rule_id', 'title', 'active', 'priority', 'type', 'value', 'code', 'stackable',
    'applies_to', 'product_ids', 'variant_ids', 'category_ids',
    'exclude_product_ids', 'exclude_category_ids',
    'members_only', 'customer_tags', 'loyalty_tiers', 'first_order_only',
    'minimum_amount', 'minimum_quantity', 'max_uses', 'max_uses_per_customer',
    'starts_at', 'ends_at',
    'buy_quantity', 'pay_quantity', 'pay_amount', 'get_quantity', 'get_discount_percent',
    'get_applies_to', 'get_product_ids', 'get_variant_ids', 'get_category_ids',
    'per_unit', 'quantity_tiers', 'spend_amount', 'notes',
]


def _targeting_dict(targeting: Targeting, prefix: str = "") -> dict:
    return {
        f"{prefix}applies_to": targeting.applies_to.value,
        f"{prefix}product_ids": list(targeting.product_ids),
        f"{prefix}variant_ids": list(targeting.variant_ids),
        f"{prefix}category_ids": list(targeting.category_ids),
        f"{prefix}exclude_product_ids": list(targeting.exclude_product_ids),
        f"{prefix}exclude_category_ids": list(targeting.exclude_category_ids),
    }


def rule_to_dict(rule: DiscountRule) -> dict:
    """Serialize a rule to the flat definition format parse_rule() reads."""
    data = {
        "rule_id": rule.rule_id,
        "title": rule.title,
        "type": rule.kind.value,
        "code": rule.code,
        "active": rule.active,
        "stackable": rule.stackable,
        "priority": rule.priority,
        **_targeting_dict(rule.targeting),
        "members_only": rule.audience.members_only,
        "customer_tags": list(rule.audience.customer_tags),
        "loyalty_tiers": list(rule.audience.loyalty_tiers),
        "first_order_only": rule.audience.first_order_only,
        "minimum_amount": rule.minimum_amount,
        "minimum_quantity": rule.minimum_quantity,
        "max_uses": rule.usage.max_uses,
        "max_uses_per_customer": rule.usage.max_uses_per_customer,
        "starts_at": rule.starts_at.isoformat() if rule.starts_at else None,
        "ends_at": rule.ends_at.isoformat() if rule.ends_at else None,
    }

    p = rule.params
    if isinstance(p, PercentageParams):
        data["value"] = str(p.percent)
    elif isinstance(p, FixedAmountParams):
        data["value"] = p.amount
        data["per_unit"] = p.per_unit
    elif isinstance(p, BuyXPayYParams):
        data.update(buy_quantity=p.buy_quantity, pay_quantity=p.pay_quantity, pay_amount=p.pay_amount)
    elif isinstance(p, BuyXGetYParams):
        data.update(
            buy_quantity=p.buy_quantity,
            get_quantity=p.get_quantity,
            get_discount_percent=str(p.get_discount_percent),
        )
        if p.get_targeting is not None:
            data.update(_targeting_dict(p.get_targeting, prefix="get_"))
    elif isinstance(p, QuantityDiscountParams):
        data["quantity_tiers"] = [
            {"min_quantity": t.min_quantity, "percent": str(t.percent)} for t in p.tiers
        ]
    elif isinstance(p, SpendXPayYParams):
        data.update(spend_amount=p.spend_amount, pay_amount=p.pay_amount)

    return {k: v for k, v in data.items() if v is not None and v != []}


def validate_row(row: dict, line_num: int) -> tuple[Optional[DiscountRule], list[str]]:
    """
    Validate and parse a rule from a CSV row.

    Returns (rule, errors) - rule is None if validation failed.
    """
    try:
        rule = parse_rule(row)
    except RuleValidationError as e:
        return None, [f"Line {line_num}: {e}"]

    problems = validate_rule_definition(rule)
    if problems:
        return None, [f"Line {line_num}: {e}" for e in problems]

    return rule, []


def compile_rules(
    rules_csv: Path,
    output_json: Path,
    verbose: bool = True
) -> tuple[bool, list[DiscountRule], list[str]]:
    """
    Compile rules from CSV to JSON.

    Returns (success, rules, errors).
    """
    all_errors = []
    rules = []

    if not rules_csv.exists():
        all_errors.append(f"Rules file not found: {rules_csv}")
        return False, [], all_errors

    with open(rules_csv, 'r', newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        seen = set()

        for row in reader:
            line_num = reader.line_num
            if not any((v or '').strip() for v in row.values() if isinstance(v, str)):
                continue
            rule, errors = validate_row(row, line_num)

            if errors:
                all_errors.extend(errors)
            elif rule.rule_id in seen:
                all_errors.append(f"Line {line_num}: duplicate rule_id '{rule.rule_id}'")
            else:
                seen.add(rule.rule_id)
                rules.append(rule)

    if all_errors:
        if verbose:
            print("Validation errors:")
            for err in all_errors:
                print(f"  ❌ {err}")
        return False, rules, all_errors

    # Sort by priority (lower = higher priority)
    rules.sort(key=lambda r: (r.priority, r.rule_id))

    output_data = {
        "compiled_at": datetime.now().isoformat(),
        "source_file": str(rules_csv),
        "total_rules": len(rules),
        "active_rules": sum(1 for r in rules if r.active),
        "rules": [rule_to_dict(r) for r in rules],
    }

    output_json.parent.mkdir(parents=True, exist_ok=True)
    with open(output_json, 'w', encoding='utf-8') as f:
        json.dump(output_data, f, indent=2, ensure_ascii=False)

    if verbose:
        print(f"✅ Compiled {len(rules)} rules ({output_data['active_rules']} active)")
        print(f"   Output: {output_json}")

    return True, rules, []


def load_compiled_rules(path: Optional[Path]) -> list[dict]:
    """Read the rule definitions from compiled_rules.json ([] if not compiled yet)."""
    if path is None or not path.exists():
        return []
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return list(data.get('rules', []))


def main():
    """CLI entry point."""
    import sys

    from quickshop_pricing.config.settings import get_settings

    settings = get_settings()

    print("Compiling discount rules...")
    success, rules, errors = compile_rules(settings.rules_csv, settings.compiled_rules)

    if not success:
        print(f"\n❌ Compilation failed with {len(errors)} errors")
        sys.exit(1)


if __name__ == "__main__":
    main()
