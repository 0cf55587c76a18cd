"""
Rules Service - Read, validate and compile the store's discount definitions.

Rules are authored in the admin settings (exported to rules.csv) and compiled
to JSON. This service only reads them; redemption counters stay with the
persistence layer.
"""
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional
import logging

from ..data.catalog import Catalog
from ..engine.errors import RuleValidationError
from ..engine.models import AppliesTo, CartLine, DiscountRule, normalize_code
from ..engine.rule_matcher import line_matches
from ..engine.rule_normalizer import comparable
from ..engine.rule_parser import describe_rule, parse_rule, validate_rule_definition
from ..rules.compile_rules import compile_rules, load_compiled_rules

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of rule validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    matching_products: int = 0


class RulesService:
    """Service for inspecting and compiling discount rules."""

    def __init__(
        self,
        rules_csv_path: Path,
        compiled_rules_path: Path,
        catalog: Optional[Catalog] = None,
    ):
        self.rules_csv_path = rules_csv_path
        self.compiled_rules_path = compiled_rules_path
        self.catalog = catalog or Catalog.empty()
        self._raw: list[dict] = load_compiled_rules(compiled_rules_path)

    def reload(self):
        self._raw = load_compiled_rules(self.compiled_rules_path)

    def list_rules(self, include_inactive: bool = True) -> list[DiscountRule]:
        """List all compiled rules that still parse."""
        rules = []
        for raw in self._raw:
            try:
                rule = parse_rule(raw)
            except RuleValidationError as e:
                logger.warning("Compiled rule no longer parses: %s", e)
                continue
            if include_inactive or rule.active:
                rules.append(rule)
        return rules

    def get_rule(self, rule_id: str) -> Optional[DiscountRule]:
        """Get a single rule by ID."""
        for rule in self.list_rules():
            if rule.rule_id == rule_id:
                return rule
        return None

    def validate_rule(self, raw: dict, now: Optional[datetime] = None) -> ValidationResult:
        """Validate a rule definition before it is saved."""
        result = ValidationResult(valid=True)

        try:
            rule = parse_rule(raw)
        except RuleValidationError as e:
            result.valid = False
            result.errors.append(e.message)
            return result

        for err in validate_rule_definition(rule):
            result.valid = False
            result.errors.append(err.message)

        # Warn if dates are in the past
        now = now or datetime.now()
        if rule.ends_at and comparable(rule.ends_at, now) < now:
            result.warnings.append("Rule has expired (end date is in the past)")

        # Count matching catalog products
        if len(self.catalog):
            result.matching_products = self._count_catalog_matches(rule)
            if result.matching_products == 0:
                result.warnings.append("No catalog products match this rule's targeting")
            result.warnings.extend(self._unknown_ids(rule))

        if result.valid:
            result.warnings.extend(self._check_conflicts(rule))

        return result

    def _catalog_lines(self) -> list[CartLine]:
        return [self.catalog.line_for(sku, 1) for sku in self.catalog.frame.index]

    def _count_catalog_matches(self, rule: DiscountRule) -> int:
        return sum(1 for line in self._catalog_lines() if line_matches(line, rule.targeting))

    def _unknown_ids(self, rule: DiscountRule) -> list[str]:
        warnings = []
        frame = self.catalog.frame
        if rule.targeting.applies_to is AppliesTo.PRODUCTS:
            known = set(frame['product_id'])
            for pid in rule.targeting.product_ids:
                if pid not in known:
                    warnings.append(f"Product '{pid}' not found in catalog")
        if rule.targeting.applies_to is AppliesTo.VARIANTS:
            for sku in rule.targeting.variant_ids:
                if sku not in self.catalog:
                    warnings.append(f"Variant '{sku}' not found in catalog")
        return warnings

    def _check_conflicts(self, rule: DiscountRule) -> list[str]:
        """Check for rules that might conflict with this one."""
        warnings = []
        for existing in self.list_rules():
            if existing.rule_id == rule.rule_id:
                continue

            if rule.code and existing.code and normalize_code(rule.code) == normalize_code(existing.code):
                warnings.append(f"Code '{rule.code}' is already used by rule '{existing.rule_id}'")

            # Exclusive rules on overlapping lines knock each other out
            if rule.stackable and existing.stackable:
                continue
            if len(self.catalog) and not any(
                line_matches(line, rule.targeting) and line_matches(line, existing.targeting)
                for line in self._catalog_lines()
            ):
                continue
            warnings.append(
                f"Potential exclusivity conflict with rule '{existing.rule_id}' "
                f"(priority {existing.priority} vs {rule.priority})"
            )

        return warnings

    def compile_rules(self) -> tuple[bool, list[str]]:
        """Compile rules.csv to JSON and reload on success."""
        success, _, errors = compile_rules(self.rules_csv_path, self.compiled_rules_path, verbose=False)
        if success:
            self.reload()
            logger.info("Compiled %d discount rules", len(self._raw))
        else:
            logger.warning("Rule compilation failed with %d errors", len(errors))
        return success, errors

    def rules_for_product(self, sku: str) -> list[dict]:
        """Which active rules target a catalog SKU, and why."""
        line = self.catalog.line_for(sku, 1)
        matched = []
        for rule in self.list_rules(include_inactive=False):
            reason = line_matches(line, rule.targeting)
            if reason is None:
                continue
            matched.append({
                "rule_id": rule.rule_id,
                "title": rule.title,
                "priority": rule.priority,
                "type": rule.kind.value,
                "description": describe_rule(rule),
                "automatic": rule.is_automatic,
                "stackable": rule.stackable,
                "match_reason": reason,
            })
        matched.sort(key=lambda r: (r["priority"], r["rule_id"]))
        return matched

    def get_stats(self, now: Optional[datetime] = None) -> dict:
        """Get statistics about rules."""
        rules = self.list_rules()
        now = now or datetime.now()

        active = [r for r in rules if r.active]
        expired = [r for r in rules if r.ends_at and comparable(r.ends_at, now) < now]
        by_type = {}
        for r in rules:
            by_type[r.kind.value] = by_type.get(r.kind.value, 0) + 1

        return {
            'total': len(rules),
            'active': len(active),
            'inactive': len(rules) - len(active),
            'expired': len(expired),
            'automatic': sum(1 for r in rules if r.is_automatic),
            'coupon': sum(1 for r in rules if not r.is_automatic),
            'by_type': by_type,
        }
