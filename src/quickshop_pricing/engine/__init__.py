"""Engine subpackage - discount calculation pipeline."""
from .pricing_engine import DiscountEngine, calculate_pricing, validate_cart
from .errors import DiscountEngineError, InvalidCartError, RuleValidationError
from .models import (
    AppliedDiscount,
    CartLine,
    CartSnapshot,
    CustomerContext,
    DiscountKind,
    DiscountRule,
    EvaluationContext,
    PricingResult,
)
from .rule_parser import parse_rule, validate_rule_definition, describe_rule

__all__ = [
    'DiscountEngine', 'calculate_pricing', 'validate_cart',
    'DiscountEngineError', 'InvalidCartError', 'RuleValidationError',
    'AppliedDiscount', 'CartLine', 'CartSnapshot', 'CustomerContext',
    'DiscountKind', 'DiscountRule', 'EvaluationContext', 'PricingResult',
    'parse_rule', 'validate_rule_definition', 'describe_rule',
]
