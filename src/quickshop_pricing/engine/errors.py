"""
Error taxonomy for the discount engine.

Only two things can go wrong during a pricing run:
- a single discount definition is malformed (recoverable, the rule is skipped)
- the cart itself is corrupt (fatal, no price can be produced)

Eligibility mismatches, zero-effect rules and exclusivity conflicts are normal
control flow and never raise.
"""
from typing import Optional


class DiscountEngineError(Exception):
    """Base class for all discount engine errors."""


class RuleValidationError(DiscountEngineError):
    """A discount rule is missing or carries an invalid kind-specific parameter."""

    def __init__(self, rule_id: str, field: str, message: Optional[str] = None):
        self.rule_id = rule_id
        self.field = field
        self.message = message or f"missing required field '{field}'"
        super().__init__(f"Rule {rule_id}: {self.message}")

    def to_dict(self) -> dict:
        return {"rule_id": self.rule_id, "field": self.field, "message": self.message}


class InvalidCartError(DiscountEngineError):
    """The cart snapshot holds a structurally invalid line."""

    def __init__(self, reason: str, line_id: Optional[str] = None):
        self.line_id = line_id
        self.reason = reason
        if line_id is not None:
            super().__init__(f"Cart line {line_id}: {reason}")
        else:
            super().__init__(f"Cart: {reason}")
