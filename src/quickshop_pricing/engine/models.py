"""
Data models for the discount engine.

Uses dataclasses for structured, type-safe data representation. Inputs (cart,
rules, context) are frozen; outputs are plain dataclasses filled in by the
pipeline. All money is in integer minor units.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Mapping, Optional, Union

from .errors import RuleValidationError


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CartLine:
    """One product/variant entry of a cart."""
    line_id: str
    product_id: str
    unit_price: int  # minor units
    quantity: int
    variant_id: Optional[str] = None
    category_ids: tuple[str, ...] = ()
    name: Optional[str] = None

    @property
    def original_total(self) -> int:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CustomerContext:
    """Who is shopping, used for audience targeting."""
    customer_id: Optional[str] = None
    tags: tuple[str, ...] = ()
    loyalty_tier: Optional[str] = None
    is_first_order: bool = False
    is_member: bool = False


@dataclass(frozen=True)
class CartSnapshot:
    """Immutable cart handed to the engine."""
    lines: tuple[CartLine, ...]
    currency: str = "ILS"
    customer: Optional[CustomerContext] = None

    @property
    def subtotal(self) -> int:
        return sum(line.original_total for line in self.lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


# ---------------------------------------------------------------------------
# Discount rules
# ---------------------------------------------------------------------------

class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"
    BUY_X_PAY_Y = "buy_x_pay_y"
    BUY_X_GET_Y = "buy_x_get_y"
    QUANTITY_DISCOUNT = "quantity_discount"
    SPEND_X_PAY_Y = "spend_x_pay_y"


class AppliesTo(str, Enum):
    ALL = "all"
    PRODUCTS = "products"
    VARIANTS = "variants"
    CATEGORIES = "categories"


@dataclass(frozen=True)
class Targeting:
    """Which cart lines a rule selects. Exclusions always win over inclusion."""
    applies_to: AppliesTo = AppliesTo.ALL
    product_ids: tuple[str, ...] = ()
    variant_ids: tuple[str, ...] = ()
    category_ids: tuple[str, ...] = ()
    exclude_product_ids: tuple[str, ...] = ()
    exclude_category_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Audience:
    """Customer-level eligibility. Empty fields do not restrict."""
    members_only: bool = False
    customer_tags: tuple[str, ...] = ()
    loyalty_tiers: tuple[str, ...] = ()
    first_order_only: bool = False


@dataclass(frozen=True)
class UsageLimits:
    max_uses: Optional[int] = None
    max_uses_per_customer: Optional[int] = None


# Kind-specific parameters. Fields are Optional because admin data can be
# incomplete; the rule parser rejects a rule whose required fields are missing.

@dataclass(frozen=True)
class PercentageParams:
    kind: ClassVar[DiscountKind] = DiscountKind.PERCENTAGE
    percent: Optional[Decimal] = None


@dataclass(frozen=True)
class FixedAmountParams:
    kind: ClassVar[DiscountKind] = DiscountKind.FIXED_AMOUNT
    amount: Optional[int] = None
    per_unit: bool = False  # amount is taken once per matched unit


@dataclass(frozen=True)
class FreeShippingParams:
    kind: ClassVar[DiscountKind] = DiscountKind.FREE_SHIPPING


@dataclass(frozen=True)
class BuyXPayYParams:
    """Blocks of `buy_quantity` units cost `pay_quantity` units' worth, or a flat `pay_amount`."""
    kind: ClassVar[DiscountKind] = DiscountKind.BUY_X_PAY_Y
    buy_quantity: Optional[int] = None
    pay_quantity: Optional[int] = None
    pay_amount: Optional[int] = None


@dataclass(frozen=True)
class BuyXGetYParams:
    kind: ClassVar[DiscountKind] = DiscountKind.BUY_X_GET_Y
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    get_discount_percent: Decimal = Decimal(100)
    get_targeting: Optional[Targeting] = None  # None: same lines as the rule targeting


@dataclass(frozen=True)
class QuantityTier:
    min_quantity: int
    percent: Decimal


@dataclass(frozen=True)
class QuantityDiscountParams:
    kind: ClassVar[DiscountKind] = DiscountKind.QUANTITY_DISCOUNT
    tiers: tuple[QuantityTier, ...] = ()


@dataclass(frozen=True)
class SpendXPayYParams:
    kind: ClassVar[DiscountKind] = DiscountKind.SPEND_X_PAY_Y
    spend_amount: Optional[int] = None
    pay_amount: Optional[int] = None


DiscountParams = Union[
    PercentageParams,
    FixedAmountParams,
    FreeShippingParams,
    BuyXPayYParams,
    BuyXGetYParams,
    QuantityDiscountParams,
    SpendXPayYParams,
]


@dataclass(frozen=True)
class DiscountRule:
    """A discount definition as configured by the store admin."""
    rule_id: str
    params: DiscountParams
    title: Optional[str] = None
    targeting: Targeting = field(default_factory=Targeting)
    audience: Audience = field(default_factory=Audience)
    code: Optional[str] = None  # None = automatic discount
    stackable: bool = True
    priority: int = 50  # lower = higher priority
    usage: UsageLimits = field(default_factory=UsageLimits)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    active: bool = True
    minimum_amount: Optional[int] = None
    minimum_quantity: Optional[int] = None

    @property
    def kind(self) -> DiscountKind:
        return self.params.kind

    @property
    def is_automatic(self) -> bool:
        return self.code is None


@dataclass(frozen=True)
class EvaluationContext:
    """Everything about the request that is not the cart or the rules."""
    now: datetime
    redeemed_codes: tuple[str, ...] = ()
    customer: Optional[CustomerContext] = None
    usage_counts: Mapping[str, int] = field(default_factory=dict)
    customer_usage_counts: Mapping[str, int] = field(default_factory=dict)
    shipping_amount: int = 0

    def normalized_codes(self) -> set[str]:
        return {normalize_code(c) for c in self.redeemed_codes if c and c.strip()}


def normalize_code(code: str) -> str:
    return code.strip().upper()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class TraceStep:
    """A single step in the pricing resolution trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass
class LineAdjustment:
    line_id: str
    amount: int


@dataclass
class FreeItemGrant:
    """Units of a cart line that a buy_x_get_y discount made free (or cheaper)."""
    line_id: str
    product_id: str
    variant_id: Optional[str]
    quantity: int
    amount: int


@dataclass
class AppliedDiscount:
    """The effect of one discount rule on the cart."""
    rule_id: str
    kind: DiscountKind
    amount: int = 0
    adjustments: list[LineAdjustment] = field(default_factory=list)
    free_items: list[FreeItemGrant] = field(default_factory=list)
    free_shipping: bool = False
    code: Optional[str] = None
    title: Optional[str] = None
    description: str = ""
    clamped_amount: int = 0  # effect cut off to keep a line at zero; not part of amount

    @property
    def touched_line_ids(self) -> set[str]:
        return {adj.line_id for adj in self.adjustments if adj.amount > 0}

    @property
    def has_effect(self) -> bool:
        return self.amount > 0 or self.free_shipping

    def adjustment_for(self, line_id: str) -> int:
        return sum(adj.amount for adj in self.adjustments if adj.line_id == line_id)


@dataclass
class PricedLine:
    """A cart line after all discounts."""
    line_id: str
    product_id: str
    variant_id: Optional[str]
    name: Optional[str]
    quantity: int
    unit_price: int
    original_total: int
    final_total: int
    applied_rule_ids: list[str] = field(default_factory=list)

    @property
    def discount_total(self) -> int:
        return self.original_total - self.final_total


@dataclass
class PricingResult:
    """Complete result of a discount calculation."""
    currency: str
    subtotal: int
    lines: list[PricedLine] = field(default_factory=list)
    applied_discounts: list[AppliedDiscount] = field(default_factory=list)
    discount_total: int = 0
    final_subtotal: int = 0
    free_shipping: bool = False
    shipping_amount: int = 0
    shipping_total: int = 0
    grand_total: int = 0
    warnings: list[str] = field(default_factory=list)
    validation_errors: list[RuleValidationError] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the result-level trace."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def add_warning(self, warning: str):
        """Add a result-level warning."""
        self.warnings.append(warning)

    def get_trace_text(self) -> str:
        """Get human-readable result trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"• {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"• {t.step}: {t.description}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Plain JSON-ready representation (enums as values, errors as dicts)."""
        return {
            "currency": self.currency,
            "subtotal": self.subtotal,
            "lines": [
                {**asdict(line), "discount_total": line.discount_total}
                for line in self.lines
            ],
            "applied_discounts": [
                {**asdict(discount), "kind": discount.kind.value}
                for discount in self.applied_discounts
            ],
            "discount_total": self.discount_total,
            "final_subtotal": self.final_subtotal,
            "free_shipping": self.free_shipping,
            "shipping_amount": self.shipping_amount,
            "shipping_total": self.shipping_total,
            "grand_total": self.grand_total,
            "warnings": list(self.warnings),
            "validation_errors": [err.to_dict() for err in self.validation_errors],
            "trace": [asdict(t) for t in self.trace],
        }
