import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..engine import CartLine, CartSnapshot, CustomerContext, EvaluationContext
from ..engine.errors import InvalidCartError
from . import state
from .rules_api import router as rules_router

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Unable to calculate price, please retry."

app = FastAPI(
    title="QuickShop Pricing API",
    description="Discount calculation engine for QuickShop carts",
    version="1.0.0"
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rules_router)


class CartLineIn(BaseModel):
    line_id: str
    product_id: str
    unit_price: int
    quantity: int
    variant_id: Optional[str] = None
    category_ids: List[str] = Field(default_factory=list)
    name: Optional[str] = None


class CustomerIn(BaseModel):
    customer_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    loyalty_tier: Optional[str] = None
    is_first_order: bool = False
    is_member: bool = False


class CalcRequest(BaseModel):
    # Either explicit lines, or SKU -> quantity resolved through the catalog
    lines: Optional[List[CartLineIn]] = None
    items: Optional[Dict[str, int]] = None
    currency: Optional[str] = None
    customer: Optional[CustomerIn] = None
    redeemed_codes: List[str] = Field(default_factory=list)
    usage_counts: Dict[str, int] = Field(default_factory=dict)
    customer_usage_counts: Dict[str, int] = Field(default_factory=dict)
    shipping_amount: int = 0
    now: Optional[datetime] = None
    # Inline rule definitions override the compiled rule set
    rules: Optional[List[Dict[str, Any]]] = None


def build_cart(req: CalcRequest) -> tuple[CartSnapshot, list[str]]:
    currency = req.currency if req.currency is not None else state.settings.currency
    customer = CustomerContext(
        customer_id=req.customer.customer_id,
        tags=tuple(req.customer.tags),
        loyalty_tier=req.customer.loyalty_tier,
        is_first_order=req.customer.is_first_order,
        is_member=req.customer.is_member,
    ) if req.customer else None

    if req.lines is not None:
        lines = tuple(
            CartLine(
                line_id=line.line_id,
                product_id=line.product_id,
                unit_price=line.unit_price,
                quantity=line.quantity,
                variant_id=line.variant_id,
                category_ids=tuple(line.category_ids),
                name=line.name,
            )
            for line in req.lines
        )
        return CartSnapshot(lines=lines, currency=currency, customer=customer), []

    return state.catalog.build_cart(req.items or {}, currency=currency, customer=customer)


@app.get("/")
async def root():
    return {"status": "online", "message": "QuickShop Pricing API Active"}


@app.post("/calculate")
async def calculate_discounts(req: CalcRequest):
    try:
        cart, warnings = build_cart(req)
        context = EvaluationContext(
            now=req.now or datetime.now(timezone.utc),
            redeemed_codes=tuple(req.redeemed_codes),
            customer=cart.customer,
            usage_counts=dict(req.usage_counts),
            customer_usage_counts=dict(req.customer_usage_counts),
            shipping_amount=req.shipping_amount,
        )
        result = state.engine.calculate(cart, context, rules=req.rules)
        for warning in warnings:
            result.add_warning(warning)
        return jsonable_encoder(result.to_dict())
    except InvalidCartError as e:
        logger.warning("Rejected cart: %s", e)
        raise HTTPException(status_code=422, detail=GENERIC_ERROR)
    except Exception:
        logger.exception("Discount calculation failed")
        raise HTTPException(status_code=500, detail=GENERIC_ERROR)


@app.get("/catalog")
async def get_catalog(search: Optional[str] = None):
    df = state.catalog.search(search, limit=200 if search else 100)
    # Basic JSON cleaning
    df = df.astype(object).where(df.notna(), None)
    return df.to_dict(orient="index")


@app.get("/system/status")
async def get_status():
    compiled = state.settings.compiled_rules
    return {
        "engine_active": True,
        "rules_count": len(state.engine.rules),
        "catalog_count": len(state.catalog),
        "currency": state.settings.currency,
        "rules_last_compiled": compiled.stat().st_mtime if compiled.exists() else None,
    }
