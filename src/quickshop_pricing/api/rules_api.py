"""
Rules API - FastAPI router for inspecting, validating and compiling discount rules.
"""
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict

from ..engine.models import DiscountRule
from ..engine.rule_parser import describe_rule
from ..rules.compile_rules import rule_to_dict
from . import state

router = APIRouter(prefix="/api/rules", tags=["rules"])


class RuleDefinition(BaseModel):
    """A flat rule definition, in the same shape as a rules.csv row."""
    model_config = ConfigDict(extra="allow")

    rule_id: Optional[str] = None
    title: Optional[str] = None
    type: str


class RuleResponse(BaseModel):
    """Response model for a rule."""
    rule_id: str
    title: Optional[str]
    type: str
    description: str
    active: bool
    automatic: bool
    stackable: bool
    priority: int
    definition: dict[str, Any]


class ValidationResponse(BaseModel):
    """Response model for validation."""
    valid: bool
    errors: list[str]
    warnings: list[str]
    matching_products: int


class TestRuleRequest(BaseModel):
    """Request model for testing rules."""
    sku: str


class TestRuleResponse(BaseModel):
    """Response model for rule test."""
    sku: str
    name: Optional[str]
    base_price: Optional[int]
    matched_rules: list[dict]


def to_response(rule: DiscountRule) -> RuleResponse:
    return RuleResponse(
        rule_id=rule.rule_id,
        title=rule.title,
        type=rule.kind.value,
        description=describe_rule(rule),
        active=rule.active,
        automatic=rule.is_automatic,
        stackable=rule.stackable,
        priority=rule.priority,
        definition=rule_to_dict(rule),
    )


# Endpoints

@router.get("", response_model=list[RuleResponse])
async def list_rules(include_inactive: bool = True):
    """List all compiled discount rules."""
    rules = state.rules_service.list_rules(include_inactive=include_inactive)
    return [to_response(rule) for rule in rules]


@router.get("/stats")
async def get_stats():
    """Get rule statistics."""
    return state.rules_service.get_stats()


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(rule_id: str):
    """Get a single rule by ID."""
    rule = state.rules_service.get_rule(rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")
    return to_response(rule)


@router.post("/validate", response_model=ValidationResponse)
async def validate_rule(rule_data: RuleDefinition):
    """Validate a rule definition without saving."""
    result = state.rules_service.validate_rule(rule_data.model_dump(exclude_none=True))
    return ValidationResponse(
        valid=result.valid,
        errors=result.errors,
        warnings=result.warnings,
        matching_products=result.matching_products
    )


@router.post("/compile")
async def compile_rules():
    """Recompile rules.csv and reload the engine."""
    success, errors = state.rules_service.compile_rules()
    if success:
        state.engine.reload_data()
    return {
        "success": success,
        "errors": errors,
        "rules_count": len(state.engine.rules),
    }


@router.post("/test", response_model=TestRuleResponse)
async def test_rules(request: TestRuleRequest):
    """Test which active rules would target a catalog SKU."""
    if request.sku not in state.catalog:
        raise HTTPException(status_code=404, detail=f"SKU '{request.sku}' not found in catalog")

    line = state.catalog.line_for(request.sku, 1)
    return TestRuleResponse(
        sku=request.sku,
        name=line.name,
        base_price=line.unit_price if isinstance(line.unit_price, int) else None,
        matched_rules=state.rules_service.rules_for_product(request.sku),
    )
