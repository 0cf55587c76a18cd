"""Pytest fixtures for the discount engine tests."""
import os
import sys
from datetime import datetime, timezone

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from quickshop_pricing.engine.models import CartLine, CartSnapshot, EvaluationContext
from quickshop_pricing.engine.rule_parser import parse_rule

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)


def make_line(line_id, unit_price, quantity=1, product_id=None, categories=(), variant_id=None):
    return CartLine(
        line_id=line_id,
        product_id=product_id or f"p-{line_id}",
        unit_price=unit_price,
        quantity=quantity,
        variant_id=variant_id,
        category_ids=tuple(categories),
    )


def make_cart(*lines, customer=None):
    return CartSnapshot(lines=tuple(lines), currency="ILS", customer=customer)


def make_rule(rule_id, type, **fields):
    return parse_rule({"rule_id": rule_id, "type": type, **fields})


@pytest.fixture
def context():
    return EvaluationContext(now=NOW)


@pytest.fixture
def apparel_cart():
    """Two apparel lines and a mug: subtotal 100.00 + 50.00 + 35.00."""
    return make_cart(
        make_line("l1", 5000, 2, product_id="tshirt", categories=("apparel",)),
        make_line("l2", 5000, 1, product_id="hoodie", categories=("apparel",)),
        make_line("l3", 3500, 1, product_id="mug", categories=("home",)),
    )
