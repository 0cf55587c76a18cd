"""HTTP API tests against the sample catalog and rules."""
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from quickshop_pricing.api import state
from quickshop_pricing.api.main import GENERIC_ERROR, app
from quickshop_pricing.config.settings import Settings
from quickshop_pricing.data.catalog import Catalog
from quickshop_pricing.engine import DiscountEngine
from quickshop_pricing.rules.compile_rules import compile_rules
from quickshop_pricing.services.rules_service import RulesService

PACKAGE_DIR = Path(__file__).parent.parent / "src" / "quickshop_pricing"
SAMPLE_RULES = PACKAGE_DIR / "rules" / "rules.csv"
SAMPLE_CATALOG = PACKAGE_DIR / "data" / "catalog.csv"
NOW = "2026-06-15T12:00:00Z"


@pytest.fixture
def client(tmp_path, monkeypatch):
    settings = Settings(
        project_root=tmp_path,
        catalog_csv=SAMPLE_CATALOG,
        rules_csv=SAMPLE_RULES,
        compiled_rules=tmp_path / "compiled_rules.json",
    )
    success, _, errors = compile_rules(SAMPLE_RULES, settings.compiled_rules, verbose=False)
    assert success, errors

    catalog = Catalog.from_csv(SAMPLE_CATALOG)
    monkeypatch.setattr(state, "settings", settings)
    monkeypatch.setattr(state, "catalog", catalog)
    monkeypatch.setattr(state, "engine", DiscountEngine.from_settings(settings))
    monkeypatch.setattr(state, "rules_service", RulesService(SAMPLE_RULES, settings.compiled_rules, catalog))
    return TestClient(app)


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "online"


def test_calculate_with_catalog_items(client):
    """Three mugs: buy-2-get-1 first, then the 5% home tier on what is left."""
    response = client.post("/calculate", json={"items": {"MUG-LOGO": 3, "NOPE": 1}, "now": NOW})
    assert response.status_code == 200
    data = response.json()

    assert data["currency"] == "ILS"
    assert data["subtotal"] == 10500
    assert [d["rule_id"] for d in data["applied_discounts"]] == ["MUG-B2G1", "HOME-TIERS"]
    assert [d["amount"] for d in data["applied_discounts"]] == [3500, 350]
    assert data["applied_discounts"][0]["kind"] == "buy_x_get_y"
    assert data["final_subtotal"] == 6650
    assert "SKU NOPE not found in catalog" in data["warnings"]


def test_calculate_with_coupon_and_member(client):
    response = client.post("/calculate", json={
        "items": {"HOODIE-GRY-L": 1},
        "customer": {"customer_id": "c1", "is_first_order": True, "is_member": True},
        "redeemed_codes": ["welcome20"],
        "shipping_amount": 2500,
        "now": NOW,
    })
    data = response.json()
    applied = {d["rule_id"]: d["amount"] for d in data["applied_discounts"]}

    assert applied["AUTO-APPAREL-10"] == 1299
    assert applied["WELCOME20"] == 2000
    assert "FREESHIP-CLUB" in applied
    assert data["shipping_total"] == 0
    assert data["grand_total"] == 12990 - 1299 - 2000


def test_usage_counts_exhaust_coupon(client):
    response = client.post("/calculate", json={
        "items": {"HOODIE-GRY-L": 1},
        "customer": {"customer_id": "c1", "is_first_order": True},
        "redeemed_codes": ["WELCOME20"],
        "customer_usage_counts": {"WELCOME20": 1},
        "now": NOW,
    })
    assert "WELCOME20" not in [d["rule_id"] for d in response.json()["applied_discounts"]]


def test_calculate_with_explicit_lines_and_inline_rules(client):
    response = client.post("/calculate", json={
        "lines": [{"line_id": "a", "product_id": "p", "unit_price": 10000, "quantity": 1}],
        "rules": [{"rule_id": "HALF", "type": "percentage", "value": 50}],
        "now": NOW,
    })
    data = response.json()
    assert data["grand_total"] == 5000
    assert data["lines"][0]["applied_rule_ids"] == ["HALF"]


def test_invalid_cart_returns_generic_422(client):
    response = client.post("/calculate", json={
        "lines": [{"line_id": "a", "product_id": "p", "unit_price": -1, "quantity": 1}],
    })
    assert response.status_code == 422
    assert response.json()["detail"] == GENERIC_ERROR


def test_unexpected_error_returns_generic_500(client, monkeypatch):
    class BrokenEngine:
        rules = ()

        def calculate(self, *args, **kwargs):
            raise RuntimeError("boom")

    monkeypatch.setattr(state, "engine", BrokenEngine())
    response = client.post("/calculate", json={"items": {"MUG-LOGO": 1}})
    assert response.status_code == 500
    assert response.json()["detail"] == GENERIC_ERROR


def test_catalog_search(client):
    data = client.get("/catalog", params={"search": "mug"}).json()
    assert list(data) == ["MUG-LOGO"]
    assert data["MUG-LOGO"]["price"] == 3500


def test_system_status(client):
    data = client.get("/system/status").json()
    assert data["rules_count"] == 7
    assert data["catalog_count"] == 7
    assert data["rules_last_compiled"] is not None


def test_rules_list_stats_and_get(client):
    rules = client.get("/api/rules").json()
    assert len(rules) == 7
    assert rules[0]["rule_id"] == "AUTO-APPAREL-10"
    assert rules[0]["description"] == "10% off"

    stats = client.get("/api/rules/stats").json()
    assert stats["total"] == 7

    rule = client.get("/api/rules/SPEND-500").json()
    assert rule["type"] == "spend_x_pay_y"
    assert rule["stackable"] is False
    assert rule["definition"]["spend_amount"] == 50000

    assert client.get("/api/rules/NOPE").status_code == 404


def test_validate_endpoint(client):
    good = client.post("/api/rules/validate", json={"rule_id": "NEW", "type": "percentage", "value": "15"}).json()
    assert good["valid"]
    assert good["matching_products"] == 7

    bad = client.post("/api/rules/validate", json={"rule_id": "NEW", "type": "percentage", "value": "150"}).json()
    assert not bad["valid"]
    assert bad["errors"] == ["percentage must be between 0 and 100"]


def test_compile_endpoint_reloads_engine(client, monkeypatch):
    monkeypatch.setattr(state, "engine", DiscountEngine(settings=state.settings))
    assert client.get("/system/status").json()["rules_count"] == 0

    data = client.post("/api/rules/compile").json()
    assert data["success"]
    assert data["errors"] == []
    assert data["rules_count"] == 7


def test_rule_test_endpoint(client):
    data = client.post("/api/rules/test", json={"sku": "SOCKS-3PK"}).json()
    assert data["base_price"] == 2990
    ids = [m["rule_id"] for m in data["matched_rules"]]
    assert ids == ["AUTO-APPAREL-10", "WELCOME20", "SOCKS-3-FOR-2", "SPEND-500", "FREESHIP-CLUB"]

    assert client.post("/api/rules/test", json={"sku": "NOPE"}).status_code == 404
