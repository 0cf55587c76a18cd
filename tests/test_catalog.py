from pathlib import Path

import pandas as pd
import pytest

from quickshop_pricing.data.catalog import Catalog
from quickshop_pricing.engine.models import CustomerContext

SAMPLE_CATALOG = Path(__file__).parent.parent / "src" / "quickshop_pricing" / "data" / "catalog.csv"


@pytest.fixture
def catalog():
    return Catalog.from_csv(SAMPLE_CATALOG)


def test_sample_catalog_loads(catalog):
    assert len(catalog) == 7
    assert "MUG-LOGO" in catalog
    assert " MUG-LOGO " in catalog
    assert "NOPE" not in catalog


def test_line_for_builds_cart_line(catalog):
    line = catalog.line_for("TSHIRT-BLK-M", 2)
    assert line.line_id == "TSHIRT-BLK-M"
    assert line.variant_id == "TSHIRT-BLK-M"
    assert line.product_id == "tshirt-basic"
    assert line.unit_price == 4990
    assert isinstance(line.unit_price, int)
    assert line.quantity == 2
    assert line.category_ids == ("apparel", "tops")
    assert line.name == "Basic T-Shirt Black M"

    with pytest.raises(KeyError):
        catalog.line_for("NOPE", 1)


def test_build_cart_skips_unknown_skus(catalog):
    customer = CustomerContext(is_member=True)
    cart, warnings = catalog.build_cart({"MUG-LOGO": 3, "NOPE": 1, "CANDLE-VAN": 1}, customer=customer)

    assert [line.line_id for line in cart.lines] == ["MUG-LOGO", "CANDLE-VAN"]
    assert cart.subtotal == 3500 * 3 + 5900
    assert cart.customer is customer
    assert warnings == ["SKU NOPE not found in catalog"]


def test_search(catalog):
    assert list(catalog.search("tshirt").index) == ["TSHIRT-BLK-M", "TSHIRT-WHT-M"]
    assert list(catalog.search("vanilla").index) == ["CANDLE-VAN"]
    assert len(catalog.search(limit=3)) == 3


def test_missing_columns_rejected():
    with pytest.raises(ValueError, match="price"):
        Catalog(pd.DataFrame({"sku": ["A"], "product_id": ["a"], "name": ["A"], "category_ids": [""]}))


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        Catalog.from_csv(tmp_path / "catalog.csv")


def test_duplicate_skus_keep_first():
    frame = pd.DataFrame({
        "sku": ["A", "A"],
        "product_id": ["a", "a"],
        "name": ["First", "Second"],
        "price": [100, 200],
        "category_ids": [None, "x"],
    })
    catalog = Catalog(frame)
    assert len(catalog) == 1
    line = catalog.line_for("A", 1)
    assert line.unit_price == 100
    assert line.category_ids == ()
