"""
Product Catalog - Read-only product/variant data used to build cart snapshots.

The catalog CSV is the stand-in for the product service: one row per sellable
variant (SKU) with its product id, price in minor units and category tags.
"""
from pathlib import Path
from typing import Optional

import pandas as pd

from ..engine.models import CartLine, CartSnapshot, CustomerContext

REQUIRED_COLUMNS = ['sku', 'product_id', 'name', 'price', 'category_ids']


class Catalog:
    """Variant lookup backed by a pandas DataFrame indexed by SKU."""

    def __init__(self, frame: pd.DataFrame):
        missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
        if missing:
            raise ValueError(f"Catalog is missing columns: {', '.join(missing)}")

        frame = frame.copy()
        frame['sku'] = frame['sku'].astype(str).str.strip()
        frame['product_id'] = frame['product_id'].astype(str).str.strip()
        frame['category_ids'] = frame['category_ids'].fillna('').astype(str)
        frame['price'] = pd.to_numeric(frame['price'], errors='coerce')
        # Handle potential duplicates by taking first entry
        self.frame = frame.drop_duplicates(subset='sku', keep='first').set_index('sku')

    @classmethod
    def from_csv(cls, path: Path) -> 'Catalog':
        if not path.exists():
            raise FileNotFoundError(f"Catalog not found at {path}.")
        return cls(pd.read_csv(path, dtype={'sku': str, 'product_id': str, 'category_ids': str}))

    @classmethod
    def empty(cls) -> 'Catalog':
        return cls(pd.DataFrame(columns=REQUIRED_COLUMNS))

    def __len__(self) -> int:
        return len(self.frame)

    def __contains__(self, sku: str) -> bool:
        return str(sku).strip() in self.frame.index

    def search(self, text: Optional[str] = None, limit: int = 100) -> pd.DataFrame:
        """Case-insensitive search over SKU and name."""
        df = self.frame
        if text:
            mask = (
                df.index.str.contains(text, case=False, na=False, regex=False) |
                df['name'].astype(str).str.contains(text, case=False, na=False, regex=False)
            )
            df = df[mask]
        return df.head(limit)

    def line_for(self, sku: str, quantity: int, line_id: Optional[str] = None) -> CartLine:
        """Build a cart line for a SKU. Raises KeyError for unknown SKUs."""
        sku = str(sku).strip()
        if sku not in self.frame.index:
            raise KeyError(sku)
        row = self.frame.loc[sku]
        price = row['price']
        categories = tuple(c.strip() for c in str(row['category_ids']).split(';') if c.strip())
        return CartLine(
            line_id=line_id or sku,
            product_id=row['product_id'],
            variant_id=sku,
            # NaN/float prices are left for the engine to reject as corrupt input
            unit_price=int(price) if pd.notna(price) and float(price).is_integer() else price,
            quantity=quantity,
            category_ids=categories,
            name=None if pd.isna(row['name']) else str(row['name']),
        )

    def build_cart(
        self,
        items: dict[str, int],
        currency: str = 'ILS',
        customer: Optional[CustomerContext] = None,
    ) -> tuple[CartSnapshot, list[str]]:
        """
        Build a cart from {sku: quantity}, in the given order.

        Returns (cart, warnings); unknown SKUs are skipped with a warning.
        """
        lines = []
        warnings = []
        for sku, qty in items.items():
            try:
                lines.append(self.line_for(sku, qty))
            except KeyError:
                warnings.append(f"SKU {sku} not found in catalog")
        return CartSnapshot(lines=tuple(lines), currency=currency, customer=customer), warnings
