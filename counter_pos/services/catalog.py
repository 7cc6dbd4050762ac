"""Live product catalog: the active products, grouped the way the counter shows them."""

from __future__ import annotations

from typing import Any, Dict, Hashable, List, Mapping, Optional, Tuple

from ..core.bus import EventBus
from ..core.errors import ValidationFailure
from ..core.lines import coerce_positive_int
from ..core.models import Product, product_from_row
from ..core.money import parse_money
from .live import LiveIndex
from .store import ChangeCallback, ProductStore, Subscription


def _name_key(product: Product) -> Tuple[str, int]:
    return (product.name.casefold(), product.id)


class ProductCatalog(LiveIndex[Product]):
    """Active products only; a product switched inactive drops out of the view."""

    changed_event = "catalog_changed"
    failed_event = "catalog_load_failed"

    def __init__(self, store: ProductStore, *, bus: Optional[EventBus] = None) -> None:
        super().__init__(bus=bus)
        self.store = store

    async def _fetch(self) -> List[Product]:
        return await self.store.get_all(active_only=True)

    def _open_feed(self, callback: ChangeCallback) -> Subscription:
        return self.store.subscribe_to_changes(callback)

    def _key(self, item: Product) -> Hashable:
        return item.id

    def _row_key(self, row: Mapping[str, Any]) -> Optional[Hashable]:
        return coerce_positive_int(row.get("id"))

    def _from_row(self, row: Mapping[str, Any]) -> Product:
        return product_from_row(row)

    def _accepts(self, item: Product) -> bool:
        return item.active

    # -- reads -----------------------------------------------------------
    def get(self, product_id: int) -> Optional[Product]:
        return self._items.get(product_id)

    def products(self) -> List[Product]:
        return sorted(self._items.values(), key=_name_key)

    def by_id(self) -> Dict[int, Product]:
        return dict(self._items)

    def categories(self) -> List[str]:
        return sorted({p.category_label for p in self._items.values()}, key=str.casefold)

    def by_category(self, query: str = "") -> List[Tuple[str, List[Product]]]:
        """Products grouped by category label, optionally filtered by a search needle.

        A product matches when the needle appears in its name or its category.
        """
        needle = (query or "").strip().casefold()
        groups: Dict[str, List[Product]] = {}
        for product in self._items.values():
            label = product.category_label
            if needle and needle not in product.name.casefold() and needle not in label.casefold():
                continue
            groups.setdefault(label, []).append(product)
        return [
            (label, sorted(items, key=_name_key))
            for label, items in sorted(groups.items(), key=lambda kv: kv[0].casefold())
        ]

    # -- catalog management ---------------------------------------------
    async def create_product(
        self,
        name: str,
        price: Any,
        *,
        description: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Product:
        cleaned = (name or "").strip()
        problems: List[str] = []
        if not cleaned:
            problems.append("product name is required")
        amount = parse_money(price)
        if amount is None or amount < 0:
            problems.append("price must be a non-negative number")
        if problems:
            raise ValidationFailure(problems)
        product = await self.store.insert(
            {
                "name": cleaned,
                "price": amount,
                "description": description,
                "category": category,
                "active": True,
            }
        )
        self.upsert(product)
        return product
