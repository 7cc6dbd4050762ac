"""Required-stock report: how much of each product the open orders ask for."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..core.bus import EventBus, bus as default_bus
from ..core.lines import ItemLineSet, coerce_positive_int, parse_stored_lines
from ..core.models import Product
from ..core.money import ZERO, to_money
from ..utils.currency import format_currency

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RequirementRow:
    product_id: int
    name: str
    price: Decimal
    quantity: int
    total: Decimal
    active: bool


@dataclass(slots=True)
class RequirementsSummary:
    lines: int
    quantity: int
    value: Decimal

    def as_dict(self, symbol: str = "$") -> Dict[str, str]:
        return {
            "lines": str(self.lines),
            "quantity": str(self.quantity),
            "value": format_currency(self.value, symbol),
        }


def placeholder_name(product_id: int) -> str:
    return f"Item #{product_id} (inactive)"


def _lookup(catalog: Any, product_id: int) -> Optional[Product]:
    if catalog is None:
        return None
    product = catalog.get(product_id)
    if product is None or not getattr(product, "active", True):
        return None
    return product


def _order_lines(order: Any) -> Iterable[Tuple[Any, Any]]:
    raw = order.get("lines") if isinstance(order, Mapping) else getattr(order, "lines", None)
    if isinstance(raw, ItemLineSet):
        return raw.items()
    return parse_stored_lines(raw).items()


def _is_complete(order: Any) -> bool:
    if isinstance(order, Mapping):
        return bool(order.get("is_complete"))
    return bool(getattr(order, "is_complete", False))


def _sort_key(row: RequirementRow) -> Tuple[bool, str, int]:
    return (row.active, row.name.casefold(), row.product_id)


def aggregate(orders: Iterable[Any], catalog: Any, include_completed: bool = False) -> List[RequirementRow]:
    """Sum line quantities per product across the selected orders.

    Completed orders are skipped unless *include_completed*. *catalog* is a
    mapping or anything with ``get(product_id)``; a product that is missing
    or inactive gets a placeholder row priced at zero. Rows for unresolved
    products come first, then rows are ordered by name and id.
    """
    totals: Dict[int, int] = {}
    for order in orders:
        if not include_completed and _is_complete(order):
            continue
        for raw_id, raw_qty in _order_lines(order):
            product_id = coerce_positive_int(raw_id)
            qty = coerce_positive_int(raw_qty)
            if product_id is None or qty is None:
                logger.debug("ignoring malformed line %r x %r", raw_id, raw_qty)
                continue
            totals[product_id] = totals.get(product_id, 0) + qty

    rows: List[RequirementRow] = []
    for product_id, qty in totals.items():
        product = _lookup(catalog, product_id)
        if product is None:
            rows.append(RequirementRow(product_id, placeholder_name(product_id), ZERO, qty, ZERO, False))
            continue
        price = to_money(product.price)
        rows.append(RequirementRow(product_id, product.name, price, qty, to_money(price * qty), True))
    rows.sort(key=_sort_key)
    return rows


def search_rows(rows: Iterable[RequirementRow], query: str = "") -> List[RequirementRow]:
    needle = (query or "").strip().casefold()
    if not needle:
        return list(rows)
    return [r for r in rows if needle in r.name.casefold() or needle in str(r.product_id)]


def summarize(rows: Iterable[RequirementRow]) -> RequirementsSummary:
    count = 0
    quantity = 0
    value = ZERO
    for row in rows:
        count += 1
        quantity += row.quantity
        value += row.total
    return RequirementsSummary(lines=count, quantity=quantity, value=to_money(value))


class RequirementsView:
    """Keeps ``aggregate`` output current as orders and the catalog change."""

    def __init__(
        self,
        cache: Any,
        catalog: Any,
        *,
        include_completed: bool = False,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.cache = cache
        self.catalog = catalog
        self.include_completed = include_completed
        self._bus = bus or default_bus
        self._rows: List[RequirementRow] = []
        self._closed = False
        self._bus.subscribe("orders_changed", self.refresh)
        self._bus.subscribe("catalog_changed", self.refresh)
        self.refresh()

    def refresh(self, *_args: Any) -> None:
        if self._closed:
            return
        self._rows = aggregate(self.cache.orders(), self.catalog, self.include_completed)
        self._bus.emit("requirements_changed", len(self._rows))

    @property
    def rows(self) -> List[RequirementRow]:
        return list(self._rows)

    def search(self, query: str = "") -> List[RequirementRow]:
        return search_rows(self._rows, query)

    def summary(self, query: str = "") -> RequirementsSummary:
        return summarize(self.search(query))

    def set_include_completed(self, value: bool) -> None:
        value = bool(value)
        if value != self.include_completed:
            self.include_completed = value
            self.refresh()

    def close(self) -> None:
        self._bus.unsubscribe("orders_changed", self.refresh)
        self._bus.unsubscribe("catalog_changed", self.refresh)
        self._closed = True
        self._rows = []
