"""Domain records shared by the stores, services and views."""
from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from .lines import ItemLineSet, coerce_positive_int, parse_stored_lines
from .money import ZERO, cents_to_money, non_negative, safe_money

CHANGE_KINDS = ("insert", "update", "delete")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if not raw:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(raw))
    except ValueError:
        # SQLite CURRENT_TIMESTAMP style
        try:
            parsed = datetime.strptime(str(raw), "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return datetime.fromtimestamp(0, tz=timezone.utc)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _clean(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _optional_text(value: Any) -> Optional[str]:
    cleaned = _clean(value)
    return cleaned or None


@dataclass(frozen=True, slots=True)
class Product:
    id: int
    name: str
    price: Decimal
    active: bool = True
    category: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def category_label(self) -> str:
        return (self.category or "").strip() or "Uncategorized"


@dataclass(slots=True)
class CustomerInfo:
    name: str
    phone: str
    staff_name: str
    email: Optional[str] = None
    deposit_paid: Decimal = ZERO

    def __post_init__(self) -> None:
        self.name = _clean(self.name)
        self.phone = _clean(self.phone)
        self.staff_name = _clean(self.staff_name)
        self.email = _optional_text(self.email)
        self.deposit_paid = non_negative(self.deposit_paid)

    def missing_fields(self) -> list[str]:
        missing: list[str] = []
        if not self.name:
            missing.append("customer name is required")
        if not self.phone:
            missing.append("customer phone is required")
        if not self.staff_name:
            missing.append("staff name is required")
        return missing


@dataclass(slots=True)
class Order:
    id: str
    order_code: str
    created_at: datetime
    customer_name: str
    customer_phone: str
    staff_name: str
    lines: ItemLineSet = field(default_factory=ItemLineSet)
    subtotal: Decimal = ZERO
    deposit: Decimal = ZERO
    balance: Decimal = ZERO
    is_complete: bool = False
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    created_by: str = ""

    def with_changes(self, **changes: Any) -> "Order":
        clone = replace(self, **changes)
        if "lines" not in changes:
            clone.lines = self.lines.copy()
        return clone


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One row-level notification from a store's change feed."""

    kind: str
    row: Mapping[str, Any]
    table: str = "orders"

    def __post_init__(self) -> None:
        if self.kind not in CHANGE_KINDS:
            raise ValueError(f"unknown change kind {self.kind!r}")


def balance_for(subtotal: Decimal, deposit: Decimal) -> Decimal:
    return max(safe_money(subtotal) - non_negative(deposit), ZERO)


def _decode_items(raw: Any) -> ItemLineSet:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return ItemLineSet()
    return parse_stored_lines(raw)


def _money_field(row: Mapping[str, Any], cents_key: str, plain_key: str) -> Decimal:
    if row.get(cents_key) is not None:
        return cents_to_money(row[cents_key])
    return safe_money(row.get(plain_key))


def order_from_row(row: Mapping[str, Any]) -> Order:
    """Build an :class:`Order` from a stored row or change-event payload."""
    order_id = row.get("id")
    if order_id is None or _clean(order_id) == "":
        raise ValueError("order row has no id")
    subtotal = _money_field(row, "subtotal_cents", "subtotal")
    deposit = non_negative(_money_field(row, "deposit_cents", "deposit_paid"))
    return Order(
        id=_clean(order_id),
        order_code=_clean(row.get("order_code")),
        created_at=parse_timestamp(row.get("created_at")),
        customer_name=_clean(row.get("customer_name")),
        customer_phone=_clean(row.get("customer_phone")),
        staff_name=_clean(row.get("staff_name")),
        customer_email=_optional_text(row.get("customer_email")),
        lines=_decode_items(row.get("items")),
        subtotal=subtotal,
        deposit=deposit,
        balance=balance_for(subtotal, deposit),
        is_complete=bool(row.get("is_complete")),
        notes=_optional_text(row.get("notes")),
        created_by=_clean(row.get("created_by")),
    )


def product_from_row(row: Mapping[str, Any]) -> Product:
    product_id = coerce_positive_int(row.get("id"))
    if product_id is None:
        raise ValueError(f"product row has invalid id {row.get('id')!r}")
    price = _money_field(row, "price_cents", "price")
    return Product(
        id=product_id,
        name=_clean(row.get("name")),
        price=non_negative(price),
        active=bool(row.get("active", True)),
        category=_optional_text(row.get("category")),
        description=_optional_text(row.get("description")),
        created_at=parse_timestamp(row.get("created_at")) if row.get("created_at") else None,
    )


def row_key(row: Mapping[str, Any]) -> Optional[str]:
    """Return the identifier of a raw row as text, if it has one."""
    value = row.get("id")
    if value is None:
        return None
    text = _clean(value)
    return text or None


def order_to_dict(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_code": order.order_code,
        "created_at": order.created_at.isoformat(),
        "created_by": order.created_by,
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "customer_phone": order.customer_phone,
        "staff_name": order.staff_name,
        "deposit_paid": str(order.deposit),
        "items": order.lines.to_rows(),
        "subtotal": str(order.subtotal),
        "balance": str(order.balance),
        "is_complete": order.is_complete,
        "notes": order.notes,
    }
