"""Order submission, editing, and search over submitted orders."""

from __future__ import annotations

import inspect
import logging
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional, Protocol

from ..core.bus import EventBus, bus as default_bus
from ..core.errors import (
    AuthorizationFailure,
    RemoteStoreError,
    RetryBudgetExhausted,
    UniqueViolation,
    ValidationFailure,
)
from ..core.lines import ItemLineSet, parse_stored_lines
from ..core.models import CustomerInfo, Order, Product, balance_for
from ..core.money import ZERO, non_negative, to_money
from ..core.order_codes import OrderCodeGenerator
from .cart import CartStore
from .order_cache import RealtimeOrderCache
from .store import OrderStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
ORDER_VIEWS = ("incomplete", "complete", "all")

_UNSET: Any = object()


class CatalogLookup(Protocol):
    def get(self, product_id: int) -> Optional[Product]: ...


class IdentityProvider(Protocol):
    def current_actor(self) -> Any: ...


def resolve_product(catalog: Optional[CatalogLookup], product_id: int) -> Optional[Product]:
    """Return the active catalog product for *product_id*, or ``None``."""
    if catalog is None:
        return None
    product = catalog.get(product_id)
    if product is None or not product.active:
        return None
    return product


def price_lines(lines: ItemLineSet, catalog: Optional[CatalogLookup]) -> Decimal:
    """Subtotal at current prices; lines with no resolvable product count as zero."""
    total = ZERO
    for product_id, qty in lines.items():
        product = resolve_product(catalog, product_id)
        if product is not None:
            total += product.price * qty
    return to_money(total)


async def resolve_actor(identity: Optional[IdentityProvider]) -> Optional[str]:
    if identity is None:
        return None
    actor = identity.current_actor()
    if inspect.isawaitable(actor):
        actor = await actor
    text = str(actor).strip() if actor else ""
    return text or None


class OrderSubmissionService:
    """Turns the cart plus customer details into one persisted order.

    The order code is minted client-side and may collide with a code another
    terminal minted at the same moment; the store's unique constraint rejects
    the second insert and this service retries with a fresh code, up to
    *max_attempts* times.
    """

    __slots__ = ("store", "catalog", "identity", "code_generator", "max_attempts", "cache", "_bus")

    def __init__(
        self,
        store: OrderStore,
        catalog: Optional[CatalogLookup],
        identity: Optional[IdentityProvider],
        *,
        code_generator: Optional[Callable[[], str]] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        cache: Optional[RealtimeOrderCache] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.catalog = catalog
        self.identity = identity
        self.code_generator = code_generator or OrderCodeGenerator()
        self.max_attempts = max_attempts
        self.cache = cache
        self._bus = bus or default_bus

    async def submit(self, cart: CartStore, customer: CustomerInfo, notes: Optional[str] = None) -> Order:
        lines = cart.lines()
        problems: List[str] = []
        if not lines:
            problems.append("cart is empty")
        problems.extend(customer.missing_fields())
        if problems:
            raise ValidationFailure(problems)

        subtotal = price_lines(lines, self.catalog)
        deposit = non_negative(customer.deposit_paid)
        balance = balance_for(subtotal, deposit)

        actor = await resolve_actor(self.identity)
        if actor is None:
            raise AuthorizationFailure()

        record = {
            "created_by": actor,
            "customer_name": customer.name,
            "customer_email": customer.email,
            "customer_phone": customer.phone,
            "staff_name": customer.staff_name,
            "deposit": deposit,
            "lines": lines,
            "subtotal": subtotal,
            "balance": balance,
            "is_complete": False,
            "notes": notes,
        }

        order: Optional[Order] = None
        for attempt in range(1, self.max_attempts + 1):
            code = self.code_generator()
            try:
                order = await self.store.insert({**record, "order_code": code})
                break
            except UniqueViolation as exc:
                if exc.column != "order_code":
                    raise RemoteStoreError(str(exc)) from exc
                logger.warning("order code %s already taken (attempt %d/%d)", code, attempt, self.max_attempts)
        if order is None:
            logger.error("giving up after %d order code collisions", self.max_attempts)
            raise RetryBudgetExhausted(self.max_attempts)

        logger.info(
            "order %s submitted by %s: %d item(s), subtotal=%s balance=%s",
            order.order_code,
            actor,
            order.lines.total_quantity,
            order.subtotal,
            order.balance,
        )
        cart.clear()
        if self.cache is not None:
            self.cache.apply_insert_or_update(order)
        self._bus.emit("order_submitted", order)
        return order


class OrderEditor:
    __slots__ = ("store", "catalog", "cache")

    def __init__(
        self,
        store: OrderStore,
        catalog: Optional[CatalogLookup],
        *,
        cache: Optional[RealtimeOrderCache] = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.cache = cache

    async def _current(self, order_id: str) -> Order:
        cached = self.cache.get(order_id) if self.cache is not None else None
        if cached is not None:
            return cached
        return await self.store.get(order_id)

    def _remember(self, order: Order) -> None:
        if self.cache is not None:
            self.cache.apply_insert_or_update(order)

    async def update_order(
        self,
        order_id: str,
        *,
        customer: Optional[CustomerInfo] = None,
        lines: Any = None,
        notes: Any = _UNSET,
    ) -> Order:
        """Edit customer details, lines or notes of a submitted order.

        The subtotal is re-priced from the current catalog only when *lines*
        is given; the balance follows whenever subtotal or deposit changes.
        """
        if customer is not None:
            problems = customer.missing_fields()
            if problems:
                raise ValidationFailure(problems)
        new_lines: Optional[ItemLineSet] = None
        if lines is not None:
            new_lines = lines.copy() if isinstance(lines, ItemLineSet) else parse_stored_lines(lines)
            if not new_lines:
                raise ValidationFailure(["an order needs at least one line"])

        current = await self._current(order_id)
        fields: dict = {}
        subtotal, deposit = current.subtotal, current.deposit
        if customer is not None:
            deposit = customer.deposit_paid
            fields.update(
                customer_name=customer.name,
                customer_email=customer.email,
                customer_phone=customer.phone,
                staff_name=customer.staff_name,
                deposit=deposit,
            )
        if new_lines is not None:
            subtotal = price_lines(new_lines, self.catalog)
            fields.update(lines=new_lines, subtotal=subtotal)
        if notes is not _UNSET:
            fields["notes"] = notes
        if "subtotal" in fields or "deposit" in fields:
            fields["balance"] = balance_for(subtotal, deposit)
        if not fields:
            return current

        order = await self.store.update(order_id, fields)
        self._remember(order)
        return order

    async def set_complete(self, order_id: str, complete: bool = True) -> Order:
        """Flip the completion flag, showing it in the cache before the write lands."""
        previous = self.cache.get(order_id) if self.cache is not None else None
        stamp = None
        if previous is not None:
            self._remember(previous.with_changes(is_complete=bool(complete)))
            stamp = self.cache.stamp(order_id)
        try:
            order = await self.store.update(order_id, {"is_complete": bool(complete)})
        except RemoteStoreError:
            # only undo our own guess; a newer event may have replaced it
            if stamp is not None and self.cache.stamp(order_id) == stamp:
                self._remember(previous)
            raise
        self._remember(order)
        return order

    async def delete_order(self, order_id: str) -> None:
        await self.store.delete(order_id)
        if self.cache is not None:
            self.cache.apply_delete(order_id)


def item_label(catalog: Optional[CatalogLookup], product_id: int) -> str:
    product = catalog.get(product_id) if catalog is not None else None
    return product.name if product is not None else f"Item #{product_id}"


def filter_orders(
    orders: Iterable[Order],
    query: str = "",
    view: str = "incomplete",
    catalog: Optional[CatalogLookup] = None,
) -> List[Order]:
    """Search across customer, staff, id, code, notes and item names, then filter by status."""
    if view not in ORDER_VIEWS:
        raise ValueError(f"view must be one of {', '.join(ORDER_VIEWS)}")
    needle = (query or "").strip().lower()
    result: List[Order] = []
    for order in orders:
        if view != "all" and order.is_complete != (view == "complete"):
            continue
        if needle:
            haystack = " ".join(
                [
                    order.customer_name,
                    order.customer_email or "",
                    order.customer_phone,
                    order.staff_name,
                    order.id,
                    order.order_code,
                    order.notes or "",
                    *(item_label(catalog, pid) for pid in order.lines),
                ]
            ).lower()
            if needle not in haystack:
                continue
        result.append(order)
    return result
