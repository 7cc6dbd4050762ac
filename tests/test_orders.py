"""Tests for order submission, editing and search."""
import asyncio
import itertools
from decimal import Decimal

import pytest

from conftest import AsyncIdentity, FakeOrderStore, StubIdentity, make_order
from counter_pos.core.errors import (
    AuthorizationFailure,
    NotFound,
    RemoteStoreError,
    RetryBudgetExhausted,
    UniqueViolation,
    UserActionError,
    ValidationFailure,
)
from counter_pos.core.lines import ItemLineSet
from counter_pos.core.models import ChangeEvent, CustomerInfo, order_to_dict
from counter_pos.services.cart import CartStore
from counter_pos.services.order_cache import RealtimeOrderCache
from counter_pos.services.orders import OrderEditor, OrderSubmissionService, filter_orders, price_lines


def _codes():
    counter = itertools.count(1)
    return lambda: f"ORD-TEST00-{next(counter):04d}"


def _cart(bus, lines):
    cart = CartStore(bus=bus)
    for product_id, qty in lines.items():
        cart.set_quantity(product_id, qty)
    return cart


def _service(store, products, bus, **kwargs):
    kwargs.setdefault("code_generator", _codes())
    identity = kwargs.pop("identity", StubIdentity())
    return OrderSubmissionService(store, products, identity, bus=bus, **kwargs)


def test_submit_prices_cart_and_applies_deposit(order_store, products, customer, bus):
    """Cart {A:2, B:1} at 10.00/2.50 with a 5.00 deposit."""
    cart = _cart(bus, {1: 2, 2: 1})
    order = asyncio.run(_service(order_store, products, bus).submit(cart, customer, notes="no sugar"))

    assert order.subtotal == Decimal("22.50")
    assert order.deposit == Decimal("5.00")
    assert order.balance == Decimal("17.50")
    assert order.lines == {1: 2, 2: 1}
    assert order.created_by == "cashier-1"
    assert order.notes == "no sugar"
    assert order.order_code == "ORD-TEST00-0001"
    assert cart.is_empty
    assert list(order_store.rows) == [order.id]


def test_deposit_larger_than_subtotal_leaves_zero_balance(order_store, products, bus):
    cart = _cart(bus, {2: 1})
    customer = CustomerInfo(name="Rana", phone="1", staff_name="Sami", deposit_paid=Decimal("20"))
    order = asyncio.run(_service(order_store, products, bus).submit(cart, customer))
    assert order.balance == Decimal("0.00")


def test_negative_deposit_is_clamped(order_store, products, bus):
    cart = _cart(bus, {1: 1})
    customer = CustomerInfo(name="Rana", phone="1", staff_name="Sami", deposit_paid=Decimal("-3"))
    order = asyncio.run(_service(order_store, products, bus).submit(cart, customer))
    assert order.deposit == Decimal("0.00")
    assert order.balance == Decimal("10.00")


def test_unresolved_lines_are_kept_but_priced_at_zero(order_store, products, customer, bus):
    """Product 3 is inactive and 99 does not exist."""
    cart = _cart(bus, {1: 1, 3: 2, 99: 4})
    order = asyncio.run(_service(order_store, products, bus).submit(cart, customer))
    assert order.subtotal == Decimal("10.00")
    assert order.lines == {1: 1, 3: 2, 99: 4}


def test_empty_cart_is_rejected_without_writes(order_store, products, customer, bus):
    cart = CartStore(bus=bus)
    with pytest.raises(ValidationFailure) as excinfo:
        asyncio.run(_service(order_store, products, bus).submit(cart, customer))
    assert "cart is empty" in excinfo.value.problems
    assert order_store.attempts == []


def test_cart_of_only_invalid_ids_is_rejected_as_empty(order_store, products, customer, bus):
    cart = CartStore(bus=bus)
    cart.increase("SKU-1")
    cart.set_quantity(0, 2)
    cart.set_quantity(-1, 1)
    with pytest.raises(ValidationFailure) as excinfo:
        asyncio.run(_service(order_store, products, bus).submit(cart, customer))
    assert "cart is empty" in excinfo.value.problems
    assert order_store.attempts == []


def test_missing_customer_fields_are_all_reported(order_store, products, bus):
    cart = _cart(bus, {1: 1})
    customer = CustomerInfo(name="  ", phone="", staff_name="")
    with pytest.raises(ValidationFailure) as excinfo:
        asyncio.run(_service(order_store, products, bus).submit(cart, customer))
    assert excinfo.value.problems == (
        "customer name is required",
        "customer phone is required",
        "staff name is required",
    )
    assert isinstance(excinfo.value, UserActionError)
    assert order_store.attempts == []
    assert cart.quantity_of(1) == 1


def test_missing_actor_fails_before_any_write(order_store, products, customer, bus):
    cart = _cart(bus, {1: 1})
    service = _service(order_store, products, bus, identity=StubIdentity(actor=None))
    with pytest.raises(AuthorizationFailure):
        asyncio.run(service.submit(cart, customer))
    assert order_store.attempts == []
    assert not cart.is_empty


def test_actor_may_be_resolved_asynchronously(order_store, products, customer, bus):
    cart = _cart(bus, {2: 2})
    service = _service(order_store, products, bus, identity=AsyncIdentity("tablet-3"))
    order = asyncio.run(service.submit(cart, customer))
    assert order.created_by == "tablet-3"


def test_code_collisions_are_retried_with_fresh_codes(products, customer, bus):
    store = FakeOrderStore(collisions=2)
    cart = _cart(bus, {1: 1})
    order = asyncio.run(_service(store, products, bus).submit(cart, customer))

    tried = [a["order_code"] for a in store.attempts]
    assert tried == ["ORD-TEST00-0001", "ORD-TEST00-0002", "ORD-TEST00-0003"]
    assert order.order_code == "ORD-TEST00-0003"
    assert len(store.rows) == 1


def test_exhausted_retry_budget_is_a_distinct_failure(products, customer, bus):
    store = FakeOrderStore(collisions=10)
    cart = _cart(bus, {1: 1})
    with pytest.raises(RetryBudgetExhausted) as excinfo:
        asyncio.run(_service(store, products, bus, max_attempts=5).submit(cart, customer))
    assert excinfo.value.attempts == 5
    assert len(store.attempts) == 5
    assert store.rows == {}
    assert cart.quantity_of(1) == 1


def test_other_write_errors_abort_immediately(products, customer, bus, remote_error):
    store = FakeOrderStore(fail_with=remote_error)
    cart = _cart(bus, {1: 2})
    with pytest.raises(RemoteStoreError):
        asyncio.run(_service(store, products, bus).submit(cart, customer))
    assert len(store.attempts) == 1
    assert cart.lines() == {1: 2}


def test_success_updates_cache_and_announces_order(order_store, products, customer, bus):
    cache = RealtimeOrderCache(order_store, bus=bus)
    seen = []
    bus.subscribe("order_submitted", seen.append)
    cart = _cart(bus, {1: 1})
    order = asyncio.run(_service(order_store, products, bus, cache=cache).submit(cart, customer))
    assert cache.get(order.id) == order
    assert seen == [order]


def test_submitted_order_does_not_alias_cached_copy(order_store, products, customer, bus):
    cache = RealtimeOrderCache(order_store, bus=bus)
    cart = _cart(bus, {1: 1})
    order = asyncio.run(_service(order_store, products, bus, cache=cache).submit(cart, customer))
    order.lines.add(1, 5)
    order.notes = "scribbled"
    assert cache.get(order.id).lines == {1: 1}
    assert cache.get(order.id).notes is None


def test_non_code_unique_violation_is_not_retried(products, customer, bus):
    store = FakeOrderStore(fail_with=UniqueViolation("id", "order-1"))
    cart = _cart(bus, {1: 2})
    with pytest.raises(RemoteStoreError) as excinfo:
        asyncio.run(_service(store, products, bus).submit(cart, customer))
    assert not isinstance(excinfo.value, RetryBudgetExhausted)
    assert len(store.attempts) == 1
    assert store.rows == {}
    assert cart.lines() == {1: 2}


def test_max_attempts_must_be_positive(order_store, products, bus):
    with pytest.raises(ValueError):
        _service(order_store, products, bus, max_attempts=0)


def test_price_lines_ignores_unknown_products(products):
    assert price_lines(ItemLineSet({1: 3, 42: 1}), products) == Decimal("30.00")


# -- editing ---------------------------------------------------------------


def _seeded(order_store, bus, order):
    order_store.rows[order.id] = order
    cache = RealtimeOrderCache(order_store, bus=bus)
    cache.apply_insert_or_update(order)
    return cache


def test_editing_lines_reprices_and_recomputes_balance(order_store, products, bus):
    order = make_order("a1", {1: 1}, subtotal=Decimal("10.00"), deposit=Decimal("4.00"), balance=Decimal("6.00"))
    cache = _seeded(order_store, bus, order)
    editor = OrderEditor(order_store, products, cache=cache)

    updated = asyncio.run(editor.update_order("a1", lines={1: 2, 2: 2}))
    assert updated.subtotal == Decimal("25.00")
    assert updated.balance == Decimal("21.00")
    assert cache.get("a1").lines == {1: 2, 2: 2}


def test_editing_customer_only_keeps_subtotal(order_store, bus):
    """Prices changed since the order was taken; the stored subtotal stands."""
    order = make_order("a2", {1: 1}, subtotal=Decimal("8.00"), balance=Decimal("8.00"))
    cache = _seeded(order_store, bus, order)
    editor = OrderEditor(order_store, {}, cache=cache)
    customer = CustomerInfo(name="Rana H", phone="555", staff_name="Sami", deposit_paid=Decimal("3"))

    updated = asyncio.run(editor.update_order("a2", customer=customer))
    assert updated.subtotal == Decimal("8.00")
    assert updated.balance == Decimal("5.00")
    assert updated.customer_name == "Rana H"


def test_editing_to_empty_lines_is_rejected(order_store, products, bus):
    order = make_order("a3", {1: 1})
    editor = OrderEditor(order_store, products, cache=_seeded(order_store, bus, order))
    with pytest.raises(ValidationFailure):
        asyncio.run(editor.update_order("a3", lines={}))


def test_set_complete_reverts_when_write_fails(order_store, products, bus, remote_error):
    order = make_order("a4", {1: 1})
    cache = _seeded(order_store, bus, order)
    editor = OrderEditor(order_store, products, cache=cache)
    order_store.fail_updates = remote_error

    with pytest.raises(RemoteStoreError):
        asyncio.run(editor.set_complete("a4", True))
    assert cache.get("a4").is_complete is False


class _NewerRowThenFailure(FakeOrderStore):
    """Another terminal writes the row while our update is in flight, then ours fails."""

    newer = None

    async def update(self, order_id, fields):
        self.feed.publish(ChangeEvent("update", order_to_dict(self.newer)))
        raise RemoteStoreError("timeout")


def test_failed_set_complete_keeps_a_newer_row(products, bus):
    store = _NewerRowThenFailure()
    order = make_order("a6", {1: 1})
    cache = _seeded(store, bus, order)
    cache.subscribe()
    # same content as the optimistic guess, but written by someone else
    store.newer = make_order("a6", {1: 1}, complete=True)

    with pytest.raises(RemoteStoreError):
        asyncio.run(OrderEditor(store, products, cache=cache).set_complete("a6", True))
    assert cache.get("a6").is_complete is True


def test_set_complete_on_missing_order_raises_not_found(order_store, products, bus):
    editor = OrderEditor(order_store, products, cache=RealtimeOrderCache(order_store, bus=bus))
    with pytest.raises(NotFound):
        asyncio.run(editor.set_complete("missing", True))


def test_delete_order_drops_it_from_cache(order_store, products, bus):
    order = make_order("a5", {1: 1})
    cache = _seeded(order_store, bus, order)
    asyncio.run(OrderEditor(order_store, products, cache=cache).delete_order("a5"))
    assert "a5" not in cache
    assert order_store.rows == {}


# -- search ----------------------------------------------------------------


def test_filter_orders_by_view_and_query(products):
    orders = [
        make_order("b1", {1: 1}, customer_name="Maya"),
        make_order("b2", {2: 1}, customer_name="Omar", complete=True),
        make_order("b3", {2: 3}, customer_name="Lina", notes="call on arrival"),
    ]
    assert [o.id for o in filter_orders(orders)] == ["b1", "b3"]
    assert [o.id for o in filter_orders(orders, view="complete")] == ["b2"]
    assert [o.id for o in filter_orders(orders, "croissant", "all", products)] == ["b2", "b3"]
    assert [o.id for o in filter_orders(orders, "ARRIVAL", "all")] == ["b3"]
    with pytest.raises(ValueError):
        filter_orders(orders, view="archived")
