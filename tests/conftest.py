"""Pytest fixtures: in-memory stores with controllable failures, a private bus, a temp SQLite file."""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from counter_pos.core.bus import EventBus
from counter_pos.core.db import Database
from counter_pos.core.errors import NotFound, RemoteStoreError, UniqueViolation
from counter_pos.core.lines import parse_stored_lines
from counter_pos.core.models import ChangeEvent, CustomerInfo, Order, Product, order_to_dict
from counter_pos.services.store import ChangeFeed, OrderStore, ProductStore

EPOCH = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeOrderStore(OrderStore):
    """Order store double.

    ``collisions`` makes the next N inserts fail with a code collision;
    ``fail_with`` makes every insert raise that error instead. Setting
    ``gate`` to an :class:`asyncio.Event` holds ``select_all`` (with the
    rows it saw on entry) until the event is set.
    """

    def __init__(self, collisions: int = 0, fail_with=None):
        self.rows = {}
        self.collisions = collisions
        self.fail_with = fail_with
        self.fail_updates = None
        self.fail_select = None
        self.gate = None
        self.attempts = []
        self.feed = ChangeFeed()
        self._seq = itertools.count(1)

    async def insert(self, record):
        self.attempts.append(dict(record))
        if self.fail_with is not None:
            raise self.fail_with
        if self.collisions > 0:
            self.collisions -= 1
            raise UniqueViolation("order_code", record["order_code"])
        n = next(self._seq)
        order = Order(id=f"order-{n}", created_at=EPOCH + timedelta(minutes=n), **record)
        self.rows[order.id] = order
        self.feed.publish(ChangeEvent("insert", order_to_dict(order)))
        return order

    async def update(self, order_id, fields):
        if self.fail_updates is not None:
            raise self.fail_updates
        if order_id not in self.rows:
            raise NotFound("orders", order_id)
        order = self.rows[order_id].with_changes(**fields)
        self.rows[order_id] = order
        self.feed.publish(ChangeEvent("update", order_to_dict(order)))
        return order

    async def delete(self, order_id):
        if self.rows.pop(order_id, None) is None:
            raise NotFound("orders", order_id)
        self.feed.publish(ChangeEvent("delete", {"id": order_id}))

    async def select_all(self, *, is_complete=None):
        snapshot = [o.with_changes() for o in self.rows.values()]
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_select is not None:
            raise self.fail_select
        if is_complete is not None:
            snapshot = [o for o in snapshot if o.is_complete == is_complete]
        return sorted(snapshot, key=lambda o: o.created_at, reverse=True)

    async def get(self, order_id):
        if order_id not in self.rows:
            raise NotFound("orders", order_id)
        return self.rows[order_id]

    def subscribe_to_changes(self, callback):
        return self.feed.subscribe(callback)


class FakeProductStore(ProductStore):
    def __init__(self, products=()):
        self.rows = {p.id: p for p in products}
        self.feed = ChangeFeed()
        self.fail_select = None
        self._seq = itertools.count(max(self.rows, default=0) + 1)

    async def get_all(self, *, active_only=True):
        if self.fail_select is not None:
            raise self.fail_select
        return [p for p in self.rows.values() if p.active or not active_only]

    async def get_by_id(self, product_id):
        return self.rows.get(product_id)

    async def insert(self, record):
        product = Product(id=next(self._seq), **record)
        self.rows[product.id] = product
        self.feed.publish(ChangeEvent("insert", _product_row(product), table="products"))
        return product

    async def update(self, product_id, fields):
        if product_id not in self.rows:
            raise NotFound("products", product_id)
        current = self.rows[product_id]
        product = Product(**{**_product_row(current), "id": current.id, **fields})
        self.rows[product_id] = product
        self.feed.publish(ChangeEvent("update", _product_row(product), table="products"))
        return product

    async def delete(self, product_id):
        if self.rows.pop(product_id, None) is None:
            raise NotFound("products", product_id)
        self.feed.publish(ChangeEvent("delete", {"id": product_id}, table="products"))

    def subscribe_to_changes(self, callback):
        return self.feed.subscribe(callback)


def _product_row(product):
    return {
        "id": product.id,
        "name": product.name,
        "price": product.price,
        "active": product.active,
        "category": product.category,
        "description": product.description,
    }


class StubIdentity:
    def __init__(self, actor="cashier-1"):
        self.actor = actor

    def current_actor(self):
        return self.actor


class AsyncIdentity(StubIdentity):
    async def current_actor(self):
        await asyncio.sleep(0)
        return self.actor


def make_order(order_id, lines, *, complete=False, minutes=0, **extra):
    return Order(
        id=order_id,
        order_code=f"ORD-{order_id.upper()}",
        created_at=EPOCH + timedelta(minutes=minutes),
        customer_name=extra.pop("customer_name", "Rana"),
        customer_phone=extra.pop("customer_phone", "555-0100"),
        staff_name=extra.pop("staff_name", "Sami"),
        lines=parse_stored_lines(lines),
        is_complete=complete,
        **extra,
    )


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def products():
    return {
        1: Product(id=1, name="Americano", price=Decimal("10.00"), category="Coffee"),
        2: Product(id=2, name="Croissant", price=Decimal("2.50"), category="Bakery"),
        3: Product(id=3, name="Old Blend", price=Decimal("7.00"), active=False),
    }


@pytest.fixture
def product_store(products) -> FakeProductStore:
    return FakeProductStore(products.values())


@pytest.fixture
def order_store() -> FakeOrderStore:
    return FakeOrderStore()


@pytest.fixture
def customer() -> CustomerInfo:
    return CustomerInfo(name="Rana", phone="555-0100", staff_name="Sami", deposit_paid=Decimal("5.00"))


@pytest.fixture
def database(tmp_path) -> Database:
    db = Database(tmp_path / "counter.db")
    db.init_schema()
    yield db
    db.close()


@pytest.fixture
def remote_error() -> RemoteStoreError:
    return RemoteStoreError("connection reset")
