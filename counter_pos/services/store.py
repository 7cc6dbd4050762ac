"""Remote store contracts and the SQLite-backed implementation.

Every store method is a coroutine. The SQLite adapter runs its blocking work
in a worker thread and publishes change events back on the caller's loop,
after the write has committed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from ..core.bus import EventBus
from ..core.db import Database, unique_violation_column
from ..core.errors import NotFound, RemoteStoreError, UniqueViolation
from ..core.lines import ItemLineSet, parse_stored_lines
from ..core.models import ChangeEvent, Order, Product, order_from_row, product_from_row, utc_now
from ..core.money import money_to_cents, non_negative

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]

_CHANGE = "change"


class Subscription:
    """Handle returned by :meth:`ChangeFeed.subscribe`; closing it stops delivery."""

    __slots__ = ("_feed", "_listener", "active")

    def __init__(self, feed: "ChangeFeed", listener: Callable[[ChangeEvent], None]) -> None:
        self._feed = feed
        self._listener = listener
        self.active = True

    def close(self) -> None:
        if not self.active:
            return
        self.active = False
        self._feed._bus.unsubscribe(_CHANGE, self._listener)


class ChangeFeed:
    """Per-store fan-out of :class:`ChangeEvent` objects to subscribers."""

    __slots__ = ("_bus",)

    def __init__(self) -> None:
        self._bus = EventBus()

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        def _deliver(change: ChangeEvent) -> None:
            try:
                callback(change)
            except Exception:
                logger.exception("change subscriber failed on %s %s", change.table, change.kind)

        self._bus.subscribe(_CHANGE, _deliver)
        return Subscription(self, _deliver)

    def publish(self, change: ChangeEvent) -> None:
        self._bus.emit(_CHANGE, change)

    @property
    def subscriber_count(self) -> int:
        return self._bus.listener_count(_CHANGE)


class OrderStore(ABC):
    @abstractmethod
    async def insert(self, record: Mapping[str, Any]) -> Order: ...

    @abstractmethod
    async def update(self, order_id: str, fields: Mapping[str, Any]) -> Order: ...

    @abstractmethod
    async def delete(self, order_id: str) -> None: ...

    @abstractmethod
    async def select_all(self, *, is_complete: Optional[bool] = None) -> List[Order]: ...

    @abstractmethod
    async def get(self, order_id: str) -> Order: ...

    @abstractmethod
    def subscribe_to_changes(self, callback: ChangeCallback) -> Subscription: ...


class ProductStore(ABC):
    @abstractmethod
    async def get_all(self, *, active_only: bool = True) -> List[Product]: ...

    @abstractmethod
    async def get_by_id(self, product_id: int) -> Optional[Product]: ...

    @abstractmethod
    async def insert(self, record: Mapping[str, Any]) -> Product: ...

    @abstractmethod
    async def update(self, product_id: int, fields: Mapping[str, Any]) -> Product: ...

    @abstractmethod
    async def delete(self, product_id: int) -> None: ...

    @abstractmethod
    def subscribe_to_changes(self, callback: ChangeCallback) -> Subscription: ...


# ---------------------------------------------------------------------------
# SQLite adapter
# ---------------------------------------------------------------------------

_ORDER_COLUMNS = (
    "id, order_code, created_at, created_by, customer_name, customer_email, customer_phone, "
    "staff_name, deposit_cents, items, subtotal_cents, balance_cents, is_complete, notes"
)


def _items_json(value: Any) -> str:
    lines = value if isinstance(value, ItemLineSet) else parse_stored_lines(value)
    return json.dumps(lines.to_rows())


def _text_or_none(value: Any) -> Optional[str]:
    text = str(value).strip() if value is not None else ""
    return text or None


# domain field -> (column, encoder)
_ORDER_FIELD_ENCODERS: Dict[str, tuple[str, Callable[[Any], Any]]] = {
    "order_code": ("order_code", lambda v: str(v).strip()),
    "created_by": ("created_by", lambda v: str(v or "")),
    "customer_name": ("customer_name", lambda v: str(v or "").strip()),
    "customer_email": ("customer_email", _text_or_none),
    "customer_phone": ("customer_phone", lambda v: str(v or "").strip()),
    "staff_name": ("staff_name", lambda v: str(v or "").strip()),
    "deposit": ("deposit_cents", lambda v: money_to_cents(non_negative(v))),
    "lines": ("items", _items_json),
    "subtotal": ("subtotal_cents", lambda v: money_to_cents(non_negative(v))),
    "balance": ("balance_cents", lambda v: money_to_cents(non_negative(v))),
    "is_complete": ("is_complete", lambda v: 1 if v else 0),
    "notes": ("notes", _text_or_none),
}

_PRODUCT_FIELD_ENCODERS: Dict[str, tuple[str, Callable[[Any], Any]]] = {
    "name": ("name", lambda v: str(v or "").strip()),
    "price": ("price_cents", lambda v: money_to_cents(non_negative(v))),
    "active": ("active", lambda v: 1 if v else 0),
    "category": ("category", _text_or_none),
    "description": ("description", _text_or_none),
}


def _encode(fields: Mapping[str, Any], encoders: Mapping[str, tuple[str, Callable[[Any], Any]]]) -> Dict[str, Any]:
    unknown = sorted(set(fields) - set(encoders))
    if unknown:
        raise ValueError(f"unsupported field(s): {', '.join(unknown)}")
    columns: Dict[str, Any] = {}
    for key, value in fields.items():
        column, encoder = encoders[key]
        columns[column] = encoder(value)
    return columns


class _SqliteTable:
    __slots__ = ("db", "feed")

    table = ""

    def __init__(self, db: Database, feed: Optional[ChangeFeed] = None) -> None:
        self.db = db
        self.feed = feed or ChangeFeed()

    def subscribe_to_changes(self, callback: ChangeCallback) -> Subscription:
        return self.feed.subscribe(callback)

    def _publish(self, kind: str, row: Mapping[str, Any]) -> None:
        self.feed.publish(ChangeEvent(kind=kind, row=dict(row), table=self.table))

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            raise RemoteStoreError(f"{self.table}: {exc}") from exc

    def _fetch_one(self, conn, query: str, params: tuple) -> Optional[dict]:
        row = conn.execute(query, params).fetchone()
        return dict(row) if row else None

    def _update_sync(self, key: Any, columns: Mapping[str, Any], select_sql: str) -> dict:
        with self.db.transaction() as conn:
            if columns:
                assignments = ", ".join(f"{col}=?" for col in columns)
                cur = conn.execute(
                    f"UPDATE {self.table} SET {assignments} WHERE id=?",
                    (*columns.values(), key),
                )
                if cur.rowcount != 1:
                    raise NotFound(self.table, key)
            row = self._fetch_one(conn, select_sql, (key,))
            if row is None:
                raise NotFound(self.table, key)
            return row

    def _delete_sync(self, key: Any) -> None:
        with self.db.transaction() as conn:
            cur = conn.execute(f"DELETE FROM {self.table} WHERE id=?", (key,))
            if cur.rowcount != 1:
                raise NotFound(self.table, key)


class SqliteOrderStore(_SqliteTable, OrderStore):
    """Orders table of the shared SQLite file.

    The change feed is in-process only: it carries the writes made through
    this store object. Orders written by other terminals against the same
    file show up only after the next :meth:`RealtimeOrderCache.load`.
    """

    __slots__ = ()

    table = "orders"
    _select_one = f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id=?"

    def _insert_sync(self, columns: Dict[str, Any]) -> dict:
        try:
            with self.db.transaction() as conn:
                names = ", ".join(columns)
                marks = ", ".join("?" for _ in columns)
                conn.execute(f"INSERT INTO orders({names}) VALUES({marks})", tuple(columns.values()))
                row = self._fetch_one(conn, self._select_one, (columns["id"],))
                if row is None:
                    raise RemoteStoreError("orders insert did not return the new row")
        except sqlite3.IntegrityError as exc:
            if unique_violation_column(exc) == "orders.order_code":
                raise UniqueViolation("order_code", columns.get("order_code")) from exc
            raise RemoteStoreError(f"orders insert rejected: {exc}") from exc
        return row

    async def insert(self, record: Mapping[str, Any]) -> Order:
        columns = _encode(record, _ORDER_FIELD_ENCODERS)
        if not columns.get("order_code"):
            raise ValueError("order_code is required")
        columns["id"] = uuid4().hex
        columns["created_at"] = utc_now().isoformat()
        columns.setdefault("created_by", "")
        row = await self._run(self._insert_sync, columns)
        self._publish("insert", row)
        return order_from_row(row)

    async def update(self, order_id: str, fields: Mapping[str, Any]) -> Order:
        columns = _encode(fields, _ORDER_FIELD_ENCODERS)
        columns.pop("order_code", None)
        row = await self._run(self._update_sync, order_id, columns, self._select_one)
        self._publish("update", row)
        return order_from_row(row)

    async def delete(self, order_id: str) -> None:
        await self._run(self._delete_sync, order_id)
        self._publish("delete", {"id": order_id})

    def _select_sync(self, is_complete: Optional[bool]) -> List[dict]:
        conn = self.db.get_conn()
        try:
            query = f"SELECT {_ORDER_COLUMNS} FROM orders"
            params: tuple = ()
            if is_complete is not None:
                query += " WHERE is_complete=?"
                params = (1 if is_complete else 0,)
            query += " ORDER BY created_at DESC, id"
            return [dict(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    async def select_all(self, *, is_complete: Optional[bool] = None) -> List[Order]:
        rows = await self._run(self._select_sync, is_complete)
        return [order_from_row(row) for row in rows]

    def _get_sync(self, order_id: str) -> dict:
        conn = self.db.get_conn()
        try:
            row = self._fetch_one(conn, self._select_one, (order_id,))
        finally:
            conn.close()
        if row is None:
            raise NotFound("orders", order_id)
        return row

    async def get(self, order_id: str) -> Order:
        return order_from_row(await self._run(self._get_sync, order_id))


class SqliteProductStore(_SqliteTable, ProductStore):
    __slots__ = ()

    table = "products"
    _select_one = (
        "SELECT id, name, price_cents, active, category, description, created_at "
        "FROM products WHERE id=?"
    )

    def _all_sync(self, active_only: bool) -> List[dict]:
        conn = self.db.get_conn()
        try:
            query = "SELECT id, name, price_cents, active, category, description, created_at FROM products"
            if active_only:
                query += " WHERE active=1"
            query += " ORDER BY created_at DESC, id DESC"
            return [dict(row) for row in conn.execute(query).fetchall()]
        finally:
            conn.close()

    async def get_all(self, *, active_only: bool = True) -> List[Product]:
        rows = await self._run(self._all_sync, active_only)
        return [product_from_row(row) for row in rows]

    def _by_id_sync(self, product_id: int) -> Optional[dict]:
        conn = self.db.get_conn()
        try:
            return self._fetch_one(conn, self._select_one, (product_id,))
        finally:
            conn.close()

    async def get_by_id(self, product_id: int) -> Optional[Product]:
        row = await self._run(self._by_id_sync, product_id)
        return product_from_row(row) if row else None

    def _insert_sync(self, columns: Dict[str, Any]) -> dict:
        with self.db.transaction() as conn:
            names = ", ".join(columns)
            marks = ", ".join("?" for _ in columns)
            cur = conn.execute(f"INSERT INTO products({names}) VALUES({marks})", tuple(columns.values()))
            row = self._fetch_one(conn, self._select_one, (cur.lastrowid,))
            if row is None:
                raise RemoteStoreError("products insert did not return the new row")
        return row

    async def insert(self, record: Mapping[str, Any]) -> Product:
        columns = _encode(record, _PRODUCT_FIELD_ENCODERS)
        columns.setdefault("active", 1)
        columns["created_at"] = utc_now().isoformat()
        row = await self._run(self._insert_sync, columns)
        self._publish("insert", row)
        return product_from_row(row)

    async def update(self, product_id: int, fields: Mapping[str, Any]) -> Product:
        columns = _encode(fields, _PRODUCT_FIELD_ENCODERS)
        row = await self._run(self._update_sync, product_id, columns, self._select_one)
        self._publish("update", row)
        return product_from_row(row)

    async def delete(self, product_id: int) -> None:
        await self._run(self._delete_sync, product_id)
        self._publish("delete", {"id": product_id})
