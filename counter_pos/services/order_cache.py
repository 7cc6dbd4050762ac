"""Session-wide view of every known order, reconciled with the store's change feed."""

from __future__ import annotations

import itertools
from typing import Any, Dict, Hashable, List, Mapping, Optional, Tuple, Union

from ..core.bus import EventBus
from ..core.models import Order, order_from_row, row_key
from .live import LiveIndex
from .store import ChangeCallback, OrderStore, Subscription


class RealtimeOrderCache(LiveIndex[Order]):
    """Deduplicated ``order id -> Order`` mapping.

    Insert and update events are the same idempotent upsert, so duplicated
    or reordered deliveries, and the echo of an order this session submitted
    itself, all converge on the latest row.

    The cache keeps private copies: orders handed in are copied on the way
    in and every read returns a fresh copy, so callers can never edit the
    cached state in place.
    """

    changed_event = "orders_changed"
    failed_event = "orders_load_failed"

    def __init__(self, store: OrderStore, *, bus: Optional[EventBus] = None) -> None:
        super().__init__(bus=bus)
        self.store = store
        self._stamps: Dict[Hashable, int] = {}
        self._clock = itertools.count(1)

    async def _fetch(self) -> List[Order]:
        return await self.store.select_all()

    def _open_feed(self, callback: ChangeCallback) -> Subscription:
        return self.store.subscribe_to_changes(callback)

    def _key(self, item: Order) -> Hashable:
        return item.id

    def _row_key(self, row: Mapping[str, Any]) -> Optional[Hashable]:
        return row_key(row)

    def _from_row(self, row: Mapping[str, Any]) -> Order:
        return order_from_row(row)

    def _put(self, item: Order) -> bool:
        stored = super()._put(item.with_changes())
        if stored:
            self._stamps[item.id] = next(self._clock)
        return stored

    def _drop(self, key: Hashable) -> bool:
        self._stamps.pop(key, None)
        return super()._drop(key)

    # -- change application -----------------------------------------------
    def apply_insert_or_update(self, order: Order) -> None:
        self.upsert(order)

    def apply_delete(self, order: Union[Order, str]) -> None:
        key = order.id if isinstance(order, Order) else str(order)
        self.remove(key)

    def stamp(self, order_id: str) -> Optional[int]:
        """Token that changes every time the entry for *order_id* is written or dropped."""
        return self._stamps.get(order_id)

    # -- reads -----------------------------------------------------------
    def get(self, order_id: str) -> Optional[Order]:
        order = self._items.get(order_id)
        return order.with_changes() if order is not None else None

    def orders(self) -> Tuple[Order, ...]:
        """Snapshot of all cached orders, newest first."""
        ordered = sorted(self._items.values(), key=lambda o: o.id)
        ordered.sort(key=lambda o: o.created_at, reverse=True)
        return tuple(o.with_changes() for o in ordered)

    def open_orders(self) -> Tuple[Order, ...]:
        return tuple(o for o in self.orders() if not o.is_complete)

    def find_by_code(self, order_code: str) -> Optional[Order]:
        wanted = (order_code or "").strip().upper()
        for order in self._items.values():
            if order.order_code.upper() == wanted:
                return order.with_changes()
        return None

    def close(self) -> None:
        super().close()
        self._stamps.clear()
