"""Client-side mirror of a remote table kept warm by bulk loads and change events.

Bulk loads and change events write through the same two primitives,
``_put`` and ``_drop``, keyed by row id. Keys touched by an event while a
load is in flight are left alone when that load lands, so a slow load never
rolls back a newer event.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Hashable, List, Mapping, Optional, Set, TypeVar

from ..core.bus import EventBus, bus as default_bus
from ..core.models import ChangeEvent
from .store import ChangeCallback, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LiveIndex(ABC, Generic[T]):
    changed_event = ""
    failed_event = ""

    def __init__(self, *, bus: Optional[EventBus] = None) -> None:
        self._items: Dict[Hashable, T] = {}
        self._bus = bus or default_bus
        self._subscription: Optional[Subscription] = None
        self._inflight: List[Set[Hashable]] = []
        self._closed = False
        self.loaded = False
        self.last_error: Optional[BaseException] = None

    # -- hooks -----------------------------------------------------------
    @abstractmethod
    async def _fetch(self) -> List[T]: ...

    @abstractmethod
    def _open_feed(self, callback: ChangeCallback) -> Subscription: ...

    @abstractmethod
    def _key(self, item: T) -> Hashable: ...

    @abstractmethod
    def _row_key(self, row: Mapping[str, Any]) -> Optional[Hashable]: ...

    @abstractmethod
    def _from_row(self, row: Mapping[str, Any]) -> T: ...

    def _accepts(self, item: T) -> bool:
        return True

    # -- primitives ------------------------------------------------------
    def _put(self, item: T) -> bool:
        key = self._key(item)
        if not self._accepts(item):
            return self._drop(key)
        self._items[key] = item
        return True

    def _drop(self, key: Hashable) -> bool:
        return self._items.pop(key, None) is not None

    def _mark(self, key: Hashable) -> None:
        for touched in self._inflight:
            touched.add(key)

    def _emit_changed(self) -> None:
        if self.changed_event:
            self._bus.emit(self.changed_event)

    # -- targeted changes ------------------------------------------------
    def upsert(self, item: T) -> None:
        if self._closed:
            return
        self._mark(self._key(item))
        if self._put(item):
            self._emit_changed()

    def remove(self, key: Hashable) -> None:
        if self._closed:
            return
        self._mark(key)
        if self._drop(key):
            self._emit_changed()

    def apply_change(self, change: ChangeEvent) -> None:
        if change.kind == "delete":
            key = self._row_key(change.row)
            if key is None:
                raise ValueError(f"delete event without a usable id: {dict(change.row)!r}")
            self.remove(key)
        else:
            self.upsert(self._from_row(change.row))

    def _on_change(self, change: ChangeEvent) -> None:
        try:
            self.apply_change(change)
        except Exception:
            logger.exception("skipping malformed %s %s event", change.table, change.kind)

    # -- bulk load -------------------------------------------------------
    async def load(self) -> bool:
        """Replace the contents with a fresh full query.

        Returns ``False`` (keeping the current contents) when the query fails
        or the index was closed while the query was in flight.
        """
        if self._closed:
            return False
        touched: Set[Hashable] = set()
        self._inflight.append(touched)
        try:
            fetched = await self._fetch()
        except Exception as exc:
            self.last_error = exc
            logger.warning("load failed, keeping %d cached row(s): %s", len(self._items), exc)
            if self.failed_event:
                self._bus.emit(self.failed_event, exc)
            return False
        finally:
            self._inflight.remove(touched)

        if self._closed:
            return False

        fresh: Dict[Hashable, T] = {}
        for item in fetched:
            fresh[self._key(item)] = item
        for key in list(self._items):
            if key not in fresh and key not in touched:
                self._drop(key)
        for key, item in fresh.items():
            if key not in touched:
                self._put(item)
        self.loaded = True
        self.last_error = None
        self._emit_changed()
        return True

    # -- subscription lifecycle -----------------------------------------
    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def subscribe(self) -> bool:
        """Attach to the change feed. A second call while attached is a no-op."""
        if self._closed or self.is_subscribed:
            return False
        self._subscription = self._open_feed(self._on_change)
        return True

    def unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def close(self) -> None:
        self.unsubscribe()
        self._closed = True
        self._items.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    # -- reads -----------------------------------------------------------
    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items
