"""The cart being composed at the counter before it is submitted."""

from __future__ import annotations

import json
import logging
import math
from numbers import Integral
from pathlib import Path
from typing import Any, Optional

from ..core.bus import EventBus, bus as default_bus
from ..core.config_store import atomic_write_json
from ..core.lines import ItemLineSet, coerce_positive_int, parse_stored_lines

logger = logging.getLogger(__name__)


def _as_quantity(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, Integral):
        return int(value)
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return None


class CartStore:
    """Single-writer line set plus derived totals.

    When *autosave_path* is given every mutation is mirrored to that JSON file
    so a crashed terminal can :meth:`restore` its half-built cart.
    """

    __slots__ = ("_lines", "_bus", "autosave_path")

    def __init__(self, *, bus: Optional[EventBus] = None, autosave_path: Optional[Path] = None) -> None:
        self._lines = ItemLineSet()
        self._bus = bus or default_bus
        self.autosave_path = Path(autosave_path) if autosave_path else None

    # -- queries ---------------------------------------------------------
    def quantity_of(self, product_id: Any) -> int:
        pid = coerce_positive_int(product_id)
        return self._lines.get(pid) if pid is not None else 0

    @property
    def total_quantity(self) -> int:
        return self._lines.total_quantity

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def lines(self) -> ItemLineSet:
        return self._lines.copy()

    def __len__(self) -> int:
        return len(self._lines)

    # -- mutations -------------------------------------------------------
    # Product ids must be positive ints (or digit strings); anything else is ignored.
    def _product_id(self, product_id: Any) -> Optional[int]:
        pid = coerce_positive_int(product_id)
        if pid is None:
            logger.debug("ignoring invalid product id %r", product_id)
        return pid

    def increase(self, product_id: Any) -> int:
        pid = self._product_id(product_id)
        if pid is None:
            return 0
        qty = self._lines.add(pid, 1)
        self._changed()
        return qty

    def decrease(self, product_id: Any) -> int:
        pid = coerce_positive_int(product_id)
        if pid is None or pid not in self._lines:
            return 0
        qty = self._lines.subtract(pid, 1)
        self._changed()
        return qty

    def set_quantity(self, product_id: Any, qty: Any) -> int:
        pid = self._product_id(product_id)
        if pid is None:
            return 0
        value = _as_quantity(qty)
        if value is None:
            logger.debug("ignoring non-integer quantity %r for product %s", qty, pid)
            return self.quantity_of(pid)
        if value <= 0 and pid not in self._lines:
            return 0
        result = self._lines.set(pid, value)
        self._changed()
        return result

    def remove(self, product_id: Any) -> None:
        pid = coerce_positive_int(product_id)
        if pid is None or pid not in self._lines:
            return
        self._lines.discard(pid)
        self._changed()

    def clear(self) -> None:
        self._lines.clear()
        self._changed()

    # -- crash recovery --------------------------------------------------
    def restore(self) -> bool:
        """Reload the autosaved cart, if any. Returns ``True`` when lines were restored."""
        if self.autosave_path is None or not self.autosave_path.exists():
            return False
        try:
            with self.autosave_path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError):
            logger.warning("could not read saved cart at %s", self.autosave_path)
            return False
        restored = parse_stored_lines(data.get("items") if isinstance(data, dict) else data)
        self._lines = restored
        self._bus.emit("cart_changed", self.total_quantity)
        return bool(restored)

    def _save(self) -> None:
        if self.autosave_path is None:
            return
        try:
            atomic_write_json(self.autosave_path, {"items": self._lines.to_rows()})
        except OSError:
            logger.warning("could not autosave cart to %s", self.autosave_path, exc_info=True)

    def _changed(self) -> None:
        self._save()
        self._bus.emit("cart_changed", self.total_quantity)
