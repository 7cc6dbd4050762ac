"""Product-id to quantity line sets shared by the cart and stored orders."""
from __future__ import annotations

import logging
import math
from numbers import Integral
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# Field names seen on stored order lines over time.
_ID_KEYS = ("id", "product_id", "productId")
_QTY_KEYS = ("quantity", "qty", "count")


def coerce_positive_int(value: Any) -> Optional[int]:
    """Return *value* as an int >= 1, or ``None`` if it is not one.

    Accepts ints, integral floats and digit strings; rejects bools,
    fractional or non-finite numbers and anything else.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, Integral):
        number = int(value)
    elif isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        number = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text.isdigit():
            return None
        number = int(text)
    else:
        return None
    return number if number >= 1 else None


class ItemLineSet:
    """Mapping of product id to a quantity that is always at least one."""

    __slots__ = ("_lines",)

    def __init__(self, lines: Optional[Mapping[int, int]] = None) -> None:
        self._lines: Dict[int, int] = {}
        for product_id, qty in (lines or {}).items():
            self.set(product_id, qty)

    # -- queries ---------------------------------------------------------
    def get(self, product_id: Any) -> int:
        return self._lines.get(coerce_positive_int(product_id), 0)

    @property
    def total_quantity(self) -> int:
        return sum(self._lines.values())

    def items(self) -> List[Tuple[int, int]]:
        return list(self._lines.items())

    def copy(self) -> "ItemLineSet":
        clone = ItemLineSet()
        clone._lines = dict(self._lines)
        return clone

    def to_rows(self) -> List[Dict[str, int]]:
        """Serialise as ``[{"id": ..., "quantity": ...}]`` sorted by id."""
        return [{"id": pid, "quantity": qty} for pid, qty in sorted(self._lines.items())]

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._lines))

    def __contains__(self, product_id: object) -> bool:
        return coerce_positive_int(product_id) in self._lines

    def __bool__(self) -> bool:
        return bool(self._lines)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ItemLineSet):
            return self._lines == other._lines
        if isinstance(other, Mapping):
            return self._lines == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"ItemLineSet({dict(sorted(self._lines.items()))!r})"

    # -- mutations -------------------------------------------------------
    def add(self, product_id: Any, qty: int = 1) -> int:
        """Add *qty* to a line, creating it if needed. Returns the new quantity."""
        pid = coerce_positive_int(product_id)
        return self.set(product_id, self._lines.get(pid, 0) + qty)

    def subtract(self, product_id: Any, qty: int = 1) -> int:
        pid = coerce_positive_int(product_id)
        if pid not in self._lines:
            return 0
        return self.set(pid, self._lines[pid] - qty)

    def set(self, product_id: Any, qty: int) -> int:
        pid = coerce_positive_int(product_id)
        if pid is None:
            raise ValueError(f"product id must be a positive integer, got {product_id!r}")
        if qty <= 0:
            self._lines.pop(pid, None)
            return 0
        self._lines[pid] = int(qty)
        return self._lines[pid]

    def discard(self, product_id: Any) -> None:
        self._lines.pop(coerce_positive_int(product_id), None)

    def clear(self) -> None:
        self._lines.clear()

    @classmethod
    def from_rows(cls, raw: Any) -> "ItemLineSet":
        return parse_stored_lines(raw)


def _first_present(entry: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in entry:
            return entry[key]
    return None


def _iter_raw_pairs(raw: Any) -> Iterator[Tuple[Any, Any]]:
    if isinstance(raw, ItemLineSet):
        yield from raw.items()
        return
    if isinstance(raw, Mapping):
        # {"12": 3} shape
        yield from raw.items()
        return
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
        return
    for entry in raw:
        if isinstance(entry, Mapping):
            yield _first_present(entry, _ID_KEYS), _first_present(entry, _QTY_KEYS)
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            yield entry[0], entry[1]
        else:
            yield None, None


def parse_stored_lines(raw: Any) -> ItemLineSet:
    """Normalise persisted order lines into an :class:`ItemLineSet`.

    Entries whose id or quantity is not a positive integer are dropped;
    repeated ids are merged by summing their quantities.
    """
    lines = ItemLineSet()
    dropped = 0
    for raw_id, raw_qty in _iter_raw_pairs(raw):
        product_id = coerce_positive_int(raw_id)
        qty = coerce_positive_int(raw_qty)
        if product_id is None or qty is None:
            dropped += 1
            continue
        lines.add(product_id, qty)
    if dropped:
        logger.debug("dropped %d malformed stored line(s)", dropped)
    return lines
