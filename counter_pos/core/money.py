"""Money amounts: two-place decimals in memory, whole cents in the database."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
_CENTS_PER_UNIT = 100


def parse_money(value: Any) -> Optional[Decimal]:
    """Read *value* as a finite amount rounded to the cent, or ``None``.

    Bools and ``None`` are not amounts. Floats go through ``str`` so that
    ``0.1`` reads as ten cents rather than its binary expansion.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Any) -> Decimal:
    """Round an amount that is known to be valid; raises ``ValueError`` otherwise."""
    amount = parse_money(value)
    if amount is None:
        raise ValueError(f"not a money amount: {value!r}")
    return amount


def safe_money(value: Any) -> Decimal:
    amount = parse_money(value)
    return ZERO if amount is None else amount


def non_negative(value: Any) -> Decimal:
    return max(safe_money(value), ZERO)


def cents_to_money(cents: Any) -> Decimal:
    if cents is None:
        return ZERO
    return to_money(Decimal(int(cents)) / _CENTS_PER_UNIT)


def money_to_cents(value: Any) -> int:
    return int(to_money(value).scaleb(2))
