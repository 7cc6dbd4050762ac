"""Currency formatting helpers for Counter POS.

Amounts are carried as two-place decimals everywhere in the core. Screens
and printed summaries want thousands separators and a leading symbol, with
negative amounts signed before the symbol.
"""

from __future__ import annotations

from typing import Any

from ..core.money import safe_money


def format_currency(amount: Any, symbol: str = "$") -> str:
    """Return a human friendly amount with two decimals and grouped thousands.

    Anything that is not a finite amount is shown as zero.
    """

    value = safe_money(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"
