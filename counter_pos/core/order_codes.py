"""Short human-readable order codes: ``PREFIX-TTTTTT-RRRR``.

The time block is the Unix time in seconds in base 36, so it rotates every
second; the random block adds 36**4 combinations per second. Uniqueness is
not guaranteed here; the orders table carries the unique constraint and the
submission loop retries on collision.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_TIME_LEN = 6
_RANDOM_LEN = 4
DEFAULT_PREFIX = "ORD"


def to_base36(value: int, width: int) -> str:
    """Render *value* in base 36, zero-padded (and wrapped) to *width*."""
    if value < 0:
        raise ValueError("value must be non-negative")
    value %= len(_ALPHABET) ** width
    chars: list[str] = []
    while value:
        value, rem = divmod(value, len(_ALPHABET))
        chars.append(_ALPHABET[rem])
    return "".join(reversed(chars)).rjust(width, "0")


def _strong_rng() -> random.Random:
    rng = random.SystemRandom()
    try:
        rng.getrandbits(8)
    except NotImplementedError:
        logger.warning("no OS randomness source available; order codes fall back to random.Random")
        return random.Random()
    return rng


def _normalize_prefix(prefix: str) -> str:
    cleaned = "".join(ch for ch in (prefix or "").upper() if ch.isalnum())
    return cleaned or DEFAULT_PREFIX


class OrderCodeGenerator:
    __slots__ = ("prefix", "_clock", "_rng")

    def __init__(
        self,
        prefix: str = DEFAULT_PREFIX,
        *,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.prefix = _normalize_prefix(prefix)
        self._clock = clock
        self._rng = rng if rng is not None else _strong_rng()

    @property
    def code_length(self) -> int:
        return len(self.prefix) + _TIME_LEN + _RANDOM_LEN + 2

    def time_fragment(self) -> str:
        return to_base36(int(self._clock()), _TIME_LEN)

    def random_fragment(self) -> str:
        return to_base36(self._rng.randrange(len(_ALPHABET) ** _RANDOM_LEN), _RANDOM_LEN)

    def generate(self) -> str:
        return f"{self.prefix}-{self.time_fragment()}-{self.random_fragment()}"

    __call__ = generate


def is_well_formed(code: str, prefix: str = DEFAULT_PREFIX) -> bool:
    parts = (code or "").split("-")
    if len(parts) != 3 or parts[0] != _normalize_prefix(prefix):
        return False
    _, time_part, random_part = parts
    return (
        len(time_part) == _TIME_LEN
        and len(random_part) == _RANDOM_LEN
        and all(ch in _ALPHABET for ch in time_part + random_part)
    )
