from __future__ import annotations

import hashlib
from collections.abc import Callable

LuckFn = Callable[[str], float]

# 53 bits fit a float mantissa exactly, so the result never rounds up to 1.0.
_LUCK_BITS = 53
_LUCK_DENOMINATOR = float(1 << _LUCK_BITS)


def luck(key: str) -> float:
    """Deterministic value in [0, 1) derived from ``key`` alone."""
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    raw = int.from_bytes(digest[:8], byteorder="big", signed=False)
    return (raw >> (64 - _LUCK_BITS)) / _LUCK_DENOMINATOR
