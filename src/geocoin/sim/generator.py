from __future__ import annotations

from geocoin.sim.grid import CellId
from geocoin.sim.luck import LuckFn, luck
from geocoin.sim.world import Token

TOKEN_KEY_TAG = "token"
TOKEN_SPAWN_THRESHOLD = 0.96
TOKEN_VALUE_16_THRESHOLD = 0.997
TOKEN_VALUE_8_THRESHOLD = 0.99
TOKEN_VALUE_4_THRESHOLD = 0.975


def token_key(cell: CellId) -> str:
    return f"{cell.i},{cell.j},{TOKEN_KEY_TAG}"


def token_for_roll(roll: float) -> Token | None:
    """Map a luck roll onto the spawn table; rarest tier is checked first."""
    if roll < TOKEN_SPAWN_THRESHOLD:
        return None
    if roll > TOKEN_VALUE_16_THRESHOLD:
        return Token(16)
    if roll > TOKEN_VALUE_8_THRESHOLD:
        return Token(8)
    if roll > TOKEN_VALUE_4_THRESHOLD:
        return Token(4)
    return Token(2)


class TokenGenerator:
    """Pure cell -> initial token function. Never sees player overrides."""

    def __init__(self, luck_fn: LuckFn = luck) -> None:
        self._luck = luck_fn

    def generate(self, cell: CellId) -> Token | None:
        roll = self._luck(token_key(cell))
        if not 0.0 <= roll < 1.0:
            raise ValueError(f"luck function returned {roll!r} for {token_key(cell)!r}; expected [0, 1)")
        return token_for_roll(roll)
