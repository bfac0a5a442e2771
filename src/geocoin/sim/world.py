from __future__ import annotations

import math
import time
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from geocoin.sim.grid import CellId

if TYPE_CHECKING:
    from geocoin.sim.generator import TokenGenerator

Clock = Callable[[], int]
StoreListener = Callable[[CellId, "CellMemento"], None]


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _is_power_of_two(value: int) -> bool:
    return value > 0 and (value & (value - 1)) == 0


@dataclass(frozen=True)
class Token:
    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise ValueError("token.value must be an integer")
        if not _is_power_of_two(self.value) or self.value < 2:
            raise ValueError(f"token.value must be a power of two >= 2, got {self.value}")

    def doubled(self) -> "Token":
        return Token(self.value * 2)

    def to_dict(self) -> dict[str, int]:
        return {"value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Token":
        if not isinstance(data, dict):
            raise ValueError("token must be an object")
        return cls(value=data.get("value"))


def token_to_dict(token: Token | None) -> dict[str, int] | None:
    return token.to_dict() if token is not None else None


def token_from_dict(data: dict[str, Any] | None) -> Token | None:
    return Token.from_dict(data) if data is not None else None


@dataclass(frozen=True)
class CellMemento:
    """Player-caused deviation from generated state.

    ``token=None`` records a deliberately emptied cell, which is not the same as
    having no memento at all.
    """

    token: Token | None
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"token": token_to_dict(self.token), "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CellMemento":
        if not isinstance(data, dict):
            raise ValueError("memento must be an object")
        timestamp = data.get("timestamp", 0)
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or not math.isfinite(timestamp):
            raise ValueError("memento.timestamp must be a finite number")
        return cls(token=token_from_dict(data.get("token")), timestamp=int(timestamp))


class OverrideStore:
    """Flyweight store: only cells the player has touched are present."""

    def __init__(self, clock: Clock = wall_clock_ms) -> None:
        self._clock = clock
        self._mementos: dict[CellId, CellMemento] = {}
        self._listeners: list[StoreListener] = []

    def __len__(self) -> int:
        return len(self._mementos)

    def __contains__(self, cell: object) -> bool:
        return cell in self._mementos

    def __iter__(self) -> Iterator[CellId]:
        return iter(sorted(self._mementos))

    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        self._listeners.remove(listener)

    def get(self, cell: CellId) -> CellMemento | None:
        return self._mementos.get(cell)

    def set(self, cell: CellId, token: Token | None) -> CellMemento:
        memento = CellMemento(token=token, timestamp=self._clock())
        self._mementos[cell] = memento
        for listener in list(self._listeners):
            listener(cell, memento)
        return memento

    def evict(self, cell: CellId) -> bool:
        return self._mementos.pop(cell, None) is not None

    def clear(self) -> None:
        self._mementos.clear()

    def export(self) -> list[tuple[CellId, CellMemento]]:
        return [(cell, self._mementos[cell]) for cell in sorted(self._mementos)]

    def import_entries(self, entries: Iterable[tuple[CellId, CellMemento]]) -> None:
        """Replace the whole store; nothing from the previous contents survives."""
        replacement: dict[CellId, CellMemento] = {}
        for cell, memento in entries:
            if not isinstance(cell, CellId):
                raise ValueError("store entries must be keyed by CellId")
            if not isinstance(memento, CellMemento):
                raise ValueError("store entries must hold CellMemento values")
            replacement[cell] = memento
        self._mementos = replacement


class WorldState:
    """Generator output composed with player overrides."""

    def __init__(self, generator: TokenGenerator, store: OverrideStore | None = None) -> None:
        self.generator = generator
        self.store = store if store is not None else OverrideStore()

    def effective_token(self, cell: CellId) -> Token | None:
        memento = self.store.get(cell)
        if memento is not None:
            return memento.token
        return self.generator.generate(cell)

    def set_cell_token(self, cell: CellId, token: Token | None) -> CellMemento:
        return self.store.set(cell, token)

    def is_modified(self, cell: CellId) -> bool:
        return cell in self.store
