from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

TILE_DEGREES = 1e-4


@dataclass(frozen=True, order=True)
class CellId:
    """Integer grid cell (i, j); i follows latitude, j follows longitude."""

    i: int
    j: int

    def to_dict(self) -> dict[str, int]:
        return {"i": self.i, "j": self.j}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CellId":
        return cls(i=int(data["i"]), j=int(data["j"]))

    def offset(self, di: int, dj: int) -> "CellId":
        return CellId(self.i + di, self.j + dj)


@dataclass(frozen=True)
class Position:
    """Continuous lat/lng-equivalent position."""

    lat: float
    lng: float

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        return cls(lat=float(data["lat"]), lng=float(data["lng"]))


def to_cell(position: Position, cell_size: float = TILE_DEGREES) -> CellId:
    # floor, not int(): -0.5 cells belongs to cell -1
    return CellId(
        i=math.floor(position.lat / cell_size),
        j=math.floor(position.lng / cell_size),
    )


def to_position(cell: CellId, cell_size: float = TILE_DEGREES) -> Position:
    """Center of the cell."""
    return Position(lat=(cell.i + 0.5) * cell_size, lng=(cell.j + 0.5) * cell_size)


def cell_bounds(cell: CellId, cell_size: float = TILE_DEGREES) -> tuple[Position, Position]:
    low = Position(lat=cell.i * cell_size, lng=cell.j * cell_size)
    high = Position(lat=low.lat + cell_size, lng=low.lng + cell_size)
    return (low, high)


def chebyshev_distance(a: CellId, b: CellId) -> int:
    return max(abs(a.i - b.i), abs(a.j - b.j))


def cell_key(cell: CellId) -> str:
    return f"{cell.i},{cell.j}"


def parse_cell_key(key: str) -> CellId:
    if not isinstance(key, str):
        raise ValueError("cell key must be a string")
    parts = key.split(",")
    if len(parts) != 2:
        raise ValueError(f"cell key must look like 'i,j': {key!r}")
    try:
        return CellId(i=int(parts[0]), j=int(parts[1]))
    except ValueError as exc:
        raise ValueError(f"cell key must contain integers: {key!r}") from exc
