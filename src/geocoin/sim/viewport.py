from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from geocoin.sim.grid import TILE_DEGREES, CellId, Position, cell_bounds, chebyshev_distance, to_cell
from geocoin.sim.world import WorldState

logger = logging.getLogger(__name__)

VIEWPORT_BUFFER = 2
RETENTION_PERSISTENT = "persistent"
RETENTION_FARMING = "farming"
RETENTION_POLICIES = {RETENTION_PERSISTENT, RETENTION_FARMING}


@dataclass(frozen=True)
class Viewport:
    """Visible rectangle given as two opposite corner cells, in any order."""

    corner_a: CellId
    corner_b: CellId

    @property
    def min_i(self) -> int:
        return min(self.corner_a.i, self.corner_b.i)

    @property
    def max_i(self) -> int:
        return max(self.corner_a.i, self.corner_b.i)

    @property
    def min_j(self) -> int:
        return min(self.corner_a.j, self.corner_b.j)

    @property
    def max_j(self) -> int:
        return max(self.corner_a.j, self.corner_b.j)

    @classmethod
    def from_bounds(cls, south_west: Position, north_east: Position, cell_size: float = TILE_DEGREES) -> "Viewport":
        return cls(to_cell(south_west, cell_size), to_cell(north_east, cell_size))

    @classmethod
    def around(cls, center: CellId, half_height: int, half_width: int) -> "Viewport":
        return cls(center.offset(-half_height, -half_width), center.offset(half_height, half_width))


@dataclass(frozen=True)
class CellView:
    """Everything a renderer needs to draw one cell."""

    cell: CellId
    value: int | None
    in_range: bool
    bounds: tuple[Position, Position]

    @property
    def has_token(self) -> bool:
        return self.value is not None


@dataclass(frozen=True)
class ReconcileReport:
    removed: tuple[CellId, ...]
    materialized: int
    evicted: tuple[CellId, ...] = ()


class CellRenderer:
    """Presentation collaborator that owns materialized cell handles."""

    def create_handle(self, view: CellView) -> Any:
        raise NotImplementedError

    def remove_handle(self, handle: Any) -> None:
        raise NotImplementedError


def visible_cells(viewport: Viewport, margin: int = VIEWPORT_BUFFER) -> set[CellId]:
    if margin < 0:
        raise ValueError("margin must be >= 0")
    return {
        CellId(i, j)
        for i in range(viewport.min_i - margin, viewport.max_i + margin + 1)
        for j in range(viewport.min_j - margin, viewport.max_j + margin + 1)
    }


class ViewportReconciler:
    """Keeps the renderer's handle set equal to the padded visible rectangle."""

    def __init__(
        self,
        world: WorldState,
        renderer: CellRenderer,
        *,
        interact_radius: int,
        margin: int = VIEWPORT_BUFFER,
        cell_size: float = TILE_DEGREES,
        retention: str = RETENTION_PERSISTENT,
    ) -> None:
        if not isinstance(margin, int) or margin < 0:
            raise ValueError("margin must be a non-negative integer")
        if retention not in RETENTION_POLICIES:
            raise ValueError(f"unknown retention policy: {retention}")
        self.world = world
        self.renderer = renderer
        self.interact_radius = interact_radius
        self.margin = margin
        self.cell_size = cell_size
        self.retention = retention
        self._handles: dict[CellId, Any] = {}
        self._views: dict[CellId, CellView] = {}
        self._player_cell: CellId | None = None

    def materialized_cells(self) -> set[CellId]:
        return set(self._handles)

    def is_materialized(self, cell: CellId) -> bool:
        return cell in self._handles

    def handle_for(self, cell: CellId) -> Any | None:
        return self._handles.get(cell)

    def views(self) -> list[CellView]:
        return [self._views[cell] for cell in sorted(self._views)]

    def view_for(self, cell: CellId, player_cell: CellId) -> CellView:
        token = self.world.effective_token(cell)
        return CellView(
            cell=cell,
            value=token.value if token is not None else None,
            in_range=chebyshev_distance(cell, player_cell) <= self.interact_radius,
            bounds=cell_bounds(cell, self.cell_size),
        )

    def reconcile(self, viewport: Viewport, player_cell: CellId) -> ReconcileReport:
        visible = visible_cells(viewport, self.margin)
        self._player_cell = player_cell

        removed: list[CellId] = []
        evicted: list[CellId] = []
        for cell in sorted(self._handles):
            if cell in visible:
                continue
            self._drop_handle(cell)
            removed.append(cell)
            if self.retention == RETENTION_FARMING and self.world.store.evict(cell):
                evicted.append(cell)

        for cell in sorted(visible):
            self._materialize(cell, player_cell)

        if evicted:
            logger.debug("farming retention evicted %d mementos", len(evicted))
        return ReconcileReport(removed=tuple(removed), materialized=len(visible), evicted=tuple(evicted))

    def refresh_cell(self, cell: CellId) -> bool:
        if cell not in self._handles or self._player_cell is None:
            return False
        self._materialize(cell, self._player_cell)
        return True

    def clear(self) -> None:
        for cell in sorted(self._handles):
            self._drop_handle(cell)

    def _materialize(self, cell: CellId, player_cell: CellId) -> None:
        self._drop_handle(cell)
        view = self.view_for(cell, player_cell)
        self._handles[cell] = self.renderer.create_handle(view)
        self._views[cell] = view

    def _drop_handle(self, cell: CellId) -> None:
        if cell not in self._handles:
            return
        handle = self._handles.pop(cell)
        self._views.pop(cell, None)
        self.renderer.remove_handle(handle)
