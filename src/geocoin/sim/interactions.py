from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from geocoin.sim.grid import CellId, chebyshev_distance
from geocoin.sim.world import Token, WorldState

INTERACT_RADIUS = 3
TARGET_VALUE = 1024

OUTCOME_PICKUP = "pickup"
OUTCOME_PLACE = "place"
OUTCOME_CRAFT = "craft"
OUTCOME_OUT_OF_RANGE = "out_of_range"
OUTCOME_INVALID_COMBINATION = "invalid_combination"
OUTCOME_NOTHING_TO_DO = "nothing_to_do"

ACCEPTED_OUTCOMES = {OUTCOME_PICKUP, OUTCOME_PLACE, OUTCOME_CRAFT}
REJECTED_OUTCOMES = {OUTCOME_OUT_OF_RANGE, OUTCOME_INVALID_COMBINATION, OUTCOME_NOTHING_TO_DO}


class Inventory:
    """Single-slot token holder owned by the player."""

    def __init__(self, token: Token | None = None) -> None:
        self.token = token

    @property
    def is_empty(self) -> bool:
        return self.token is None

    @property
    def value(self) -> int | None:
        return self.token.value if self.token is not None else None

    def to_dict(self) -> dict[str, int] | None:
        return self.token.to_dict() if self.token is not None else None


@dataclass(frozen=True)
class InteractionOutcome:
    outcome: str
    cell: CellId
    value: int | None = None
    victory: bool = False

    @property
    def accepted(self) -> bool:
        return self.outcome in ACCEPTED_OUTCOMES

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "cell": self.cell.to_dict(),
            "value": self.value,
            "victory": self.victory,
        }


class InteractionEngine:
    """Pickup / place / craft state machine for a single targeted cell."""

    def __init__(
        self,
        world: WorldState,
        inventory: Inventory,
        *,
        interact_radius: int = INTERACT_RADIUS,
        target_value: int = TARGET_VALUE,
        victory_reached: bool = False,
    ) -> None:
        self.world = world
        self.inventory = inventory
        self.interact_radius = interact_radius
        self.target_value = target_value
        self.victory_reached = victory_reached

    def in_range(self, player_cell: CellId, cell: CellId) -> bool:
        return chebyshev_distance(player_cell, cell) <= self.interact_radius

    def activate(self, player_cell: CellId, cell: CellId) -> InteractionOutcome:
        if not self.in_range(player_cell, cell):
            return InteractionOutcome(outcome=OUTCOME_OUT_OF_RANGE, cell=cell)

        held = self.inventory.token
        cell_token = self.world.effective_token(cell)

        # Inventory is written before the store so store listeners observe both.
        if held is None and cell_token is not None:
            self.inventory.token = Token(cell_token.value)
            self.world.set_cell_token(cell, None)
            return InteractionOutcome(outcome=OUTCOME_PICKUP, cell=cell, value=cell_token.value)

        if held is not None and cell_token is None:
            self.inventory.token = None
            self.world.set_cell_token(cell, Token(held.value))
            return InteractionOutcome(outcome=OUTCOME_PLACE, cell=cell, value=held.value)

        if held is not None and cell_token is not None and held.value == cell_token.value:
            crafted = held.doubled()
            self.inventory.token = None
            self.world.set_cell_token(cell, crafted)
            victory = False
            if crafted.value >= self.target_value and not self.victory_reached:
                self.victory_reached = True
                victory = True
            return InteractionOutcome(outcome=OUTCOME_CRAFT, cell=cell, value=crafted.value, victory=victory)

        if held is not None:
            return InteractionOutcome(outcome=OUTCOME_INVALID_COMBINATION, cell=cell)
        return InteractionOutcome(outcome=OUTCOME_NOTHING_TO_DO, cell=cell)
