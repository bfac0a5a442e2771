from __future__ import annotations

import math
from typing import Any

from geocoin.sim.grid import CellId, parse_cell_key

REQUIRED_STATE_FIELDS = {"playerPosition", "modifiedCells"}


def _is_number(value: Any) -> bool:
    return not isinstance(value, bool) and isinstance(value, (int, float)) and math.isfinite(value)


def _validate_token_shape(token: Any, *, field_name: str) -> None:
    if token is None:
        return
    if not isinstance(token, dict):
        raise ValueError(f"{field_name} must be an object or null")
    value = token.get("value")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name}.value must be an integer")
    if value < 2 or (value & (value - 1)) != 0:
        raise ValueError(f"{field_name}.value must be a power of two >= 2")


def validate_state_payload(payload: Any) -> None:
    """Raise ``ValueError`` unless ``payload`` is a complete, loadable save record."""
    if not isinstance(payload, dict):
        raise ValueError("save payload must be an object")

    missing = REQUIRED_STATE_FIELDS - set(payload.keys())
    if missing:
        raise ValueError(f"save payload missing fields: {sorted(missing)}")

    position = payload["playerPosition"]
    if not isinstance(position, dict):
        raise ValueError("playerPosition must be an object")
    if not _is_number(position.get("lat")):
        raise ValueError("playerPosition.lat must be a number")
    if not _is_number(position.get("lng")):
        raise ValueError("playerPosition.lng must be a number")

    _validate_token_shape(payload.get("inventory"), field_name="inventory")

    cells = payload["modifiedCells"]
    if not isinstance(cells, list):
        raise ValueError("modifiedCells must be a list")

    seen_cells: set[CellId] = set()
    for index, row in enumerate(cells):
        if not isinstance(row, list) or len(row) != 2:
            raise ValueError(f"modifiedCells[{index}] must be a [key, memento] pair")
        key, memento = row
        cell = parse_cell_key(key)
        if cell in seen_cells:
            raise ValueError(f"modifiedCells[{index}] duplicate cell key: {key}")
        seen_cells.add(cell)
        if not isinstance(memento, dict):
            raise ValueError(f"modifiedCells[{index}] memento must be an object")
        _validate_token_shape(memento.get("token"), field_name=f"modifiedCells[{index}].token")
        timestamp = memento.get("timestamp", 0)
        if not _is_number(timestamp):
            raise ValueError(f"modifiedCells[{index}].timestamp must be a number")

    timestamp = payload.get("timestamp", 0)
    if not _is_number(timestamp):
        raise ValueError("timestamp must be a number")
