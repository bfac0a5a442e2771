from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from typing import Any

from geocoin.sim.grid import cell_key
from geocoin.sim.viewport import CellView
from geocoin.sim.world import OverrideStore


def _digest(payload: Any) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def store_hash(store: OverrideStore) -> str:
    return _digest([[cell_key(cell), memento.to_dict()] for cell, memento in store.export()])


def view_hash(views: Iterable[CellView]) -> str:
    payload = [
        {"cell": cell_key(view.cell), "value": view.value, "in_range": view.in_range}
        for view in sorted(views, key=lambda view: view.cell)
    ]
    return _digest(payload)
