from __future__ import annotations

import errno
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

from geocoin.content.schema import validate_state_payload
from geocoin.sim.grid import CellId, Position, cell_key, parse_cell_key
from geocoin.sim.world import CellMemento, OverrideStore, Token, token_from_dict, token_to_dict

logger = logging.getLogger(__name__)

SAVE_KEY = "geocoin_game_state"
DEFAULT_SAVE_DIR = "saves"
QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class StorageQuotaError(OSError):
    """The local store refused a write because it is out of space."""


@dataclass(frozen=True)
class SavedState:
    position: Position
    inventory: Token | None
    modified_cells: tuple[tuple[CellId, CellMemento], ...]
    timestamp: int


class MemoryStore:
    """In-process key/value store holding one serialized record per key."""

    def __init__(self, key: str = SAVE_KEY) -> None:
        self.key = key
        self._records: dict[str, str] = {}

    def read(self) -> str | None:
        return self._records.get(self.key)

    def write(self, text: str) -> None:
        self._records[self.key] = text

    def clear(self) -> None:
        self._records.pop(self.key, None)


class JsonFileStore:
    """Device-local store: one JSON file per save key, replaced atomically."""

    def __init__(self, directory: str | Path = DEFAULT_SAVE_DIR, key: str = SAVE_KEY) -> None:
        self.key = key
        self.path = Path(directory) / f"{key}.json"

    def read(self) -> str | None:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def write(self, text: str) -> None:
        try:
            _write_atomic_text(self.path, text)
        except OSError as exc:
            if exc.errno in QUOTA_ERRNOS:
                raise StorageQuotaError(exc.errno, f"storage quota exceeded writing {self.path}") from exc
            raise

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def _write_atomic_text(path: Path, serialized: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    try:
        with NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=path.parent,
            delete=False,
            suffix=".tmp",
        ) as temp_file:
            temp_path = Path(temp_file.name)
            temp_file.write(serialized)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        os.replace(temp_path, path)
    except Exception:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        raise


def build_state_payload(
    position: Position,
    inventory: Token | None,
    store: OverrideStore,
    *,
    timestamp: int,
) -> dict[str, Any]:
    return {
        "playerPosition": position.to_dict(),
        "inventory": token_to_dict(inventory),
        "modifiedCells": [[cell_key(cell), memento.to_dict()] for cell, memento in store.export()],
        "timestamp": timestamp,
    }


def decode_state_payload(payload: Any) -> SavedState:
    validate_state_payload(payload)
    modified_cells = tuple(
        (parse_cell_key(key), CellMemento.from_dict(memento)) for key, memento in payload["modifiedCells"]
    )
    return SavedState(
        position=Position.from_dict(payload["playerPosition"]),
        inventory=token_from_dict(payload.get("inventory")),
        modified_cells=modified_cells,
        timestamp=int(payload.get("timestamp", 0)),
    )


def dumps_state(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


def save_state(storage: Any, payload: dict[str, Any]) -> None:
    validate_state_payload(payload)
    storage.write(dumps_state(payload))


def load_state(storage: Any) -> SavedState | None:
    """Return the saved record, or None for a missing or unusable one.

    A corrupt record is discarded whole; nothing is partially restored.
    """
    try:
        raw = storage.read()
    except OSError as exc:
        logger.warning("could not read saved state: %s", exc)
        return None
    if raw is None:
        return None
    try:
        return decode_state_payload(json.loads(raw))
    except (ValueError, TypeError, KeyError, OverflowError) as exc:
        logger.warning("discarding invalid saved state: %s", exc)
        return None


def clear_state(storage: Any) -> None:
    storage.clear()
