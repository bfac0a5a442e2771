import errno
import json
import logging
from pathlib import Path

import pytest

from geocoin.content.io import (
    SAVE_KEY,
    JsonFileStore,
    MemoryStore,
    StorageQuotaError,
    load_state,
    save_state,
)
from geocoin.content.schema import validate_state_payload
from geocoin.sim.core import NOTIFICATION_EVENT_TYPE, QUOTA_EXCEEDED_MESSAGE, SAVE_FAILED_MESSAGE, GameConfig, GameSession
from geocoin.sim.grid import CellId, Position
from geocoin.sim.world import Token

SPAWN = Position(lat=0.00005, lng=0.00005)


def _luck_with_token_next_to_spawn(key: str) -> float:
    return 0.97 if key == "0,1,token" else 0.0


def _build_session(storage, *, restore: bool = False) -> GameSession:
    config = GameConfig(spawn=SPAWN)
    if restore:
        return GameSession.restore(config, storage=storage, luck_fn=_luck_with_token_next_to_spawn, clock=lambda: 500)
    return GameSession(config, storage=storage, luck_fn=_luck_with_token_next_to_spawn, clock=lambda: 500)


def _valid_payload() -> dict:
    return {
        "playerPosition": {"lat": 0.00015, "lng": -0.00025},
        "inventory": {"value": 2},
        "modifiedCells": [["0,1", {"token": None, "timestamp": 12}]],
        "timestamp": 99,
    }


class FullDiskStore(MemoryStore):
    def write(self, text: str) -> None:
        raise StorageQuotaError(errno.ENOSPC, "quota exceeded")


class BrokenStore(MemoryStore):
    def write(self, text: str) -> None:
        raise PermissionError(errno.EACCES, "read-only")


def test_json_file_store_round_trip(tmp_path: Path) -> None:
    storage = JsonFileStore(tmp_path)
    session = _build_session(storage)
    session.on_cell_activated(CellId(0, 1))

    assert session.save_now() is True
    assert session.last_save_ms == 500
    assert storage.path == tmp_path / f"{SAVE_KEY}.json"

    payload = json.loads(storage.path.read_text(encoding="utf-8"))
    assert payload == {
        "playerPosition": {"lat": SPAWN.lat, "lng": SPAWN.lng},
        "inventory": {"value": 2},
        "modifiedCells": [["0,1", {"token": None, "timestamp": 500}]],
        "timestamp": 500,
    }

    restored = _build_session(storage, restore=True)
    assert restored.inventory.value == 2
    assert restored.effective_token(CellId(0, 1)) is None
    assert restored.memento(CellId(0, 1)).timestamp == 500


def test_load_state_decodes_valid_payload() -> None:
    storage = MemoryStore()
    storage.write(json.dumps(_valid_payload()))

    state = load_state(storage)

    assert state is not None
    assert state.position == Position(lat=0.00015, lng=-0.00025)
    assert state.inventory == Token(2)
    assert state.modified_cells[0][0] == CellId(0, 1)
    assert state.timestamp == 99


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        json.dumps({"modifiedCells": []}),
        json.dumps({**_valid_payload(), "inventory": {"value": 3}}),
        json.dumps({**_valid_payload(), "modifiedCells": [["zero,one", {"token": None, "timestamp": 1}]]}),
        json.dumps(_valid_payload()).replace('"timestamp": 99', '"timestamp": 1e400'),
        json.dumps(_valid_payload()).replace('"lat": 0.00015', '"lat": Infinity'),
        json.dumps(_valid_payload()).replace('"timestamp": 12', '"timestamp": NaN'),
    ],
)
def test_invalid_record_yields_fresh_session(raw: str, caplog: pytest.LogCaptureFixture) -> None:
    storage = MemoryStore()
    storage.write(raw)

    with caplog.at_level(logging.WARNING, logger="geocoin.content.io"):
        session = _build_session(storage, restore=True)

    assert session.restored is False
    assert session.player.position == SPAWN
    assert session.inventory.is_empty
    assert len(session.store) == 0
    assert "discarding invalid saved state" in caplog.text


def test_schema_reports_offending_field() -> None:
    payload = _valid_payload()
    payload["modifiedCells"].append(["0,1", {"token": None, "timestamp": 13}])

    with pytest.raises(ValueError, match="duplicate cell key"):
        validate_state_payload(payload)
    with pytest.raises(ValueError, match="playerPosition.lat"):
        validate_state_payload({**_valid_payload(), "playerPosition": {"lat": True, "lng": 0.0}})
    with pytest.raises(ValueError, match="timestamp must be a number"):
        validate_state_payload({**_valid_payload(), "timestamp": "now"})


def test_schema_treats_equivalent_cell_keys_as_duplicates() -> None:
    payload = _valid_payload()
    payload["modifiedCells"].append(["00,1", {"token": {"value": 4}, "timestamp": 13}])

    with pytest.raises(ValueError, match="duplicate cell key: 00,1"):
        validate_state_payload(payload)


def test_off_grid_saved_position_yields_fresh_session(caplog: pytest.LogCaptureFixture) -> None:
    storage = MemoryStore()
    storage.write(json.dumps({**_valid_payload(), "playerPosition": {"lat": 1e305, "lng": 0.0}}))

    with caplog.at_level(logging.WARNING, logger="geocoin.sim.core"):
        session = _build_session(storage, restore=True)

    assert session.restored is False
    assert session.player_cell == CellId(0, 0)
    assert "off-grid position" in caplog.text


def test_save_state_refuses_invalid_payload() -> None:
    storage = MemoryStore()

    with pytest.raises(ValueError, match="must be a list"):
        save_state(storage, {**_valid_payload(), "modifiedCells": {}})
    assert storage.read() is None


def test_quota_failure_notifies_and_keeps_playing() -> None:
    session = _build_session(FullDiskStore())

    assert session.save_now() is False

    events = session.get_event_trace()
    assert events[-1] == {"event_type": NOTIFICATION_EVENT_TYPE, "params": {"message": QUOTA_EXCEEDED_MESSAGE}}
    assert session.last_save_ms is None
    assert session.on_cell_activated(CellId(0, 1)).accepted


def test_other_write_failures_use_generic_message() -> None:
    session = _build_session(BrokenStore())

    assert session.save_now() is False
    assert session.get_event_trace()[-1]["params"] == {"message": SAVE_FAILED_MESSAGE}


def test_json_file_store_maps_out_of_space_to_quota_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def no_space(path: Path, serialized: str) -> None:
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr("geocoin.content.io._write_atomic_text", no_space)

    with pytest.raises(StorageQuotaError):
        JsonFileStore(tmp_path).write("{}")


def test_reset_clears_saved_record_and_overrides(tmp_path: Path) -> None:
    storage = JsonFileStore(tmp_path)
    session = _build_session(storage)
    session.on_cell_activated(CellId(0, 1))
    session.on_position_changed(0.00031, 0.00031)
    session.save_now()

    session.reset()

    assert not storage.path.exists()
    assert len(session.store) == 0
    assert session.inventory.is_empty
    assert session.player.position == SPAWN
    assert session.saver.pending is False
    assert _build_session(storage, restore=True).restored is False
