import json
from pathlib import Path

import pytest

from geocoin.sim.grid import CellId, Position, to_cell
from geocoin.sim.movement import (
    GEOLOCATION_UNSUPPORTED_MESSAGE,
    GPS_ACTIVE,
    GPS_DISABLED,
    GPS_ERROR,
    MODE_BUTTONS,
    MODE_GEOLOCATION,
    ButtonMovementController,
    GeolocationMovementController,
    MovementModeSwitch,
    TrackPositionSource,
    load_track_json,
)


class MovementRecorder:
    def __init__(self, start: CellId = CellId(0, 0)) -> None:
        self.cell = start
        self.moves: list[CellId] = []

    def __call__(self, lat: float, lng: float) -> None:
        self.cell = to_cell(Position(lat=lat, lng=lng))
        self.moves.append(self.cell)


def test_button_steps_move_one_cell_per_direction() -> None:
    recorder = MovementRecorder()
    buttons = ButtonMovementController(lambda: recorder.cell)
    buttons.on_move(recorder)
    buttons.enable()

    for direction in ("up", "up", "right", "down", "left", "left"):
        assert buttons.step(direction) is True

    assert recorder.moves == [CellId(1, 0), CellId(2, 0), CellId(2, 1), CellId(1, 1), CellId(1, 0), CellId(1, -1)]


def test_button_key_bindings_and_disabled_state() -> None:
    recorder = MovementRecorder()
    buttons = ButtonMovementController(lambda: recorder.cell)
    buttons.on_move(recorder)

    assert buttons.handle_key("w") is False

    buttons.enable()
    assert buttons.handle_key("W") is True
    assert buttons.handle_key("ArrowRight") is True
    assert buttons.handle_key("q") is False
    assert recorder.moves == [CellId(1, 0), CellId(1, 1)]

    with pytest.raises(ValueError, match="unknown direction"):
        buttons.step("sideways")


def test_geolocation_errors_notify_without_moving() -> None:
    recorder = MovementRecorder()
    messages: list[str] = []
    source = TrackPositionSource(
        [
            {"lat": 0.00015, "lng": 0.00025},
            {"error": "permission_denied"},
            {"lat": 0.00035, "lng": 0.00025},
        ]
    )
    controller = GeolocationMovementController(source, notify=messages.append)
    controller.on_move(recorder)
    controller.enable()

    assert source.poll() is True
    assert controller.status == GPS_ACTIVE
    assert source.poll() is True
    assert controller.status == GPS_ERROR
    assert messages == ["Location permission denied"]
    assert recorder.moves == [CellId(1, 2)]
    assert source.poll() is True
    assert recorder.moves == [CellId(1, 2), CellId(3, 2)]
    assert source.exhausted
    assert source.poll() is False


def test_unsupported_source_reports_error_status() -> None:
    messages: list[str] = []
    controller = GeolocationMovementController(None, notify=messages.append)
    controller.on_move(lambda lat, lng: None)

    controller.enable()

    assert controller.enabled is False
    assert controller.status == GPS_ERROR
    assert messages == [GEOLOCATION_UNSUPPORTED_MESSAGE]


def test_mode_switch_keeps_one_controller_enabled() -> None:
    recorder = MovementRecorder()
    source = TrackPositionSource([{"lat": 0.00055, "lng": 0.00055}], loop=True)
    buttons = ButtonMovementController(lambda: recorder.cell)
    geolocation = GeolocationMovementController(source)
    switch = MovementModeSwitch({MODE_BUTTONS: buttons, MODE_GEOLOCATION: geolocation}, recorder)

    assert buttons.enabled and not geolocation.enabled
    assert switch.toggle() == MODE_GEOLOCATION
    assert not buttons.enabled and geolocation.enabled
    assert buttons.step("up") is False
    assert source.poll() is True
    assert switch.gps_status() == GPS_ACTIVE

    assert switch.toggle() == MODE_BUTTONS
    assert switch.gps_status() == GPS_DISABLED
    assert source.poll() is False
    assert switch.switch(MODE_BUTTONS) is False
    assert recorder.moves == [CellId(5, 5)]

    with pytest.raises(ValueError, match="no controller registered"):
        switch.switch("teleport")


def test_track_validation_and_file_loading(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="track\\[0\\].lat"):
        TrackPositionSource([{"lat": "north", "lng": 0.0}])
    with pytest.raises(ValueError, match="known error code"):
        TrackPositionSource([{"error": "meteor"}])

    path = tmp_path / "track.json"
    path.write_text(json.dumps({"fixes": [{"lat": 1.0, "lng": 2.0}, {"error": "timeout"}]}), encoding="utf-8")
    source = load_track_json(path)
    assert len(source.entries) == 2

    path.write_text(json.dumps({"fixes": "none"}), encoding="utf-8")
    with pytest.raises(ValueError, match="list of fixes"):
        load_track_json(path)
