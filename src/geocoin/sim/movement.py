from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from geocoin.sim.grid import TILE_DEGREES, CellId, to_position

logger = logging.getLogger(__name__)

MoveCallback = Callable[[float, float], None]
Notifier = Callable[[str], None]

MODE_BUTTONS = "buttons"
MODE_GEOLOCATION = "geolocation"
MOVEMENT_MODES = {MODE_BUTTONS, MODE_GEOLOCATION}

GPS_DISABLED = "disabled"
GPS_ACTIVE = "active"
GPS_ERROR = "error"

ERROR_PERMISSION_DENIED = "permission_denied"
ERROR_POSITION_UNAVAILABLE = "position_unavailable"
ERROR_TIMEOUT = "timeout"
GEOLOCATION_ERROR_MESSAGES: dict[str, str] = {
    ERROR_PERMISSION_DENIED: "Location permission denied",
    ERROR_POSITION_UNAVAILABLE: "Location unavailable",
    ERROR_TIMEOUT: "Location request timeout",
}
GEOLOCATION_UNSUPPORTED_MESSAGE = "Geolocation not supported"

# (di, dj): north is +i (latitude), east is +j (longitude)
STEP_DIRECTIONS: dict[str, tuple[int, int]] = {
    "up": (1, 0),
    "down": (-1, 0),
    "right": (0, 1),
    "left": (0, -1),
}
KEY_BINDINGS: dict[str, str] = {
    "arrowup": "up",
    "w": "up",
    "arrowdown": "down",
    "s": "down",
    "arrowright": "right",
    "d": "right",
    "arrowleft": "left",
    "a": "left",
}


def _ignore_notification(message: str) -> None:
    return None


class MovementController:
    """Interchangeable movement input: the game only ever sees ``on_move`` calls."""

    def __init__(self) -> None:
        self._move_callback: MoveCallback | None = None
        self.enabled = False

    def on_move(self, callback: MoveCallback) -> None:
        self._move_callback = callback

    def enable(self) -> None:
        raise NotImplementedError

    def disable(self) -> None:
        raise NotImplementedError

    def _emit_move(self, lat: float, lng: float) -> bool:
        if not self.enabled or self._move_callback is None:
            return False
        self._move_callback(lat, lng)
        return True


class ButtonMovementController(MovementController):
    """One-cell steps from on-screen buttons or the keyboard."""

    def __init__(self, current_cell: Callable[[], CellId], *, cell_size: float = TILE_DEGREES) -> None:
        super().__init__()
        self._current_cell = current_cell
        self.cell_size = cell_size

    def enable(self) -> None:
        if self._move_callback is None:
            return
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False

    def step(self, direction: str) -> bool:
        delta = STEP_DIRECTIONS.get(direction)
        if delta is None:
            raise ValueError(f"unknown direction: {direction}")
        target = to_position(self._current_cell().offset(*delta), self.cell_size)
        return self._emit_move(target.lat, target.lng)

    def handle_key(self, key_name: str) -> bool:
        direction = KEY_BINDINGS.get(key_name.lower())
        if direction is None:
            return False
        return self.step(direction)


class PositionSource:
    """Device location provider delivering fixes and errors through callbacks."""

    supported = True

    def watch(self, on_fix: MoveCallback, on_error: Callable[[str], None]) -> int:
        raise NotImplementedError

    def clear_watch(self, watch_id: int) -> None:
        raise NotImplementedError


class TrackPositionSource(PositionSource):
    """Replays a recorded list of fixes, one per ``poll``.

    Entries are ``{"lat": .., "lng": ..}`` fixes or ``{"error": code}`` failures.
    """

    def __init__(self, entries: list[dict[str, Any]], *, loop: bool = False) -> None:
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ValueError(f"track[{index}] must be an object")
            if "error" in entry:
                if entry["error"] not in GEOLOCATION_ERROR_MESSAGES:
                    raise ValueError(f"track[{index}].error is not a known error code: {entry['error']}")
                continue
            for axis in ("lat", "lng"):
                value = entry.get(axis)
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ValueError(f"track[{index}].{axis} must be a number")
        self.entries = list(entries)
        self.loop = loop
        self._cursor = 0
        self._next_watch_id = 1
        self._watchers: dict[int, tuple[MoveCallback, Callable[[str], None]]] = {}

    def watch(self, on_fix: MoveCallback, on_error: Callable[[str], None]) -> int:
        watch_id = self._next_watch_id
        self._next_watch_id += 1
        self._watchers[watch_id] = (on_fix, on_error)
        return watch_id

    def clear_watch(self, watch_id: int) -> None:
        self._watchers.pop(watch_id, None)

    @property
    def exhausted(self) -> bool:
        return not self.loop and self._cursor >= len(self.entries)

    def poll(self) -> bool:
        if not self._watchers or not self.entries or self.exhausted:
            return False
        entry = self.entries[self._cursor % len(self.entries)]
        self._cursor += 1
        for watch_id in sorted(self._watchers):
            on_fix, on_error = self._watchers[watch_id]
            if "error" in entry:
                on_error(str(entry["error"]))
            else:
                on_fix(float(entry["lat"]), float(entry["lng"]))
        return True


def load_track_json(path: str | Path, *, loop: bool = False) -> TrackPositionSource:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("fixes")
    if not isinstance(payload, list):
        raise ValueError("track file must be a list of fixes or an object with a fixes list")
    return TrackPositionSource(payload, loop=loop)


class GeolocationMovementController(MovementController):
    """Follows a device position source; failures never move the player."""

    def __init__(self, source: PositionSource | None, *, notify: Notifier = _ignore_notification) -> None:
        super().__init__()
        self.source = source
        self.notify = notify
        self.status = GPS_DISABLED
        self._watch_id: int | None = None

    def enable(self) -> None:
        if self._move_callback is None:
            return
        if self.source is None or not self.source.supported:
            self.status = GPS_ERROR
            self.notify(GEOLOCATION_UNSUPPORTED_MESSAGE)
            return
        self.enabled = True
        self._watch_id = self.source.watch(self._on_fix, self._on_error)

    def disable(self) -> None:
        self.enabled = False
        if self._watch_id is not None and self.source is not None:
            self.source.clear_watch(self._watch_id)
        self._watch_id = None
        self.status = GPS_DISABLED

    def _on_fix(self, lat: float, lng: float) -> None:
        self.status = GPS_ACTIVE
        self._emit_move(lat, lng)

    def _on_error(self, code: str) -> None:
        self.status = GPS_ERROR
        message = GEOLOCATION_ERROR_MESSAGES.get(code, "Geolocation error")
        logger.warning("geolocation error: %s", code)
        self.notify(message)


class MovementModeSwitch:
    """Keeps exactly one controller enabled at a time."""

    def __init__(
        self,
        controllers: dict[str, MovementController],
        on_move: MoveCallback,
        *,
        initial_mode: str = MODE_BUTTONS,
    ) -> None:
        if initial_mode not in controllers:
            raise ValueError(f"no controller registered for mode: {initial_mode}")
        self.controllers = dict(controllers)
        for controller in self.controllers.values():
            controller.on_move(on_move)
        self.mode = initial_mode
        self.active.enable()

    @property
    def active(self) -> MovementController:
        return self.controllers[self.mode]

    def switch(self, mode: str) -> bool:
        if mode not in self.controllers:
            raise ValueError(f"no controller registered for mode: {mode}")
        if mode == self.mode:
            return False
        self.active.disable()
        self.mode = mode
        self.active.enable()
        return True

    def toggle(self) -> str:
        self.switch(MODE_GEOLOCATION if self.mode == MODE_BUTTONS else MODE_BUTTONS)
        return self.mode

    def gps_status(self) -> str:
        geolocation = self.controllers.get(MODE_GEOLOCATION)
        if isinstance(geolocation, GeolocationMovementController):
            return geolocation.status
        return GPS_DISABLED
