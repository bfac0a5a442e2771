from __future__ import annotations

from geocoin.sim.interactions import Inventory
from geocoin.sim.movement import GPS_ACTIVE, GPS_ERROR, MODE_BUTTONS

JUST_NOW_SECONDS = 5
SECONDS_PER_MINUTE = 60


def movement_mode_text(mode: str) -> str:
    return "Button Mode" if mode == MODE_BUTTONS else "GPS Mode"


def gps_status_text(status: str) -> str:
    if status == GPS_ACTIVE:
        return "GPS Active"
    if status == GPS_ERROR:
        return "GPS Error"
    return "GPS Off"


def save_age_text(last_save_ms: int | None, now_ms: int) -> str:
    if last_save_ms is None:
        return "No saves yet"
    elapsed = max(0, (now_ms - last_save_ms) // 1000)
    if elapsed < JUST_NOW_SECONDS:
        return "Saved just now"
    if elapsed < SECONDS_PER_MINUTE:
        return f"Saved {elapsed}s ago"
    return f"Saved {elapsed // SECONDS_PER_MINUTE}m ago"


def inventory_text(inventory: Inventory) -> str:
    return f"Inventory: {inventory.value}" if not inventory.is_empty else "Inventory: empty"


def status_line(*, mode: str, gps_status: str, last_save_ms: int | None, now_ms: int, inventory: Inventory) -> str:
    return " | ".join(
        (
            inventory_text(inventory),
            movement_mode_text(mode),
            gps_status_text(gps_status),
            save_age_text(last_save_ms, now_ms),
        )
    )
