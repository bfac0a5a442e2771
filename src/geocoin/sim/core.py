from __future__ import annotations

import copy
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from geocoin.content.io import (
    MemoryStore,
    SavedState,
    StorageQuotaError,
    build_state_payload,
    clear_state,
    load_state,
    save_state,
)
from geocoin.sim.generator import TokenGenerator
from geocoin.sim.grid import TILE_DEGREES, CellId, Position, to_cell
from geocoin.sim.interactions import (
    INTERACT_RADIUS,
    OUTCOME_CRAFT,
    TARGET_VALUE,
    InteractionEngine,
    InteractionOutcome,
    Inventory,
)
from geocoin.sim.luck import LuckFn, luck
from geocoin.sim.periodic import SAVE_DEBOUNCE_MS, DebouncedSaver
from geocoin.sim.viewport import (
    RETENTION_PERSISTENT,
    RETENTION_POLICIES,
    VIEWPORT_BUFFER,
    CellRenderer,
    ReconcileReport,
    Viewport,
    ViewportReconciler,
)
from geocoin.sim.world import CellMemento, Clock, OverrideStore, Token, WorldState, wall_clock_ms

logger = logging.getLogger(__name__)

CLASSROOM_POSITION = Position(lat=36.997936938057016, lng=-122.05703507501151)
MAX_EVENT_TRACE = 256

INTERACTION_OUTCOME_EVENT_TYPE = "interaction_outcome"
CRAFTED_EVENT_TYPE = "crafted"
VICTORY_EVENT_TYPE = "victory"
NOTIFICATION_EVENT_TYPE = "notification"
PLAYER_MOVED_EVENT_TYPE = "player_moved"
SAVED_EVENT_TYPE = "saved"
RESET_EVENT_TYPE = "reset"

QUOTA_EXCEEDED_MESSAGE = "Storage quota exceeded - save failed"
SAVE_FAILED_MESSAGE = "Save failed"
INVALID_POSITION_MESSAGE = "Invalid location ignored"


@dataclass(frozen=True)
class GameConfig:
    cell_size: float = TILE_DEGREES
    interact_radius: int = INTERACT_RADIUS
    target_value: int = TARGET_VALUE
    viewport_buffer: int = VIEWPORT_BUFFER
    spawn: Position = CLASSROOM_POSITION
    save_debounce_ms: int = SAVE_DEBOUNCE_MS
    retention: str = RETENTION_PERSISTENT

    def __post_init__(self) -> None:
        if not isinstance(self.cell_size, (int, float)) or self.cell_size <= 0 or not math.isfinite(self.cell_size):
            raise ValueError("cell_size must be a positive finite number")
        if not isinstance(self.interact_radius, int) or self.interact_radius < 0:
            raise ValueError("interact_radius must be a non-negative integer")
        if not isinstance(self.target_value, int) or self.target_value <= 0:
            raise ValueError("target_value must be a positive integer")
        if not isinstance(self.viewport_buffer, int) or self.viewport_buffer < 0:
            raise ValueError("viewport_buffer must be a non-negative integer")
        if not isinstance(self.save_debounce_ms, int) or self.save_debounce_ms < 0:
            raise ValueError("save_debounce_ms must be a non-negative integer")
        if self.retention not in RETENTION_POLICIES:
            raise ValueError(f"retention must be one of {sorted(RETENTION_POLICIES)}")


@dataclass
class PlayerState:
    """Position is authoritative; the player cell is always derived from it."""

    position: Position
    cell_size: float = TILE_DEGREES

    @property
    def cell(self) -> CellId:
        return to_cell(self.position, self.cell_size)


@dataclass(frozen=True)
class GameEvent:
    event_type: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"event_type": self.event_type, "params": copy.deepcopy(self.params)}


EventListener = Callable[[GameEvent], None]


def _cell_or_none(position: Position, cell_size: float) -> CellId | None:
    if not (math.isfinite(position.lat) and math.isfinite(position.lng)):
        return None
    try:
        return to_cell(position, cell_size)
    except OverflowError:
        return None


class GameSession:
    """Owns the override store, player and inventory for one play session."""

    def __init__(
        self,
        config: GameConfig | None = None,
        *,
        storage: Any | None = None,
        luck_fn: LuckFn = luck,
        clock: Clock = wall_clock_ms,
        saved: SavedState | None = None,
    ) -> None:
        self.config = config if config is not None else GameConfig()
        self.storage = storage if storage is not None else MemoryStore()
        self.clock = clock
        self.store = OverrideStore(clock=clock)
        self.world = WorldState(TokenGenerator(luck_fn), self.store)
        self.player = PlayerState(position=self.config.spawn, cell_size=self.config.cell_size)
        self.inventory = Inventory()
        self.engine = InteractionEngine(
            self.world,
            self.inventory,
            interact_radius=self.config.interact_radius,
            target_value=self.config.target_value,
        )
        self.saver = DebouncedSaver(self.save_now, delay_ms=self.config.save_debounce_ms)
        self.reconciler: ViewportReconciler | None = None
        self.last_save_ms: int | None = None
        self.restored = False
        self._viewport_provider: Callable[[], Viewport] | None = None
        self._listeners: list[EventListener] = []
        self.event_trace: list[dict[str, Any]] = []

        if saved is not None:
            self._apply_saved_state(saved)
        self.store.add_listener(self._on_store_changed)

    @classmethod
    def fresh(cls, config: GameConfig | None = None, **kwargs: Any) -> "GameSession":
        return cls(config, **kwargs)

    @classmethod
    def restore(cls, config: GameConfig | None = None, *, storage: Any, **kwargs: Any) -> "GameSession":
        """Resume from ``storage``; a missing or invalid record yields a fresh session."""
        saved = load_state(storage)
        if saved is not None and _cell_or_none(saved.position, (config or GameConfig()).cell_size) is None:
            logger.warning("discarding saved state with off-grid position %s", saved.position)
            saved = None
        session = cls(config, storage=storage, saved=saved, **kwargs)
        if saved is not None:
            logger.info(
                "restored session: %d modified cells, inventory=%s",
                len(saved.modified_cells),
                saved.inventory.value if saved.inventory is not None else None,
            )
        return session

    def _apply_saved_state(self, saved: SavedState) -> None:
        self.store.import_entries(saved.modified_cells)
        self.inventory.token = saved.inventory
        self.player.position = saved.position
        self.engine.victory_reached = self._victory_already_reached()
        self.restored = True

    def _victory_already_reached(self) -> bool:
        values = [memento.token.value for _, memento in self.store.export() if memento.token is not None]
        if self.inventory.token is not None:
            values.append(self.inventory.token.value)
        return any(value >= self.config.target_value for value in values)

    # events

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        self._listeners.remove(listener)

    def get_event_trace(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self.event_trace)

    def _emit(self, event_type: str, **params: Any) -> GameEvent:
        event = GameEvent(event_type=event_type, params=params)
        self.event_trace.append(event.to_dict())
        del self.event_trace[:-MAX_EVENT_TRACE]
        for listener in list(self._listeners):
            listener(event)
        return event

    def notify(self, message: str) -> None:
        self._emit(NOTIFICATION_EVENT_TYPE, message=message)

    # reads

    @property
    def player_cell(self) -> CellId:
        return self.player.cell

    def effective_token(self, cell: CellId) -> Token | None:
        return self.world.effective_token(cell)

    def memento(self, cell: CellId) -> CellMemento | None:
        return self.store.get(cell)

    def in_range(self, cell: CellId) -> bool:
        return self.engine.in_range(self.player_cell, cell)

    # rendering

    def attach_renderer(self, renderer: CellRenderer, viewport_provider: Callable[[], Viewport]) -> ViewportReconciler:
        if self.reconciler is not None:
            self.reconciler.clear()
        self.reconciler = ViewportReconciler(
            self.world,
            renderer,
            interact_radius=self.config.interact_radius,
            margin=self.config.viewport_buffer,
            cell_size=self.config.cell_size,
            retention=self.config.retention,
        )
        self._viewport_provider = viewport_provider
        return self.reconciler

    def render(self) -> ReconcileReport | None:
        if self.reconciler is None or self._viewport_provider is None:
            return None
        report = self.reconciler.reconcile(self._viewport_provider(), self.player_cell)
        if report.evicted:
            self.request_save()
        return report

    # entry points

    def on_position_changed(self, lat: float, lng: float) -> CellId:
        """Move the player; a non-finite or off-grid fix is reported and leaves the player where it was."""
        previous = self.player_cell
        candidate = Position(lat=float(lat), lng=float(lng))
        current = _cell_or_none(candidate, self.config.cell_size)
        if current is None:
            logger.warning("ignoring unusable position fix lat=%r lng=%r", lat, lng)
            self.notify(INVALID_POSITION_MESSAGE)
            return previous
        self.player.position = candidate
        self._emit(
            PLAYER_MOVED_EVENT_TYPE,
            position=self.player.position.to_dict(),
            cell=current.to_dict(),
            previous_cell=previous.to_dict(),
        )
        self.render()
        self.request_save()
        return current

    def on_cell_activated(self, cell: CellId) -> InteractionOutcome:
        outcome = self.engine.activate(self.player_cell, cell)
        if outcome.accepted and self.reconciler is not None:
            self.reconciler.refresh_cell(cell)
        self._emit(INTERACTION_OUTCOME_EVENT_TYPE, **outcome.to_dict())
        if outcome.outcome == OUTCOME_CRAFT:
            if outcome.victory:
                self._emit(VICTORY_EVENT_TYPE, value=outcome.value, target=self.config.target_value)
            else:
                self._emit(CRAFTED_EVENT_TYPE, value=outcome.value)
        return outcome

    def _on_store_changed(self, cell: CellId, memento: CellMemento) -> None:
        self.request_save()

    # persistence

    def request_save(self) -> None:
        self.saver.request(self.clock())

    def tick(self, now_ms: int | None = None) -> bool:
        return self.saver.poll(self.clock() if now_ms is None else now_ms)

    def state_payload(self) -> dict[str, Any]:
        return build_state_payload(
            self.player.position,
            self.inventory.token,
            self.store,
            timestamp=self.clock(),
        )

    def save_now(self) -> bool:
        self.saver.cancel()
        try:
            save_state(self.storage, self.state_payload())
        except StorageQuotaError as exc:
            logger.warning("save failed, storage quota exceeded: %s", exc)
            self.notify(QUOTA_EXCEEDED_MESSAGE)
            return False
        except OSError as exc:
            logger.error("save failed: %s", exc)
            self.notify(SAVE_FAILED_MESSAGE)
            return False
        self.last_save_ms = self.clock()
        self._emit(SAVED_EVENT_TYPE, timestamp=self.last_save_ms, modified_cells=len(self.store))
        return True

    def reset(self) -> None:
        """Forget the saved record and start over at the default spawn."""
        self.saver.cancel()
        try:
            clear_state(self.storage)
        except OSError as exc:
            logger.error("could not clear saved state: %s", exc)
            self.notify(SAVE_FAILED_MESSAGE)
        self.store.clear()
        self.inventory.token = None
        self.player.position = self.config.spawn
        self.engine.victory_reached = False
        self.last_save_ms = None
        self.restored = False
        logger.info("session reset to spawn %s", self.config.spawn)
        self._emit(RESET_EVENT_TYPE, position=self.player.position.to_dict())
        self.render()
