from __future__ import annotations

import argparse
import importlib.metadata
import logging
import os
import platform
import sys
from dataclasses import dataclass, field
from typing import Any

from geocoin.content.io import JsonFileStore
from geocoin.sim.core import (
    INTERACTION_OUTCOME_EVENT_TYPE,
    NOTIFICATION_EVENT_TYPE,
    VICTORY_EVENT_TYPE,
    CRAFTED_EVENT_TYPE,
    GameConfig,
    GameEvent,
    GameSession,
)
from geocoin.sim.grid import CellId, Position, to_cell
from geocoin.sim.hash import store_hash
from geocoin.sim.interactions import REJECTED_OUTCOMES
from geocoin.sim.movement import (
    MODE_BUTTONS,
    MODE_GEOLOCATION,
    ButtonMovementController,
    GeolocationMovementController,
    MovementModeSwitch,
    TrackPositionSource,
    load_track_json,
)
from geocoin.sim.status import status_line
from geocoin.sim.viewport import RETENTION_POLICIES, RETENTION_PERSISTENT, CellRenderer, CellView, Viewport

CELL_PIXELS = 40
WINDOW_SIZE = (960, 720)
HUD_HEIGHT = 64
FRAME_RATE = 60
GPS_POLL_MS = 1000
FLASH_DURATION_MS = 300
NOTIFICATION_DURATION_MS = 2500
NOTIFICATION_LIMIT = 4

BACKGROUND_COLOR = (226, 232, 220)
CELL_COLOR_WITH_TOKEN = (42, 157, 143)
CELL_COLOR_EMPTY = (170, 170, 170)
CELL_COLOR_INVALID = (231, 111, 81)
CELL_FILL_OPACITY_WITH_TOKEN = 0.35
CELL_FILL_OPACITY_EMPTY = 0.06
CELL_WEIGHT_IN_RANGE = 2
CELL_WEIGHT_OUT_OF_RANGE = 1
PLAYER_COLOR = (38, 70, 83)
HUD_COLOR = (24, 26, 36)
TEXT_COLOR = (240, 240, 240)
LABEL_COLOR = (20, 20, 20)

# pygame.key.name() -> movement key bindings
PYGAME_KEY_NAMES: dict[str, str] = {
    "up": "arrowup",
    "down": "arrowdown",
    "left": "arrowleft",
    "right": "arrowright",
    "w": "w",
    "a": "a",
    "s": "s",
    "d": "d",
}

pygame: Any | None = None

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CellVisuals:
    fill: tuple[int, int, int]
    border: tuple[int, int, int]
    border_width: int
    label: str | None


@dataclass(frozen=True)
class CellSprite:
    view: CellView
    rect: tuple[int, int, int, int]


@dataclass
class Camera:
    """Maps positions to window pixels, centered on a position (north up)."""

    center: Position
    cell_size: float
    viewport_size: tuple[int, int] = (WINDOW_SIZE[0], WINDOW_SIZE[1] - HUD_HEIGHT)
    origin: tuple[int, int] = (0, HUD_HEIGHT)

    @property
    def pixel_center(self) -> tuple[float, float]:
        return (self.origin[0] + self.viewport_size[0] / 2.0, self.origin[1] + self.viewport_size[1] / 2.0)

    def to_pixel(self, position: Position) -> tuple[float, float]:
        cx, cy = self.pixel_center
        x = cx + (position.lng - self.center.lng) / self.cell_size * CELL_PIXELS
        y = cy - (position.lat - self.center.lat) / self.cell_size * CELL_PIXELS
        return (x, y)

    def to_position(self, pixel_x: float, pixel_y: float) -> Position:
        cx, cy = self.pixel_center
        return Position(
            lat=self.center.lat - (pixel_y - cy) / CELL_PIXELS * self.cell_size,
            lng=self.center.lng + (pixel_x - cx) / CELL_PIXELS * self.cell_size,
        )

    def viewport(self) -> Viewport:
        half_w = self.viewport_size[0] / 2.0 / CELL_PIXELS * self.cell_size
        half_h = self.viewport_size[1] / 2.0 / CELL_PIXELS * self.cell_size
        south_west = Position(lat=self.center.lat - half_h, lng=self.center.lng - half_w)
        north_east = Position(lat=self.center.lat + half_h, lng=self.center.lng + half_w)
        return Viewport.from_bounds(south_west, north_east, self.cell_size)

    def cell_rect(self, view: CellView) -> tuple[int, int, int, int]:
        low, high = view.bounds
        left, bottom = self.to_pixel(low)
        right, top = self.to_pixel(high)
        return (int(round(left)), int(round(top)), int(round(right - left)), int(round(bottom - top)))


def _blend(base: tuple[int, int, int], color: tuple[int, int, int], opacity: float) -> tuple[int, int, int]:
    return tuple(int(round(b + (c - b) * opacity)) for b, c in zip(base, color))  # type: ignore[return-value]


def cell_visuals(view: CellView, *, flashing: bool = False) -> CellVisuals:
    color = CELL_COLOR_WITH_TOKEN if view.has_token else CELL_COLOR_EMPTY
    opacity = CELL_FILL_OPACITY_WITH_TOKEN if view.has_token else CELL_FILL_OPACITY_EMPTY
    if not view.in_range:
        opacity *= 0.5
    return CellVisuals(
        fill=_blend(BACKGROUND_COLOR, color, opacity),
        border=CELL_COLOR_INVALID if flashing else color,
        border_width=CELL_WEIGHT_IN_RANGE if view.in_range else CELL_WEIGHT_OUT_OF_RANGE,
        label=str(view.value) if view.has_token else None,
    )


class SpriteCellRenderer(CellRenderer):
    """Turns cell views into screen-space sprites against the current camera."""

    def __init__(self, camera: Camera) -> None:
        self.camera = camera
        self.sprites: dict[CellId, CellSprite] = {}

    def create_handle(self, view: CellView) -> CellSprite:
        sprite = CellSprite(view=view, rect=self.camera.cell_rect(view))
        self.sprites[view.cell] = sprite
        return sprite

    def remove_handle(self, handle: CellSprite) -> None:
        if self.sprites.get(handle.view.cell) is handle:
            del self.sprites[handle.view.cell]


@dataclass
class ViewerOverlay:
    """Transient feedback: flashing cells, toasts and the victory banner."""

    flashes: dict[CellId, int] = field(default_factory=dict)
    notifications: list[tuple[str, int]] = field(default_factory=list)
    victory_value: int | None = None

    def flash(self, cell: CellId, now_ms: int) -> None:
        self.flashes[cell] = now_ms + FLASH_DURATION_MS

    def is_flashing(self, cell: CellId, now_ms: int) -> bool:
        return self.flashes.get(cell, 0) > now_ms

    def push(self, message: str, now_ms: int) -> None:
        self.notifications.append((message, now_ms + NOTIFICATION_DURATION_MS))
        del self.notifications[:-NOTIFICATION_LIMIT]

    def expire(self, now_ms: int) -> None:
        self.flashes = {cell: until for cell, until in self.flashes.items() if until > now_ms}
        self.notifications = [(message, until) for message, until in self.notifications if until > now_ms]

    def listener(self, clock: Any) -> Any:
        def on_event(event: GameEvent) -> None:
            now_ms = clock()
            if event.event_type == INTERACTION_OUTCOME_EVENT_TYPE and event.params["outcome"] in REJECTED_OUTCOMES:
                cell = event.params["cell"]
                self.flash(CellId(cell["i"], cell["j"]), now_ms)
            elif event.event_type == NOTIFICATION_EVENT_TYPE:
                self.push(str(event.params["message"]), now_ms)
            elif event.event_type == CRAFTED_EVENT_TYPE:
                self.push(f"Crafted {event.params['value']}!", now_ms)
            elif event.event_type == VICTORY_EVENT_TYPE:
                self.victory_value = int(event.params["target"])

        return on_event


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="geocoin-viewer", description="Run the geocoin pygame viewer.")
    parser.add_argument("--save-dir", default="saves", help="Directory holding the local save record.")
    parser.add_argument(
        "--movement",
        choices=sorted({MODE_BUTTONS, MODE_GEOLOCATION}),
        default=MODE_BUTTONS,
        help="Initial movement mode.",
    )
    parser.add_argument("--gps-track", help="JSON list of recorded fixes replayed in geolocation mode.")
    parser.add_argument(
        "--retention",
        choices=sorted(RETENTION_POLICIES),
        default=RETENTION_PERSISTENT,
        help="Keep modified cells forever (persistent) or regenerate them once off-screen (farming).",
    )
    parser.add_argument("--spawn-lat", type=float, help="Override the default spawn latitude.")
    parser.add_argument("--spawn-lng", type=float, help="Override the default spawn longitude.")
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Force SDL dummy video driver for CI/testing and exit without opening a real window.",
    )
    parser.add_argument("--log-level", default="INFO", help="Python logging level.")
    return parser


def _config_from_args(args: argparse.Namespace) -> GameConfig:
    defaults = GameConfig()
    spawn = defaults.spawn
    if args.spawn_lat is not None or args.spawn_lng is not None:
        spawn = Position(
            lat=args.spawn_lat if args.spawn_lat is not None else spawn.lat,
            lng=args.spawn_lng if args.spawn_lng is not None else spawn.lng,
        )
    return GameConfig(spawn=spawn, retention=args.retention)


def env_flag_enabled(var_name: str) -> bool:
    return os.environ.get(var_name, "").strip().lower() in {"1", "true", "yes", "on"}


def _print_startup_banner() -> None:
    try:
        pygame_version = importlib.metadata.version("pygame")
    except importlib.metadata.PackageNotFoundError:
        pygame_version = "not-installed"
    print(
        "[geocoin.viewer] startup "
        f"python={platform.python_version()} "
        f"pygame={pygame_version} "
        f"platform={platform.platform()}"
    )
    for name in ("SDL_VIDEODRIVER", "SDL_AUDIODRIVER"):
        value = os.environ.get(name, "<unset>")
        print(f"[geocoin.viewer] env {name}={value}")


def _ensure_pygame_imported() -> Any:
    global pygame
    if pygame is None:
        import pygame as pygame_module

        pygame = pygame_module
    return pygame


def _build_viewer_session(
    config: GameConfig,
    save_dir: str,
) -> tuple[GameSession, Camera, SpriteCellRenderer]:
    session = GameSession.restore(config, storage=JsonFileStore(save_dir))
    camera = Camera(center=session.player.position, cell_size=config.cell_size)
    renderer = SpriteCellRenderer(camera)

    def current_viewport() -> Viewport:
        camera.center = session.player.position
        return camera.viewport()

    session.attach_renderer(renderer, current_viewport)
    session.render()
    print(
        "[geocoin.viewer] session "
        f"restored={session.restored} "
        f"cell=({session.player_cell.i},{session.player_cell.j}) "
        f"modified_cells={len(session.store)} "
        f"store_hash={store_hash(session.store)}"
    )
    return session, camera, renderer


@dataclass
class ViewerMovement:
    switch: MovementModeSwitch
    buttons: ButtonMovementController
    track: TrackPositionSource | None


def _build_movement(session: GameSession, gps_track: str | None, initial_mode: str) -> ViewerMovement:
    track = load_track_json(gps_track) if gps_track else None
    buttons = ButtonMovementController(lambda: session.player_cell, cell_size=session.config.cell_size)
    geolocation = GeolocationMovementController(track, notify=session.notify)
    switch = MovementModeSwitch(
        {MODE_BUTTONS: buttons, MODE_GEOLOCATION: geolocation},
        session.on_position_changed,
        initial_mode=initial_mode,
    )
    return ViewerMovement(switch=switch, buttons=buttons, track=track)


def _draw_cells(screen: Any, font: Any, renderer: SpriteCellRenderer, overlay: ViewerOverlay, now_ms: int) -> None:
    for cell in sorted(renderer.sprites):
        sprite = renderer.sprites[cell]
        visuals = cell_visuals(sprite.view, flashing=overlay.is_flashing(cell, now_ms))
        rect = pygame.Rect(*sprite.rect)
        pygame.draw.rect(screen, visuals.fill, rect)
        pygame.draw.rect(screen, visuals.border, rect, visuals.border_width)
        if visuals.label is not None:
            surface = font.render(visuals.label, True, LABEL_COLOR)
            screen.blit(surface, surface.get_rect(center=rect.center))


def _draw_player(screen: Any, camera: Camera, session: GameSession) -> None:
    x, y = camera.to_pixel(session.player.position)
    pygame.draw.circle(screen, PLAYER_COLOR, (int(x), int(y)), CELL_PIXELS // 5)
    pygame.draw.circle(screen, (255, 255, 255), (int(x), int(y)), CELL_PIXELS // 5, 2)


def _draw_hud(screen: Any, font: Any, session: GameSession, movement: MovementModeSwitch, overlay: ViewerOverlay) -> None:
    pygame.draw.rect(screen, HUD_COLOR, pygame.Rect(0, 0, WINDOW_SIZE[0], HUD_HEIGHT))
    lines = [
        status_line(
            mode=movement.mode,
            gps_status=movement.gps_status(),
            last_save_ms=session.last_save_ms,
            now_ms=session.clock(),
            inventory=session.inventory,
        ),
        "WASD/arrows move | click cell use | G toggle GPS | N new game | F5 save | ESC quit",
    ]
    y = 8
    for line in lines:
        screen.blit(font.render(line, True, TEXT_COLOR), (12, y))
        y += 26

    y = HUD_HEIGHT + 12
    for message, _ in overlay.notifications:
        surface = font.render(message, True, TEXT_COLOR)
        box = surface.get_rect(topright=(WINDOW_SIZE[0] - 16, y)).inflate(16, 8)
        pygame.draw.rect(screen, HUD_COLOR, box)
        screen.blit(surface, surface.get_rect(center=box.center))
        y += box.height + 6

    if overlay.victory_value is not None:
        banner = font.render(f"Victory! You crafted {overlay.victory_value}!", True, (255, 230, 120))
        box = banner.get_rect(center=(WINDOW_SIZE[0] // 2, WINDOW_SIZE[1] // 2)).inflate(40, 24)
        pygame.draw.rect(screen, HUD_COLOR, box)
        screen.blit(banner, banner.get_rect(center=box.center))


def run_pygame_viewer(
    *,
    config: GameConfig | None = None,
    save_dir: str = "saves",
    movement_mode: str = MODE_BUTTONS,
    gps_track: str | None = None,
    headless: bool = False,
) -> int:
    if headless:
        os.environ["SDL_VIDEODRIVER"] = "dummy"
        print("[geocoin.viewer] warning: headless mode active; no window will open.")

    _print_startup_banner()
    pygame_module = _ensure_pygame_imported()

    try:
        pygame_module.init()
    except Exception as exc:
        print(
            "[geocoin.viewer] failed during pygame.init(): "
            f"{exc}. Hint: set SDL_VIDEODRIVER=dummy for headless mode.",
            file=sys.stderr,
        )
        return 1

    try:
        session, camera, renderer = _build_viewer_session(config or GameConfig(), save_dir)
        controls = _build_movement(session, gps_track, movement_mode)
        movement = controls.switch
    except (OSError, ValueError) as exc:
        print(f"[geocoin.viewer] failed to initialize session: {exc}", file=sys.stderr)
        pygame_module.quit()
        return 1

    overlay = ViewerOverlay()
    session.add_listener(overlay.listener(session.clock))

    try:
        pygame_module.display.set_caption("geocoin")
        screen = pygame_module.display.set_mode(WINDOW_SIZE)
    except Exception as exc:
        print(
            "[geocoin.viewer] failed during pygame.display.set_mode(...): "
            f"{exc}. Hint: use --headless or GEOCOIN_HEADLESS=1 without a display.",
            file=sys.stderr,
        )
        pygame_module.quit()
        return 1

    print(f"[geocoin.viewer] display initialized: {pygame_module.display.get_driver()}, window size={WINDOW_SIZE}")

    if headless:
        session.save_now()
        pygame_module.quit()
        return 0

    clock = pygame_module.time.Clock()
    font = pygame_module.font.SysFont("consolas", 18)
    label_font = pygame_module.font.SysFont("consolas", 16, bold=True)
    last_gps_poll_ms = session.clock()
    running = True

    while running:
        clock.tick(FRAME_RATE)
        now_ms = session.clock()

        for event in pygame_module.event.get():
            if event.type == pygame_module.QUIT:
                running = False
            elif event.type == pygame_module.KEYDOWN and event.key == pygame_module.K_ESCAPE:
                running = False
            elif event.type == pygame_module.KEYDOWN and event.key == pygame_module.K_F5:
                if session.save_now():
                    print(f"[geocoin.viewer] saved store_hash={store_hash(session.store)}")
            elif event.type == pygame_module.KEYDOWN and event.key == pygame_module.K_g:
                mode = movement.toggle()
                print(f"[geocoin.viewer] movement mode={mode}")
            elif event.type == pygame_module.KEYDOWN and event.key == pygame_module.K_n:
                session.reset()
                overlay.victory_value = None
            elif event.type == pygame_module.KEYDOWN and movement.mode == MODE_BUTTONS:
                key_name = PYGAME_KEY_NAMES.get(pygame_module.key.name(event.key))
                if key_name is not None:
                    controls.buttons.handle_key(key_name)
            elif event.type == pygame_module.MOUSEBUTTONDOWN and event.button == 1 and event.pos[1] > HUD_HEIGHT:
                target = to_cell(camera.to_position(*event.pos), session.config.cell_size)
                if renderer.sprites.get(target) is not None:
                    session.on_cell_activated(target)

        if (
            movement.mode == MODE_GEOLOCATION
            and controls.track is not None
            and now_ms - last_gps_poll_ms >= GPS_POLL_MS
        ):
            controls.track.poll()
            last_gps_poll_ms = now_ms

        session.tick(now_ms)
        overlay.expire(now_ms)

        screen.fill(BACKGROUND_COLOR)
        _draw_cells(screen, label_font, renderer, overlay, now_ms)
        _draw_player(screen, camera, session)
        _draw_hud(screen, font, session, movement, overlay)
        pygame_module.display.flip()

    if session.saver.pending:
        session.saver.flush()
    pygame_module.quit()
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    headless = args.headless or env_flag_enabled("GEOCOIN_HEADLESS")
    raise SystemExit(
        run_pygame_viewer(
            config=_config_from_args(args),
            save_dir=args.save_dir,
            movement_mode=args.movement,
            gps_track=args.gps_track,
            headless=headless,
        )
    )


if __name__ == "__main__":
    main()
