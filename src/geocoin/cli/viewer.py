from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from typing import Sequence

from geocoin.content.io import JsonFileStore
from geocoin.sim.core import NOTIFICATION_EVENT_TYPE, VICTORY_EVENT_TYPE, GameEvent, GameSession
from geocoin.sim.grid import CellId
from geocoin.sim.interactions import InteractionOutcome
from geocoin.sim.movement import STEP_DIRECTIONS, ButtonMovementController
from geocoin.sim.status import inventory_text, save_age_text
from geocoin.sim.viewport import CellRenderer, CellView, Viewport

VIEW_HALF_HEIGHT = 4
VIEW_HALF_WIDTH = 6
EMPTY_GLYPH = "."
OUT_OF_RANGE_EMPTY_GLYPH = " "
PLAYER_GLYPH = "@"


class TextCellRenderer(CellRenderer):
    """Handles are the views themselves, kept in a dict keyed by cell."""

    def __init__(self) -> None:
        self.cells: dict[CellId, CellView] = {}
        self.created = 0
        self.removed = 0

    def create_handle(self, view: CellView) -> CellView:
        self.cells[view.cell] = view
        self.created += 1
        return view

    def remove_handle(self, handle: CellView) -> None:
        if self.cells.get(handle.cell) is handle:
            del self.cells[handle.cell]
        self.removed += 1


def _glyph(view: CellView) -> str:
    if view.value is None:
        return EMPTY_GLYPH if view.in_range else OUT_OF_RANGE_EMPTY_GLYPH
    return str(view.value)


class AsciiViewer:
    """Read-only text projection of the materialized cells."""

    def __init__(self, renderer: TextCellRenderer) -> None:
        self.renderer = renderer

    def render(self, session: GameSession) -> str:
        player_cell = session.player_cell
        lines = [
            f"cell=({player_cell.i},{player_cell.j}) {inventory_text(session.inventory)} "
            f"modified={len(session.store)} {save_age_text(session.last_save_ms, session.clock())}"
        ]
        cells = self.renderer.cells
        if not cells:
            return "\n".join(lines + ["<nothing materialized>"])

        rows = sorted({cell.i for cell in cells}, reverse=True)
        columns = sorted({cell.j for cell in cells})
        width = max(len(_glyph(view)) for view in cells.values())
        width = max(width, len(PLAYER_GLYPH))
        for i in rows:
            row: list[str] = []
            for j in columns:
                cell = CellId(i, j)
                view = cells.get(cell)
                if cell == player_cell and (view is None or view.value is None):
                    glyph = PLAYER_GLYPH
                else:
                    glyph = _glyph(view) if view is not None else "?"
                row.append(glyph.rjust(width))
            lines.append(f"i={i:>6}: " + " ".join(row))
        return "\n".join(lines)


class SessionController:
    """Small command adapter; issues input to the session but does not own state."""

    def __init__(self, session: GameSession) -> None:
        self.session = session
        self.buttons = ButtonMovementController(lambda: session.player_cell, cell_size=session.config.cell_size)
        self.buttons.on_move(session.on_position_changed)
        self.buttons.enable()

    def move(self, direction: str) -> bool:
        return self.buttons.step(direction)

    def goto(self, lat: float, lng: float) -> CellId:
        return self.session.on_position_changed(lat, lng)

    def use(self, i: int, j: int) -> InteractionOutcome:
        return self.session.on_cell_activated(CellId(i, j))


def build_text_session(
    session: GameSession,
    *,
    half_height: int = VIEW_HALF_HEIGHT,
    half_width: int = VIEW_HALF_WIDTH,
) -> tuple[TextCellRenderer, AsciiViewer]:
    renderer = TextCellRenderer()
    session.attach_renderer(renderer, lambda: Viewport.around(session.player_cell, half_height, half_width))
    session.render()
    return renderer, AsciiViewer(renderer)


def _event_printer(emit: Callable[[str], None]) -> Callable[[GameEvent], None]:
    def on_event(event: GameEvent) -> None:
        if event.event_type == NOTIFICATION_EVENT_TYPE:
            emit(f"! {event.params['message']}")
        elif event.event_type == VICTORY_EVENT_TYPE:
            emit(f"*** Victory! You crafted {event.params['target']}! ***")

    return on_event


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="geocoin-ascii", description="Text-mode geocoin session.")
    parser.add_argument("--save-dir", default="saves", help="Directory holding the local save record.")
    parser.add_argument("--log-level", default="WARNING", help="Python logging level.")
    return parser


def run_demo(save_dir: str = "saves") -> None:
    session = GameSession.restore(storage=JsonFileStore(save_dir))
    session.add_listener(_event_printer(print))
    _, view = build_text_session(session)
    controller = SessionController(session)

    print("geocoin text mode. Commands: show | move <up|down|left|right> | goto <lat> <lng> | use <i> <j> | reset | quit")
    print(view.render(session))

    while True:
        raw = input("> ").strip()
        session.tick()
        if raw in {"quit", "exit"}:
            session.save_now()
            break
        if raw == "show":
            print(view.render(session))
            continue
        if raw == "reset":
            session.reset()
            print(view.render(session))
            continue

        parts = raw.split()
        try:
            if len(parts) == 2 and parts[0] == "move" and parts[1] in STEP_DIRECTIONS:
                controller.move(parts[1])
                print(view.render(session))
                continue
            if len(parts) == 3 and parts[0] == "goto":
                controller.goto(float(parts[1]), float(parts[2]))
                print(view.render(session))
                continue
            if len(parts) == 3 and parts[0] == "use":
                outcome = controller.use(int(parts[1]), int(parts[2]))
                print(f"{outcome.outcome}" + (f" {outcome.value}" if outcome.value is not None else ""))
                print(view.render(session))
                continue
        except ValueError as exc:
            print(f"bad arguments: {exc}")
            continue

        print("unknown command")


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    try:
        run_demo(args.save_dir)
    except (EOFError, KeyboardInterrupt):
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
