from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from geocoin.cli.pygame_viewer import env_flag_enabled, run_pygame_viewer
from geocoin.cli.viewer import run_demo
from geocoin.content.io import DEFAULT_SAVE_DIR
from geocoin.sim.core import GameConfig

FRONTEND_PYGAME = "pygame"
FRONTEND_ASCII = "ascii"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="geocoin", description="Canonical geocoin launcher.")
    parser.add_argument(
        "--frontend",
        choices=(FRONTEND_PYGAME, FRONTEND_ASCII),
        default=FRONTEND_PYGAME,
        help="Window (pygame) or terminal (ascii) front end.",
    )
    parser.add_argument("--save-dir", default=DEFAULT_SAVE_DIR, help="Directory holding the local save record.")
    parser.add_argument("--gps-track", help="Recorded fixes replayed when GPS movement is enabled.")
    parser.add_argument("--headless", action="store_true", help="Run startup path in headless mode.")
    parser.add_argument("--log-level", default="INFO", help="Python logging level.")
    return parser


def _ensure_save_dir(save_dir: str) -> None:
    Path(save_dir).mkdir(parents=True, exist_ok=True)


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    _ensure_save_dir(args.save_dir)
    if args.frontend == FRONTEND_ASCII:
        try:
            run_demo(args.save_dir)
        except (EOFError, KeyboardInterrupt):
            pass
        return 0
    return run_pygame_viewer(
        config=GameConfig(),
        save_dir=args.save_dir,
        gps_track=args.gps_track,
        headless=args.headless or env_flag_enabled("GEOCOIN_HEADLESS"),
    )


if __name__ == "__main__":
    raise SystemExit(main())
