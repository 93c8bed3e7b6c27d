from __future__ import annotations

import argparse
import json
import logging
import threading
import time
from collections.abc import Sequence
from pathlib import Path

import numpy as np
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .config import LayoutConfig, SonificationConfig
from .engine import AudioEngine
from .errors import InvalidConfigError
from .export import export_gap
from .gap import build_gap, compose_voices
from .layout import layout_points
from .logging_utils import configure_logging, debug_enabled, log_exception
from .models import POINT_LIST, Gap, Point, PositionedPoint
from .scheduler import GapScheduler, PlaybackHooks
from .similarity import similarity_edges
from .spinner import Spinner, render_error

_LOGGER = logging.getLogger("gapsong.cli")
_CONSOLE = Console()


def load_points(path: str | Path) -> list[Point]:
    try:
        return POINT_LIST.validate_json(Path(path).read_bytes())
    except ValidationError as exc:
        raise InvalidConfigError(f"{path} is not a valid point list: {exc}") from exc


def _find_point(points: Sequence[Point], key: str) -> Point:
    for point in points:
        if str(point.id) == key:
            return point
    for point in points:
        if point.title == key:
            return point
    raise InvalidConfigError(f"No point with id or title {key!r}")


def _select_gap(points: Sequence[Point], origin: str, target: str) -> Gap:
    first = _find_point(points, origin)
    second = _find_point(points, target)
    if first.id == second.id:
        raise InvalidConfigError("Pick two different points")
    return build_gap(first, second)


def _print_gap(gap: Gap) -> None:
    table = Table(title=f"Gap {gap.id}")
    table.add_column("Voice")
    table.add_column("Label")
    table.add_column("Timbre")
    for voice in compose_voices(gap):
        table.add_row(voice.role, voice.label, voice.timbre)
    _CONSOLE.print(table)
    _CONSOLE.print(
        f"similarity={gap.semantic_similarity:.3f} distance={gap.distance:.3f} "
        f"shared={len(gap.shared_links)}"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gapsong")
    sub = parser.add_subparsers(dest="command", required=True)

    layout = sub.add_parser("layout", help="Lay out points by link similarity.")
    layout.add_argument("points", type=str)
    layout.add_argument("--output", type=str, default=None)
    layout.add_argument("--synchronous", action="store_true")

    export = sub.add_parser("export", help="Render the gap between two points to WAV.")
    export.add_argument("points", type=str)
    export.add_argument("origin", type=str)
    export.add_argument("target", type=str)
    export.add_argument("--dir", type=str, default=".")
    export.add_argument("--seed", type=int, default=None)

    play = sub.add_parser("play", help="Play the gap between two points live.")
    play.add_argument("points", type=str)
    play.add_argument("origin", type=str)
    play.add_argument("target", type=str)
    return parser


def _run_layout(args: argparse.Namespace) -> int:
    points = load_points(args.points)
    config = LayoutConfig(update="synchronous" if args.synchronous else "sequential")
    matrix = layout_points(points, config)
    positioned = [PositionedPoint.from_point(point) for point in points]

    table = Table(title=f"{len(points)} points, {len(similarity_edges(matrix))} links")
    table.add_column("Id")
    table.add_column("Title")
    table.add_column("x", justify="right")
    table.add_column("y", justify="right")
    for item in positioned:
        table.add_row(str(item.id), item.title, f"{item.x:.3f}", f"{item.y:.3f}")
    _CONSOLE.print(table)

    if args.output:
        payload = [item.model_dump() for item in positioned]
        Path(args.output).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        _CONSOLE.print(f"Wrote positions to {args.output}")
    return 0


def _run_export(args: argparse.Namespace) -> int:
    points = load_points(args.points)
    layout_points(points)
    gap = _select_gap(points, args.origin, args.target)
    _print_gap(gap)
    rng = np.random.default_rng(args.seed) if args.seed is not None else None
    with Spinner("Rendering gap"):
        path = export_gap(gap, args.dir, rng=rng)
    _CONSOLE.print(f"Wrote {path}")
    return 0


def _run_play(args: argparse.Namespace) -> int:
    points = load_points(args.points)
    layout_points(points)
    gap = _select_gap(points, args.origin, args.target)
    _print_gap(gap)

    done = threading.Event()
    hooks = PlaybackHooks(on_step=lambda step, freq: _LOGGER.debug("step %d: %.1f Hz", step, freq))
    scheduler = GapScheduler(AudioEngine(SonificationConfig()), hooks=hooks)
    try:
        scheduler.play(gap, on_ended=done.set)
        while not done.wait(0.1):
            pass
        # let the reverb tail ring out
        time.sleep(scheduler.config.reverb_seconds)
    except KeyboardInterrupt:
        _LOGGER.info("Playback interrupted")
    finally:
        scheduler.shutdown()
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        if args.command == "layout":
            return _run_layout(args)
        if args.command == "export":
            return _run_export(args)
        if args.command == "play":
            return _run_play(args)

        parser.print_help()
        return 1
    except Exception as exc:
        _LOGGER.warning("gapsong CLI failed: %s", exc, exc_info=debug_enabled())
        log_exception("gapsong CLI", exc)
        render_error("gapsong CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
