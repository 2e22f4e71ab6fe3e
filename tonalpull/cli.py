from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Iterable

from rich.console import Console
from rich.table import Table

from .audio import iter_frames, read_wav
from .capture import FrameLoop, MicrophoneCapture, capture_available
from .chords import chord_name
from .config import KEY_NAMES, EngineConfig
from .logging_utils import configure_logging, get_log_path, log_exception
from .models import ModelSlot
from .pitch import PitchMapper
from .session import FrameOutput, Session

_LOGGER = logging.getLogger("tonalpull.cli")
_CONSOLE = Console()


def _format_tensions(snapshot: dict[int, float]) -> str:
    if not snapshot:
        return "-"
    return " ".join(f"{degree}:{value:.2f}" for degree, value in sorted(snapshot.items()))


def _build_session(args: argparse.Namespace, *, background_model: bool) -> Session:
    overrides: dict[str, object] = {"key": args.key, "mode": args.mode}
    config = EngineConfig.from_env(**overrides)
    slot: ModelSlot | None = None
    if args.mode == "chord":
        slot = ModelSlot(args.model or config.chords.model_path)
        if background_model:
            slot.load_async()
        else:
            slot.load()
    return Session(config, model_slot=slot)


def _cmd_map(args: argparse.Namespace) -> int:
    mapper = PitchMapper(args.key)
    position = mapper.map(args.hz)
    if position.in_key:
        where = f"degree {position.degree}" if position.degree else "neutral"
    else:
        low, high = position.adjacent_degrees
        where = f"between {low} and {high} (t={position.t:.2f})"
    _CONSOLE.print(
        f"{args.hz:.2f} Hz in {args.key.upper()}: {where}, "
        f"{position.cents_offset:+.0f} cents, at ({position.x:.1f}, {position.y:.1f})"
    )
    return 0


def _analyze_rows(session: Session, outputs: Iterable[tuple[float, FrameOutput]]) -> Table:
    table = Table(title=f"tonalpull {session.mode} analysis in {session.key.upper()}")
    table.add_column("time", justify="right")
    if session.mode == "chord":
        table.add_column("chord")
        table.add_column("name")
        table.add_column("quality")
        last_label: str | None = None
        for timestamp, output in outputs:
            if output.chord_label == last_label:
                continue
            last_label = output.chord_label
            label = output.chord_label or "-"
            table.add_row(
                f"{timestamp:.2f}",
                label,
                chord_name(label, session.key) if output.chord_label else "-",
                output.quality or "-",
            )
        return table

    table.add_column("degree")
    table.add_column("resolutions")
    table.add_column("tension")
    table.add_column("global", justify="right")
    for timestamp, output in outputs:
        if output.activated_degree is None:
            continue
        resolutions = ", ".join(
            f"{event.source}->{event.target} {event.amount:.2f}"
            for event in output.resolution_events
        )
        table.add_row(
            f"{timestamp:.2f}",
            str(output.activated_degree),
            resolutions or "-",
            _format_tensions(output.tension_snapshot),
            f"{output.global_tension:.2f}",
        )
    return table


def _cmd_analyze(args: argparse.Namespace) -> int:
    session = _build_session(args, background_model=False)
    samples, sample_rate = read_wav(args.path)
    frame_size = args.frame_size
    outputs: list[tuple[float, FrameOutput]] = []
    for index, frame in enumerate(iter_frames(samples, frame_size)):
        timestamp = index * frame_size / sample_rate
        outputs.append((timestamp, session.process_frame(frame, sample_rate, timestamp)))
    _CONSOLE.print(_analyze_rows(session, outputs))
    return 0


def _cmd_listen(args: argparse.Namespace) -> int:
    session = _build_session(args, background_model=True)
    frame_cfg = session.config.frame
    capture = MicrophoneCapture(sample_rate=frame_cfg.sample_rate, frame_size=frame_cfg.frame_size)
    last: dict[str, object] = {}

    def _show(output: FrameOutput) -> None:
        if output.activated_degree is not None:
            _CONSOLE.print(
                f"degree {output.activated_degree}  tension {_format_tensions(output.tension_snapshot)}"
                f"  global {output.global_tension:.2f}"
            )
        if output.chord_label != last.get("chord") and not output.silent:
            last["chord"] = output.chord_label
            if output.chord_label:
                _CONSOLE.print(f"chord {output.chord_label} ({output.quality})")

    loop = FrameLoop(session, capture, _show)
    try:
        loop.run(duration=args.seconds)
    except KeyboardInterrupt:
        loop.stop()
    return 0


def _cmd_doctor(args: argparse.Namespace) -> int:
    config = EngineConfig.from_env()
    slot = ModelSlot(args.model or config.chords.model_path)
    slot.load()
    lines = [
        f"Key: {config.key.upper()}  mode: {config.mode}",
        f"Chord model path: {slot.path}",
        f"Chord model status: {slot.status.value}",
        f"Microphone capture available: {capture_available()}",
        f"Log file: {get_log_path()}",
    ]
    if slot.error is not None:
        lines.append(f"Model error: {slot.error}")
        lines.append("- Chord mode falls back to template matching without a model.")
        lines.append("- Set TONALPULL_CHORD_MODEL to point at a .npz weights file.")
    for line in lines:
        _CONSOLE.print(line)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tonalpull")
    sub = parser.add_subparsers(dest="command", required=True)

    def _add_key(p: argparse.ArgumentParser) -> None:
        p.add_argument("--key", type=str.lower, choices=KEY_NAMES, default="c")

    mapper = sub.add_parser("map", help="Show where a frequency lands in a key.")
    mapper.add_argument("hz", type=float)
    _add_key(mapper)

    analyze = sub.add_parser("analyze", help="Run an audio file through the frame driver.")
    analyze.add_argument("path", type=Path)
    _add_key(analyze)
    analyze.add_argument("--mode", choices=["pitch", "chord"], default="pitch")
    analyze.add_argument("--frame-size", type=int, default=2048)
    analyze.add_argument("--model", type=Path, default=None)

    listen = sub.add_parser("listen", help="Track live microphone input.")
    _add_key(listen)
    listen.add_argument("--mode", choices=["pitch", "chord"], default="pitch")
    listen.add_argument("--seconds", type=float, default=None)
    listen.add_argument("--model", type=Path, default=None)

    doctor = sub.add_parser("doctor", help="Check model and capture availability.")
    doctor.add_argument("--model", type=Path, default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        handlers = {
            "map": _cmd_map,
            "analyze": _cmd_analyze,
            "listen": _cmd_listen,
            "doctor": _cmd_doctor,
        }
        handler = handlers.get(args.command)
        if handler is None:
            parser.print_help()
            return 1
        return handler(args)
    except Exception as exc:
        debug = bool(os.environ.get("TONALPULL_DEBUG"))
        _LOGGER.warning("tonalpull CLI failed: %s", exc, exc_info=debug)
        command = argv if argv is not None else sys.argv[1:]
        log_exception("tonalpull CLI", exc, details={"argv": " ".join(command)})
        _CONSOLE.print(f"[red]tonalpull failed:[/red] {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
