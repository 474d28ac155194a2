from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Iterable

from rich.console import Console

from .audio import parse_wav_header, save_wav, wav_filename
from .config import BRIGHTNESS_CURVES, DEFAULT_PARAMS, FREQUENCY_SCALES, SAMPLE_RATES, sanitize_params
from .errors import GenerationFailedError
from .image import load_npy
from .logging_utils import configure_logging, is_debug, log_exception
from .session import GenerationSession, GenerationState
from .spinner import ProgressBar, render_error

_LOGGER = logging.getLogger("spectrotrace.cli")
_CONSOLE = Console()
_POLL_SECONDS = 0.1
_EXIT_INTERRUPTED = 130


def _report(lines: Iterable[str]) -> None:
    for line in lines:
        _CONSOLE.print(line)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="spectrotrace")
    sub = parser.add_subparsers(dest="command", required=True)

    render = sub.add_parser("render", help="Render a grayscale .npy image into a WAV file.")
    render.add_argument("input", type=Path, help="2-D grayscale array saved with numpy.save")
    render.add_argument("-o", "--output", type=Path, default=None)
    render.add_argument("--duration", type=float, default=DEFAULT_PARAMS.duration_seconds)
    render.add_argument("--min-freq", type=float, default=DEFAULT_PARAMS.min_frequency_hz)
    render.add_argument("--max-freq", type=float, default=DEFAULT_PARAMS.max_frequency_hz)
    render.add_argument("--scale", choices=FREQUENCY_SCALES, default=DEFAULT_PARAMS.frequency_scale)
    render.add_argument(
        "--sample-rate", type=int, choices=SAMPLE_RATES, default=DEFAULT_PARAMS.sample_rate_hz
    )
    render.add_argument("--curve", choices=BRIGHTNESS_CURVES, default=DEFAULT_PARAMS.brightness_curve)
    render.add_argument("--invert", action="store_true")
    render.add_argument(
        "--smoothing",
        type=float,
        default=DEFAULT_PARAMS.smoothing * 100.0,
        help="Temporal smoothing in percent (0-100).",
    )

    info = sub.add_parser("info", help="Print the header of a WAV file.")
    info.add_argument("path", type=Path)
    return parser


def _params_from_args(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "duration_seconds": args.duration,
        "min_frequency_hz": args.min_freq,
        "max_frequency_hz": args.max_freq,
        "frequency_scale": args.scale,
        "sample_rate_hz": args.sample_rate,
        "brightness_curve": args.curve,
        "invert_image": args.invert,
        "smoothing_percent": args.smoothing,
    }


def _run_session(session: GenerationSession, bar: ProgressBar) -> GenerationState:
    while True:
        state = session.wait(timeout=_POLL_SECONDS)
        bar.update(float(state.progress or 0))
        if not state.is_busy:
            return state


def _render(args: argparse.Namespace) -> int:
    image = load_npy(args.input)
    params = sanitize_params(_params_from_args(args))
    output = args.output or Path(wav_filename())

    with GenerationSession() as session:
        session.generate(image, params)
        with ProgressBar("Synthesizing audio") as bar:
            try:
                state = _run_session(session, bar)
            except KeyboardInterrupt:
                session.cancel()
                session.wait(timeout=5.0)
                _CONSOLE.print("Cancelled.")
                return _EXIT_INTERRUPTED

    if state.status != "ready" or state.result is None:
        raise GenerationFailedError(state.error or f"generation ended as {state.status}")
    path = save_wav(output, state.result)
    _CONSOLE.print(
        f"Wrote {path} ({image.width}x{image.height} px, "
        f"{params.duration_seconds:g}s @ {params.sample_rate_hz} Hz)"
    )
    return 0


def _info(args: argparse.Namespace) -> int:
    with args.path.open("rb") as handle:
        header = parse_wav_header(handle.read(44))
    _report(
        [
            f"File: {args.path}",
            f"Format: {'PCM' if header.audio_format == 1 else header.audio_format}",
            f"Channels: {header.num_channels}",
            f"Sample rate: {header.sample_rate} Hz",
            f"Bits per sample: {header.bits_per_sample}",
            f"Frames: {header.num_frames}",
            f"Duration: {header.duration_seconds:.3f}s",
        ]
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        if args.command == "render":
            return _render(args)
        if args.command == "info":
            return _info(args)

        parser.print_help()
        return 1
    except Exception as exc:
        _LOGGER.warning("spectrotrace CLI failed: %s", exc, exc_info=is_debug())
        log_exception("spectrotrace CLI", exc)
        render_error("spectrotrace CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
