"""
Additive synthesis of an image into PCM audio.

1. Subsampling bounds the work for oversized images
2. Each image row drives one sine oscillator with persistent phase
3. Each image column is one time slice; its pixels set the oscillator amplitudes
4. Slices are blended with the previous slice to avoid clicks between columns
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from .config import DEFAULT_SETTINGS, ConversionParams, EngineSettings
from .errors import GenerationCancelledError, InvalidInputError
from .image import GrayscaleImage
from .mapping import compute_row_frequencies, map_amplitudes

FloatArray = NDArray[np.float32]
DoubleArray = NDArray[np.float64]
ProgressSink = Callable[[float], None]
CancelPoll = Callable[[], bool]

TWO_PI = 2.0 * math.pi

# Upper bound on phase-trajectory elements held in memory per block.
_BLOCK_ELEMENTS = 1 << 20

_LOGGER = logging.getLogger("spectrotrace.synth")


# =============================================================================
# TEMPORAL SMOOTHING
# =============================================================================


def apply_temporal_smoothing(
    current: DoubleArray,
    previous: DoubleArray,
    factor: float,
) -> None:
    """Blend `current` toward `previous` in place.

    `previous` receives the unblended values of `current`, so each column is
    smoothed against the raw previous column rather than an accumulated blend.
    """

    if factor <= 0:
        return
    blend = min(1.0, factor)
    raw = current.copy()
    current *= 1.0 - blend
    current += previous * blend
    previous[:] = raw


# =============================================================================
# SUBSAMPLING
# =============================================================================


def compute_steps(
    width: int,
    height: int,
    *,
    pixel_limit: int = DEFAULT_SETTINGS.subsample_pixel_limit,
) -> tuple[int, int]:
    total = width * height
    if total <= pixel_limit:
        return 1, 1
    step = math.ceil(math.sqrt(total / pixel_limit))
    return step, step


# =============================================================================
# NORMALIZATION
# =============================================================================


def normalize_pcm(
    buffer: FloatArray,
    *,
    headroom: float = DEFAULT_SETTINGS.headroom,
    quiet_floor: float = DEFAULT_SETTINGS.quiet_floor,
) -> None:
    """Scale in place to `headroom` when the peak clips or is too quiet."""

    if buffer.size == 0:
        return
    peak = float(np.max(np.abs(buffer)))
    if peak == 0.0:
        return
    if peak > headroom or peak < quiet_floor:
        buffer *= np.float32(headroom / peak)


# =============================================================================
# OSCILLATORS
# =============================================================================


@dataclass(slots=True)
class OscillatorBank:
    increment: DoubleArray
    phase: DoubleArray

    @classmethod
    def from_frequencies(cls, frequencies: DoubleArray, sample_rate: int) -> "OscillatorBank":
        increment = TWO_PI * np.asarray(frequencies, dtype=np.float64) / sample_rate
        return cls(increment=increment, phase=np.zeros_like(increment))

    def advance(self) -> None:
        self.phase += self.increment
        # subtract exactly one turn; modulo would reintroduce rounding error
        np.subtract(self.phase, TWO_PI, out=self.phase, where=self.phase > TWO_PI)


def _render_column(
    output: FloatArray,
    start: int,
    stop: int,
    amplitudes: DoubleArray,
    bank: OscillatorBank,
    min_amplitude: float,
) -> None:
    active = amplitudes > min_amplitude
    weights = amplitudes[active]
    rows = bank.phase.size
    block = max(1, _BLOCK_ELEMENTS // max(rows, 1))

    for block_start in range(start, stop, block):
        block_stop = min(block_start + block, stop)
        trajectory = np.empty((block_stop - block_start, rows), dtype=np.float64)
        for offset in range(block_stop - block_start):
            trajectory[offset] = bank.phase
            # silent rows still advance so they re-enter in phase
            bank.advance()
        if weights.size:
            output[block_start:block_stop] = np.sin(trajectory[:, active]) @ weights


def _check_image(image: GrayscaleImage) -> None:
    if image.width <= 0 or image.height <= 0:
        raise InvalidInputError("Image dimensions must be positive")
    if image.pixels.size != image.width * image.height:
        raise InvalidInputError(
            f"Data size mismatch: expected {image.width * image.height}, got {image.pixels.size}"
        )


# =============================================================================
# ENGINE
# =============================================================================


def synthesize(
    image: GrayscaleImage,
    params: ConversionParams,
    *,
    on_progress: ProgressSink | None = None,
    is_cancelled: CancelPoll | None = None,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> FloatArray:
    """Render `image` into un-normalized mono PCM.

    Columns map to time (left to right) and rows to frequency (top is highest).
    Progress is reported on a 0..100 scale every `settings.progress_interval`
    columns and once more at completion. Raises `GenerationCancelledError` as
    soon as `is_cancelled` returns true between columns.
    """

    _check_image(image)

    step_x, step_y = compute_steps(
        image.width, image.height, pixel_limit=settings.subsample_pixel_limit
    )
    effective_width = math.ceil(image.width / step_x)
    effective_height = math.ceil(image.height / step_y)
    if step_x > 1:
        _LOGGER.info(
            "Subsampling %sx%s image by %s to %sx%s",
            image.width,
            image.height,
            step_x,
            effective_width,
            effective_height,
        )

    frequencies = compute_row_frequencies(
        effective_height,
        params.min_frequency_hz,
        params.max_frequency_hz,
        params.frequency_scale,
    )
    bank = OscillatorBank.from_frequencies(frequencies, params.sample_rate_hz)

    total_samples = params.total_samples
    output: FloatArray = np.zeros(total_samples, dtype=np.float32)
    samples_per_column = total_samples / effective_width

    grid = image.as_grid()[::step_y, ::step_x]
    previous = np.zeros(effective_height, dtype=np.float64)

    for x in range(effective_width):
        if is_cancelled is not None and is_cancelled():
            raise GenerationCancelledError("Generation cancelled")
        if on_progress is not None and x % settings.progress_interval == 0:
            on_progress(x / effective_width * 100.0)

        current = map_amplitudes(grid[:, x], params.brightness_curve, params.invert_image)
        if x > 0 and params.smoothing > 0:
            apply_temporal_smoothing(current, previous, params.smoothing)
        else:
            previous[:] = current

        start = math.floor(x * samples_per_column)
        if x == effective_width - 1:
            stop = total_samples
        else:
            stop = min(math.floor((x + 1) * samples_per_column), total_samples)
        _render_column(output, start, stop, current, bank, settings.min_amplitude)

    if on_progress is not None:
        on_progress(100.0)
    return output
