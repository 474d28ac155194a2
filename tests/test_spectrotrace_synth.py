from __future__ import annotations

import math

import numpy as np
import pytest

from spectrotrace.config import ConversionParams, EngineSettings
from spectrotrace.errors import GenerationCancelledError, InvalidInputError
from spectrotrace.image import GrayscaleImage
from spectrotrace.mapping import compute_row_frequencies, map_amplitude
from spectrotrace.synth import (
    TWO_PI,
    OscillatorBank,
    apply_temporal_smoothing,
    compute_steps,
    normalize_pcm,
    synthesize,
)


def _params(**overrides: object) -> ConversionParams:
    base: dict[str, object] = {
        "duration_seconds": 1.0,
        "min_frequency_hz": 100.0,
        "max_frequency_hz": 1000.0,
        "frequency_scale": "linear",
        "sample_rate_hz": 8000,
        "brightness_curve": "linear",
        "invert_image": False,
        "smoothing": 0.0,
    }
    base.update(overrides)
    return ConversionParams.model_validate(base)


def _peak_hz(samples: np.ndarray, sample_rate: int) -> float:
    spectrum = np.abs(np.fft.rfft(samples))
    bins = np.fft.rfftfreq(samples.size, d=1.0 / sample_rate)
    return float(bins[int(np.argmax(spectrum))])


def _diagonal_image() -> GrayscaleImage:
    return GrayscaleImage.from_buffer(np.array([1.0, 0.0, 0.0, 1.0]), 2, 2)


def _reference(image: GrayscaleImage, params: ConversionParams) -> np.ndarray:
    total = params.total_samples
    freqs = compute_row_frequencies(
        image.height, params.min_frequency_hz, params.max_frequency_hz, params.frequency_scale
    )
    increments = [2 * math.pi * float(f) / params.sample_rate_hz for f in freqs]
    phases = [0.0] * image.height
    out = np.zeros(total)
    per_column = total / image.width
    grid = image.as_grid()
    for x in range(image.width):
        amps = [
            map_amplitude(float(grid[y, x]), params.brightness_curve, params.invert_image)
            for y in range(image.height)
        ]
        start = math.floor(x * per_column)
        stop = total if x == image.width - 1 else math.floor((x + 1) * per_column)
        for s in range(start, stop):
            value = 0.0
            for y in range(image.height):
                value += amps[y] * math.sin(phases[y])
                phases[y] += increments[y]
                if phases[y] > 2 * math.pi:
                    phases[y] -= 2 * math.pi
            out[s] = value
    return out


# -----------------------------------------------------------------------------
# Temporal smoothing
# -----------------------------------------------------------------------------


def test_smoothing_factor_zero_is_identity() -> None:
    current = np.array([0.2, 0.8])
    previous = np.array([1.0, 0.0])
    apply_temporal_smoothing(current, previous, 0.0)
    assert current.tolist() == [0.2, 0.8]
    assert previous.tolist() == [1.0, 0.0]


def test_smoothing_factor_one_copies_previous() -> None:
    current = np.array([0.2, 0.8])
    previous = np.array([1.0, 0.0])
    apply_temporal_smoothing(current, previous, 1.0)
    assert current.tolist() == [1.0, 0.0]
    assert previous.tolist() == [0.2, 0.8]


def test_smoothing_seeds_previous_with_unblended_values() -> None:
    current = np.array([1.0])
    previous = np.array([0.0])
    apply_temporal_smoothing(current, previous, 0.25)
    assert current[0] == pytest.approx(0.75)
    assert previous[0] == pytest.approx(1.0)


# -----------------------------------------------------------------------------
# Subsampling / normalization
# -----------------------------------------------------------------------------


def test_compute_steps_threshold() -> None:
    assert compute_steps(2000, 2000) == (1, 1)
    assert compute_steps(4000, 4000) == (2, 2)
    assert compute_steps(3000, 2000) == (2, 2)
    assert compute_steps(10, 10, pixel_limit=25) == (2, 2)


def test_normalize_scales_loud_buffer_to_headroom() -> None:
    buffer = np.array([0.0, 2.0, -4.0], dtype=np.float32)
    normalize_pcm(buffer)
    assert float(np.max(np.abs(buffer))) == pytest.approx(0.9, abs=1e-6)
    assert buffer[1] == pytest.approx(0.45, abs=1e-6)


def test_normalize_boosts_quiet_buffer() -> None:
    buffer = np.array([0.01, -0.05], dtype=np.float32)
    normalize_pcm(buffer)
    assert float(np.max(np.abs(buffer))) == pytest.approx(0.9, abs=1e-6)


def test_normalize_leaves_reasonable_levels_alone() -> None:
    buffer = np.array([0.5, -0.3], dtype=np.float32)
    normalize_pcm(buffer)
    assert buffer.tolist() == pytest.approx([0.5, -0.3])


def test_normalize_keeps_silence_silent() -> None:
    buffer = np.zeros(16, dtype=np.float32)
    normalize_pcm(buffer)
    assert not buffer.any()


# -----------------------------------------------------------------------------
# Oscillators
# -----------------------------------------------------------------------------


def test_phase_wraps_by_one_turn() -> None:
    bank = OscillatorBank(increment=np.array([0.1]), phase=np.array([TWO_PI - 0.01]))
    bank.advance()
    assert bank.phase[0] == pytest.approx(0.09)


def test_phase_stays_bounded_over_long_runs() -> None:
    bank = OscillatorBank.from_frequencies(np.array([20.0, 997.0, 21000.0]), 44100)
    for _ in range(50_000):
        bank.advance()
    assert np.all(bank.phase >= 0.0)
    assert np.all(bank.phase <= TWO_PI)


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------


def test_diagonal_image_moves_from_high_to_low_tone() -> None:
    params = _params()
    pcm = synthesize(_diagonal_image(), params)
    assert pcm.shape == (8000,)
    assert pcm.dtype == np.float32
    assert _peak_hz(pcm[:4000], 8000) == pytest.approx(1000.0, abs=5.0)
    assert _peak_hz(pcm[4000:], 8000) == pytest.approx(100.0, abs=5.0)


def test_full_smoothing_holds_first_column() -> None:
    pcm = synthesize(_diagonal_image(), _params(smoothing=1.0))
    assert _peak_hz(pcm[4000:], 8000) == pytest.approx(1000.0, abs=5.0)


def test_inverted_image_swaps_tones() -> None:
    pcm = synthesize(_diagonal_image(), _params(invert_image=True))
    assert _peak_hz(pcm[:4000], 8000) == pytest.approx(100.0, abs=5.0)
    assert _peak_hz(pcm[4000:], 8000) == pytest.approx(1000.0, abs=5.0)


def test_synthesis_is_deterministic() -> None:
    rng = np.random.default_rng(7)
    image = GrayscaleImage.from_buffer(rng.random(6 * 5), 6, 5)
    params = _params(smoothing=0.3, frequency_scale="logarithmic", brightness_curve="logarithmic")
    first = synthesize(image, params)
    second = synthesize(image, params)
    assert np.array_equal(first, second)


def test_matches_unoptimized_reference() -> None:
    pixels = np.array(
        [
            [0.0, 0.5, 1.0],
            [0.8, 0.0, 0.3],
            [0.25, 0.75, 0.0],
            [1.0, 0.1, 0.6],
        ]
    )
    image = GrayscaleImage.from_array(pixels)
    params = _params(sample_rate_hz=2000, frequency_scale="logarithmic")
    pcm = synthesize(image, params)
    assert np.allclose(pcm, _reference(image, params), atol=1e-5)


def test_skipping_quiet_rows_keeps_audible_output() -> None:
    pixels = np.array([[0.0, 0.6], [0.9, 0.0005], [0.4, 0.0]])
    image = GrayscaleImage.from_array(pixels)
    params = _params(sample_rate_hz=4000)
    fast = synthesize(image, params)
    exact = synthesize(image, params, settings=EngineSettings(min_amplitude=0.0))
    assert np.allclose(fast, exact, atol=1e-3)


def test_last_column_runs_to_final_sample() -> None:
    image = GrayscaleImage.from_buffer(np.array([0.0, 0.0, 1.0]), 3, 1)
    pcm = synthesize(image, _params(sample_rate_hz=1000))
    assert pcm.size == 1000
    assert not pcm[:666].any()
    assert float(np.max(np.abs(pcm[-10:]))) > 0.1


def test_oversized_image_is_decimated() -> None:
    rng = np.random.default_rng(3)
    grid = rng.random((10, 10))
    params = _params(sample_rate_hz=2000)
    settings = EngineSettings(subsample_pixel_limit=25)
    decimated = synthesize(GrayscaleImage.from_array(grid), params, settings=settings)
    manual = synthesize(GrayscaleImage.from_array(grid[::2, ::2]), params)
    assert np.array_equal(decimated, manual)


def test_progress_every_interval_then_done() -> None:
    image = GrayscaleImage.from_buffer(np.full(25, 0.5), 25, 1)
    seen: list[float] = []
    synthesize(image, _params(sample_rate_hz=500), on_progress=seen.append)
    assert seen == pytest.approx([0.0, 40.0, 80.0, 100.0])


def test_cancellation_stops_between_columns() -> None:
    image = GrayscaleImage.from_buffer(np.full(100, 0.5), 100, 1)
    polls = 0

    def _cancelled() -> bool:
        nonlocal polls
        polls += 1
        return polls > 2

    with pytest.raises(GenerationCancelledError):
        synthesize(image, _params(sample_rate_hz=1000), is_cancelled=_cancelled)
    assert polls == 3


def test_rejects_mismatched_buffer() -> None:
    with pytest.raises(InvalidInputError):
        GrayscaleImage.from_buffer(np.zeros(3), 2, 2)
    broken = GrayscaleImage.model_construct(width=2, height=2, pixels=np.zeros(3, np.float32))
    with pytest.raises(InvalidInputError):
        synthesize(broken, _params())


def test_rejects_non_positive_dimensions() -> None:
    with pytest.raises(InvalidInputError):
        GrayscaleImage.from_buffer(np.zeros(0), 0, 0)
    broken = GrayscaleImage.model_construct(width=0, height=4, pixels=np.zeros(0, np.float32))
    with pytest.raises(InvalidInputError):
        synthesize(broken, _params())
