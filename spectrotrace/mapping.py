"""Row-to-frequency and brightness-to-amplitude mappings.

Image rows become oscillator frequencies (row 0, the top of the image, is the
highest frequency) and pixel brightness becomes oscillator amplitude.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from types import MappingProxyType

import numpy as np
from numpy.typing import NDArray

from .config import BrightnessCurve, FrequencyScale

DoubleArray = NDArray[np.float64]

_LN_10 = math.log(10.0)


# =============================================================================
# FREQUENCY MAPPING
# =============================================================================


def compute_row_frequencies_log(height: int, min_freq: float, max_freq: float) -> DoubleArray:
    if height <= 0:
        return np.zeros(0, dtype=np.float64)
    if height == 1:
        return np.array([math.sqrt(min_freq * max_freq)], dtype=np.float64)
    # t=1 at the top row gives max_freq, t=0 at the bottom row gives min_freq
    t = 1.0 - np.arange(height, dtype=np.float64) / (height - 1)
    return min_freq * np.power(max_freq / min_freq, t)


def compute_row_frequencies_linear(height: int, min_freq: float, max_freq: float) -> DoubleArray:
    if height <= 0:
        return np.zeros(0, dtype=np.float64)
    if height == 1:
        return np.array([(min_freq + max_freq) / 2.0], dtype=np.float64)
    t = np.arange(height, dtype=np.float64) / (height - 1)
    return max_freq - t * (max_freq - min_freq)


def compute_row_frequencies(
    height: int,
    min_freq: float,
    max_freq: float,
    scale: FrequencyScale,
) -> DoubleArray:
    """Center frequency per image row, highest first."""

    if scale == "logarithmic":
        return compute_row_frequencies_log(height, min_freq, max_freq)
    return compute_row_frequencies_linear(height, min_freq, max_freq)


# =============================================================================
# BRIGHTNESS MAPPING
# =============================================================================


def _curve_linear(values: DoubleArray) -> DoubleArray:
    return values


def _curve_exponential(values: DoubleArray) -> DoubleArray:
    return values * values


def _curve_logarithmic(values: DoubleArray) -> DoubleArray:
    return np.log1p(values * 9.0) / _LN_10


_CURVES: Mapping[str, Callable[[DoubleArray], DoubleArray]] = MappingProxyType(
    {
        "linear": _curve_linear,
        "exponential": _curve_exponential,
        "logarithmic": _curve_logarithmic,
    }
)


def map_amplitudes(
    values: NDArray[np.floating],
    curve: BrightnessCurve | str,
    invert: bool,
) -> DoubleArray:
    """Vectorized brightness curve; unknown curves behave as linear."""

    levels = np.array(values, dtype=np.float64)
    if invert:
        levels = 1.0 - levels
    transform = _CURVES.get(curve, _curve_linear)
    return transform(levels)


def map_amplitude(value: float, curve: BrightnessCurve | str, invert: bool) -> float:
    level = 1.0 - value if invert else value
    match curve:
        case "exponential":
            return level * level
        case "logarithmic":
            return math.log(1.0 + level * 9.0) / _LN_10
        case _:
            return level
