from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import InvalidConfigError

_LOGGER = logging.getLogger("spectrotrace.config")

FrequencyScale = Literal["logarithmic", "linear"]
BrightnessCurve = Literal["linear", "exponential", "logarithmic"]
SampleRate = Literal[22050, 44100, 48000]

SAMPLE_RATES: tuple[int, ...] = get_args(SampleRate)
FREQUENCY_SCALES: tuple[str, ...] = get_args(FrequencyScale)
BRIGHTNESS_CURVES: tuple[str, ...] = get_args(BrightnessCurve)


# -----------------------------------------------------------------------------
# Ranges
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ParamRange:
    low: float
    high: float

    def clamp(self, value: float) -> float:
        return min(self.high, max(self.low, value))

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high


PARAM_RANGES: Mapping[str, ParamRange] = MappingProxyType(
    {
        "duration_seconds": ParamRange(1.0, 60.0),
        "min_frequency_hz": ParamRange(20.0, 2000.0),
        "max_frequency_hz": ParamRange(500.0, 22000.0),
        "smoothing": ParamRange(0.0, 1.0),
    }
)

_RANGE_LABELS: Mapping[str, str] = MappingProxyType(
    {
        "duration_seconds": "Duration must be between {low:g} and {high:g} seconds",
        "min_frequency_hz": "Minimum frequency must be between {low:g} and {high:g} Hz",
        "max_frequency_hz": "Maximum frequency must be between {low:g} and {high:g} Hz",
        "smoothing": "Smoothing must be between {low:g} and {high:g}",
    }
)

_FREQUENCY_REPAIR_SPAN = 500.0


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------


class ConversionParams(BaseModel):
    """Immutable per-job synthesis parameters.

    Values are expected to have passed through `sanitize_params`; the model
    only enforces the structural rules the engine relies on (positive rates,
    a non-empty frequency band, smoothing as a 0..1 fraction).
    """

    duration_seconds: float = Field(default=8.0, gt=0.0)
    min_frequency_hz: float = Field(default=50.0, gt=0.0)
    max_frequency_hz: float = Field(default=16000.0, gt=0.0)
    frequency_scale: FrequencyScale = "logarithmic"
    sample_rate_hz: int = Field(default=44100, gt=0)
    brightness_curve: BrightnessCurve = "linear"
    invert_image: bool = False
    smoothing: float = Field(default=0.15, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_band(self) -> "ConversionParams":
        if self.min_frequency_hz >= self.max_frequency_hz:
            raise ValueError("min_frequency_hz must be less than max_frequency_hz")
        return self

    @property
    def total_samples(self) -> int:
        return math.floor(self.sample_rate_hz * self.duration_seconds)


class EngineSettings(BaseModel):
    """Tuning constants that trade fidelity for speed."""

    min_amplitude: float = Field(default=0.001, ge=0.0)
    subsample_pixel_limit: int = Field(default=2000 * 2000, gt=0)
    progress_interval: int = Field(default=10, gt=0)
    headroom: float = Field(default=0.9, gt=0.0, le=1.0)
    quiet_floor: float = Field(default=0.1, ge=0.0)
    synthesis_progress_share: float = Field(default=90.0, gt=0.0, le=100.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


DEFAULT_PARAMS = ConversionParams()
DEFAULT_SETTINGS = EngineSettings()


class ParamIssue(BaseModel):
    field: str
    message: str

    model_config = ConfigDict(frozen=True)


# -----------------------------------------------------------------------------
# Sanitization / validation
# -----------------------------------------------------------------------------


def _as_float(field: str, value: object, fallback: float) -> float:
    if isinstance(value, bool):
        raise InvalidConfigError(f"{field} must be a number, got {value!r}")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise InvalidConfigError(f"{field} must be a number, got {value!r}") from exc
    if math.isnan(number):
        _LOGGER.debug("%s is NaN; using %s", field, fallback)
        return fallback
    return number


def _coerce_sample_rate(value: object) -> int:
    try:
        rate = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return DEFAULT_PARAMS.sample_rate_hz
    return rate if rate in SAMPLE_RATES else DEFAULT_PARAMS.sample_rate_hz


def sanitize_params(
    raw: ConversionParams | Mapping[str, Any] | None = None,
    **overrides: Any,
) -> ConversionParams:
    """Merge with defaults, clamp into range and repair the frequency band."""

    match raw:
        case None:
            merged: dict[str, Any] = {}
        case ConversionParams():
            merged = raw.model_dump()
        case Mapping():
            merged = dict(raw)
        case _:
            raise InvalidConfigError("params must be a mapping or ConversionParams")
    merged.update(overrides)

    if "smoothing_percent" in merged:
        percent = _as_float("smoothing_percent", merged.pop("smoothing_percent"), 0.0)
        merged["smoothing"] = percent / 100.0

    unknown = set(merged) - set(ConversionParams.model_fields)
    if unknown:
        raise InvalidConfigError(f"Unknown conversion params: {', '.join(sorted(unknown))}")

    base = DEFAULT_PARAMS.model_dump()
    base.update(merged)

    numeric = {
        name: span.clamp(_as_float(name, base[name], getattr(DEFAULT_PARAMS, name)))
        for name, span in PARAM_RANGES.items()
    }
    scale = base["frequency_scale"] if base["frequency_scale"] == "linear" else "logarithmic"
    curve = base["brightness_curve"]
    if curve not in BRIGHTNESS_CURVES:
        curve = "linear"

    min_freq = numeric["min_frequency_hz"]
    max_freq = numeric["max_frequency_hz"]
    if min_freq >= max_freq:
        max_freq = min(min_freq + _FREQUENCY_REPAIR_SPAN, PARAM_RANGES["max_frequency_hz"].high)
        if min_freq >= max_freq:
            min_freq = max_freq - _FREQUENCY_REPAIR_SPAN
        _LOGGER.debug("Repaired frequency band to %s-%s Hz", min_freq, max_freq)

    return ConversionParams(
        duration_seconds=numeric["duration_seconds"],
        min_frequency_hz=min_freq,
        max_frequency_hz=max_freq,
        frequency_scale=scale,
        sample_rate_hz=_coerce_sample_rate(base["sample_rate_hz"]),
        brightness_curve=curve,
        invert_image=bool(base["invert_image"]),
        smoothing=numeric["smoothing"],
    )


def validate_params(params: ConversionParams | Mapping[str, Any]) -> list[ParamIssue]:
    """Report range and cross-field problems without changing anything."""

    values = params.model_dump() if isinstance(params, ConversionParams) else dict(params)
    issues: list[ParamIssue] = []
    for name, span in PARAM_RANGES.items():
        if name not in values:
            continue
        value = values[name]
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = math.nan
        if math.isnan(number) or not span.contains(number):
            message = _RANGE_LABELS[name].format(low=span.low, high=span.high)
            issues.append(ParamIssue(field=name, message=message))

    if "sample_rate_hz" in values and values["sample_rate_hz"] not in SAMPLE_RATES:
        rates = ", ".join(str(rate) for rate in SAMPLE_RATES)
        issues.append(
            ParamIssue(field="sample_rate_hz", message=f"Sample rate must be one of: {rates} Hz")
        )
    if "frequency_scale" in values and values["frequency_scale"] not in FREQUENCY_SCALES:
        issues.append(
            ParamIssue(
                field="frequency_scale",
                message="Frequency scale must be 'logarithmic' or 'linear'",
            )
        )
    if "brightness_curve" in values and values["brightness_curve"] not in BRIGHTNESS_CURVES:
        issues.append(
            ParamIssue(
                field="brightness_curve",
                message="Brightness curve must be 'linear', 'exponential', or 'logarithmic'",
            )
        )
    if "invert_image" in values and not isinstance(values["invert_image"], bool):
        issues.append(ParamIssue(field="invert_image", message="Invert image must be a boolean"))

    low = values.get("min_frequency_hz")
    high = values.get("max_frequency_hz")
    if isinstance(low, (int, float)) and isinstance(high, (int, float)) and low >= high:
        issues.append(
            ParamIssue(
                field="min_frequency_hz",
                message="Minimum frequency must be less than maximum frequency",
            )
        )
    return issues
