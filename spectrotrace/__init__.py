from __future__ import annotations

from .audio import encode_wav_stereo, parse_wav_header, read_wav, save_wav, wav_filename
from .config import (
    DEFAULT_PARAMS,
    DEFAULT_SETTINGS,
    PARAM_RANGES,
    SAMPLE_RATES,
    BrightnessCurve,
    ConversionParams,
    EngineSettings,
    FrequencyScale,
    ParamIssue,
    sanitize_params,
    validate_params,
)
from .errors import (
    GenerationCancelledError,
    GenerationFailedError,
    InvalidConfigError,
    InvalidInputError,
    SpectroTraceError,
)
from .image import GrayscaleImage, load_npy
from .logging_utils import configure_logging as _configure_logging
from .mapping import compute_row_frequencies, map_amplitude, map_amplitudes
from .session import GenerationSession, GenerationState
from .synth import apply_temporal_smoothing, compute_steps, normalize_pcm, synthesize
from .worker import CancelRequest, GenerateRequest, SynthesisJob, SynthesisWorker, WorkerMessage

__all__ = [
    "DEFAULT_PARAMS",
    "DEFAULT_SETTINGS",
    "PARAM_RANGES",
    "SAMPLE_RATES",
    "BrightnessCurve",
    "CancelRequest",
    "ConversionParams",
    "EngineSettings",
    "FrequencyScale",
    "GenerateRequest",
    "GenerationCancelledError",
    "GenerationFailedError",
    "GenerationSession",
    "GenerationState",
    "GrayscaleImage",
    "InvalidConfigError",
    "InvalidInputError",
    "ParamIssue",
    "SpectroTraceError",
    "SynthesisJob",
    "SynthesisWorker",
    "WorkerMessage",
    "apply_temporal_smoothing",
    "compute_row_frequencies",
    "compute_steps",
    "encode_wav_stereo",
    "load_npy",
    "map_amplitude",
    "map_amplitudes",
    "normalize_pcm",
    "parse_wav_header",
    "read_wav",
    "sanitize_params",
    "save_wav",
    "synthesize",
    "validate_params",
    "wav_filename",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
