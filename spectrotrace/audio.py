from __future__ import annotations

import io
import logging
import struct
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .errors import InvalidInputError

FloatArray = NDArray[np.float32]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | FloatArray

WAV_HEADER_SIZE = 44
NUM_CHANNELS = 2
BITS_PER_SAMPLE = 16
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8
BLOCK_ALIGN = NUM_CHANNELS * BYTES_PER_SAMPLE
PCM_FORMAT = 1

# RIFF header, fmt chunk and data chunk header, all little-endian
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")

_LOGGER = logging.getLogger("spectrotrace.audio")


class WavHeader(BaseModel):
    audio_format: int
    num_channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int
    riff_size: int

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def num_frames(self) -> int:
        return self.data_size // self.block_align if self.block_align else 0

    @property
    def duration_seconds(self) -> float:
        return self.num_frames / self.sample_rate if self.sample_rate else 0.0


def _to_int16(mono: AudioNumbers) -> NDArray[np.int16]:
    samples = np.nan_to_num(np.asarray(mono, dtype=np.float64).reshape(-1))
    clamped = np.clip(samples, -1.0, 1.0)
    # asymmetric scale keeps full range on both sides of zero
    scaled = np.where(clamped < 0, clamped * 0x8000, clamped * 0x7FFF)
    return np.trunc(scaled).astype(np.int16)


def encode_wav_stereo(mono: AudioNumbers, sample_rate: int) -> bytes:
    """Encode mono float PCM as a 16-bit stereo RIFF/WAVE container.

    Each sample is clamped to [-1, 1] and written to both channels.
    """

    pcm = _to_int16(mono)
    data_size = pcm.size * BLOCK_ALIGN
    header = _HEADER.pack(
        b"RIFF",
        WAV_HEADER_SIZE + data_size - 8,
        b"WAVE",
        b"fmt ",
        16,
        PCM_FORMAT,
        NUM_CHANNELS,
        sample_rate,
        sample_rate * BLOCK_ALIGN,
        BLOCK_ALIGN,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )
    frames = np.repeat(pcm, NUM_CHANNELS).astype("<i2", copy=False)
    return header + frames.tobytes()


def parse_wav_header(data: bytes | bytearray | memoryview) -> WavHeader:
    if len(data) < WAV_HEADER_SIZE:
        raise InvalidInputError(f"WAV data too short: {len(data)} bytes")
    (
        riff,
        riff_size,
        wave,
        fmt,
        fmt_size,
        audio_format,
        num_channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        data_id,
        data_size,
    ) = _HEADER.unpack_from(bytes(data[:WAV_HEADER_SIZE]))
    if riff != b"RIFF" or wave != b"WAVE":
        raise InvalidInputError("Not a RIFF/WAVE container")
    if fmt != b"fmt " or fmt_size != 16 or data_id != b"data":
        raise InvalidInputError("Unsupported WAV layout; expected a canonical 44-byte header")
    return WavHeader(
        audio_format=audio_format,
        num_channels=num_channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits_per_sample,
        data_size=data_size,
        riff_size=riff_size,
    )


def save_wav(path: str | Path, wav: bytes) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(wav)
    _LOGGER.info("Wrote %s bytes to %s", len(wav), target)
    return target


def read_wav(source: str | Path | bytes) -> tuple[FloatArray, int]:
    """Decode linear PCM WAV into float32 frames (frames x channels)."""

    handle: str | Path | io.BytesIO = io.BytesIO(source) if isinstance(source, bytes) else source
    try:
        samples, sample_rate = sf.read(handle, dtype="float32", always_2d=True)
    except RuntimeError as exc:
        raise InvalidInputError(f"Cannot decode WAV: {exc}") from exc
    return np.asarray(samples, dtype=np.float32), int(sample_rate)


def wav_filename(when: datetime | None = None) -> str:
    stamp = (when or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"SpectroTrace_{stamp}.wav"
