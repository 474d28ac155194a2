from __future__ import annotations

from typing import Literal

ErrorCode = Literal["CANCELLED", "GENERATION_FAILED", "INVALID_INPUT", "UNKNOWN"]


class SpectroTraceError(Exception):
    """Base error for the SpectroTrace library."""

    code: ErrorCode = "UNKNOWN"


class InvalidConfigError(SpectroTraceError):
    """Raised when conversion parameters cannot be parsed."""

    code: ErrorCode = "INVALID_INPUT"


class InvalidInputError(SpectroTraceError):
    """Raised when an image buffer does not match its declared dimensions."""

    code: ErrorCode = "INVALID_INPUT"


class GenerationCancelledError(SpectroTraceError):
    """Raised when a caller cancels a running synthesis job."""

    code: ErrorCode = "CANCELLED"


class GenerationFailedError(SpectroTraceError):
    """Raised when synthesis or encoding fails for any other reason."""

    code: ErrorCode = "GENERATION_FAILED"


def error_code(exc: BaseException) -> ErrorCode:
    if isinstance(exc, SpectroTraceError):
        return exc.code
    return "GENERATION_FAILED"
