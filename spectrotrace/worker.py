from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .audio import encode_wav_stereo
from .config import DEFAULT_SETTINGS, ConversionParams, EngineSettings
from .errors import (
    ErrorCode,
    GenerationCancelledError,
    SpectroTraceError,
    error_code,
)
from .image import GrayscaleImage
from .logging_utils import log_exception
from .synth import normalize_pcm, synthesize

JobStatus = Literal["queued", "running", "completed", "cancelled", "failed"]

_LOGGER = logging.getLogger("spectrotrace.worker")
_NORMALIZED_PROGRESS = 95
_DONE_PROGRESS = 100


# -----------------------------------------------------------------------------
# Messages
# -----------------------------------------------------------------------------


class GenerateRequest(BaseModel):
    kind: Literal["generate"] = "generate"
    job_id: str
    grayscale_data: NDArray[Any]
    width: int
    height: int
    params: ConversionParams

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @classmethod
    def for_image(
        cls, job_id: str, image: GrayscaleImage, params: ConversionParams
    ) -> "GenerateRequest":
        return cls(
            job_id=job_id,
            grayscale_data=image.pixels,
            width=image.width,
            height=image.height,
            params=params,
        )


class CancelRequest(BaseModel):
    kind: Literal["cancel"] = "cancel"
    job_id: str

    model_config = ConfigDict(frozen=True, extra="forbid")


WorkerRequest = GenerateRequest | CancelRequest


class WorkerMessage(BaseModel):
    kind: Literal["ready", "progress", "result", "error"]
    job_id: str | None = None
    progress: int | None = None
    audio: bytes | None = None
    message: str | None = None
    code: ErrorCode | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def is_terminal(self) -> bool:
        return self.kind in ("result", "error")


MessageSink = Callable[[WorkerMessage], None]


# -----------------------------------------------------------------------------
# Jobs
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class SynthesisJob:
    request: GenerateRequest
    status: JobStatus = "queued"
    progress: int = -1
    _cancel: threading.Event = field(default_factory=threading.Event)

    @property
    def id(self) -> str:
        return self.request.job_id

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def request_cancel(self) -> None:
        self._cancel.set()


def run_job(
    job: SynthesisJob,
    emit: MessageSink,
    *,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> bytes:
    """Synthesize, normalize and encode one job, reporting monotonic progress."""

    def _report(value: float) -> None:
        rounded = round(value)
        if rounded <= job.progress:
            return
        job.progress = rounded
        emit(WorkerMessage(kind="progress", job_id=job.id, progress=rounded))

    request = job.request
    image = GrayscaleImage.from_buffer(request.grayscale_data, request.width, request.height)
    share = settings.synthesis_progress_share / 100.0
    pcm = synthesize(
        image,
        request.params,
        on_progress=lambda value: _report(value * share),
        is_cancelled=lambda: job.cancel_requested,
        settings=settings,
    )
    normalize_pcm(pcm, headroom=settings.headroom, quiet_floor=settings.quiet_floor)
    _report(_NORMALIZED_PROGRESS)
    wav = encode_wav_stereo(pcm, request.params.sample_rate_hz)
    if job.cancel_requested:
        raise GenerationCancelledError("Generation cancelled")
    _report(_DONE_PROGRESS)
    return wav


# -----------------------------------------------------------------------------
# Worker
# -----------------------------------------------------------------------------


class SynthesisWorker:
    """Single background thread that runs at most one synthesis job at a time.

    Every outgoing message carries the id of the job it belongs to. Submitting
    a job while another runs cancels the running one; a job still waiting in
    the single pending slot is replaced and reported as cancelled.
    """

    def __init__(
        self,
        on_message: MessageSink,
        *,
        settings: EngineSettings = DEFAULT_SETTINGS,
        name: str = "spectrotrace-worker",
    ) -> None:
        self._on_message = on_message
        self._settings = settings
        self._name = name
        self._cond = threading.Condition()
        self._pending: SynthesisJob | None = None
        self._active: SynthesisJob | None = None
        self._closed = False
        self._thread: threading.Thread | None = None

    @property
    def active_job(self) -> SynthesisJob | None:
        with self._cond:
            return self._active

    def start(self) -> None:
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                return
            self._closed = False
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def post(self, request: WorkerRequest) -> None:
        match request:
            case GenerateRequest():
                self.submit(request)
            case CancelRequest():
                self.cancel(request.job_id)
            case _:
                self._emit_error(None, f"Unsupported request: {request!r}", "UNKNOWN")

    def submit(self, request: GenerateRequest) -> SynthesisJob:
        job = SynthesisJob(request=request)
        displaced: SynthesisJob | None = None
        with self._cond:
            if self._closed:
                raise SpectroTraceError("Worker is closed")
            if self._active is not None:
                _LOGGER.debug("Job %s superseded by %s", self._active.id, job.id)
                self._active.request_cancel()
            displaced = self._pending
            self._pending = job
            self._cond.notify()
        if displaced is not None:
            displaced.request_cancel()
            displaced.status = "cancelled"
            self._emit_error(displaced.id, "Generation cancelled", "CANCELLED")
        return job

    def cancel(self, job_id: str) -> bool:
        with self._cond:
            for job in (self._active, self._pending):
                if job is not None and job.id == job_id:
                    job.request_cancel()
                    return True
        _LOGGER.debug("Ignoring cancel for inactive job %s", job_id)
        return False

    def close(self, timeout: float | None = 5.0) -> None:
        with self._cond:
            self._closed = True
            if self._active is not None:
                self._active.request_cancel()
            displaced = self._pending
            self._pending = None
            self._cond.notify_all()
            thread = self._thread
        if displaced is not None:
            displaced.status = "cancelled"
            self._emit_error(displaced.id, "Generation cancelled", "CANCELLED")
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _run(self) -> None:
        self._emit(WorkerMessage(kind="ready"))
        while True:
            with self._cond:
                while self._pending is None and not self._closed:
                    self._cond.wait()
                if self._pending is None:
                    return
                job = self._pending
                self._pending = None
                self._active = job
            try:
                self._execute(job)
            finally:
                with self._cond:
                    self._active = None

    def _execute(self, job: SynthesisJob) -> None:
        job.status = "running"
        request = job.request
        _LOGGER.debug(
            "Job %s started (%sx%s, %ss @ %s Hz)",
            job.id,
            request.width,
            request.height,
            request.params.duration_seconds,
            request.params.sample_rate_hz,
        )
        try:
            wav = run_job(job, self._emit, settings=self._settings)
        except GenerationCancelledError as exc:
            job.status = "cancelled"
            _LOGGER.info("Job %s cancelled", job.id)
            self._emit_error(job.id, str(exc), "CANCELLED")
        except SpectroTraceError as exc:
            job.status = "failed"
            _LOGGER.warning("Job %s failed: %s", job.id, exc)
            self._emit_error(job.id, str(exc), exc.code)
        except Exception as exc:
            job.status = "failed"
            _LOGGER.error("Job %s crashed: %s", job.id, exc, exc_info=True)
            log_exception(f"job {job.id}", exc)
            self._emit_error(job.id, str(exc) or type(exc).__name__, error_code(exc))
        else:
            job.status = "completed"
            _LOGGER.info("Job %s finished (%s bytes)", job.id, len(wav))
            self._emit(WorkerMessage(kind="result", job_id=job.id, audio=wav))

    def _emit_error(self, job_id: str | None, message: str, code: ErrorCode) -> None:
        self._emit(WorkerMessage(kind="error", job_id=job_id, message=message, code=code))

    def _emit(self, message: WorkerMessage) -> None:
        try:
            self._on_message(message)
        except Exception as exc:
            _LOGGER.warning("Message handler failed for %s: %s", message.kind, exc, exc_info=True)
