from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Mapping
from typing import Any, Callable, Literal

from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .config import DEFAULT_SETTINGS, ConversionParams, EngineSettings, sanitize_params
from .errors import ErrorCode
from .image import GrayscaleImage
from .worker import GenerateRequest, SynthesisWorker, WorkerMessage

GenerationStatus = Literal["idle", "generating", "ready", "cancelled", "error"]
ParamsInput = ConversionParams | Mapping[str, Any] | None

_LOGGER = logging.getLogger("spectrotrace.session")
_JOB_IDS = itertools.count(1)


def next_job_id() -> str:
    return f"job_{next(_JOB_IDS)}"


class GenerationState(BaseModel):
    status: GenerationStatus = "idle"
    job_id: str | None = None
    progress: int | None = None
    result: bytes | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    worker_ready: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def is_busy(self) -> bool:
        return self.status == "generating"


class GenerationSession:
    """Caller-side view of a synthesis worker.

    Tracks the id of the job most recently requested and ignores every worker
    message tagged with another id, so a superseded job can never report into
    the state of its replacement.
    """

    def __init__(
        self,
        *,
        settings: EngineSettings = DEFAULT_SETTINGS,
        on_update: Callable[[GenerationState], None] | None = None,
        on_message: Callable[[WorkerMessage], None] | None = None,
    ) -> None:
        self._on_update = on_update
        self._on_message = on_message
        self._cond = threading.Condition()
        self._state = GenerationState()
        self._worker = SynthesisWorker(self._handle_message, settings=settings)

    @property
    def state(self) -> GenerationState:
        with self._cond:
            return self._state

    @property
    def current_job_id(self) -> str | None:
        with self._cond:
            return self._state.job_id

    def start(self) -> None:
        self._worker.start()

    def close(self) -> None:
        self._worker.close()

    def __enter__(self) -> "GenerationSession":
        self.start()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def generate(
        self,
        image: GrayscaleImage | NDArray[Any],
        params: ParamsInput = None,
        *,
        width: int | None = None,
        height: int | None = None,
    ) -> str:
        """Queue a job and return its id; does not wait for the result."""

        resolved = params if isinstance(params, ConversionParams) else sanitize_params(params)
        job_id = next_job_id()
        if isinstance(image, GrayscaleImage):
            request = GenerateRequest.for_image(job_id, image, resolved)
        else:
            if width is None or height is None:
                raise ValueError("width and height are required for raw grayscale buffers")
            request = GenerateRequest(
                job_id=job_id,
                grayscale_data=image,
                width=width,
                height=height,
                params=resolved,
            )

        self._set_state(
            status="generating",
            job_id=job_id,
            progress=0,
            result=None,
            error=None,
            error_code=None,
        )
        try:
            self._worker.start()
            self._worker.submit(request)
        except Exception as exc:
            self._set_state(status="error", progress=None, error=str(exc), error_code="UNKNOWN")
            raise
        return job_id

    def cancel(self) -> None:
        job_id = self.current_job_id
        if job_id is not None:
            self._worker.cancel(job_id)

    def reset(self) -> None:
        self._set_state(progress=None, result=None, error=None, error_code=None)

    def wait(self, timeout: float | None = None) -> GenerationState:
        """Block until the current job settles or `timeout` elapses."""

        with self._cond:
            self._cond.wait_for(lambda: not self._state.is_busy, timeout=timeout)
            return self._state

    def _set_state(self, **changes: Any) -> None:
        with self._cond:
            self._state = self._state.model_copy(update=changes)
            snapshot = self._state
            self._cond.notify_all()
        if self._on_update is not None:
            self._on_update(snapshot)

    def _is_current(self, message: WorkerMessage) -> bool:
        if message.job_id is None:
            return True
        return message.job_id == self._state.job_id and self._state.is_busy

    def _handle_message(self, message: WorkerMessage) -> None:
        with self._cond:
            if message.kind == "ready":
                changes: dict[str, Any] = {"worker_ready": True}
            elif not self._is_current(message):
                _LOGGER.debug("Dropping %s message for stale job %s", message.kind, message.job_id)
                return
            else:
                changes = _changes_for(message)
            self._state = self._state.model_copy(update=changes)
            snapshot = self._state
            self._cond.notify_all()

        if self._on_message is not None and message.kind != "ready":
            self._on_message(message)
        if self._on_update is not None:
            self._on_update(snapshot)


def _changes_for(message: WorkerMessage) -> dict[str, Any]:
    match message.kind:
        case "progress":
            return {"progress": message.progress}
        case "result":
            return {"status": "ready", "progress": 100, "result": message.audio}
        case _:
            status = "cancelled" if message.code == "CANCELLED" else "error"
            return {
                "status": status,
                "progress": None,
                "error": message.message,
                "error_code": message.code,
            }
