from __future__ import annotations

import logging
import threading

import numpy as np
import pytest

from spectrotrace.audio import parse_wav_header
from spectrotrace.config import ConversionParams
from spectrotrace.image import GrayscaleImage
from spectrotrace.session import GenerationSession, GenerationState
from spectrotrace.worker import WorkerMessage

_TIMEOUT = 30.0


def _image(width: int = 2, height: int = 2) -> GrayscaleImage:
    return GrayscaleImage.from_buffer(np.linspace(0.0, 1.0, width * height), width, height)


def _short_params() -> ConversionParams:
    return ConversionParams(
        duration_seconds=1.0,
        min_frequency_hz=100.0,
        max_frequency_hz=1000.0,
        sample_rate_hz=8000,
    )


def _long_params() -> ConversionParams:
    return ConversionParams(
        duration_seconds=20.0,
        min_frequency_hz=100.0,
        max_frequency_hz=5000.0,
        sample_rate_hz=22050,
    )


def test_generate_delivers_wav() -> None:
    updates: list[GenerationState] = []
    with GenerationSession(on_update=updates.append) as session:
        job_id = session.generate(_image(), _short_params())
        state = session.wait(timeout=_TIMEOUT)

    assert state.job_id == job_id
    assert state.status == "ready"
    assert state.progress == 100
    assert state.result is not None
    assert parse_wav_header(state.result).data_size == 4 * 8000
    assert state.worker_ready
    progress = [update.progress for update in updates if update.progress is not None]
    assert progress == sorted(progress)


def test_generate_sanitizes_mapping_params() -> None:
    with GenerationSession() as session:
        session.generate(
            np.zeros(4, dtype=np.uint8),
            {"duration_seconds": 0.1, "sample_rate_hz": 1234},
            width=2,
            height=2,
        )
        state = session.wait(timeout=_TIMEOUT)

    assert state.status == "ready"
    assert state.result is not None
    header = parse_wav_header(state.result)
    assert header.sample_rate == 44100
    assert header.num_frames == 44100


def test_cancel_reports_cancelled_without_result() -> None:
    with GenerationSession() as session:
        session.generate(_image(200, 8), _long_params())
        session.cancel()
        state = session.wait(timeout=_TIMEOUT)

    assert state.status == "cancelled"
    assert state.error_code == "CANCELLED"
    assert state.result is None


def test_superseded_job_never_reports_into_new_job() -> None:
    delivered: list[WorkerMessage] = []
    lock = threading.Lock()

    def _record(message: WorkerMessage) -> None:
        with lock:
            delivered.append(message)

    with GenerationSession(on_message=_record) as session:
        first = session.generate(_image(200, 8), _long_params())
        second = session.generate(_image(), _short_params())
        state = session.wait(timeout=_TIMEOUT)

    assert state.job_id == second
    assert state.status == "ready"
    with lock:
        stale_terminal = [m for m in delivered if m.job_id == first and m.is_terminal]
        current = [m for m in delivered if m.job_id == second]
    assert stale_terminal == []
    assert current[-1].kind == "result"


def test_stale_messages_are_dropped(caplog: pytest.LogCaptureFixture) -> None:
    session = GenerationSession()
    try:
        session.generate(_image(200, 8), _long_params())
        before = session.state
        with caplog.at_level(logging.DEBUG, logger="spectrotrace.session"):
            session._handle_message(WorkerMessage(kind="result", job_id="job_stale", audio=b"RIFF"))
            session._handle_message(WorkerMessage(kind="progress", job_id="job_stale", progress=77))
        assert "stale job job_stale" in caplog.text
        after = session.state
        assert after.result is None
        assert after.progress != 77
        assert after.job_id == before.job_id
        assert after.status == "generating"
    finally:
        session.cancel()
        session.close()


def test_error_without_job_id_is_reported() -> None:
    session = GenerationSession()
    session._handle_message(WorkerMessage(kind="error", message="boom", code="UNKNOWN"))
    assert session.state.status == "error"
    assert session.state.error == "boom"


def test_reset_clears_result() -> None:
    with GenerationSession() as session:
        session.generate(_image(), _short_params())
        session.wait(timeout=_TIMEOUT)
        session.reset()
        state = session.state

    assert state.result is None
    assert state.progress is None
