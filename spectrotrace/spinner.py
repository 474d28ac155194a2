from __future__ import annotations

import sys
import traceback
from contextlib import contextmanager
from typing import IO, Iterator

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text
from rich.traceback import Traceback

from .logging_utils import get_log_path, is_debug


class ProgressBar:
    """Percent progress bar on a Rich console; a no-op when not attached to a tty."""

    def __init__(
        self,
        message: str,
        *,
        total: float = 100.0,
        stream: IO[str] | None = None,
        enabled: bool | None = None,
    ) -> None:
        self._message = message
        self._total = total
        self._stream = stream or sys.stderr
        self._enabled = self._stream.isatty() if enabled is None else enabled
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None

    def start(self) -> None:
        if not self._enabled or self._progress is not None:
            return
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=Console(file=self._stream),
            transient=True,
        )
        self._progress.start()
        self._task_id = self._progress.add_task(self._message, total=self._total)

    def update(self, completed: float, *, message: str | None = None) -> None:
        if self._progress is None or self._task_id is None:
            return
        if message is not None:
            self._message = message
        self._progress.update(
            self._task_id,
            completed=min(completed, self._total),
            description=self._message,
        )

    def stop(self) -> None:
        if self._progress is None:
            return
        self._progress.stop()
        self._progress = None
        self._task_id = None

    def __enter__(self) -> "ProgressBar":
        self.start()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.stop()


@contextmanager
def progress_bar(
    message: str,
    *,
    total: float = 100.0,
    stream: IO[str] | None = None,
    enabled: bool | None = None,
) -> Iterator[ProgressBar]:
    handle = ProgressBar(message, total=total, stream=stream, enabled=enabled)
    handle.start()
    try:
        yield handle
    finally:
        handle.stop()


def render_error(
    context: str,
    exc: BaseException,
    *,
    stream: IO[str] | None = None,
) -> None:
    target = stream or sys.stderr
    debug = is_debug()
    log_path = get_log_path()
    if target.isatty():
        console = Console(file=target)
        body = Text.assemble(
            ("SpectroTrace error while ", "bold"),
            (context, "bold"),
            (":\n\n", "bold"),
            Text(type(exc).__name__, style="bold red"),
            (": ", "bold"),
            Text(str(exc)),
            (f"\nLogs: {log_path}", "dim"),
            ("\n\nSet SPECTROTRACE_DEBUG=1 for console trace.", "dim"),
        )
        console.print(Panel(body, title="Error", border_style="red"))
        if debug:
            console.print(Traceback.from_exception(type(exc), exc, exc.__traceback__))
    else:
        target.write(f"{context} failed: {type(exc).__name__}: {exc} (logs: {log_path})\n")
        if debug:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=target)
