"""Task progress reporting for cluster up.

ProgressReporter renders task start, success and failure lines. Task output
written through the task writer is indented under its task header.

When the client is not verbose, the reporter writes into a DeferredSink:
everything is captured and only replayed to the caller's stream if the run
fails, so successful runs stay quiet.
"""

from __future__ import annotations

import io
from typing import IO

import structlog

logger = structlog.get_logger(__name__)

TASK_INDENT = "   "


class DeferredSink(io.StringIO):
    """Write-capturing buffer with an explicit flush-on-failure hook."""

    def flush_to(self, out: IO[str]) -> None:
        """Replay everything captured so far into out and clear the buffer."""
        captured = self.getvalue()
        if captured:
            out.write(captured)
            out.flush()
        self.seek(0)
        self.truncate()


class TeeWriter(io.TextIOBase):
    """Duplicate writes to several streams."""

    def __init__(self, *streams: IO[str]):
        self._streams = streams

    def writable(self) -> bool:
        return True

    def write(self, s: str) -> int:
        for stream in self._streams:
            stream.write(s)
        return len(s)

    def flush(self) -> None:
        for stream in self._streams:
            stream.flush()


class _TaskWriter(io.TextIOBase):
    """Indents task output under the current task header."""

    def __init__(self, reporter: ProgressReporter):
        self._reporter = reporter
        self._at_line_start = True

    def writable(self) -> bool:
        return True

    def write(self, s: str) -> int:
        if not s:
            return 0
        self._reporter._begin_output()
        out = self._reporter.out
        for chunk in s.splitlines(keepends=True):
            if self._at_line_start:
                out.write(TASK_INDENT)
            out.write(chunk)
            self._at_line_start = chunk.endswith("\n")
        return len(s)

    def flush(self) -> None:
        self._reporter.out.flush()

    def finish(self) -> None:
        if not self._at_line_start:
            self._reporter.out.write("\n")
            self._at_line_start = True


class ProgressReporter:
    """Render task progress to a sink.

    Output format:

        -- Installing registry ... OK
        -- Installing router ...
           <task output>
           OK
    """

    def __init__(self, out: IO[str]):
        """Initialize reporter.

        Args:
            out: Stream progress lines and task output are written to.
        """
        self.out = out
        self._current: str | None = None
        self._writer: _TaskWriter | None = None
        self._has_output = False

    @property
    def current_task(self) -> str | None:
        return self._current

    def start_task(self, name: str) -> None:
        self._current = name
        self._writer = None
        self._has_output = False
        self.out.write(f"-- {name} ... ")
        self.out.flush()

    def task_writer(self) -> IO[str]:
        """Writer for the current task's output."""
        if self._writer is None:
            self._writer = _TaskWriter(self)
        return self._writer

    def _begin_output(self) -> None:
        if not self._has_output:
            self._has_output = True
            self.out.write("\n")

    def _end_task(self, status: str) -> None:
        if self._writer is not None:
            self._writer.finish()
        if self._has_output:
            self.out.write(f"{TASK_INDENT}{status}\n")
        else:
            self.out.write(f"{status}\n")
        self.out.flush()
        self._current = None
        self._writer = None
        self._has_output = False

    def success(self) -> None:
        self._end_task("OK")

    def failure(self, err: BaseException) -> None:
        # The error itself is printed once by the top level
        logger.debug("task failed", task=self._current, error=str(err))
        self._end_task("FAIL")


def warn(out: IO[str], message: str) -> None:
    """Write a degraded-condition notice on a task's output."""
    logger.info("warning", message=message)
    out.write(f"WARNING: {message}\n")
