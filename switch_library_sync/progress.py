"""Progress reporting for long-running operations."""

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Callable

logger = logging.getLogger(__name__)

# progress callback: (current step, total steps, message)
ProgressCallback = Callable[[int, int, str], None]


@dataclass(frozen=True)
class ProgressUpdate:
    curr: int
    total: int
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


def noop_progress(curr: int, total: int, message: str) -> None:
    pass


class LoggingProgress:
    """Progress sink that writes each event as a log line."""

    def __init__(self, log: logging.Logger | None = None, level: int = logging.INFO):
        self.log = log or logger
        self.level = level

    def __call__(self, curr: int, total: int, message: str) -> None:
        self.log.log(self.level, "%s (%d/%d)", message, curr, total)


class MonotonicProgress:
    """
    Wrap a sink so that one operation never reports a step going backwards.

    Steps past the total are clamped to the total.
    """

    def __init__(self, sink: ProgressCallback | None = None):
        self.sink = sink or noop_progress
        self._lock = threading.Lock()
        self._last = 0

    def __call__(self, curr: int, total: int, message: str) -> None:
        with self._lock:
            curr = min(max(curr, self._last), total) if total > 0 else max(curr, self._last)
            self._last = curr
        self.sink(curr, total, message)

    def reset(self) -> None:
        with self._lock:
            self._last = 0


def stage_progress(sink: ProgressCallback, offset: int, total: int) -> ProgressCallback:
    """
    Map one pass of a multi-pass operation onto the operation's overall steps.

    The pass reports its own (curr, pass_total) and the sink receives
    (offset + curr, total).
    """

    def callback(curr: int, pass_total: int, message: str) -> None:
        sink(offset + curr, total, message)

    return callback
