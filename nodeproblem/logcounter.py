"""Counts log lines matching a pattern up to the moment counting starts."""

from __future__ import annotations

import queue
from datetime import datetime
from typing import Callable, Optional

from nodeproblem.logbuffer import LogBuffer
from nodeproblem.logtypes import Log

BUFFER_SIZE = 1000
TIMEOUT = 1.0
JOURNALD_SOURCE_KEY = "source"


class LogChannelClosedError(RuntimeError):
    """Raised when the log source ends while counting."""


def _now() -> datetime:
    return datetime.now().astimezone()


class LogCounter:
    """Counts logs from a queue whose buffered tail matches ``pattern``.

    ``None`` on the queue means the source has ended. Counting stops at the
    first log newer than the moment counting began, or when no log arrives
    within ``timeout`` seconds.
    """

    def __init__(
        self,
        logs: "queue.Queue[Optional[Log]]",
        pattern: str,
        clock: Callable[[], datetime] = _now,
        timeout: float = TIMEOUT,
    ) -> None:
        self.logs = logs
        self.pattern = pattern
        self.clock = clock
        self.timeout = timeout
        self.buffer = LogBuffer(BUFFER_SIZE)

    def count(self) -> int:
        """Return the number of matching logs; raises LogChannelClosedError if the source ends."""
        start = self.clock()
        matches = 0
        while True:
            try:
                log = self.logs.get(timeout=self.timeout)
            except queue.Empty:
                return matches
            if log is None:
                raise LogChannelClosedError("log channel closed unexpectedly")
            # Only count logs up to when counting started, otherwise this never ends.
            if start < log.timestamp:
                return matches
            self.buffer.push(log)
            if self.buffer.match(self.pattern):
                matches += 1