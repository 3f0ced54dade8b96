"""Ring buffer of recent log lines supporting multi-line regex matching."""

from __future__ import annotations

import re
from typing import Iterable, Optional

from nodeproblem.logtypes import Log


def concat_logs(logs: Iterable[str]) -> str:
    """Join log lines into one newline separated string."""
    return "\n".join(logs)


class LogBuffer:
    """Keeps the last ``max_lines`` logs and matches patterns against them.

    The buffer size is also the largest number of lines a pattern can span.
    """

    def __init__(self, max_lines: int) -> None:
        if max_lines <= 0:
            raise ValueError("log buffer size must be positive")
        self.max_lines = max_lines
        self._logs: list[Optional[Log]] = [None] * max_lines
        self._messages: list[str] = [""] * max_lines
        self._current = 0

    def push(self, log: Log) -> None:
        """Append a log, evicting the oldest one when full."""
        slot = self._current % self.max_lines
        self._logs[slot] = log
        self._messages[slot] = log.message
        self._current += 1

    def match(self, expr: str) -> list[Log]:
        """Return the logs matched by ``expr``, which must match up to the last line.

        The logs are returned oldest first; an empty list means no match.
        """
        reg = re.compile(expr + r"\Z")
        text = str(self)
        found = reg.search(text)
        if found is None:
            return []
        # Number of characters from the match start to the end of the text.
        remaining = len(text) - found.start() - 1
        total = 0
        matched: list[Log] = []
        tail = self._current + self.max_lines - 1
        for index in range(tail, self._current - 1, -1):
            log = self._logs[index % self.max_lines]
            if log is None:
                break
            matched.append(log)
            total += len(self._messages[index % self.max_lines]) + 1
            if total > remaining:
                break
        matched.reverse()
        return matched

    def __str__(self) -> str:
        start = self._current % self.max_lines
        return concat_logs(self._messages[start:] + self._messages[:start])