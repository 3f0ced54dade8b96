"""Log watcher configuration, the log watcher interface and timing helpers."""

from __future__ import annotations

import abc
import queue
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Mapping, Optional

from nodeproblem.logtypes import Log

_UPTIME_PATH = Path("/proc/uptime")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "\u00b5s": 1e-6,
    "\u03bcs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_NUMBER = r"(?:\d+(?:\.\d*)?|\.\d+)"
_UNIT = "ns|us|\u00b5s|\u03bcs|ms|s|m|h"
_COMPONENT = re.compile(rf"({_NUMBER})({_UNIT})")
_DURATION = re.compile(rf"(?:{_NUMBER}(?:{_UNIT}))+")


@dataclass
class WatcherConfig:
    """Configuration of a log watcher.

    ``plugin`` names the watcher (filelog, journald, kmsg); ``plugin_config``
    holds plugin specific settings; ``lookback`` and ``delay`` are duration
    strings such as ``"5m"``.
    """

    plugin: str = ""
    plugin_config: dict[str, str] = field(default_factory=dict)
    log_path: str = ""
    lookback: str = ""
    delay: str = ""


class LogWatcher(abc.ABC):
    """Watches a log source and delivers parsed lines.

    ``watch`` returns a queue of Log items; ``None`` in the queue means the
    watcher has finished and no further logs will come.
    """

    @abc.abstractmethod
    def watch(self) -> "queue.Queue[Optional[Log]]":
        """Start watching and return the queue logs are delivered on."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop watching and release resources."""


def watcher_config_from_dict(data: Mapping[str, Any]) -> WatcherConfig:
    """Build a watcher configuration from its JSON representation."""
    return WatcherConfig(
        plugin=str(data.get("plugin", "")),
        plugin_config={str(k): str(v) for k, v in (data.get("pluginConfig") or {}).items()},
        log_path=str(data.get("logPath", "")),
        lookback=str(data.get("lookback", "")),
        delay=str(data.get("delay", "")),
    )


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``"300ms"``, ``"1.5h"`` or ``"2h45m"``.

    Raises ValueError for malformed input.
    """
    text = value
    sign = 1
    if text[:1] in "+-" and text:
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text or not _DURATION.fullmatch(text):
        raise ValueError(f"invalid duration {value!r}")
    seconds = sum(float(number) * _UNIT_SECONDS[unit] for number, unit in _COMPONENT.findall(text))
    return timedelta(seconds=sign * seconds)


def get_uptime() -> timedelta:
    """Return how long the system has been up."""
    content = _UPTIME_PATH.read_text()
    fields = content.split()
    if not fields:
        raise ValueError(f"unexpected content in {_UPTIME_PATH}: {content!r}")
    return timedelta(seconds=float(fields[0]))


def get_start_time(now: datetime, uptime: timedelta, lookback: str, delay: str) -> datetime:
    """Return the time from which logs should be considered.

    Logs start at boot time plus ``delay``, but never earlier than
    ``now - lookback``.
    """
    start_time = now - uptime
    if delay:
        try:
            start_time += parse_duration(delay)
        except ValueError as exc:
            raise ValueError(f"failed to parse delay duration {delay!r}: {exc}") from exc

    lookback_start = now
    if lookback:
        try:
            lookback_start = now - parse_duration(lookback)
        except ValueError as exc:
            raise ValueError(f"failed to parse lookback duration {lookback!r}: {exc}") from exc

    return max(start_time, lookback_start)