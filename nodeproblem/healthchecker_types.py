"""Constants and flag types used by the component health checker."""

from __future__ import annotations

import re
import sys
from datetime import timedelta
from typing import Optional

DEFAULT_LOOP_BACK_TIME = timedelta(minutes=0)
DEFAULT_COOL_DOWN_TIME = timedelta(minutes=2)
DEFAULT_HEALTH_CHECK_TIMEOUT = timedelta(seconds=10)
CMD_TIMEOUT = timedelta(seconds=10)

# Reference-time layout (see translator.parse_go_time) and its strftime equivalent.
LOG_PARSING_TIME_LAYOUT = "2006-01-02 15:04:05"
LOG_PARSING_STRFTIME = "%Y-%m-%d %H:%M:%S"

KUBELET_COMPONENT = "kubelet"
CRI_COMPONENT = "cri"
DOCKER_COMPONENT = "docker"
CONTAINERD_SERVICE = "containerd"
KUBE_PROXY_COMPONENT = "kube-proxy"

KUBELET_HEALTH_CHECK_ENDPOINT = "http://127.0.0.1:10248/healthz"
KUBE_PROXY_HEALTH_CHECK_ENDPOINT = "http://127.0.0.1:10256/healthz"

LOG_PATTERN_FLAG_SEPARATOR = ":"

IS_WINDOWS = sys.platform == "win32"

if IS_WINDOWS:
    DEFAULT_CRICTL = "C:/etc/kubernetes/node/bin/crictl.exe"
    DEFAULT_CRI_SOCKET_PATH = "npipe:////./pipe/containerd-containerd"
    UPTIME_TIME_LAYOUT = "Mon 02 Jan 2006 15:04:05 MST"
    LOG_PARSING_TIME_FORMAT: Optional[str] = "yyyy-MM-dd HH:mm:ss"
else:
    DEFAULT_CRICTL = "/usr/bin/crictl"
    DEFAULT_CRI_SOCKET_PATH = "unix:///var/run/containerd/containerd.sock"
    UPTIME_TIME_LAYOUT = "Mon 2006-01-02 15:04:05 MST"
    LOG_PARSING_TIME_FORMAT = None

_INTEGER = re.compile(r"[+-]?\d+")


class LogPatternFlag:
    """Command-line flag mapping log patterns to their failure thresholds.

    Values look like ``"10:pattern1,20:pattern2"``; a pattern may itself
    contain ``':'``.
    """

    TYPE_NAME = "logPatternFlag"

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    def set(self, value: str) -> None:
        """Add the patterns in ``value``; raises ValueError on a malformed item."""
        for item in value.split(","):
            parts = item.split(LOG_PATTERN_FLAG_SEPARATOR, 1)
            if len(parts) != 2:
                raise ValueError(f"invalid format of the flag value: {parts}")
            raw_count, pattern = parts
            if not _INTEGER.fullmatch(raw_count):
                raise ValueError(
                    f"invalid format for the flag value: {parts}: "
                    f"{raw_count!r} is not an integer"
                )
            threshold = int(raw_count)
            if threshold == 0:
                raise ValueError(f"invalid format for the flag value: {parts}: zero threshold")
            if pattern == "":
                raise ValueError(f"invalid format for the flag value: {parts}: empty pattern")
            self._counts[pattern] = threshold

    def log_pattern_count_map(self) -> dict[str, int]:
        """Return the pattern to threshold mapping."""
        return dict(self._counts)

    def __str__(self) -> str:
        return " ".join(f"{key}:{self._counts[key]}" for key in sorted(self._counts))