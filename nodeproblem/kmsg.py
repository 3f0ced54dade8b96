"""Log watcher that reads kernel messages from /dev/kmsg."""

from __future__ import annotations

import codecs
import errno
import logging
import os
import queue
import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol

from nodeproblem.logtypes import Log
from nodeproblem.watchertypes import LogWatcher, WatcherConfig, get_start_time, get_uptime

logger = logging.getLogger(__name__)

KMSG_PATH = "/dev/kmsg"

_SUPPORTED = sys.platform.startswith("linux")
_POLL_INTERVAL = 0.1
_READ_SIZE = 8192
_LOG_QUEUE_SIZE = 100


@dataclass
class KmsgMessage:
    """One kernel log record."""

    message: str
    timestamp: datetime
    priority: int = 0
    sequence_number: int = 0


def parse_kmsg_record(record: str, boot_time: datetime) -> KmsgMessage:
    """Parse a ``priority,sequence,usec,flags;message`` record.

    The timestamp is the record's offset from boot added to ``boot_time``.
    Raises ValueError for malformed records.
    """
    metadata, separator, message = record.partition(";")
    if not separator:
        raise ValueError(f"invalid kmsg record {record!r}: missing ';' separator")
    fields = metadata.split(",")
    if len(fields) < 3:
        raise ValueError(f"invalid kmsg record {record!r}: expected at least 3 metadata fields")
    try:
        priority, sequence, usec = (int(value) for value in fields[:3])
    except ValueError as exc:
        raise ValueError(f"invalid kmsg record {record!r}: {exc}") from exc
    return KmsgMessage(
        message=message,
        timestamp=boot_time + timedelta(microseconds=usec),
        priority=priority,
        sequence_number=sequence,
    )


class _MessageSource(Protocol):
    def parse(self) -> "queue.Queue[Optional[KmsgMessage]]": ...

    def close(self) -> None: ...


class KmsgParser:
    """Reads and parses kernel records from a kmsg device.

    Continuation lines (those starting with a space) carry key/value
    properties and are skipped.
    """

    def __init__(self, path: str = KMSG_PATH, boot_time: Optional[datetime] = None) -> None:
        self.path = path
        if boot_time is None:
            boot_time = datetime.now().astimezone() - get_uptime()
        self.boot_time = boot_time
        self._fd = os.open(path, os.O_RDONLY)
        self._lock = threading.Lock()
        self._closed = False

    def parse(self) -> "queue.Queue[Optional[KmsgMessage]]":
        """Start reading in the background; ``None`` on the queue marks the end."""
        messages: "queue.Queue[Optional[KmsgMessage]]" = queue.Queue()
        threading.Thread(target=self._read_loop, args=(messages,), daemon=True).start()
        return messages

    def close(self) -> None:
        """Close the device. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            os.close(self._fd)

    def _read_loop(self, messages: "queue.Queue[Optional[KmsgMessage]]") -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        try:
            while not self._closed:
                try:
                    chunk = os.read(self._fd, _READ_SIZE)
                except OSError as exc:
                    if exc.errno == errno.EPIPE:
                        # Records were overwritten before we read them.
                        continue
                    if not self._closed:
                        logger.error("Failed to read kmsg: %s", exc)
                    break
                if not chunk:
                    break
                pending += decoder.decode(chunk)
                *lines, pending = pending.split("\n")
                for line in lines:
                    if not line or line.startswith(" "):
                        continue
                    try:
                        messages.put(parse_kmsg_record(line, self.boot_time))
                    except ValueError as exc:
                        logger.warning("Unable to parse kmsg record: %s", exc)
        finally:
            messages.put(None)


class KernelLogWatcher(LogWatcher):
    """Delivers kernel messages logged at or after ``start_time``."""

    def __init__(
        self,
        cfg: WatcherConfig,
        start_time: datetime,
        parser: Optional[_MessageSource] = None,
    ) -> None:
        self.cfg = cfg
        self.start_time = start_time
        self.parser = parser
        self._logs: "queue.Queue[Optional[Log]]" = queue.Queue(maxsize=_LOG_QUEUE_SIZE)
        self._stopping = threading.Event()

    def watch(self) -> "queue.Queue[Optional[Log]]":
        """Start reading kernel messages; raises OSError if the device cannot be opened."""
        if self.parser is None:
            self.parser = KmsgParser()
        messages = self.parser.parse()
        threading.Thread(target=self._watch_loop, args=(messages,), daemon=True).start()
        return self._logs

    def stop(self) -> None:
        """Close the parser and stop watching."""
        if self.parser is not None:
            self.parser.close()
        self._stopping.set()

    def _watch_loop(self, messages: "queue.Queue[Optional[KmsgMessage]]") -> None:
        try:
            while True:
                if self._stopping.is_set():
                    logger.info("Stop watching kernel log")
                    return
                try:
                    msg = messages.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                if msg is None:
                    logger.error("Kmsg channel closed")
                    return
                logger.debug("got kernel message: %r", msg)
                if not msg.message:
                    continue
                if msg.timestamp < self.start_time:
                    logger.debug(
                        "Throwing away msg %r before start time: %s < %s",
                        msg.message, msg.timestamp, self.start_time,
                    )
                    continue
                self._logs.put(Log(timestamp=msg.timestamp, message=msg.message.strip()))
        finally:
            try:
                if self.parser is not None:
                    self.parser.close()
            except OSError as exc:
                logger.error("Failed to close kmsg parser: %s", exc)
            self._logs.put(None)


def new_kmsg_watcher(cfg: WatcherConfig) -> KernelLogWatcher:
    """Create a kernel log watcher; raises RuntimeError where kmsg is unavailable."""
    if not _SUPPORTED:
        raise RuntimeError(f"kmsg parser is not supported on {sys.platform}")
    now = datetime.now().astimezone()
    start_time = get_start_time(now, get_uptime(), cfg.lookback, cfg.delay)
    return KernelLogWatcher(cfg, start_time)