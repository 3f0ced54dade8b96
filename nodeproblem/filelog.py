"""Log watcher that follows a plain log file."""

from __future__ import annotations

import logging
import os
import queue
import threading
from datetime import datetime
from typing import IO, Optional

from nodeproblem.logtypes import Log
from nodeproblem.translator import TranslationError, Translator
from nodeproblem.watchertypes import LogWatcher, WatcherConfig, get_start_time, get_uptime

logger = logging.getLogger(__name__)

WATCH_POLL_INTERVAL = 0.5


def _open_log(path: str) -> IO[str]:
    if not path:
        raise ValueError("unexpected empty log path")
    if not os.path.exists(path):
        raise FileNotFoundError(f"failed to stat the file {path!r}")
    return open(path, encoding="utf-8", errors="replace", newline="")


class FileLogWatcher(LogWatcher):
    """Follows a log file and delivers lines logged at or after ``start_time``."""

    def __init__(self, cfg: WatcherConfig, start_time: datetime) -> None:
        self.cfg = cfg
        self.start_time = start_time
        self.translator = Translator(cfg.plugin_config)
        self._logs: "queue.Queue[Optional[Log]]" = queue.Queue(maxsize=1000)
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def watch(self) -> "queue.Queue[Optional[Log]]":
        """Open the log file and start following it in the background."""
        stream = _open_log(self.cfg.log_path)
        logger.info("Start watching filelog")
        self._thread = threading.Thread(target=self._watch_loop, args=(stream,), daemon=True)
        self._thread.start()
        return self._logs

    def stop(self) -> None:
        """Stop following the file."""
        self._stopping.set()

    def _watch_loop(self, stream: IO[str]) -> None:
        pending = ""
        try:
            while not self._stopping.is_set():
                chunk = stream.readline()
                pending += chunk
                if not pending.endswith("\n"):
                    self._stopping.wait(WATCH_POLL_INTERVAL)
                    continue
                line, pending = pending[:-1], ""
                try:
                    log = self.translator.translate(line)
                except TranslationError as exc:
                    logger.warning("Unable to parse line: %r, %s", line, exc)
                    continue
                if log.timestamp < self.start_time:
                    logger.debug("Throwing away msg %r before start time", log.message)
                    continue
                self._logs.put(log)
            logger.info("Stop watching filelog")
        except OSError as exc:
            logger.error("Exiting filelog watch with error: %s", exc)
        finally:
            stream.close()
            self._logs.put(None)


def new_syslog_watcher(cfg: WatcherConfig) -> FileLogWatcher:
    """Create a file log watcher starting from the configured lookback and delay."""
    now = datetime.now().astimezone()
    start_time = get_start_time(now, get_uptime(), cfg.lookback, cfg.delay)
    return FileLogWatcher(cfg, start_time)