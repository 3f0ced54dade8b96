"""Collects statuses from problem daemons and hands them to exporters."""

from __future__ import annotations

import abc
import logging
import queue
import threading
from typing import Iterable, Optional

from nodeproblem.logtypes import Status
from nodeproblem.problemdaemon import Monitor

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class Exporter(abc.ABC):
    """Receives statuses reported by problem daemons."""

    @abc.abstractmethod
    def export_problems(self, status: Status) -> None:
        """Export one status."""


class ProblemDetectorError(RuntimeError):
    """Raised when the problem detector cannot run."""


def _forward(source: "queue.Queue[Optional[Status]]", sink: "queue.Queue[Status]") -> None:
    while True:
        status = source.get()
        if status is None:
            return
        sink.put(status)


class ProblemDetector:
    """Starts the monitors and passes their statuses to every exporter."""

    def __init__(self, monitors: Iterable[Monitor], exporters: Iterable[Exporter]) -> None:
        self.monitors = list(monitors)
        self.exporters = list(exporters)

    def run(self, stop_event: Optional[threading.Event]) -> None:
        """Run until ``stop_event`` is set; ``None`` means run forever.

        Raises ProblemDetectorError if no monitor could be started.
        """
        if stop_event is None:
            stop_event = threading.Event()

        sources: list[queue.Queue] = []
        failures = 0
        for monitor in self.monitors:
            try:
                status_queue = monitor.start()
            except Exception as exc:
                logger.error("Failed to start problem daemon %r: %s", monitor, exc)
                failures += 1
                continue
            if status_queue is not None:
                sources.append(status_queue)

        if failures == len(self.monitors):
            raise ProblemDetectorError("no problem daemon is successfully setup")

        try:
            merged: queue.Queue[Status] = queue.Queue()
            for source in sources:
                threading.Thread(target=_forward, args=(source, merged), daemon=True).start()
            logger.info("Problem detector started")

            while not stop_event.is_set():
                try:
                    status = merged.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                for exporter in self.exporters:
                    exporter.export_problems(status)
        finally:
            for monitor in self.monitors:
                monitor.stop()