import queue
import threading
import time

import pytest

from nodeproblem.logtypes import Status
from nodeproblem.problemdaemon import Monitor
from nodeproblem.problemdetector import Exporter, ProblemDetector, ProblemDetectorError


class _QueueMonitor(Monitor):
    def __init__(self, statuses=(), fail=False):
        self.q = queue.Queue()
        for s in statuses:
            self.q.put(s)
        self.fail = fail
        self.stopped = False

    def start(self):
        if self.fail:
            raise RuntimeError("cannot start")
        return self.q

    def stop(self):
        self.stopped = True


class _RecordingExporter(Exporter):
    def __init__(self):
        self.statuses = []
        self.got = threading.Event()

    def export_problems(self, status):
        self.statuses.append(status)
        self.got.set()


def test_empty():
    pd = ProblemDetector([], [])
    with pytest.raises(ProblemDetectorError):
        pd.run(None)


def test_all_monitors_fail():
    monitors = [_QueueMonitor(fail=True), _QueueMonitor(fail=True)]
    with pytest.raises(ProblemDetectorError):
        ProblemDetector(monitors, []).run(threading.Event())


def test_statuses_reach_every_exporter():
    status = Status(source="TestSource")
    working = _QueueMonitor([status])
    broken = _QueueMonitor(fail=True)
    exporters = [_RecordingExporter(), _RecordingExporter()]
    stop = threading.Event()
    pd = ProblemDetector([working, broken], exporters)

    runner = threading.Thread(target=pd.run, args=(stop,))
    runner.start()
    try:
        for exporter in exporters:
            assert exporter.got.wait(5)
    finally:
        stop.set()
        runner.join(5)

    assert not runner.is_alive()
    assert [e.statuses for e in exporters] == [[status], [status]]
    assert working.stopped and broken.stopped


def test_closed_monitor_queue_stops_forwarding():
    monitor = _QueueMonitor([None, Status(source="late")])
    exporter = _RecordingExporter()
    stop = threading.Event()
    runner = threading.Thread(target=ProblemDetector([monitor], [exporter]).run, args=(stop,))
    runner.start()
    time.sleep(0.3)
    stop.set()
    runner.join(5)
    assert exporter.statuses == []
    assert monitor.stopped