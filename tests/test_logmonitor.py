import json
import queue
from datetime import datetime, timedelta, timezone

import pytest

from nodeproblem.config import MonitorConfig
from nodeproblem.logmonitor import (
    SYSTEM_LOG_MONITOR_NAME,
    LogMonitor,
    generate_message,
    initial_conditions,
    initialize_problem_metrics,
    new_log_monitor,
)
from nodeproblem.logtypes import (
    Condition,
    ConditionStatus,
    Event,
    Log,
    ProblemType,
    Rule,
    Severity,
    Status,
    generate_condition_change_event,
)
from nodeproblem.logwatchers import register_log_watcher
from nodeproblem.problemdaemon import get_problem_daemon_handler
from nodeproblem.problemmetrics import new_problem_metrics_manager_stub
from nodeproblem.watchertypes import LogWatcher

TEST_SOURCE = "TestSource"
TEST_CONDITION_A = "TestConditionA"
TEST_CONDITION_B = "TestConditionB"

T500 = datetime.fromtimestamp(500, timezone.utc)
T1000 = datetime.fromtimestamp(1000, timezone.utc)
T2000 = datetime.fromtimestamp(2000, timezone.utc)


class FakeLogWatcher(LogWatcher):
    def __init__(self, buffer_size=100):
        self.logs = queue.Queue(buffer_size)
        self.error = None

    def inject_log(self, log):
        self.logs.put(log)

    def watch(self):
        if self.error is not None:
            raise self.error
        return self.logs

    def stop(self):
        self.logs.put(None)


def _init_conditions():
    return [
        Condition(TEST_CONDITION_A, ConditionStatus.TRUE, T500, reason="initial reason"),
        Condition(TEST_CONDITION_B, ConditionStatus.FALSE, T500),
    ]


def _monitor(conditions, manager=None, source=TEST_SOURCE):
    if manager is None:
        manager = new_problem_metrics_manager_stub()[0]
    monitor = LogMonitor(MonitorConfig(source=source), FakeLogWatcher(), metrics_manager=manager)
    monitor.conditions = conditions
    return monitor


LOGS = [Log(T1000, "test message 1"), Log(T2000, "test message 2")]


def test_registration():
    handler = get_problem_daemon_handler(SYSTEM_LOG_MONITOR_NAME)
    assert handler.create_problem_daemon is new_log_monitor
    assert handler.cmd_option_description == "Set to config file paths."


def test_generate_status_permanent_changed():
    monitor = _monitor(_init_conditions())
    got = monitor.generate_status(LOGS, Rule(ProblemType.PERM, TEST_CONDITION_A, "test reason"))
    expected = Status(
        source=TEST_SOURCE,
        events=[generate_condition_change_event(TEST_CONDITION_A, ConditionStatus.TRUE, "test reason", T1000)],
        conditions=[
            Condition(
                TEST_CONDITION_A, ConditionStatus.TRUE, T1000,
                reason="test reason", message="test message 1\ntest message 2",
            ),
            _init_conditions()[1],
        ],
    )
    assert got == expected


def test_generate_status_permanent_unchanged_keeps_transition():
    monitor = _monitor(_init_conditions())
    got = monitor.generate_status(LOGS, Rule(ProblemType.PERM, TEST_CONDITION_A, "initial reason"))
    assert got == Status(source=TEST_SOURCE, events=[], conditions=_init_conditions())


def test_generate_status_temporary():
    monitor = _monitor(_init_conditions())
    got = monitor.generate_status(LOGS, Rule(ProblemType.TEMP, reason="test reason"))
    expected = Status(
        source=TEST_SOURCE,
        events=[Event(Severity.WARN, T1000, "test reason", "test message 1\ntest message 2")],
        conditions=_init_conditions(),
    )
    assert got == expected


def _counter(reason, value):
    return ("problem_counter", {"reason": reason}, value)


def _gauge(problem_type, reason, value):
    return ("problem_gauge", {"type": problem_type, "reason": reason}, value)


def _normalize(items):
    return sorted((name, tuple(sorted(labels.items())), value) for name, labels, value in items)


def _collected(counter, gauge):
    return _normalize(
        (m.name, m.labels, m.value) for m in counter.list_metrics() + gauge.list_metrics()
    )


def _cond(condition_type):
    return Condition(condition_type, ConditionStatus.FALSE, T500)


def _temp(reason):
    return Rule(ProblemType.TEMP, reason=reason)


def _perm(condition, reason):
    return Rule(ProblemType.PERM, condition=condition, reason=reason)


FOO = "problem reason foo"
BAR = "problem reason bar"
HELLO = "problem reason hello"

STATUS_METRIC_CASES = [
    ("temporary not happened", [], [], []),
    ("temporary once", [], [_temp(FOO)], [_counter(FOO, 1)]),
    ("temporary twice", [], [_temp(FOO), _temp(FOO)], [_counter(FOO, 2)]),
    ("two temporaries", [], [_temp(FOO), _temp(BAR)], [_counter(FOO, 1), _counter(BAR, 1)]),
    (
        "permanent happening", ["ConditionA"], [_perm("ConditionA", FOO)],
        [_gauge("ConditionA", FOO, 1), _counter(FOO, 1)],
    ),
    (
        "permanent twice same reason", ["ConditionA"],
        [_perm("ConditionA", FOO), _perm("ConditionA", FOO)],
        [_gauge("ConditionA", FOO, 1), _counter(FOO, 1)],
    ),
    (
        "permanent twice different reasons", ["ConditionA"],
        [_perm("ConditionA", FOO), _perm("ConditionA", BAR)],
        [_gauge("ConditionA", FOO, 0), _gauge("ConditionA", BAR, 1), _counter(FOO, 1), _counter(BAR, 1)],
    ),
    (
        "two permanents once each", ["ConditionA", "ConditionB"],
        [_perm("ConditionA", FOO), _perm("ConditionB", BAR)],
        [_gauge("ConditionA", FOO, 1), _gauge("ConditionB", BAR, 1), _counter(FOO, 1), _counter(BAR, 1)],
    ),
]


@pytest.mark.parametrize("name, condition_types, rules, expected", STATUS_METRIC_CASES)
def test_generate_status_for_metrics(name, condition_types, rules, expected):
    manager, counter, gauge = new_problem_metrics_manager_stub()
    monitor = _monitor([_cond(t) for t in condition_types], manager)
    for rule in rules:
        monitor.generate_status([Log(T1000, "")], rule)
    assert _collected(counter, gauge) == _normalize(expected)


INIT_METRIC_CASES = [
    ("none", [], []),
    ("one temporary", [_temp(FOO)], [_counter(FOO, 0)]),
    ("one permanent", [_perm("ConditionA", FOO)], [_gauge("ConditionA", FOO, 0), _counter(FOO, 0)]),
    ("duplicate temporaries", [_temp(FOO), _temp(FOO)], [_counter(FOO, 0)]),
    ("multiple temporaries", [_temp(FOO), _temp(BAR)], [_counter(FOO, 0), _counter(BAR, 0)]),
    (
        "permanents same condition", [_perm("ConditionA", FOO), _perm("ConditionA", BAR)],
        [_gauge("ConditionA", FOO, 0), _gauge("ConditionA", BAR, 0), _counter(FOO, 0), _counter(BAR, 0)],
    ),
    (
        "permanents different conditions", [_perm("ConditionA", FOO), _perm("ConditionB", BAR)],
        [_gauge("ConditionA", FOO, 0), _gauge("ConditionB", BAR, 0), _counter(FOO, 0), _counter(BAR, 0)],
    ),
    (
        "duplicate permanents", [_perm("ConditionA", FOO), _perm("ConditionA", FOO)],
        [_gauge("ConditionA", FOO, 0), _counter(FOO, 0)],
    ),
    (
        "mixture",
        [
            _temp(FOO), _perm("ConditionA", HELLO), _perm("ConditionA", FOO),
            _perm("ConditionB", FOO), _perm("ConditionB", BAR), _temp(FOO), _temp(BAR),
        ],
        [
            _gauge("ConditionA", HELLO, 0), _gauge("ConditionA", FOO, 0),
            _gauge("ConditionB", FOO, 0), _gauge("ConditionB", BAR, 0),
            _counter(HELLO, 0), _counter(FOO, 0), _counter(BAR, 0),
        ],
    ),
]


@pytest.mark.parametrize("name, rules, expected", INIT_METRIC_CASES)
def test_initialize_problem_metrics(name, rules, expected):
    manager, counter, gauge = new_problem_metrics_manager_stub()
    initialize_problem_metrics(rules, manager)
    assert _collected(counter, gauge) == _normalize(expected)


def test_metrics_reporting_disabled_records_nothing():
    manager, counter, gauge = new_problem_metrics_manager_stub()
    config = MonitorConfig(source=TEST_SOURCE, enable_metrics_reporting=False)
    monitor = LogMonitor(config, FakeLogWatcher(), metrics_manager=manager)
    monitor.generate_status(LOGS, _temp(FOO))
    assert counter.list_metrics() == []
    assert gauge.list_metrics() == []


def test_initial_conditions_reset_status():
    before = datetime.now().astimezone()
    defaults = [Condition("A", ConditionStatus.TRUE, T500, reason="r", message="m")]
    got = initial_conditions(defaults)
    assert [(c.type, c.status, c.reason, c.message) for c in got] == [("A", ConditionStatus.FALSE, "r", "m")]
    assert got[0].transition >= before
    assert defaults[0].status == ConditionStatus.TRUE


def test_generate_message():
    assert generate_message(LOGS) == "test message 1\ntest message 2"


def _write_config(tmp_path, plugin, rules, metrics=False):
    path = tmp_path / "monitor.json"
    path.write_text(json.dumps({
        "plugin": plugin,
        "source": "kernel-monitor",
        "metricsReporting": metrics,
        "conditions": [
            {"type": "KernelDeadlock", "reason": "KernelHasNoDeadlock", "message": "kernel has no deadlock"}
        ],
        "rules": rules,
    }))
    return path


RULES = [
    {"type": "temporary", "reason": "OOMKilling", "pattern": r"OOM killed process \d+"},
    {
        "type": "permanent",
        "condition": "KernelDeadlock",
        "reason": "DockerHung",
        "pattern": r"task docker:\w+ blocked for more than \w+ seconds\.",
    },
]


def test_monitor_pipeline(tmp_path):
    fake = FakeLogWatcher()
    register_log_watcher("test-logmonitor-pipeline", lambda cfg: fake)
    path = _write_config(tmp_path, "test-logmonitor-pipeline", RULES)
    monitor = new_log_monitor(str(path))
    output = monitor.start()

    initial = output.get(timeout=5)
    assert initial.source == "kernel-monitor"
    assert [(c.type, c.status) for c in initial.conditions] == [("KernelDeadlock", ConditionStatus.FALSE)]

    now = datetime.now().astimezone()
    fake.inject_log(Log(now, "OOM killed process 42"))
    status = output.get(timeout=5)
    assert [(e.severity, e.reason) for e in status.events] == [(Severity.WARN, "OOMKilling")]

    later = now + timedelta(seconds=1)
    fake.inject_log(Log(later, "task docker:abc blocked for more than 120 seconds."))
    status = output.get(timeout=5)
    assert [(c.status, c.reason, c.transition) for c in status.conditions] == [
        (ConditionStatus.TRUE, "DockerHung", later)
    ]
    assert [e.reason for e in status.events] == ["DockerHung"]

    monitor.stop()
    assert output.get(timeout=5) is None


def test_monitor_ends_when_log_queue_closes(tmp_path):
    fake = FakeLogWatcher()
    register_log_watcher("test-logmonitor-close", lambda cfg: fake)
    monitor = new_log_monitor(str(_write_config(tmp_path, "test-logmonitor-close", RULES)))
    output = monitor.start()
    assert output.get(timeout=5).source == "kernel-monitor"
    fake.stop()
    assert output.get(timeout=5) is None


def test_start_propagates_watcher_error():
    watcher = FakeLogWatcher()
    watcher.error = FileNotFoundError("missing log")
    monitor = LogMonitor(MonitorConfig(source=TEST_SOURCE), watcher)
    with pytest.raises(FileNotFoundError):
        monitor.start()


def test_new_log_monitor_rejects_invalid_pattern(tmp_path):
    register_log_watcher("test-logmonitor-invalid", lambda cfg: FakeLogWatcher())
    path = _write_config(
        tmp_path, "test-logmonitor-invalid", [{"type": "temporary", "reason": "Bad", "pattern": "("}]
    )
    with pytest.raises(ValueError, match="matching rules"):
        new_log_monitor(str(path))


def test_new_log_monitor_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        new_log_monitor(str(tmp_path / "absent.json"))


def test_new_log_monitor_applies_defaults(tmp_path):
    register_log_watcher("test-logmonitor-defaults", lambda cfg: FakeLogWatcher())
    monitor = new_log_monitor(str(_write_config(tmp_path, "test-logmonitor-defaults", RULES)))
    assert monitor.config.buffer_size == 10
    assert monitor.config.watcher_config.lookback == "0"
    assert monitor.buffer.max_lines == 10