"""Problem daemon that matches log lines against rules and reports problems."""

from __future__ import annotations

import logging
import queue
import re
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from nodeproblem.config import MonitorConfig, parse_monitor_config
from nodeproblem.logbuffer import LogBuffer, concat_logs
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
from nodeproblem.logwatchers import get_log_watcher
from nodeproblem.problemdaemon import Monitor, ProblemDaemonHandler, register
from nodeproblem.problemmetrics import (
    MetricsNotInitializedError,
    ProblemMetricsManager,
    global_problem_metrics_manager,
)
from nodeproblem.watchertypes import LogWatcher

logger = logging.getLogger(__name__)

SYSTEM_LOG_MONITOR_NAME = "system-log-monitor"

_POLL_INTERVAL = 0.1
_OUTPUT_SIZE = 1000


def initial_conditions(defaults: Iterable[Condition]) -> list[Condition]:
    """Copy the default conditions, all set to False as of now."""
    now = datetime.now().astimezone()
    return [replace(c, status=ConditionStatus.FALSE, transition=now) for c in defaults]


def generate_message(logs: Iterable[Log]) -> str:
    """Join the messages of the logs, one per line."""
    return concat_logs(log.message for log in logs)


def initialize_problem_metrics(rules: Iterable[Rule], manager: ProblemMetricsManager) -> None:
    """Create a zero-valued counter for every rule and gauge for every permanent rule."""
    for rule in rules:
        if rule.type is ProblemType.PERM:
            manager.set_problem_gauge(rule.condition, rule.reason, False)
        manager.increment_problem_counter(rule.reason, 0)


class LogMonitor(Monitor):
    """Watches a log, matches rules and reports statuses on a queue."""

    def __init__(
        self,
        config: MonitorConfig,
        watcher: LogWatcher,
        config_path: str = "",
        metrics_manager: Optional[ProblemMetricsManager] = None,
    ) -> None:
        config.apply_default_configuration()
        self.config = config
        self.watcher = watcher
        self.config_path = config_path
        if metrics_manager is None:
            metrics_manager = global_problem_metrics_manager()
        self.metrics_manager = metrics_manager
        self.buffer = LogBuffer(config.buffer_size)
        self.conditions: list[Condition] = []
        self._output: "queue.Queue[Optional[Status]]" = queue.Queue(maxsize=_OUTPUT_SIZE)
        self._stopping = threading.Event()

    def start(self) -> "queue.Queue[Optional[Status]]":
        """Start watching; raises whatever the log watcher raises."""
        logger.info("Start log monitor %s", self.config_path)
        log_queue = self.watcher.watch()
        threading.Thread(target=self._monitor_loop, args=(log_queue,), daemon=True).start()
        return self._output

    def stop(self) -> None:
        """Stop the monitor; the status queue then ends with None."""
        logger.info("Stop log monitor %s", self.config_path)
        self._stopping.set()

    def _monitor_loop(self, log_queue: "queue.Queue[Optional[Log]]") -> None:
        try:
            self._initialize_status()
            while True:
                if self._stopping.is_set():
                    self.watcher.stop()
                    logger.info("Log monitor stopped: %s", self.config_path)
                    return
                try:
                    log = log_queue.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                if log is None:
                    logger.error("Log channel closed: %s", self.config_path)
                    return
                self._parse_log(log)
        finally:
            self._output.put(None)

    def _parse_log(self, log: Log) -> None:
        self.buffer.push(log)
        for rule in self.config.rules:
            matched = self.buffer.match(rule.pattern)
            if not matched:
                continue
            status = self.generate_status(matched, rule)
            logger.info("New status generated: %r", status)
            self._output.put(status)

    def generate_status(self, logs: list[Log], rule: Rule) -> Status:
        """Build the status for logs matched by ``rule`` and update conditions and metrics."""
        timestamp = logs[0].timestamp
        message = generate_message(logs)
        events: list[Event] = []
        changed: list[Condition] = []
        if rule.type is ProblemType.TEMP:
            events.append(
                Event(severity=Severity.WARN, timestamp=timestamp, reason=rule.reason, message=message)
            )
        else:
            for condition in self.conditions:
                if condition.type != rule.condition:
                    continue
                # A condition changes only when its status or reason changes.
                if condition.status == ConditionStatus.FALSE or condition.reason != rule.reason:
                    condition.transition = timestamp
                    condition.message = message
                    events.append(
                        generate_condition_change_event(
                            condition.type, ConditionStatus.TRUE, rule.reason, timestamp
                        )
                    )
                condition.status = ConditionStatus.TRUE
                condition.reason = rule.reason
                changed.append(condition)
                break

        if self.config.enable_metrics_reporting:
            for event in events:
                try:
                    self.metrics_manager.increment_problem_counter(event.reason, 1)
                except MetricsNotInitializedError as exc:
                    logger.error("Failed to update problem counter metrics for %r: %s", event.reason, exc)
            for condition in changed:
                try:
                    self.metrics_manager.set_problem_gauge(
                        condition.type, condition.reason, condition.status == ConditionStatus.TRUE
                    )
                except MetricsNotInitializedError as exc:
                    logger.error(
                        "Failed to update problem gauge metrics for problem %r, reason %r: %s",
                        condition.type, condition.reason, exc,
                    )

        return Status(
            source=self.config.source,
            events=events,
            conditions=[replace(c) for c in self.conditions],
        )

    def _initialize_status(self) -> None:
        self.conditions = initial_conditions(self.config.default_conditions)
        logger.info("Initialize condition generated: %r", self.conditions)
        self._output.put(
            Status(source=self.config.source, conditions=[replace(c) for c in self.conditions])
        )


def new_log_monitor(config_path: str) -> LogMonitor:
    """Create a log monitor from a JSON configuration file.

    Raises OSError if the file cannot be read and ValueError if it is invalid.
    """
    content = Path(config_path).read_bytes()
    try:
        config = parse_monitor_config(content)
    except ValueError as exc:
        raise ValueError(f"Failed to unmarshal configuration file {config_path!r}: {exc}") from exc
    config.apply_default_configuration()
    try:
        config.validate_rules()
    except re.error as exc:
        raise ValueError(f"Failed to validate {config_path} matching rules: {exc}") from exc
    logger.info("Finish parsing log monitor config file %s: %r", config_path, config)

    watcher = get_log_watcher(config.watcher_config)
    monitor = LogMonitor(config, watcher, config_path)
    if config.enable_metrics_reporting:
        initialize_problem_metrics(config.rules, monitor.metrics_manager)
    return monitor


register(
    SYSTEM_LOG_MONITOR_NAME,
    ProblemDaemonHandler(
        create_problem_daemon=new_log_monitor,
        cmd_option_description="Set to config file paths.",
    ),
)