"""Problem counters and gauges shared by all problem daemons."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional

from nodeproblem.metrics import Aggregation, Int64Metric

PROBLEM_COUNTER_NAME = "problem_counter"
PROBLEM_GAUGE_NAME = "problem_gauge"


class MetricsNotInitializedError(RuntimeError):
    """Raised when a problem metric is used before it exists."""


def _new_problem_counter() -> Int64Metric:
    return Int64Metric(PROBLEM_COUNTER_NAME, Aggregation.SUM, ["reason"])


def _new_problem_gauge() -> Int64Metric:
    return Int64Metric(PROBLEM_GAUGE_NAME, Aggregation.LAST_VALUE, ["type", "reason"])


@dataclass
class ProblemMetricsManager:
    """Manages metrics derived from problems. Thread-safe."""

    problem_counter: Optional[Int64Metric] = field(default_factory=_new_problem_counter)
    problem_gauge: Optional[Int64Metric] = field(default_factory=_new_problem_gauge)
    _type_to_reason: dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def increment_problem_counter(self, reason: str, count: int) -> None:
        """Add ``count`` occurrences of the problem ``reason``."""
        if self.problem_counter is None:
            raise MetricsNotInitializedError(
                "problem counter is being incremented before initialized"
            )
        self.problem_counter.record({"reason": reason}, count)

    def set_problem_gauge(self, problem_type: str, reason: str, value: bool) -> None:
        """Set whether ``problem_type`` is affecting the node for ``reason``.

        At most one reason per problem type is set at a time, so the gauge of
        the previous reason for that type is cleared first.
        """
        if self.problem_gauge is None:
            raise MetricsNotInitializedError("problem gauge is being set before initialized")
        with self._lock:
            last_reason = self._type_to_reason.get(problem_type)
            if last_reason is not None:
                self.problem_gauge.record({"type": problem_type, "reason": last_reason}, 0)
            self._type_to_reason[problem_type] = reason
            self.problem_gauge.record({"type": problem_type, "reason": reason}, int(bool(value)))


def new_problem_metrics_manager_stub() -> tuple[ProblemMetricsManager, Int64Metric, Int64Metric]:
    """Return a fresh manager along with its counter and gauge for inspection."""
    counter = _new_problem_counter()
    gauge = _new_problem_gauge()
    return ProblemMetricsManager(problem_counter=counter, problem_gauge=gauge), counter, gauge


_GLOBAL_MANAGER = ProblemMetricsManager()


def global_problem_metrics_manager() -> ProblemMetricsManager:
    """Return the process-wide problem metrics manager."""
    return _GLOBAL_MANAGER