"""In-memory int64 metrics keyed by label values."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Iterable, Mapping


class Aggregation(enum.Enum):
    """How recorded values are combined."""

    SUM = "sum"
    LAST_VALUE = "last_value"


@dataclass
class MetricRepresentation:
    """A snapshot of one labelled time series."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: int = 0


class Int64Metric:
    """An int64 metric whose series are identified by their label values.

    Only the configured tag names are kept as labels; missing tags take the
    empty string. Thread-safe.
    """

    def __init__(self, name: str, aggregation: Aggregation, tag_names: Iterable[str]) -> None:
        self.name = name
        self.aggregation = aggregation
        self.tag_names = tuple(tag_names)
        self._series: dict[tuple[str, ...], int] = {}
        self._lock = threading.Lock()

    def record(self, labels: Mapping[str, str], value: int) -> None:
        """Record ``value`` for the series identified by ``labels``."""
        key = tuple(labels.get(tag, "") for tag in self.tag_names)
        with self._lock:
            if self.aggregation is Aggregation.SUM:
                self._series[key] = self._series.get(key, 0) + value
            else:
                self._series[key] = value

    def list_metrics(self) -> list[MetricRepresentation]:
        """Return a snapshot of every recorded series."""
        with self._lock:
            return [
                MetricRepresentation(self.name, dict(zip(self.tag_names, key)), value)
                for key, value in self._series.items()
            ]