"""Configuration of a system log monitor."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from nodeproblem.logtypes import Condition, ConditionStatus, Rule, rule_from_dict
from nodeproblem.watchertypes import WatcherConfig, watcher_config_from_dict

DEFAULT_BUFFER_SIZE = 10
DEFAULT_LOOKBACK = "0"
DEFAULT_ENABLE_METRICS_REPORTING = True


@dataclass
class MonitorConfig:
    """Settings of a log monitor: its watcher, buffer, source, conditions and rules."""

    watcher_config: WatcherConfig = field(default_factory=WatcherConfig)
    buffer_size: int = 0
    source: str = ""
    default_conditions: list[Condition] = field(default_factory=list)
    rules: list[Rule] = field(default_factory=list)
    enable_metrics_reporting: Optional[bool] = None

    def apply_default_configuration(self) -> None:
        """Fill in defaults for unset fields."""
        if self.buffer_size == 0:
            self.buffer_size = DEFAULT_BUFFER_SIZE
        if self.enable_metrics_reporting is None:
            self.enable_metrics_reporting = DEFAULT_ENABLE_METRICS_REPORTING
        if self.watcher_config.lookback == "":
            self.watcher_config.lookback = DEFAULT_LOOKBACK

    def validate_rules(self) -> None:
        """Raise re.error if any rule pattern is not a valid regular expression."""
        for rule in self.rules:
            re.compile(rule.pattern)


def _condition_from_dict(data: Mapping[str, Any]) -> Condition:
    status = data.get("status")
    return Condition(
        type=str(data.get("type", "")),
        status=ConditionStatus(status) if status else ConditionStatus.FALSE,
        transition=datetime.now().astimezone(),
        reason=str(data.get("reason", "")),
        message=str(data.get("message", "")),
    )


def parse_monitor_config(data: Union[Mapping[str, Any], str, bytes]) -> MonitorConfig:
    """Build a monitor configuration from JSON text or its decoded mapping."""
    if isinstance(data, (str, bytes)):
        data = json.loads(data)
    if not isinstance(data, Mapping):
        raise ValueError("monitor configuration must be a JSON object")
    metrics = data.get("metricsReporting")
    return MonitorConfig(
        watcher_config=watcher_config_from_dict(data),
        buffer_size=int(data.get("bufferSize", 0)),
        source=str(data.get("source", "")),
        default_conditions=[_condition_from_dict(c) for c in data.get("conditions") or []],
        rules=[rule_from_dict(r) for r in data.get("rules") or []],
        enable_metrics_reporting=None if metrics is None else bool(metrics),
    )