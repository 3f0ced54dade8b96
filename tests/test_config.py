import json
import re

import pytest

from nodeproblem.config import MonitorConfig, parse_monitor_config
from nodeproblem.logtypes import ConditionStatus, ProblemType, Rule


def test_apply_defaults():
    config = MonitorConfig()
    config.apply_default_configuration()
    assert config.buffer_size == 10
    assert config.enable_metrics_reporting is True
    assert config.watcher_config.lookback == "0"


def test_apply_defaults_keeps_explicit_values():
    config = MonitorConfig(buffer_size=3, enable_metrics_reporting=False)
    config.watcher_config.lookback = "5m"
    config.apply_default_configuration()
    assert config.buffer_size == 3
    assert config.enable_metrics_reporting is False
    assert config.watcher_config.lookback == "5m"


def test_validate_rules_rejects_bad_pattern():
    config = MonitorConfig(rules=[Rule(type=ProblemType.TEMP, pattern="(unclosed")])
    with pytest.raises(re.error):
        config.validate_rules()


def test_validate_rules_accepts_good_pattern():
    config = MonitorConfig(rules=[Rule(type=ProblemType.TEMP, pattern=r"kernel: \d+")])
    config.validate_rules()
    assert len(config.rules) == 1


def test_parse_monitor_config():
    document = {
        "plugin": "filelog",
        "pluginConfig": {"timestamp": "^.{15}"},
        "logPath": "/var/log/kern.log",
        "lookback": "5m",
        "bufferSize": 7,
        "source": "kernel-monitor",
        "metricsReporting": False,
        "conditions": [{"type": "KernelDeadlock", "reason": "KernelHasNoDeadlock"}],
        "rules": [
            {"type": "temporary", "reason": "OOMKilling", "pattern": "Kill process"},
            {"type": "permanent", "condition": "KernelDeadlock", "reason": "Hung", "pattern": "x"},
        ],
    }
    config = parse_monitor_config(json.dumps(document))
    assert config.watcher_config.plugin == "filelog"
    assert config.watcher_config.log_path == "/var/log/kern.log"
    assert config.watcher_config.plugin_config == {"timestamp": "^.{15}"}
    assert config.buffer_size == 7
    assert config.source == "kernel-monitor"
    assert config.enable_metrics_reporting is False
    assert config.default_conditions[0].type == "KernelDeadlock"
    assert config.default_conditions[0].status is ConditionStatus.FALSE
    assert [r.type for r in config.rules] == [ProblemType.TEMP, ProblemType.PERM]
    assert config.rules[1].condition == "KernelDeadlock"


def test_parse_monitor_config_unset_metrics():
    config = parse_monitor_config({"source": "s"})
    assert config.enable_metrics_reporting is None
    config.apply_default_configuration()
    assert config.enable_metrics_reporting is True


def test_parse_monitor_config_rejects_non_object():
    with pytest.raises(ValueError):
        parse_monitor_config("[1, 2]")