# nodeproblem

`nodeproblem` is a library for finding problems on a machine. It follows system
logs and kernel messages and matches them against rules. Each match becomes an
event or a condition. The library also counts how often each problem occurs and
checks whether node components are healthy. It needs nothing outside the standard
library.

## Modules

- `nodeproblem.logtypes`: the shared data types. These are `Log`, `Rule`,
  `Condition`, `Event` and `Status`, and the enums `ProblemType`, `ConditionStatus`
  and `Severity`.
- `nodeproblem.watchertypes`: the `WatcherConfig` settings and the `LogWatcher`
  interface. It also holds `parse_duration` (durations such as `"300ms"` or
  `"2h45m"`), `get_uptime` (from `/proc/uptime`) and `get_start_time`.
- `nodeproblem.translator`: `Translator` turns a raw line into a `Log` using two
  regular expressions, one for the timestamp and one for the message.
  `parse_go_time` parses timestamps with reference-time layouts such as
  `"Jan _2 15:04:05"`.
- `nodeproblem.filelog`: `FileLogWatcher` follows a text log file. Create one with
  `new_syslog_watcher`.
- `nodeproblem.kmsg`: `KernelLogWatcher` reads `/dev/kmsg` through a `KmsgParser`.
  It works on Linux only. On other platforms `new_kmsg_watcher` raises
  `RuntimeError`.
- `nodeproblem.logwatchers`: a registry of watcher plugins, with `filelog` and
  `kmsg` registered. `get_log_watcher(config)` creates the watcher for
  `config.plugin` and raises `UnknownPluginError` for an unknown name.
- `nodeproblem.logbuffer`: `LogBuffer`, a ring buffer that matches multi-line
  patterns.
- `nodeproblem.config`: `MonitorConfig` and `parse_monitor_config`.
- `nodeproblem.logmonitor`: `LogMonitor` and `new_log_monitor`.
- `nodeproblem.metrics`: `Int64Metric`, an in-memory metric. Its values are summed
  or keep the last value written.
- `nodeproblem.problemmetrics`: `ProblemMetricsManager`, which keeps the problem
  counters and gauges.
- `nodeproblem.problemdaemon`: a registry of problem daemon types, with
  `new_problem_daemons`.
- `nodeproblem.problemdetector`: `ProblemDetector`, which runs monitors and passes
  their statuses to exporters.
- `nodeproblem.healthchecker` and `nodeproblem.healthchecker_types`: component
  health checks and the `LogPatternFlag` type.
- `nodeproblem.logcounter`: `LogCounter`, which counts the logs that match a
  pattern.

## Log buffer

A pattern must match up to the last line that was pushed. `match` returns the
lines the match covers, oldest first, or an empty list:

```python
from nodeproblem.logbuffer import LogBuffer
from nodeproblem.logtypes import Log

buffer = LogBuffer(4)
for message in ["a1", "b2"]:
    buffer.push(Log(timestamp=None, message=message))

[log.message for log in buffer.match("b2")]        # ["b2"]
[log.message for log in buffer.match("a1\nb2")]    # ["a1", "b2"]
buffer.match("a1")                                 # []: the last line is not part of the match
str(buffer)                                        # the buffered lines, joined with "\n"
```

## Log monitor configuration

`new_log_monitor(path)` reads a JSON file with the following keys:

- `plugin`, `pluginConfig`, `logPath`, `lookback` and `delay` configure the
  watcher.
- `bufferSize` sets the buffer size, and `source` names the monitor.
- `conditions` lists the default conditions.
- `rules` lists the rules. Each rule has a `type` (`"temporary"` or
  `"permanent"`), plus `condition`, `reason` and `pattern`.
- `metricsReporting` switches metrics on or off.

If you leave values out, `bufferSize` is 10, `lookback` is `"0"` and metrics
reporting is on. If a rule pattern does not compile, or a rule type is unknown,
`new_log_monitor` raises `ValueError`.

The `filelog` plugin needs three keys in `pluginConfig`:

- `timestamp`: a regular expression.
- `message`: a regular expression.
- `timestampFormat`: a reference-time layout.

The last submatch of each expression is used. A timestamp without a year gets the
current year.

```json
{
  "plugin": "filelog",
  "pluginConfig": {
    "timestamp": "^.{15}",
    "message": "kernel: \\[.*\\] (.*)",
    "timestampFormat": "Jan _2 15:04:05"
  },
  "logPath": "/var/log/kern.log",
  "lookback": "5m",
  "source": "kernel-monitor",
  "conditions": [{"type": "KernelDeadlock", "reason": "KernelHasNoDeadlock"}],
  "rules": [
    {"type": "temporary", "reason": "OOMKilling", "pattern": "Killed process \\d+ (.+)"},
    {"type": "permanent", "condition": "KernelDeadlock", "reason": "DockerHung",
     "pattern": "task docker:\\w+ blocked for more than \\w+ seconds\\."}
  ]
}
```

A temporary rule produces a warning `Event`. A permanent rule sets its condition
to `True`. When the status or the reason of the condition changes, the rule also
records the transition time and message, and emits an informational
condition-change event.

`LogMonitor.start()` returns a `queue.Queue` of `Status` items. The first item
reports the initial conditions, all of them `False`. A `None` on the queue means
the monitor has stopped.

Importing `nodeproblem.logmonitor` registers the monitor with
`nodeproblem.problemdaemon` under the name `system-log-monitor`:

```python
import nodeproblem.logmonitor  # registers "system-log-monitor"
from nodeproblem.problemdaemon import new_problem_daemons
from nodeproblem.problemdetector import Exporter, ProblemDetector

class PrintExporter(Exporter):
    def export_problems(self, status):
        print(status)

monitors = new_problem_daemons({"system-log-monitor": ["kernel-monitor.json"]})
ProblemDetector(monitors, [PrintExporter()]).run(stop_event=None)  # runs until stopped
```

`new_problem_daemons` creates one daemon for each distinct config path. The
detector stops when you set the `threading.Event` passed to `run`. If no monitor
can be started, it raises `ProblemDetectorError`.

## Problem metrics

```python
from nodeproblem.problemmetrics import new_problem_metrics_manager_stub

manager, counter, gauge = new_problem_metrics_manager_stub()
manager.increment_problem_counter("OOMKilling", 1)
manager.set_problem_gauge("KernelDeadlock", "DockerHung", True)
counter.list_metrics()   # [MetricRepresentation("problem_counter", {"reason": "OOMKilling"}, 1)]
gauge.list_metrics()
```

When a problem type gets a new reason, `set_problem_gauge` first sets the previous
reason for that type back to 0. At any time, at most one reason per type is set.
`global_problem_metrics_manager()` returns the manager that log monitors use by
default.

## Health checks

```python
from nodeproblem.healthchecker import HealthCheckerOptions, new_health_checker

options = HealthCheckerOptions(component="kubelet", service="kubelet")
options.log_patterns.set("3:PLEG is not healthy")
healthy = new_health_checker(options).check_health()
```

Supported components are `kubelet`, `kube-proxy`, `docker` and `cri`:

- `kubelet` and `kube-proxy`: an HTTP `healthz` request on localhost.
- `docker`: runs `docker ps`.
- `cri`: runs `crictl ... pods`.

Each log pattern is counted in the service's logs since the service started, or
over `loop_back_time` if that is shorter. The check fails once a pattern reaches
its threshold.

If the component is unhealthy and `enable_repair` is set, the checker waits until
the service has been up longer than `cool_down_time`. It then makes a best-effort
repair.

On Linux, the checker uses these tools:

- `systemctl` for the service's uptime and for killing it.
- `journalctl` and `grep` for counting log patterns.
- `pkill -SIGUSR1 dockerd` before the kill, for docker only.

On Windows it uses PowerShell instead, with `Restart-Service` as the repair.
Commands that fail raise `CommandError`.

`LogPatternFlag` parses values such as `"10:pattern1,20:pattern2"`. A pattern may
itself contain `:`. The threshold must be a non-zero integer and the pattern must
not be empty, or `set` raises `ValueError`. `str(flag)` gives
`"pattern1:10 pattern2:20"`, sorted by pattern.

## Log counting

`LogCounter(queue, pattern).count()` reads logs from a queue and counts those for
which the buffered tail matches `pattern`. It stops at the first log newer than
the moment counting began, or when no log arrives within the timeout (one second
by default). If the queue delivers `None`, it raises `LogChannelClosedError`.

## What it does not do

- **No command-line programs.** The package has no command-line programs and no
  long-running service entry point. You wire monitors, exporters and health
  checks together yourself.
- **No systemd journal watcher.** There is no watcher that reads the systemd
  journal directly, so `get_log_watcher` knows only `filelog` and `kmsg`.
  `LogCounter` therefore needs a queue of logs that you fill.
- **No exporters that publish problems.** No exporter sends statuses to a cluster
  API, Prometheus or any other backend. `Exporter` is an interface for you to
  implement. Metrics are kept in memory only.