import queue
from datetime import datetime, timedelta

import pytest

from nodeproblem.filelog import FileLogWatcher
from nodeproblem.logtypes import Log
from nodeproblem.watchertypes import WatcherConfig, get_start_time

PLUGIN_CONFIG = {
    "timestamp": "^.{15}",
    "message": "kernel: \\[.*\\] (.*)",
    "timestampFormat": "Jan _2 15:04:05",
}

NOW = datetime(datetime.now().year, 1, 2, 3, 4, 5).astimezone()
S = timedelta(seconds=1)

CASES = [
    (
        timedelta(0), "0", "0",
        "Jan  2 03:04:05 kernel: [0.000000] 1\n"
        "Jan  2 03:04:06 kernel: [1.000000] 2\n"
        "Jan  2 03:04:07 kernel: [2.000000] 3\n\t\t\t",
        [(NOW, "1"), (NOW + S, "2"), (NOW + 2 * S, "3")],
    ),
    (
        timedelta(0), "0", "0",
        "Jan  2 03:04:04 kernel: [0.000000] 1\n"
        "Jan  2 03:04:05 kernel: [1.000000] 2\n"
        "Jan  2 03:04:06 kernel: [2.000000] 3\n\t\t\t",
        [(NOW, "2"), (NOW + S, "3")],
    ),
    (
        2 * S, "1s", "0",
        "Jan  2 03:04:03 kernel: [0.000000] 1\n"
        "Jan  2 03:04:04 kernel: [1.000000] 2\n"
        "Jan  2 03:04:05 kernel: [2.000000] 3\n\t\t\t",
        [(NOW - S, "2"), (NOW, "3")],
    ),
    (
        S, "2s", "0",
        "Jan  2 03:04:03 kernel: [0.000000] 1\n"
        "Jan  2 03:04:04 kernel: [1.000000] 2\n"
        "Jan  2 03:04:05 kernel: [2.000000] 3\n\t\t\t",
        [(NOW - S, "2"), (NOW, "3")],
    ),
]


@pytest.mark.parametrize("uptime, lookback, delay, content, expected", CASES)
def test_watch(tmp_path, uptime, lookback, delay, content, expected):
    path = tmp_path / "kern.log"
    path.write_text(content)
    cfg = WatcherConfig(
        plugin="filelog", plugin_config=dict(PLUGIN_CONFIG), log_path=str(path), lookback=lookback
    )
    watcher = FileLogWatcher(cfg, get_start_time(NOW, uptime, lookback, delay))
    logs = watcher.watch()
    try:
        for timestamp, message in expected:
            assert logs.get(timeout=30) == Log(timestamp=timestamp, message=message)
        with pytest.raises(queue.Empty):
            logs.get(timeout=0.1)
    finally:
        watcher.stop()


def test_stop_ends_queue(tmp_path):
    path = tmp_path / "kern.log"
    path.write_text("")
    watcher = FileLogWatcher(WatcherConfig(plugin_config=dict(PLUGIN_CONFIG), log_path=str(path)), NOW)
    logs = watcher.watch()
    watcher.stop()
    assert logs.get(timeout=5) is None


def test_empty_path():
    watcher = FileLogWatcher(WatcherConfig(plugin_config=dict(PLUGIN_CONFIG)), NOW)
    with pytest.raises(ValueError):
        watcher.watch()


def test_missing_file(tmp_path):
    cfg = WatcherConfig(plugin_config=dict(PLUGIN_CONFIG), log_path=str(tmp_path / "absent.log"))
    with pytest.raises(FileNotFoundError):
        FileLogWatcher(cfg, NOW).watch()