"""Registry of log watcher plugins."""

from __future__ import annotations

import logging
from typing import Callable

from nodeproblem.filelog import new_syslog_watcher
from nodeproblem.kmsg import new_kmsg_watcher
from nodeproblem.watchertypes import LogWatcher, WatcherConfig

logger = logging.getLogger(__name__)

WatcherCreateFunc = Callable[[WatcherConfig], LogWatcher]


class UnknownPluginError(LookupError):
    """Raised when no log watcher is registered for a plugin name."""


_create_funcs: dict[str, WatcherCreateFunc] = {}


def register_log_watcher(name: str, create: WatcherCreateFunc) -> None:
    """Register the function that creates log watchers for plugin ``name``."""
    _create_funcs[name] = create


def get_log_watcher(config: WatcherConfig) -> LogWatcher:
    """Create the log watcher for ``config.plugin``."""
    try:
        create = _create_funcs[config.plugin]
    except KeyError:
        raise UnknownPluginError(
            f"No create function found for plugin {config.plugin!r}"
        ) from None
    logger.info("Use log watcher of plugin %r", config.plugin)
    return create(config)


register_log_watcher("filelog", new_syslog_watcher)
register_log_watcher("kmsg", new_kmsg_watcher)