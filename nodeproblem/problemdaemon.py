"""Registry of problem daemon types and creation of problem daemons."""

from __future__ import annotations

import abc
import logging
import queue
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional

from nodeproblem.logtypes import Status

logger = logging.getLogger(__name__)


class Monitor(abc.ABC):
    """A problem daemon that reports statuses.

    ``start`` returns a queue of Status items, or None when the daemon does
    not report statuses itself; ``None`` in the queue means no more statuses
    will follow. ``start`` raises when the daemon cannot be started.
    """

    @abc.abstractmethod
    def start(self) -> Optional["queue.Queue[Optional[Status]]"]:
        """Start the daemon."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop the daemon."""


@dataclass
class ProblemDaemonHandler:
    """How to create a problem daemon of one type from a configuration path."""

    create_problem_daemon: Callable[[str], Monitor]
    cmd_option_description: str = ""


class UnknownProblemDaemonError(LookupError):
    """Raised when no handler is registered for a problem daemon type."""


_handlers: dict[str, ProblemDaemonHandler] = {}


def register(problem_daemon_type: str, handler: ProblemDaemonHandler) -> None:
    """Register the handler used to create problem daemons of a type."""
    _handlers[problem_daemon_type] = handler


def unregister(problem_daemon_type: str) -> None:
    """Remove the handler for a type, if one is registered."""
    _handlers.pop(problem_daemon_type, None)


def get_problem_daemon_names() -> list[str]:
    """Return all registered problem daemon types."""
    return list(_handlers)


def get_problem_daemon_handler(problem_daemon_type: str) -> ProblemDaemonHandler:
    """Return the handler for a type, raising UnknownProblemDaemonError if absent."""
    try:
        return _handlers[problem_daemon_type]
    except KeyError:
        raise UnknownProblemDaemonError(
            f"Problem daemon handler for {problem_daemon_type} does not exist"
        ) from None


def new_problem_daemons(monitor_config_paths: Mapping[str, Iterable[str]]) -> list[Monitor]:
    """Create one problem daemon per distinct configuration path."""
    daemons: dict[str, Monitor] = {}
    for problem_daemon_type, configs in monitor_config_paths.items():
        handler = get_problem_daemon_handler(problem_daemon_type)
        for config in configs:
            if config in daemons:
                logger.warning("Duplicated problem daemon configuration %r", config)
                continue
            daemons[config] = handler.create_problem_daemon(config)
    return list(daemons.values())