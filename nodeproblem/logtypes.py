"""Core data types shared by log watchers, monitors and exporters."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping


class ProblemType(str, enum.Enum):
    """Whether a problem is transient (an event) or lasting (a condition)."""

    TEMP = "temporary"
    PERM = "permanent"


class ConditionStatus(str, enum.Enum):
    """Status of a node condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Severity(str, enum.Enum):
    """Severity of an event."""

    INFO = "info"
    WARN = "warn"


@dataclass
class Log:
    """One log line with its timestamp."""

    timestamp: datetime
    message: str


@dataclass
class Rule:
    """How a log monitor recognises a problem in the log.

    ``condition`` only matters for permanent problems. ``pattern`` is a
    regular expression that must match up to the end of the buffered log.
    """

    type: ProblemType
    condition: str = ""
    reason: str = ""
    pattern: str = ""


@dataclass
class Condition:
    """A node condition as reported by a problem daemon."""

    type: str
    status: ConditionStatus
    transition: datetime
    reason: str = ""
    message: str = ""


@dataclass
class Event:
    """A single reportable occurrence."""

    severity: Severity
    timestamp: datetime
    reason: str
    message: str


@dataclass
class Status:
    """What a problem daemon reports: its events and current conditions."""

    source: str
    events: list[Event] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)


def generate_condition_change_event(
    condition_type: str,
    status: ConditionStatus,
    reason: str,
    timestamp: datetime,
) -> Event:
    """Build the informational event emitted when a condition changes."""
    status_text = status.value if isinstance(status, ConditionStatus) else str(status)
    return Event(
        severity=Severity.INFO,
        timestamp=timestamp,
        reason=reason,
        message=f"Node condition {condition_type} is now: {status_text}, reason: {reason}",
    )


def rule_from_dict(data: Mapping[str, Any]) -> Rule:
    """Build a rule from its JSON representation.

    Raises ValueError when the problem type is missing or unknown.
    """
    raw_type = data.get("type")
    if raw_type is None:
        raise ValueError("rule is missing its problem type")
    try:
        problem_type = ProblemType(raw_type)
    except ValueError:
        raise ValueError(f"unknown problem type {raw_type!r}") from None
    return Rule(
        type=problem_type,
        condition=str(data.get("condition", "")),
        reason=str(data.get("reason", "")),
        pattern=str(data.get("pattern", "")),
    )