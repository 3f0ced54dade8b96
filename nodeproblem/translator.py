"""Turns raw log lines into Log items using configured regular expressions."""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from nodeproblem.logtypes import Log

logger = logging.getLogger(__name__)

TIMESTAMP_KEY = "timestamp"
MESSAGE_KEY = "message"
TIMESTAMP_FORMAT_KEY = "timestampFormat"

# Year given to times whose layout has no year; see formalize_timestamp.
MISSING_YEAR = 1

_MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def _alternatives(words):
    return "(" + "|".join(words) + ")"


_FRAC_ANY = r"(?:[.,](\d+))?"

# Ordered so that longer tokens are tried before their prefixes.
_TOKENS = [
    ("January", _alternatives(_MONTHS), "month_name"),
    ("Jan", _alternatives(m[:3] for m in _MONTHS), "month_abbr"),
    ("Monday", _alternatives(_WEEKDAYS), "ignore"),
    ("Mon", _alternatives(d[:3] for d in _WEEKDAYS), "ignore"),
    ("MST", r"([A-Z]{3,5})", "zone_abbr"),
    ("2006", r"(\d{4})", "year4"),
    ("01", r"(\d{2})", "month"),
    ("02", r"(\d{2})", "day"),
    ("03", r"(\d{2})", "hour12"),
    ("04", r"(\d{2})", "minute"),
    ("05", r"(\d{2})", "second"),
    ("06", r"(\d{2})", "year2"),
    ("15", r"(\d{1,2})", "hour24"),
    ("1", r"(\d{1,2})", "month"),
    ("_2", r"( \d|\d{1,2})", "day"),
    ("2", r"(\d{1,2})", "day"),
    ("3", r"(\d{1,2})", "hour12"),
    ("4", r"(\d{1,2})", "minute"),
    ("5", r"(\d{1,2})", "second"),
    ("PM", r"(AM|PM)", "ampm"),
    ("pm", r"(am|pm)", "ampm"),
    ("-07:00", r"([+-]\d{2}:\d{2})", "offset"),
    ("-0700", r"([+-]\d{4})", "offset"),
    ("-07", r"([+-]\d{2})", "offset"),
    ("Z07:00", r"(Z|[+-]\d{2}:\d{2})", "offset"),
    ("Z0700", r"(Z|[+-]\d{4})", "offset"),
    ("Z07", r"(Z|[+-]\d{2})", "offset"),
]

_FRAC_LAYOUT = re.compile(r"[.,](0+|9+)(?!\d)")


def _compile_layout(layout: str) -> tuple[re.Pattern, list[str]]:
    parts: list[str] = []
    fields: list[str] = []
    pos = 0
    while pos < len(layout):
        frac = _FRAC_LAYOUT.match(layout, pos)
        if frac is not None:
            run = frac.group(1)
            parts.append(rf"[.,](\d{{{len(run)}}})" if run[0] == "0" else _FRAC_ANY)
            fields.append("frac")
            pos = frac.end()
            continue
        for text, regex, name in _TOKENS:
            if layout.startswith(text, pos):
                parts.append(regex)
                fields.append(name)
                pos += len(text)
                if name == "second" and not _FRAC_LAYOUT.match(layout, pos):
                    parts.append(_FRAC_ANY)
                    fields.append("frac")
                break
        else:
            parts.append(re.escape(layout[pos]))
            pos += 1
    return re.compile("".join(parts)), fields


def _parse_offset(text: str) -> timezone:
    if text == "Z":
        return timezone.utc
    sign = -1 if text[0] == "-" else 1
    digits = text[1:].replace(":", "")
    hours = int(digits[:2])
    minutes = int(digits[2:4] or 0)
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def parse_go_time(layout: str, value: str) -> datetime:
    """Parse ``value`` using a reference-time layout such as ``"Jan _2 15:04:05"``.

    A layout without zone information yields a naive (wall clock) datetime;
    a layout without a year yields year MISSING_YEAR. Raises ValueError when
    the value does not fit the layout.
    """
    pattern, fields = _compile_layout(layout)
    found = pattern.fullmatch(value)
    if found is None:
        raise ValueError(f"cannot parse {value!r} as {layout!r}")

    year, month, day = MISSING_YEAR, 1, 1
    hour = minute = second = micro = 0
    pm: Optional[bool] = None
    hour_is_12 = False
    tz: Optional[timezone] = None
    zone_abbr: Optional[str] = None
    for name, raw in zip(fields, found.groups()):
        if raw is None or name == "ignore":
            continue
        if name == "month_name":
            month = _MONTHS.index(raw) + 1
        elif name == "month_abbr":
            month = [m[:3] for m in _MONTHS].index(raw) + 1
        elif name == "year4":
            year = int(raw)
        elif name == "year2":
            year = int(raw) + (1900 if int(raw) >= 69 else 2000)
        elif name == "month":
            month = int(raw)
        elif name == "day":
            day = int(raw.strip())
        elif name in ("hour24", "hour12"):
            hour = int(raw)
            hour_is_12 = name == "hour12"
        elif name == "minute":
            minute = int(raw)
        elif name == "second":
            second = int(raw)
        elif name == "frac":
            micro = int(raw[:6].ljust(6, "0"))
        elif name == "ampm":
            pm = raw.upper() == "PM"
        elif name == "offset":
            tz = _parse_offset(raw)
        elif name == "zone_abbr":
            zone_abbr = raw

    if hour_is_12:
        if hour < 1 or hour > 12:
            raise ValueError(f"hour out of range in {value!r}")
        if pm and hour < 12:
            hour += 12
        elif pm is False and hour == 12:
            hour = 0
    result = datetime(year, month, day, hour, minute, second, micro)
    if tz is not None:
        return result.replace(tzinfo=tz)
    if zone_abbr is not None:
        if zone_abbr in ("UTC", "GMT"):
            return result.replace(tzinfo=timezone.utc)
        if zone_abbr in time.tzname:
            return result.astimezone()
        return result.replace(tzinfo=timezone(timedelta(0), zone_abbr))
    return result


def formalize_timestamp(timestamp: datetime) -> datetime:
    """Give timestamps parsed without a year the current year."""
    if timestamp.year != MISSING_YEAR:
        return timestamp
    year = datetime.now().year
    try:
        return timestamp.replace(year=year)
    except ValueError:
        return timestamp.replace(year=year, month=3, day=1)


def validate_plugin_config(cfg: Mapping[str, str]) -> None:
    """Raise ValueError if a required translator setting is missing."""
    if not cfg.get(TIMESTAMP_KEY):
        raise ValueError("unexpected empty timestamp regular expression")
    if not cfg.get(MESSAGE_KEY):
        raise ValueError("unexpected empty message regular expression")
    if not cfg.get(TIMESTAMP_FORMAT_KEY):
        raise ValueError("unexpected empty timestamp format string")


class TranslationError(ValueError):
    """Raised when a log line cannot be translated."""


def _last_submatch(found: re.Match) -> str:
    groups = found.groups()
    if not groups:
        return found.group(0)
    return groups[-1] or ""


class Translator:
    """Extracts timestamp and message from a line; the last submatch of each pattern is used."""

    def __init__(self, plugin_config: Mapping[str, str]) -> None:
        try:
            validate_plugin_config(plugin_config)
        except ValueError as exc:
            logger.error("Failed to validate plugin configuration %r: %s", dict(plugin_config), exc)
        self.timestamp_regexp = re.compile(plugin_config.get(TIMESTAMP_KEY, ""))
        self.message_regexp = re.compile(plugin_config.get(MESSAGE_KEY, ""))
        self.timestamp_format = plugin_config.get(TIMESTAMP_FORMAT_KEY, "")

    def translate(self, line: str) -> Log:
        """Translate a log line, raising TranslationError when it does not fit."""
        found = self.timestamp_regexp.search(line)
        if found is None:
            raise TranslationError(
                f"no timestamp found in line {line!r} with regular expression "
                f"{self.timestamp_regexp.pattern}"
            )
        raw_timestamp = _last_submatch(found)
        try:
            timestamp = parse_go_time(self.timestamp_format, raw_timestamp)
        except ValueError as exc:
            raise TranslationError(f"failed to parse timestamp {raw_timestamp!r}: {exc}") from exc
        timestamp = formalize_timestamp(timestamp)
        if timestamp.tzinfo is None:
            timestamp = timestamp.astimezone()
        found = self.message_regexp.search(line)
        if found is None:
            raise TranslationError(
                f"no message found in line {line!r} with regular expression "
                f"{self.message_regexp.pattern}"
            )
        return Log(timestamp=timestamp, message=_last_submatch(found))