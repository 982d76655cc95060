from __future__ import annotations

import re
from datetime import date, datetime
from typing import NamedTuple

from .errors import ValidationError

MINUTES_PER_DAY = 24 * 60
AM = "AM"
PM = "PM"

_TIME_24_RE = re.compile(r"^\s*(?P<hour>[01]?\d|2[0-3]):(?P<minute>[0-5]\d)\s*$")
_TIME_12_RE = re.compile(r"^\s*(?P<hour>0?[1-9]|1[0-2]):(?P<minute>[0-5]\d)\s*(?P<meridiem>[AaPp][Mm])\s*$")


class TwelveHourTime(NamedTuple):
    hour: int
    minute: int
    meridiem: str

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d} {self.meridiem}"


def to_12_hour(minute_of_day: int) -> TwelveHourTime:
    """Split a minute of day into a 12-hour clock reading.

    ``0`` is ``12:00 AM`` and ``720`` is ``12:00 PM``.
    """
    _require_minute_of_day(minute_of_day)
    hour_24, minute = divmod(minute_of_day, 60)
    meridiem = PM if hour_24 >= 12 else AM
    hour = hour_24 % 12 or 12
    return TwelveHourTime(hour=hour, minute=minute, meridiem=meridiem)


def to_24_hour(hour: int, minute: int, meridiem: str) -> int:
    """Inverse of ``to_12_hour``: ``12 AM`` is minute 0, ``12 PM`` is minute 720."""
    normalized = str(meridiem).strip().upper()
    if normalized not in (AM, PM):
        raise ValidationError(f"meridiem must be AM or PM, got {meridiem!r}")
    if not 1 <= hour <= 12:
        raise ValidationError("hour must be between 1 and 12")
    if not 0 <= minute <= 59:
        raise ValidationError("minute must be between 0 and 59")

    hour_24 = hour % 12
    if normalized == PM:
        hour_24 += 12
    return hour_24 * 60 + minute


def clamp_to_not_before_now(target_date: date, candidate_minute: int, now_minute: int, today: date) -> int:
    if target_date == today and candidate_minute < now_minute:
        return now_minute
    return candidate_minute


def parse_time(text: str | int) -> int:
    """Parse ``"14:30"``, ``"9:05"`` or ``"2:30 PM"`` into a minute of day."""
    if isinstance(text, bool):
        raise ValidationError("time must be a string or a minute of day")
    if isinstance(text, int):
        _require_minute_of_day(text)
        return text
    if not text or not str(text).strip():
        raise ValidationError("time must not be empty")

    match_12 = _TIME_12_RE.match(str(text))
    if match_12:
        return to_24_hour(int(match_12.group("hour")), int(match_12.group("minute")), match_12.group("meridiem"))

    match_24 = _TIME_24_RE.match(str(text))
    if match_24:
        return int(match_24.group("hour")) * 60 + int(match_24.group("minute"))

    raise ValidationError(f"Could not parse time {text!r}. Expected HH:MM or hh:mm AM/PM")


def format_time(minute_of_day: int) -> str:
    """Render ``"HH:MM"``; values past midnight wrap onto the next day's clock."""
    hour, minute = divmod(minute_of_day % MINUTES_PER_DAY, 60)
    return f"{hour:02d}:{minute:02d}"


def format_12_hour(minute_of_day: int) -> str:
    return str(to_12_hour(minute_of_day % MINUTES_PER_DAY))


def minute_of(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def _require_minute_of_day(value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError("minute of day must be an integer")
    if not 0 <= value < MINUTES_PER_DAY:
        raise ValidationError(f"minute of day must be between 0 and {MINUTES_PER_DAY - 1}")
