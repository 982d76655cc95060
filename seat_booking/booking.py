from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable
from uuid import uuid4

from .errors import ValidationError
from .timeofday import MINUTES_PER_DAY, format_time, parse_time

CREATED_BY_CUSTOMER = "customer"
CREATED_BY_OWNER = "owner"
CREATED_BY_VALUES = (CREATED_BY_CUSTOMER, CREATED_BY_OWNER)


@dataclass(frozen=True)
class Interval:
    """Occupied window ``[start, end)`` in minutes since midnight of the booking date.

    ``end`` may exceed 1440 when the booking runs past midnight.
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError("Interval start must be earlier than end.")

    @property
    def crosses_midnight(self) -> bool:
        return self.end > MINUTES_PER_DAY


def derive_interval(start_time: int, duration_hours: int) -> Interval:
    return Interval(start_time, start_time + duration_hours * 60)


def overlaps(candidate: Interval, existing: Interval) -> bool:
    """Return True when two intervals on the same date share at least one minute.

    Intervals are half-open, so touching boundaries (13:00-15:00 and 15:00-16:00)
    do not overlap.
    """
    return candidate.start < existing.end and existing.start < candidate.end


@dataclass(frozen=True)
class Booking:
    seat_id: int
    date: date
    start_time: int
    duration_hours: int
    created_by: str
    created_by_identity: str | None = None
    booking_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=datetime.now, compare=False)

    @property
    def interval(self) -> Interval:
        return derive_interval(self.start_time, self.duration_hours)

    @property
    def end_time(self) -> int:
        """Display end on the wall clock, wrapped into the day."""
        return self.interval.end % MINUTES_PER_DAY

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "booking_id": self.booking_id,
            "date": self.date.isoformat(),
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "duration_hours": self.duration_hours,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(timespec="seconds"),
        }
        if self.created_by_identity is not None:
            payload["created_by_identity"] = self.created_by_identity
        return payload

    @staticmethod
    def from_dict(seat_id: int, data: dict[str, Any]) -> "Booking":
        # end_time is a denormalized display value and is never read back.
        return Booking(
            seat_id=seat_id,
            date=date.fromisoformat(str(data["date"])),
            start_time=parse_time(str(data["start_time"])),
            duration_hours=int(data["duration_hours"]),
            created_by=str(data.get("created_by", CREATED_BY_CUSTOMER)),
            created_by_identity=(
                str(data["created_by_identity"]) if data.get("created_by_identity") is not None else None
            ),
            booking_id=str(data["booking_id"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
        )


def find_conflict(bookings: Iterable[Booking], booking_date: date, candidate: Interval) -> Booking | None:
    """Return the first booking on ``booking_date`` whose interval overlaps ``candidate``."""
    for booking in bookings:
        if booking.date != booking_date:
            continue
        if overlaps(candidate, booking.interval):
            return booking
    return None


def can_book(bookings: Iterable[Booking], booking_date: date, candidate: Interval) -> bool:
    return find_conflict(bookings, booking_date, candidate) is None


def is_upcoming(booking: Booking, as_of_date: date, as_of_minute: int) -> bool:
    """Bookings before ``as_of_date`` or already finished today are no longer relevant.

    The unwrapped interval end is used, so a booking running past midnight stays
    upcoming for the rest of its start date.
    """
    if booking.date < as_of_date:
        return False
    if booking.date == as_of_date:
        return booking.interval.end >= as_of_minute
    return True


def coerce_date(value: date | str) -> date:
    if isinstance(value, datetime):
        raise ValidationError("date must be a calendar date without a time of day")
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as error:
        raise ValidationError(f"Malformed date {value!r}. Expected YYYY-MM-DD") from error


def validate_slot(booking_date: date | str, start_time: int | str, duration_hours: int) -> tuple[date, int, int]:
    """Normalize and validate a (date, start, duration) triple."""
    normalized_date = coerce_date(booking_date)
    normalized_start = parse_time(start_time)
    if not isinstance(duration_hours, int) or isinstance(duration_hours, bool):
        raise ValidationError("duration_hours must be a whole number of hours")
    if duration_hours <= 0:
        raise ValidationError("duration_hours must be greater than zero")
    return normalized_date, normalized_start, duration_hours
