"""Error kinds raised by the booking engine.

Every error carries an ``ErrorCode`` and a user-safe message so the HTTP and
MCP layers can map them without inspecting message text.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .booking import Booking, Interval
    from .venues import ResizePlan


class ErrorCode(Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    BOOKING_CONFLICT = "BOOKING_CONFLICT"
    SEATS_UNAVAILABLE = "SEATS_UNAVAILABLE"
    NOT_FOUND = "NOT_FOUND"
    CAPACITY_SHRINK_DATA_LOSS = "CAPACITY_SHRINK_DATA_LOSS"
    STORAGE_FAILED = "STORAGE_FAILED"


class BookingError(Exception):
    """Base error with code and user-safe message."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message}


class ValidationError(BookingError, ValueError):
    """Malformed input: non-positive duration, out-of-range minute, bad date."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.VALIDATION_FAILED, message)


class ConflictError(BookingError):
    """The candidate interval overlaps an existing booking on the same seat and date."""

    def __init__(self, seat_id: int, conflicting: Booking) -> None:
        self.seat_id = seat_id
        self.conflicting = conflicting
        super().__init__(
            ErrorCode.BOOKING_CONFLICT,
            f"Seat {seat_id} is already booked {self.window_label} on {conflicting.date.isoformat()}",
        )

    @property
    def window(self) -> Interval:
        return self.conflicting.interval

    @property
    def window_label(self) -> str:
        from .timeofday import format_12_hour

        return f"{format_12_hour(self.window.start)} - {format_12_hour(self.window.end)}"

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "seat_id": self.seat_id,
                "date": self.conflicting.date.isoformat(),
                "window": {"start": self.window.start, "end": self.window.end},
                "window_label": self.window_label,
            }
        )
        return payload


class SeatsUnavailableError(BookingError):
    """One or more seats of a multi-seat reservation cannot be booked."""

    def __init__(self, details: list[dict[str, Any]]) -> None:
        self.details = details
        seat_ids = ", ".join(str(item["seat_id"]) for item in details)
        super().__init__(ErrorCode.SEATS_UNAVAILABLE, f"Some seats are unavailable: {seat_ids}")

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["details"] = self.details
        return payload


class NotFoundError(BookingError):
    """Lookup against a venue, seat or booking id that does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.NOT_FOUND, message)


class CapacityShrinkDataLossWarning(BookingError):
    """A capacity shrink would discard upcoming bookings and needs confirmation."""

    def __init__(self, plan: ResizePlan) -> None:
        self.plan = plan
        super().__init__(
            ErrorCode.CAPACITY_SHRINK_DATA_LOSS,
            f"Shrinking to {plan.new_capacity} seats would cancel "
            f"{len(plan.affected_bookings)} upcoming booking(s); confirm to proceed",
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["plan"] = self.plan.to_dict()
        return payload


class BookingStorageError(RuntimeError):
    pass
