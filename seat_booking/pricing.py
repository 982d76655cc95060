from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from .booking import validate_slot
from .errors import ValidationError
from .timeofday import format_time
from .venues import Venue, effective_price

MAX_SEATS_PER_REQUEST = 500


@dataclass(frozen=True)
class ReservationRequest:
    """Seats, date, start and duration of one checkout; normalized on construction.

    ``date`` may be given as an ISO string and ``start_time`` as ``"HH:MM"`` or
    ``"h:mm AM"``.
    """

    seat_ids: tuple[int, ...]
    date: date
    start_time: int
    duration_hours: int

    def __post_init__(self) -> None:
        seat_ids = tuple(self.seat_ids or ())
        if not seat_ids:
            raise ValidationError("seat_ids must not be empty")
        if len(seat_ids) > MAX_SEATS_PER_REQUEST:
            raise ValidationError(f"At most {MAX_SEATS_PER_REQUEST} seats can be reserved at once")
        if any(not isinstance(seat_id, int) or isinstance(seat_id, bool) for seat_id in seat_ids):
            raise ValidationError("seat_ids must be integers")
        if len(set(seat_ids)) != len(seat_ids):
            raise ValidationError("seat_ids must be unique")

        normalized_date, normalized_start, normalized_hours = validate_slot(
            self.date, self.start_time, self.duration_hours
        )
        object.__setattr__(self, "seat_ids", seat_ids)
        object.__setattr__(self, "date", normalized_date)
        object.__setattr__(self, "start_time", normalized_start)
        object.__setattr__(self, "duration_hours", normalized_hours)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ReservationRequest":
        raw_seat_ids = payload.get("seat_ids")
        if not isinstance(raw_seat_ids, list):
            raise ValidationError("seat_ids must be a list of seat numbers")
        seat_ids = tuple(_whole_number(value, "seat_ids") for value in raw_seat_ids)
        hours = _whole_number(payload.get("hours", payload.get("duration_hours", 0)), "hours")
        return cls(
            seat_ids=seat_ids,
            date=payload.get("date", ""),
            start_time=payload.get("start_time", ""),
            duration_hours=hours,
        )


@dataclass(frozen=True)
class SeatPriceLine:
    seat_id: int
    effective_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class PriceQuote:
    lines: tuple[SeatPriceLine, ...]
    total: Decimal
    duration_hours: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "per_seat": [
                {
                    "seat_id": line.seat_id,
                    "effective_price": str(line.effective_price),
                    "line_total": str(line.line_total),
                }
                for line in self.lines
            ],
            "total": str(self.total),
            "hours": self.duration_hours,
        }


def price(venue: Venue, request: ReservationRequest) -> PriceQuote:
    """Price every requested seat for the request's duration.

    Availability is not checked here; bookings re-validate each seat at commit time.
    """
    lines = []
    for seat_id in request.seat_ids:
        seat = venue.get_seat(seat_id)
        rate = effective_price(seat, venue)
        lines.append(SeatPriceLine(seat_id=seat_id, effective_price=rate, line_total=rate * request.duration_hours))
    return PriceQuote(
        lines=tuple(lines),
        total=sum((line.line_total for line in lines), Decimal("0")),
        duration_hours=request.duration_hours,
    )


def describe_request(request: ReservationRequest) -> dict[str, Any]:
    return {
        "seat_ids": list(request.seat_ids),
        "date": request.date.isoformat(),
        "start_time": format_time(request.start_time),
        "hours": request.duration_hours,
    }


def _whole_number(value: Any, name: str) -> int:
    # JSON numbers arrive as int or float; 2.0 is accepted, 2.5 is not.
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be whole numbers")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{name} must be whole numbers, got {value!r}")
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as error:
        raise ValidationError(f"{name} must be whole numbers, got {value!r}") from error
