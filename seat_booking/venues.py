"""Venues own a fixed-size array of numbered seats; seats own their bookings.

Collections are replaced, never mutated in place (``venue.seats`` and
``seat.bookings`` are tuples), so readers always see a whole snapshot. The
functions here mutate without locking; callers hold ``venue.lock`` for
structural changes and ``seat.lock`` for booking changes.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from .booking import Booking, is_upcoming
from .errors import NotFoundError, ValidationError

UNSET: Any = object()


@dataclass(eq=False)
class Seat:
    seat_id: int
    label: str = ""
    hourly_price: Decimal | None = None
    bookings: tuple[Booking, ...] = ()
    retired: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def append_booking(self, booking: Booking) -> None:
        self.bookings = self.bookings + (booking,)

    def remove_booking(self, booking_id: str) -> Booking | None:
        for index, booking in enumerate(self.bookings):
            if booking.booking_id == booking_id:
                self.bookings = self.bookings[:index] + self.bookings[index + 1 :]
                return booking
        return None

    def get_booking(self, booking_id: str) -> Booking | None:
        return next((booking for booking in self.bookings if booking.booking_id == booking_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.seat_id,
            "label": self.label,
            "hourly_price": str(self.hourly_price) if self.hourly_price is not None else None,
            "bookings": [booking.to_dict() for booking in self.bookings],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Seat":
        seat_id = int(data["id"])
        raw_price = data.get("hourly_price")
        return Seat(
            seat_id=seat_id,
            label=str(data.get("label") or ""),
            hourly_price=to_price(raw_price) if raw_price is not None else None,
            bookings=tuple(Booking.from_dict(seat_id, row) for row in data.get("bookings") or []),
        )


@dataclass(eq=False)
class Venue:
    venue_id: str
    default_hourly_price: Decimal = Decimal("0")
    name: str = ""
    seats: tuple[Seat, ...] = ()
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @classmethod
    def create(cls, venue_id: str, capacity: int, default_hourly_price: Any = 0, name: str = "") -> "Venue":
        require_capacity(capacity)
        return cls(
            venue_id=venue_id,
            default_hourly_price=to_price(default_hourly_price),
            name=name,
            seats=tuple(Seat(seat_id=index) for index in range(1, capacity + 1)),
        )

    @property
    def capacity(self) -> int:
        return len(self.seats)

    def get_seat(self, seat_id: int) -> Seat:
        # Seat ids are 1-based array positions.
        seats = self.seats
        if isinstance(seat_id, int) and not isinstance(seat_id, bool) and 1 <= seat_id <= len(seats):
            return seats[seat_id - 1]
        raise NotFoundError(f"Seat {seat_id} not found in venue {self.venue_id}")

    def iter_bookings(self) -> list[Booking]:
        return [booking for seat in self.seats for booking in seat.bookings]

    def to_dict(self) -> dict[str, Any]:
        seats = self.seats
        return {
            "venue_id": self.venue_id,
            "name": self.name,
            "capacity": len(seats),
            "default_hourly_price": str(self.default_hourly_price),
            "seats": [seat.to_dict() for seat in seats],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Venue":
        venue = Venue(
            venue_id=str(data["venue_id"]),
            default_hourly_price=to_price(data.get("default_hourly_price") or 0),
            name=str(data.get("name") or ""),
        )
        capacity = int(data.get("capacity") or 0)
        stored = {seat.seat_id: seat for seat in (Seat.from_dict(row) for row in data.get("seats") or [])}
        # The seat array always matches capacity, filling gaps by position.
        venue.seats = tuple(stored.get(index) or Seat(seat_id=index) for index in range(1, capacity + 1))
        return venue


@dataclass(frozen=True)
class ResizePlan:
    venue_id: str
    old_capacity: int
    new_capacity: int
    dropped_seat_ids: tuple[int, ...]
    affected_bookings: tuple[Booking, ...]

    @property
    def requires_confirmation(self) -> bool:
        return bool(self.affected_bookings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "old_capacity": self.old_capacity,
            "new_capacity": self.new_capacity,
            "dropped_seat_ids": list(self.dropped_seat_ids),
            "affected_bookings": [
                {"seat_id": booking.seat_id, **booking.to_dict()} for booking in self.affected_bookings
            ],
        }


def to_price(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError("price must be a number")
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as error:
        raise ValidationError(f"price must be a number, got {value!r}") from error
    if not price.is_finite() or price < 0:
        raise ValidationError("price must be a non-negative number")
    return price


def effective_price(seat: Seat, venue: Venue) -> Decimal:
    if seat.hourly_price is not None:
        return seat.hourly_price
    return venue.default_hourly_price if venue.default_hourly_price is not None else Decimal("0")


def plan_resize(venue: Venue, new_capacity: int, as_of_date: date, as_of_minute: int) -> ResizePlan:
    """Dry run of ``resize_capacity``: which seats go and which upcoming bookings go with them."""
    require_capacity(new_capacity)
    dropped = venue.seats[new_capacity:]
    affected = tuple(
        sorted(
            (booking for seat in dropped for booking in seat.bookings if is_upcoming(booking, as_of_date, as_of_minute)),
            key=lambda booking: (booking.date, booking.start_time, booking.seat_id),
        )
    )
    return ResizePlan(
        venue_id=venue.venue_id,
        old_capacity=venue.capacity,
        new_capacity=new_capacity,
        dropped_seat_ids=tuple(seat.seat_id for seat in dropped),
        affected_bookings=affected,
    )


def resize_capacity(venue: Venue, new_capacity: int) -> tuple[Seat, ...]:
    """Grow or shrink the seat array, returning the seats that were dropped.

    New seats defer to the venue default price. Dropped seats take their bookings
    with them and are marked retired.
    """
    require_capacity(new_capacity)
    current = venue.seats
    if new_capacity >= len(current):
        venue.seats = current + tuple(Seat(seat_id=index) for index in range(len(current) + 1, new_capacity + 1))
        return ()

    dropped = current[new_capacity:]
    for seat in dropped:
        seat.retired = True
    venue.seats = current[:new_capacity]
    return dropped


def apply_default_price_to_all_seats(venue: Venue) -> None:
    for seat in venue.seats:
        seat.hourly_price = venue.default_hourly_price


def update_seat(venue: Venue, seat_id: int, *, label: Any = UNSET, hourly_price: Any = UNSET) -> Seat:
    """Edit a seat's label and/or price override; ``hourly_price=None`` clears the override."""
    seat = venue.get_seat(seat_id)
    if label is not UNSET:
        seat.label = str(label or "").strip()
    if hourly_price is not UNSET:
        seat.hourly_price = to_price(hourly_price) if hourly_price is not None else None
    return seat


def bookings_on(seat: Seat, booking_date: date) -> int:
    return sum(1 for booking in seat.bookings if booking.date == booking_date)


def require_capacity(capacity: int) -> None:
    if not isinstance(capacity, int) or isinstance(capacity, bool) or capacity < 0:
        raise ValidationError("capacity must be a non-negative integer")
