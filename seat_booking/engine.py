"""Booking engine: the one entry point the checkout and owner console paths use.

Locking discipline:

- ``venue.lock`` is the commit lock. Every mutation holds it from the change
  in memory through the save (and the rollback when the save fails), so a save
  never writes another change that is still uncommitted. Price readers
  (quotes, history) hold it too and never see a half-applied bulk price.
- ``seat.lock`` is taken after ``venue.lock`` for booking changes on that
  seat. Multi-seat reservations take the seat locks in ascending seat id
  order. A shrink takes each dropped seat's lock and retires the seat, so a
  booking call that looked the seat up earlier fails with ``NotFoundError``
  instead of writing into a detached seat.
- The repository lock is always acquired last.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable

from .booking import (
    CREATED_BY_CUSTOMER,
    CREATED_BY_VALUES,
    Booking,
    coerce_date,
    derive_interval,
    find_conflict,
    is_upcoming,
    validate_slot,
)
from .errors import (
    CapacityShrinkDataLossWarning,
    ConflictError,
    NotFoundError,
    SeatsUnavailableError,
    ValidationError,
)
from .pricing import PriceQuote, ReservationRequest, describe_request
from .pricing import price as price_request
from .timeofday import format_time, minute_of, parse_time
from .venues import (
    UNSET,
    ResizePlan,
    Seat,
    Venue,
    apply_default_price_to_all_seats,
    effective_price,
    plan_resize,
    require_capacity,
    resize_capacity,
    to_price,
    update_seat,
)
from .yaml_store import (
    EVENT_BOOKING_CANCELLED,
    EVENT_BOOKING_CREATED,
    EVENT_CAPACITY_RESIZED,
    EVENT_DEFAULT_PRICE_CHANGED,
    EVENT_SEAT_PRICES_RESET,
    EVENT_SEAT_UPDATED,
    EVENT_SEATS_BOOKED,
    EVENT_VENUE_CREATED,
    VenueYamlRepository,
)


@dataclass(frozen=True)
class BookingLine:
    """A booking flattened with its venue, seat and current pricing for history views."""

    venue_id: str
    venue_name: str
    seat_label: str
    booking: Booking
    hourly_price: Decimal

    @property
    def total_price(self) -> Decimal:
        return self.hourly_price * self.booking.duration_hours

    def to_dict(self) -> dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "venue_name": self.venue_name,
            "seat_id": self.booking.seat_id,
            "seat_label": self.seat_label,
            **self.booking.to_dict(),
            "hourly_price": str(self.hourly_price),
            "total_price": str(self.total_price),
        }


class BookingEngine:
    def __init__(
        self,
        repository: VenueYamlRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self._clock: Callable[[], datetime] = clock or datetime.now
        self._venues: dict[str, Venue] = {}
        self._registry_lock = threading.Lock()
        if repository is not None:
            for venue in repository.load_venues():
                self._venues[venue.venue_id] = venue

    def create_venue(self, venue_id: str, capacity: int, default_hourly_price: Any = 0, name: str = "") -> Venue:
        venue = Venue.create(_normalize_venue_id(venue_id), capacity, default_hourly_price, name=name.strip())
        with self._registry_lock:
            if venue.venue_id in self._venues:
                raise ValidationError(f"Venue {venue.venue_id} already exists")
            self._venues[venue.venue_id] = venue

        try:
            self._persist(
                venue,
                EVENT_VENUE_CREATED,
                {"capacity": venue.capacity, "default_hourly_price": str(venue.default_hourly_price)},
            )
        except Exception:
            with self._registry_lock:
                self._venues.pop(venue.venue_id, None)
            raise
        return venue

    def get_venue(self, venue_id: str) -> Venue:
        venue = self._venues.get(str(venue_id).strip())
        if venue is None:
            raise NotFoundError(f"Venue {venue_id} not found")
        return venue

    def now(self) -> datetime:
        return self._clock()

    def list_venues(self) -> list[Venue]:
        return sorted(self._venues.values(), key=lambda venue: venue.venue_id)

    def create_booking(
        self,
        venue_id: str,
        seat_id: int,
        booking_date: date | str,
        start_time: int | str,
        duration_hours: int,
        created_by: str,
        identity: str | None = None,
    ) -> Booking:
        booking_date, start_time, duration_hours = validate_slot(booking_date, start_time, duration_hours)
        created_by, identity = _validate_creator(created_by, identity)
        candidate = derive_interval(start_time, duration_hours)

        venue = self.get_venue(venue_id)
        seat = venue.get_seat(seat_id)
        now = self._clock()

        with venue.lock, seat.lock:
            _require_active(venue, seat)
            conflict = find_conflict(seat.bookings, booking_date, candidate)
            if conflict is not None:
                raise ConflictError(seat.seat_id, conflict)

            booking = Booking(
                seat_id=seat.seat_id,
                date=booking_date,
                start_time=start_time,
                duration_hours=duration_hours,
                created_by=created_by,
                created_by_identity=identity,
                created_at=now,
            )
            seat.append_booking(booking)
            try:
                self._persist(venue, EVENT_BOOKING_CREATED, _booking_payload(booking), now)
            except Exception:
                seat.remove_booking(booking.booking_id)
                raise
        return booking

    def cancel_booking(self, venue_id: str, seat_id: int, booking_id: str) -> Booking:
        venue = self.get_venue(venue_id)
        seat = venue.get_seat(seat_id)
        now = self._clock()

        with venue.lock, seat.lock:
            _require_active(venue, seat)
            removed = seat.remove_booking(str(booking_id))
            if removed is None:
                raise NotFoundError(f"Booking {booking_id} not found on seat {seat.seat_id}")
            try:
                self._persist(venue, EVENT_BOOKING_CANCELLED, _booking_payload(removed), now)
            except Exception:
                seat.append_booking(removed)
                raise
        return removed

    def find_booking(self, venue_id: str, seat_id: int, booking_id: str) -> Booking:
        seat = self.get_venue(venue_id).get_seat(seat_id)
        booking = seat.get_booking(str(booking_id))
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found on seat {seat.seat_id}")
        return booking

    def list_upcoming(self, venue_id: str, as_of_date: date | str, as_of_minute: int) -> list[Booking]:
        as_of_date = coerce_date(as_of_date)
        as_of_minute = parse_time(as_of_minute)
        venue = self.get_venue(venue_id)
        upcoming = [booking for booking in venue.iter_bookings() if is_upcoming(booking, as_of_date, as_of_minute)]
        upcoming.sort(key=lambda booking: (booking.date, booking.start_time, booking.seat_id))
        return upcoming

    def price(self, venue_id: str, request: ReservationRequest) -> PriceQuote:
        venue = self.get_venue(venue_id)
        with venue.lock:
            return price_request(venue, request)

    def seat_availability(
        self,
        venue_id: str,
        booking_date: date | str,
        start_time: int | str,
        duration_hours: int,
    ) -> dict[int, bool]:
        booking_date, start_time, duration_hours = validate_slot(booking_date, start_time, duration_hours)
        candidate = derive_interval(start_time, duration_hours)
        return {
            seat.seat_id: find_conflict(seat.bookings, booking_date, candidate) is None
            for seat in self.get_venue(venue_id).seats
        }

    def book_seats(
        self,
        venue_id: str,
        request: ReservationRequest,
        created_by: str = CREATED_BY_CUSTOMER,
        identity: str | None = None,
    ) -> list[Booking]:
        """Book every requested seat or none of them."""
        created_by, identity = _validate_creator(created_by, identity)
        candidate = derive_interval(request.start_time, request.duration_hours)
        venue = self.get_venue(venue_id)
        now = self._clock()

        unavailable: list[dict[str, Any]] = []
        seats: dict[int, Seat] = {}
        for seat_id in request.seat_ids:
            try:
                seats[seat_id] = venue.get_seat(seat_id)
            except NotFoundError:
                unavailable.append({"seat_id": seat_id, "reason": "Seat not found"})

        with venue.lock, ExitStack() as stack:
            for seat_id in sorted(seats):
                stack.enter_context(seats[seat_id].lock)

            for seat_id in request.seat_ids:
                seat = seats.get(seat_id)
                if seat is None:
                    continue
                if seat.retired:
                    unavailable.append({"seat_id": seat_id, "reason": "Seat not found"})
                    continue
                conflict = find_conflict(seat.bookings, request.date, candidate)
                if conflict is not None:
                    unavailable.append(
                        {
                            "seat_id": seat_id,
                            "reason": "Seat already booked for selected time",
                            **ConflictError(seat_id, conflict).to_dict(),
                        }
                    )

            if unavailable:
                unavailable.sort(key=lambda item: request.seat_ids.index(item["seat_id"]))
                raise SeatsUnavailableError(unavailable)

            created: list[Booking] = []
            for seat_id in request.seat_ids:
                booking = Booking(
                    seat_id=seat_id,
                    date=request.date,
                    start_time=request.start_time,
                    duration_hours=request.duration_hours,
                    created_by=created_by,
                    created_by_identity=identity,
                    created_at=now,
                )
                seats[seat_id].append_booking(booking)
                created.append(booking)

            try:
                self._persist(
                    venue,
                    EVENT_SEATS_BOOKED,
                    {
                        **describe_request(request),
                        "booking_ids": [booking.booking_id for booking in created],
                        "created_by": created_by,
                        "created_by_identity": identity,
                    },
                    now,
                )
            except Exception:
                for booking in created:
                    seats[booking.seat_id].remove_booking(booking.booking_id)
                raise
        return created

    def plan_resize(self, venue_id: str, new_capacity: int, as_of: datetime | None = None) -> ResizePlan:
        venue = self.get_venue(venue_id)
        moment = as_of or self._clock()
        return plan_resize(venue, new_capacity, moment.date(), minute_of(moment))

    def resize_capacity(
        self,
        venue_id: str,
        new_capacity: int,
        *,
        confirm: bool = False,
        as_of: datetime | None = None,
    ) -> ResizePlan:
        """Grow or shrink a venue's seat array.

        A shrink that would discard bookings that are still upcoming raises
        ``CapacityShrinkDataLossWarning`` unless ``confirm`` is set; bookings that
        have already ended go with their seats silently.
        """
        venue = self.get_venue(venue_id)
        moment = as_of or self._clock()

        require_capacity(new_capacity)

        with venue.lock, ExitStack() as stack:
            for seat in venue.seats[new_capacity:]:
                stack.enter_context(seat.lock)

            plan = plan_resize(venue, new_capacity, moment.date(), minute_of(moment))
            if plan.requires_confirmation and not confirm:
                raise CapacityShrinkDataLossWarning(plan)

            previous = venue.seats
            dropped = resize_capacity(venue, new_capacity)
            try:
                self._persist(
                    venue,
                    EVENT_CAPACITY_RESIZED,
                    {
                        "old_capacity": plan.old_capacity,
                        "new_capacity": plan.new_capacity,
                        "dropped_seat_ids": list(plan.dropped_seat_ids),
                        "cancelled_booking_ids": [booking.booking_id for booking in plan.affected_bookings],
                    },
                    moment,
                )
            except Exception:
                venue.seats = previous
                for seat in dropped:
                    seat.retired = False
                raise
        return plan

    def apply_default_price_to_all_seats(self, venue_id: str) -> Venue:
        venue = self.get_venue(venue_id)
        with venue.lock:
            previous = [(seat, seat.hourly_price) for seat in venue.seats]
            apply_default_price_to_all_seats(venue)
            try:
                self._persist(
                    venue,
                    EVENT_SEAT_PRICES_RESET,
                    {"hourly_price": str(venue.default_hourly_price), "seat_count": venue.capacity},
                )
            except Exception:
                for seat, hourly_price in previous:
                    seat.hourly_price = hourly_price
                raise
        return venue

    def set_default_price(self, venue_id: str, default_hourly_price: Any) -> Venue:
        venue = self.get_venue(venue_id)
        new_price = to_price(default_hourly_price)
        with venue.lock:
            previous = venue.default_hourly_price
            venue.default_hourly_price = new_price
            try:
                self._persist(venue, EVENT_DEFAULT_PRICE_CHANGED, {"default_hourly_price": str(new_price)})
            except Exception:
                venue.default_hourly_price = previous
                raise
        return venue

    def update_seat(self, venue_id: str, seat_id: int, *, label: Any = UNSET, hourly_price: Any = UNSET) -> Seat:
        venue = self.get_venue(venue_id)
        with venue.lock:
            seat = venue.get_seat(seat_id)
            previous = (seat.label, seat.hourly_price)
            update_seat(venue, seat_id, label=label, hourly_price=hourly_price)
            try:
                self._persist(
                    venue,
                    EVENT_SEAT_UPDATED,
                    {
                        "seat_id": seat.seat_id,
                        "label": seat.label,
                        "hourly_price": str(seat.hourly_price) if seat.hourly_price is not None else None,
                    },
                )
            except Exception:
                seat.label, seat.hourly_price = previous
                raise
        return seat

    def bookings_for_identity(self, identity: str) -> list[BookingLine]:
        normalized = str(identity or "").strip()
        if not normalized:
            raise ValidationError("identity must not be empty")
        return [
            line
            for line in self.all_bookings()
            if line.booking.created_by == CREATED_BY_CUSTOMER and line.booking.created_by_identity == normalized
        ]

    def all_bookings(self) -> list[BookingLine]:
        lines: list[BookingLine] = []
        for venue in self.list_venues():
            with venue.lock:
                lines.extend(
                    BookingLine(
                        venue_id=venue.venue_id,
                        venue_name=venue.name,
                        seat_label=seat.label,
                        booking=booking,
                        hourly_price=effective_price(seat, venue),
                    )
                    for seat in venue.seats
                    for booking in seat.bookings
                )
        lines.sort(key=lambda line: (line.booking.date, line.booking.start_time, line.venue_id, line.booking.seat_id))
        return lines

    def _persist(
        self,
        venue: Venue,
        event_type: str,
        payload: dict[str, Any],
        event_time: datetime | None = None,
    ) -> None:
        if self.repository is not None:
            self.repository.save_venue(venue, event_type, payload, event_time or self._clock())


def _validate_creator(created_by: str, identity: str | None) -> tuple[str, str | None]:
    normalized = str(created_by or "").strip().lower()
    if normalized not in CREATED_BY_VALUES:
        raise ValidationError(f"created_by must be one of {', '.join(CREATED_BY_VALUES)}")

    normalized_identity = str(identity).strip() if identity is not None else ""
    if normalized == CREATED_BY_CUSTOMER and not normalized_identity:
        raise ValidationError("Customer bookings require the customer's name or contact")
    return normalized, normalized_identity or None


def _require_active(venue: Venue, seat: Seat) -> None:
    if seat.retired:
        raise NotFoundError(f"Seat {seat.seat_id} no longer exists in venue {venue.venue_id}")


def _normalize_venue_id(venue_id: str | None) -> str:
    if venue_id is None:
        raise ValidationError("venue_id must not be None")

    normalized = str(venue_id).strip()
    if not normalized:
        raise ValidationError("venue_id must not be empty")
    return normalized


def _booking_payload(booking: Booking) -> dict[str, Any]:
    return {
        "seat_id": booking.seat_id,
        "booking_id": booking.booking_id,
        "date": booking.date.isoformat(),
        "start_time": format_time(booking.start_time),
        "end_time": format_time(booking.end_time),
        "duration_hours": booking.duration_hours,
        "created_by": booking.created_by,
        "created_by_identity": booking.created_by_identity,
    }
