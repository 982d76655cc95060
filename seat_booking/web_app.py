from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .booking import CREATED_BY_CUSTOMER, CREATED_BY_OWNER, Booking, coerce_date
from .engine import BookingEngine
from .errors import (
    BookingError,
    BookingStorageError,
    CapacityShrinkDataLossWarning,
    ConflictError,
    NotFoundError,
    SeatsUnavailableError,
    ValidationError,
)
from .pricing import ReservationRequest
from .timeofday import clamp_to_not_before_now, format_12_hour, format_time, minute_of, parse_time
from .venues import UNSET, Venue, bookings_on, effective_price
from .yaml_store import VenueYamlRepository

_STATUS_BY_ERROR: list[tuple[type[BookingError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (SeatsUnavailableError, 409),
    (CapacityShrinkDataLossWarning, 409),
]


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
) -> Flask:
    app = Flask(__name__)
    clock: Callable[[], datetime] = now_provider or datetime.now
    engine = BookingEngine(VenueYamlRepository(data_dir), clock=clock)
    app.extensions["booking_engine"] = engine

    def _serialize_booking(booking: Booking) -> dict[str, Any]:
        return {
            "seat_id": booking.seat_id,
            **booking.to_dict(),
            "start_label": format_12_hour(booking.start_time),
            "end_label": format_12_hour(booking.end_time),
        }

    def _serialize_venue(venue: Venue, detail: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "venue_id": venue.venue_id,
            "name": venue.name,
            "capacity": venue.capacity,
            "default_hourly_price": str(venue.default_hourly_price),
        }
        if detail:
            today = clock().date()
            with venue.lock:
                payload["seats"] = [
                    {
                        "id": seat.seat_id,
                        "label": seat.label,
                        "hourly_price": str(seat.hourly_price) if seat.hourly_price is not None else None,
                        "effective_price": str(effective_price(seat, venue)),
                        "bookings_today": bookings_on(seat, today),
                        "bookings": [_serialize_booking(booking) for booking in seat.bookings],
                    }
                    for seat in venue.seats
                ]
        return payload

    @app.errorhandler(BookingError)
    def handle_booking_error(error: BookingError) -> Any:
        status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(error, kind)), 400)
        return jsonify({"ok": False, "message": error.message, "error": error.to_dict()}), status

    @app.errorhandler(BookingStorageError)
    def handle_storage_error(error: BookingStorageError) -> Any:
        return jsonify({"ok": False, "message": str(error)}), 500

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    # Customer checkout

    @app.get("/api/venues")
    def list_venues() -> Any:
        return jsonify({"ok": True, "venues": [_serialize_venue(venue, detail=False) for venue in engine.list_venues()]})

    @app.get("/api/venues/<venue_id>")
    def get_venue(venue_id: str) -> Any:
        return jsonify({"ok": True, "venue": _serialize_venue(engine.get_venue(venue_id))})

    @app.get("/api/venues/<venue_id>/availability")
    def get_availability(venue_id: str) -> Any:
        now = clock()
        booking_date = coerce_date(str(request.args.get("date", now.date().isoformat())))
        hours = _int_arg(request.args.get("hours", "1"), "hours")
        start_time = parse_time(str(request.args.get("start_time", "09:00")))
        start_time = clamp_to_not_before_now(booking_date, start_time, minute_of(now), now.date())

        availability = engine.seat_availability(venue_id, booking_date, start_time, hours)
        return jsonify(
            {
                "ok": True,
                "date": booking_date.isoformat(),
                "start_time": format_time(start_time),
                "start_label": format_12_hour(start_time),
                "hours": hours,
                "seats": [{"seat_id": seat_id, "available": available} for seat_id, available in availability.items()],
            }
        )

    @app.post("/api/venues/<venue_id>/quote")
    def quote(venue_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        reservation = ReservationRequest.from_payload(payload)
        return jsonify({"ok": True, "quote": engine.price(venue_id, reservation).to_dict()})

    @app.post("/api/venues/<venue_id>/book-seats")
    def book_seats(venue_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        reservation = ReservationRequest.from_payload(payload)
        identity = str(payload.get("identity", "")).strip()
        if not identity:
            return jsonify({"ok": False, "message": "identity is required to book seats"}), 400

        quote = engine.price(venue_id, reservation)
        created = engine.book_seats(venue_id, reservation, CREATED_BY_CUSTOMER, identity)
        return (
            jsonify(
                {
                    "ok": True,
                    "bookings": [_serialize_booking(booking) for booking in created],
                    "quote": quote.to_dict(),
                }
            ),
            201,
        )

    @app.get("/api/bookings/history")
    def booking_history() -> Any:
        identity = str(request.args.get("identity", "")).strip()
        if not identity:
            return jsonify({"ok": False, "message": "identity is required"}), 400
        lines = engine.bookings_for_identity(identity)
        return jsonify({"ok": True, "bookings": [line.to_dict() for line in lines]})

    @app.post("/api/bookings/cancel")
    def cancel_own_booking() -> Any:
        payload = request.get_json(silent=True) or {}
        venue_id = str(payload.get("venue_id", "")).strip()
        booking_id = str(payload.get("booking_id", "")).strip()
        identity = str(payload.get("identity", "")).strip()
        if not venue_id or not booking_id or not identity:
            return jsonify({"ok": False, "message": "venue_id, seat_id, booking_id and identity are required"}), 400
        seat_id = _int_arg(payload.get("seat_id"), "seat_id")

        existing = engine.find_booking(venue_id, seat_id, booking_id)
        if existing.created_by != CREATED_BY_CUSTOMER or existing.created_by_identity != identity:
            return jsonify({"ok": False, "message": "You can only cancel your own bookings"}), 403

        cancelled = engine.cancel_booking(venue_id, seat_id, booking_id)
        return jsonify({"ok": True, "booking": _serialize_booking(cancelled)})

    # Owner console

    @app.post("/host/venues")
    def create_venue() -> Any:
        payload = request.get_json(silent=True) or {}
        venue = engine.create_venue(
            str(payload.get("venue_id", "")),
            _int_arg(payload.get("capacity", 0), "capacity"),
            payload.get("default_hourly_price", 0),
            name=str(payload.get("name", "")),
        )
        return jsonify({"ok": True, "venue": _serialize_venue(venue)}), 201

    @app.post("/host/venues/<venue_id>/seats/<int:seat_id>/bookings")
    def add_owner_booking(venue_id: str, seat_id: int) -> Any:
        payload = request.get_json(silent=True) or {}
        booking = engine.create_booking(
            venue_id,
            seat_id,
            str(payload.get("date", "")),
            payload.get("start_time", ""),
            _int_arg(payload.get("hours"), "hours"),
            CREATED_BY_OWNER,
            identity=payload.get("identity"),
        )
        return jsonify({"ok": True, "booking": _serialize_booking(booking)}), 201

    @app.delete("/host/venues/<venue_id>/seats/<int:seat_id>/bookings/<booking_id>")
    def remove_booking(venue_id: str, seat_id: int, booking_id: str) -> Any:
        cancelled = engine.cancel_booking(venue_id, seat_id, booking_id)
        return jsonify({"ok": True, "booking": _serialize_booking(cancelled)})

    @app.get("/host/venues/<venue_id>/upcoming")
    def upcoming(venue_id: str) -> Any:
        now = clock()
        bookings = engine.list_upcoming(venue_id, now.date(), minute_of(now))
        return jsonify({"ok": True, "bookings": [_serialize_booking(booking) for booking in bookings]})

    @app.post("/host/venues/<venue_id>/capacity")
    def change_capacity(venue_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        new_capacity = _int_arg(payload.get("capacity"), "capacity")
        plan = engine.resize_capacity(venue_id, new_capacity, confirm=bool(payload.get("confirm", False)))
        return jsonify({"ok": True, "plan": plan.to_dict(), "venue": _serialize_venue(engine.get_venue(venue_id))})

    @app.post("/host/venues/<venue_id>/apply-default-price")
    def apply_default_price(venue_id: str) -> Any:
        venue = engine.apply_default_price_to_all_seats(venue_id)
        return jsonify({"ok": True, "venue": _serialize_venue(venue)})

    @app.post("/host/venues/<venue_id>/default-price")
    def change_default_price(venue_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        if "default_hourly_price" not in payload:
            return jsonify({"ok": False, "message": "default_hourly_price is required"}), 400
        venue = engine.set_default_price(venue_id, payload["default_hourly_price"])
        return jsonify({"ok": True, "venue": _serialize_venue(venue)})

    @app.post("/host/venues/<venue_id>/seats/<int:seat_id>")
    def edit_seat(venue_id: str, seat_id: int) -> Any:
        payload = request.get_json(silent=True) or {}
        seat = engine.update_seat(
            venue_id,
            seat_id,
            label=payload.get("label", UNSET),
            hourly_price=payload.get("hourly_price", UNSET),
        )
        venue = engine.get_venue(venue_id)
        return jsonify(
            {
                "ok": True,
                "seat": {
                    "id": seat.seat_id,
                    "label": seat.label,
                    "hourly_price": str(seat.hourly_price) if seat.hourly_price is not None else None,
                    "effective_price": str(effective_price(seat, venue)),
                },
            }
        )

    # Admin

    @app.get("/admin/bookings")
    def all_bookings() -> Any:
        return jsonify({"ok": True, "bookings": [line.to_dict() for line in engine.all_bookings()]})

    return app


def _int_arg(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a whole number")
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as error:
        raise ValidationError(f"{name} must be a whole number") from error


if __name__ == "__main__":
    app = create_app(os.environ.get("SEAT_BOOKING_DATA_DIR", "data"))
    app.run(host="127.0.0.1", port=5000, debug=False)
