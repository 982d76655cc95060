from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from seat_booking import BookingEngine, ReservationRequest, VenueYamlRepository
from seat_booking.timeofday import minute_of

mcp = FastMCP(
    "Seat Booking MCP Server",
    instructions="Quote, book and inspect venue seat bookings managed by the seat_booking engine.",
    json_response=True,
)

DATA_DIR = Path(os.environ.get("SEAT_BOOKING_DATA_DIR", Path(__file__).parent / "data"))
ENGINE = BookingEngine(VenueYamlRepository(DATA_DIR), clock=datetime.now)


@mcp.resource("seat-booking://venues")
async def list_venue_ids() -> list[str]:
    """List venue identifiers."""
    return [venue.venue_id for venue in ENGINE.list_venues()]


@mcp.tool()
def list_venues() -> list[dict[str, Any]]:
    """Return venues with capacity and default hourly price."""
    return [
        {
            "venue_id": venue.venue_id,
            "name": venue.name,
            "capacity": venue.capacity,
            "default_hourly_price": str(venue.default_hourly_price),
        }
        for venue in ENGINE.list_venues()
    ]


@mcp.tool()
def quote_seats(venue_id: str, seat_ids: list[int], date: str, start_time: str, hours: int) -> dict[str, Any]:
    """Price a multi-seat reservation without booking it."""
    reservation = ReservationRequest(seat_ids=tuple(seat_ids), date=date, start_time=start_time, duration_hours=hours)
    return ENGINE.price(venue_id, reservation).to_dict()


@mcp.tool()
def book_seats(
    venue_id: str,
    seat_ids: list[int],
    date: str,
    start_time: str,
    hours: int,
    identity: str,
) -> list[dict[str, Any]]:
    """Book all requested seats for a customer, or none of them if any is unavailable."""
    reservation = ReservationRequest(seat_ids=tuple(seat_ids), date=date, start_time=start_time, duration_hours=hours)
    created = ENGINE.book_seats(venue_id, reservation, "customer", identity)
    return [{"seat_id": booking.seat_id, **booking.to_dict()} for booking in created]


@mcp.tool()
def list_upcoming_bookings(venue_id: str) -> list[dict[str, Any]]:
    """Return bookings that have not finished yet, ordered by date and start time."""
    now = ENGINE.now()
    upcoming = ENGINE.list_upcoming(venue_id, now.date(), minute_of(now))
    return [{"seat_id": booking.seat_id, **booking.to_dict()} for booking in upcoming]


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
