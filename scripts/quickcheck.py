from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
import traceback

from seat_booking import (
    BookingEngine,
    CapacityShrinkDataLossWarning,
    ConflictError,
    ReservationRequest,
    VenueYamlRepository,
)


def main() -> int:
    print("[INFO] Seat Booking Quick Check")

    data_dir = Path(os.environ.get("SEAT_BOOKING_DATA_DIR", "data"))
    repo = VenueYamlRepository(data_dir)
    now = datetime(2025, 6, 1, 9, 0)
    engine = BookingEngine(repo, clock=lambda: now)

    venue_id = f"quickcheck-{datetime.now():%Y%m%d%H%M%S%f}"
    engine.create_venue(venue_id, capacity=5, default_hourly_price=20, name="Quick Check Hall")
    engine.update_seat(venue_id, 1, label="Window", hourly_price=35)
    print(f"[OK] Venue created: {venue_id}")

    reservation = ReservationRequest(seat_ids=(1, 2), date="2025-06-01", start_time="1:00 PM", duration_hours=3)
    quote = engine.price(venue_id, reservation)
    print(f"[OK] Quote total for seats 1-2, 3h: {quote.total}")

    created = engine.book_seats(venue_id, reservation, "customer", "quickcheck@example.com")
    print(f"[OK] Booked {len(created)} seat(s)")

    try:
        engine.create_booking(venue_id, 1, "2025-06-01", "14:00", 1, "owner")
    except ConflictError as error:
        print(f"[OK] Conflict detected: {error.window_label}")

    engine.create_booking(venue_id, 4, "2025-06-02", "10:00", 2, "owner")
    try:
        engine.resize_capacity(venue_id, 3)
    except CapacityShrinkDataLossWarning as error:
        print(f"[OK] Shrink needs confirmation for {len(error.plan.affected_bookings)} booking(s)")

    upcoming = engine.list_upcoming(venue_id, now.date(), 9 * 60)
    print(f"[OK] Upcoming bookings: {len(upcoming)}")
    print(f"[OK] Venues YAML: {repo.venues_file.resolve()}")
    print(f"[OK] Event Log YAML: {repo.log_file.resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
