import random
import tempfile
import threading
import unittest
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

from seat_booking import (
    BookingEngine,
    BookingStorageError,
    CapacityShrinkDataLossWarning,
    ConflictError,
    NotFoundError,
    ReservationRequest,
    SeatsUnavailableError,
    ValidationError,
    VenueYamlRepository,
    overlaps,
)

NOW = datetime(2025, 6, 1, 9, 0)


class FailingRepository(VenueYamlRepository):
    def __init__(self, base_dir: Path) -> None:
        super().__init__(base_dir)
        self.fail = False
        self.fail_for_seat: int | None = None
        self.before_save = None

    def save_venue(self, venue, event_type=None, payload=None, event_time=None) -> None:
        seat_id = (payload or {}).get("seat_id")
        if self.fail or (self.fail_for_seat is not None and seat_id == self.fail_for_seat):
            raise BookingStorageError("disk full")
        if self.before_save is not None:
            self.before_save(payload or {})
        super().save_venue(venue, event_type, payload, event_time)


def _engine() -> BookingEngine:
    engine = BookingEngine(clock=lambda: NOW)
    engine.create_venue("hall", 5, 20, name="Main Hall")
    return engine


class TestCreateAndCancel(unittest.TestCase):
    def test_overlapping_request_is_rejected(self) -> None:
        engine = _engine()
        engine.create_booking("hall", 3, "2025-06-01", "13:00", 2, "owner")

        with self.assertRaises(ConflictError) as caught:
            engine.create_booking("hall", 3, "2025-06-01", "14:00", 1, "owner")

        self.assertEqual(caught.exception.seat_id, 3)
        self.assertEqual((caught.exception.window.start, caught.exception.window.end), (780, 900))
        self.assertEqual(caught.exception.window_label, "01:00 PM - 03:00 PM")
        self.assertEqual(len(engine.get_venue("hall").get_seat(3).bookings), 1)

    def test_abutting_request_succeeds(self) -> None:
        engine = _engine()
        engine.create_booking("hall", 3, "2025-06-01", "13:00", 2, "owner")

        booking = engine.create_booking("hall", 3, "2025-06-01", "15:00", 1, "owner")

        self.assertEqual(booking.interval.start, 900)
        self.assertEqual(len(engine.get_venue("hall").get_seat(3).bookings), 2)

    def test_same_slot_on_other_seat_or_date_succeeds(self) -> None:
        engine = _engine()
        engine.create_booking("hall", 3, "2025-06-01", "13:00", 2, "owner")

        engine.create_booking("hall", 2, "2025-06-01", "13:00", 2, "owner")
        engine.create_booking("hall", 3, "2025-06-02", "13:00", 2, "owner")

    def test_customer_booking_requires_identity(self) -> None:
        engine = _engine()

        with self.assertRaises(ValidationError):
            engine.create_booking("hall", 1, "2025-06-01", "13:00", 1, "customer")
        with self.assertRaises(ValidationError):
            engine.create_booking("hall", 1, "2025-06-01", "13:00", 1, "customer", identity="   ")
        with self.assertRaises(ValidationError):
            engine.create_booking("hall", 1, "2025-06-01", "13:00", 1, "guest", identity="ana")

        booking = engine.create_booking("hall", 1, "2025-06-01", "13:00", 1, "Customer", identity=" ana ")
        self.assertEqual((booking.created_by, booking.created_by_identity), ("customer", "ana"))

    def test_unknown_venue_and_seat_are_not_found(self) -> None:
        engine = _engine()

        with self.assertRaises(NotFoundError):
            engine.create_booking("missing", 1, "2025-06-01", "13:00", 1, "owner")
        with self.assertRaises(NotFoundError):
            engine.create_booking("hall", 6, "2025-06-01", "13:00", 1, "owner")

    def test_duplicate_venue_is_rejected(self) -> None:
        engine = _engine()

        with self.assertRaises(ValidationError):
            engine.create_venue("hall", 2)

    def test_cancel_by_id_and_twice_is_not_found(self) -> None:
        engine = _engine()
        first = engine.create_booking("hall", 1, "2025-06-01", "10:00", 1, "owner")
        second = engine.create_booking("hall", 1, "2025-06-01", "12:00", 1, "owner")

        removed = engine.cancel_booking("hall", 1, first.booking_id)

        self.assertEqual(removed, first)
        self.assertEqual(engine.get_venue("hall").get_seat(1).bookings, (second,))
        with self.assertRaises(NotFoundError):
            engine.cancel_booking("hall", 1, first.booking_id)

    def test_cancelled_slot_can_be_booked_again(self) -> None:
        engine = _engine()
        booking = engine.create_booking("hall", 1, "2025-06-01", "10:00", 2, "owner")
        engine.cancel_booking("hall", 1, booking.booking_id)

        engine.create_booking("hall", 1, "2025-06-01", "11:00", 1, "owner")


class TestNoDoubleBooking(unittest.TestCase):
    def test_random_requests_never_leave_overlaps(self) -> None:
        engine = _engine()
        rng = random.Random(2025)
        days = [date(2025, 6, 1), date(2025, 6, 2)]
        for _ in range(400):
            try:
                engine.create_booking(
                    "hall",
                    rng.randint(1, 5),
                    rng.choice(days),
                    rng.randrange(0, 1440, 15),
                    rng.randint(1, 4),
                    "owner",
                )
            except ConflictError:
                pass

        for seat in engine.get_venue("hall").seats:
            bookings = seat.bookings
            for index, first in enumerate(bookings):
                for second in bookings[index + 1 :]:
                    if first.date == second.date:
                        self.assertFalse(overlaps(first.interval, second.interval))

    def test_concurrent_requests_for_one_slot_admit_exactly_one(self) -> None:
        engine = _engine()
        barrier = threading.Barrier(16)
        results: list[str] = []
        results_lock = threading.Lock()

        def attempt(index: int) -> None:
            barrier.wait()
            try:
                engine.create_booking("hall", 2, "2025-06-01", "13:00", 2, "customer", identity=f"user-{index}")
                outcome = "ok"
            except ConflictError:
                outcome = "conflict"
            with results_lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt, args=(index,)) for index in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results.count("ok"), 1)
        self.assertEqual(results.count("conflict"), 15)
        self.assertEqual(len(engine.get_venue("hall").get_seat(2).bookings), 1)

    def test_quotes_never_mix_old_and_new_bulk_prices(self) -> None:
        engine = BookingEngine(clock=lambda: NOW)
        engine.create_venue("arena", 20000, 5)
        engine.apply_default_price_to_all_seats("arena")
        engine.set_default_price("arena", 10)
        request = ReservationRequest(seat_ids=(1, 20000), date="2025-06-01", start_time="13:00", duration_hours=1)
        observed: list[set[Decimal]] = []
        done = threading.Event()

        def read_quotes() -> None:
            while True:
                quote = engine.price("arena", request)
                observed.append({line.effective_price for line in quote.lines})
                if done.is_set():
                    break

        reader = threading.Thread(target=read_quotes)
        reader.start()
        try:
            engine.apply_default_price_to_all_seats("arena")
        finally:
            done.set()
            reader.join()

        self.assertTrue(observed)
        self.assertTrue(all(len(prices) == 1 for prices in observed))
        self.assertEqual(observed[-1], {Decimal("10")})


class TestUpcoming(unittest.TestCase):
    def test_orders_by_date_start_and_seat_and_drops_finished(self) -> None:
        engine = _engine()
        engine.create_booking("hall", 2, "2025-06-02", "09:00", 1, "owner")
        engine.create_booking("hall", 1, "2025-06-01", "07:00", 1, "owner")
        engine.create_booking("hall", 3, "2025-06-01", "10:00", 1, "owner")
        engine.create_booking("hall", 1, "2025-06-01", "10:00", 1, "owner")
        engine.create_booking("hall", 4, "2025-05-31", "23:00", 1, "owner")

        upcoming = engine.list_upcoming("hall", date(2025, 6, 1), 9 * 60)

        self.assertEqual(
            [(booking.date.isoformat(), booking.start_time, booking.seat_id) for booking in upcoming],
            [("2025-06-01", 600, 1), ("2025-06-01", 600, 3), ("2025-06-02", 540, 2)],
        )

    def test_accepts_text_inputs(self) -> None:
        engine = _engine()
        engine.create_booking("hall", 1, "2025-06-01", "10:00", 1, "owner")

        self.assertEqual(len(engine.list_upcoming("hall", "2025-06-01", "9:00 AM")), 1)


class TestMultiSeat(unittest.TestCase):
    def test_books_all_requested_seats(self) -> None:
        engine = _engine()
        request = ReservationRequest(seat_ids=(2, 1), date="2025-06-01", start_time="1:00 PM", duration_hours=3)

        created = engine.book_seats("hall", request, "customer", "ana@example.com")

        self.assertEqual([booking.seat_id for booking in created], [2, 1])
        self.assertTrue(all(booking.created_by_identity == "ana@example.com" for booking in created))

    def test_one_unavailable_seat_books_nothing(self) -> None:
        engine = _engine()
        engine.create_booking("hall", 2, "2025-06-01", "14:00", 1, "owner")
        request = ReservationRequest(seat_ids=(1, 2, 9), date="2025-06-01", start_time="13:00", duration_hours=3)

        with self.assertRaises(SeatsUnavailableError) as caught:
            engine.book_seats("hall", request, "customer", "ana@example.com")

        self.assertEqual([item["seat_id"] for item in caught.exception.details], [2, 9])
        self.assertEqual(engine.get_venue("hall").get_seat(1).bookings, ())
        self.assertEqual(len(engine.get_venue("hall").get_seat(2).bookings), 1)

    def test_availability_map(self) -> None:
        engine = _engine()
        engine.create_booking("hall", 4, "2025-06-01", "13:00", 2, "owner")

        availability = engine.seat_availability("hall", "2025-06-01", "14:00", 1)

        self.assertEqual(availability, {1: True, 2: True, 3: True, 4: False, 5: True})


class TestResizeAndPricing(unittest.TestCase):
    def test_shrink_with_upcoming_booking_needs_confirmation(self) -> None:
        engine = _engine()
        booking = engine.create_booking("hall", 4, "2025-06-02", "10:00", 2, "owner")

        with self.assertRaises(CapacityShrinkDataLossWarning) as caught:
            engine.resize_capacity("hall", 3)

        self.assertEqual(caught.exception.plan.dropped_seat_ids, (4, 5))
        self.assertEqual(caught.exception.plan.affected_bookings, (booking,))
        self.assertEqual(engine.get_venue("hall").capacity, 5)

        plan = engine.resize_capacity("hall", 3, confirm=True)

        self.assertEqual(plan.new_capacity, 3)
        self.assertEqual(engine.get_venue("hall").capacity, 3)
        with self.assertRaises(NotFoundError):
            engine.create_booking("hall", 4, "2025-06-03", "10:00", 1, "owner")

    def test_shrink_without_upcoming_bookings_needs_no_confirmation(self) -> None:
        engine = _engine()
        engine.create_booking("hall", 5, "2025-05-30", "10:00", 1, "owner")

        self.assertFalse(engine.plan_resize("hall", 3).requires_confirmation)
        engine.resize_capacity("hall", 3)

        self.assertEqual(engine.get_venue("hall").capacity, 3)

    def test_stale_seat_reference_fails_after_shrink(self) -> None:
        engine = _engine()
        seat = engine.get_venue("hall").get_seat(5)
        engine.resize_capacity("hall", 3)

        self.assertTrue(seat.retired)
        with self.assertRaises(NotFoundError):
            engine.create_booking("hall", 5, "2025-06-01", "10:00", 1, "owner")

    def test_grow_then_price(self) -> None:
        engine = _engine()
        engine.resize_capacity("hall", 6)
        engine.update_seat("hall", 1, label="Window", hourly_price=35)
        request = ReservationRequest(seat_ids=(1, 6), date="2025-06-01", start_time="13:00", duration_hours=3)

        self.assertEqual(engine.price("hall", request).total, Decimal("165"))

        engine.set_default_price("hall", 10)
        engine.apply_default_price_to_all_seats("hall")
        self.assertEqual(engine.price("hall", request).total, Decimal("60"))


class TestHistory(unittest.TestCase):
    def test_history_lists_only_own_customer_bookings(self) -> None:
        engine = _engine()
        engine.update_seat("hall", 1, label="Window", hourly_price=35)
        engine.create_booking("hall", 1, "2025-06-02", "10:00", 2, "customer", identity="ana")
        engine.create_booking("hall", 2, "2025-06-01", "10:00", 1, "customer", identity="bo")
        engine.create_booking("hall", 3, "2025-06-01", "08:00", 1, "owner", identity="ana")

        lines = engine.bookings_for_identity("ana")

        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].seat_label, "Window")
        self.assertEqual(lines[0].total_price, Decimal("70"))
        self.assertEqual(len(engine.all_bookings()), 3)
        self.assertEqual(engine.all_bookings()[0].booking.seat_id, 3)
        with self.assertRaises(ValidationError):
            engine.bookings_for_identity(" ")


class TestPersistence(unittest.TestCase):
    def test_engine_reloads_venues_from_yaml(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            engine = BookingEngine(VenueYamlRepository(data_dir), clock=lambda: NOW)
            engine.create_venue("hall", 3, "12.50")
            booking = engine.create_booking("hall", 2, "2025-06-01", "23:00", 2, "customer", identity="ana")

            reloaded = BookingEngine(VenueYamlRepository(data_dir), clock=lambda: NOW)
            seat = reloaded.get_venue("hall").get_seat(2)

            self.assertEqual(seat.bookings, (booking,))
            self.assertEqual(reloaded.get_venue("hall").default_hourly_price, Decimal("12.50"))
            reloaded.cancel_booking("hall", 2, booking.booking_id)

    def test_failed_save_rolls_back_every_mutation(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = FailingRepository(Path(temp_dir) / "data")
            engine = BookingEngine(repo, clock=lambda: NOW)
            engine.create_venue("hall", 3, 20)
            engine.update_seat("hall", 2, label="Aisle")
            kept = engine.create_booking("hall", 3, "2025-05-30", "10:00", 1, "owner")
            repo.fail = True

            with self.assertRaises(BookingStorageError):
                engine.create_booking("hall", 1, "2025-06-01", "10:00", 1, "owner")
            request = ReservationRequest(seat_ids=(1, 2), date="2025-06-01", start_time="10:00", duration_hours=1)
            with self.assertRaises(BookingStorageError):
                engine.book_seats("hall", request, "customer", "ana")
            with self.assertRaises(BookingStorageError):
                engine.resize_capacity("hall", 1)
            with self.assertRaises(BookingStorageError):
                engine.cancel_booking("hall", 3, kept.booking_id)
            with self.assertRaises(BookingStorageError):
                engine.set_default_price("hall", 99)
            with self.assertRaises(BookingStorageError):
                engine.update_seat("hall", 2, label="Window", hourly_price=50)
            with self.assertRaises(BookingStorageError):
                engine.apply_default_price_to_all_seats("hall")
            with self.assertRaises(BookingStorageError):
                engine.create_venue("ghost", 2)

            venue = engine.get_venue("hall")
            self.assertEqual(venue.capacity, 3)
            self.assertFalse(any(seat.retired for seat in venue.seats))
            self.assertEqual(venue.iter_bookings(), [kept])
            self.assertEqual(venue.default_hourly_price, Decimal("20"))
            self.assertEqual((venue.get_seat(2).label, venue.get_seat(2).hourly_price), ("Aisle", None))
            self.assertTrue(all(seat.hourly_price is None for seat in venue.seats))
            self.assertEqual([item.venue_id for item in engine.list_venues()], ["hall"])

    def test_failed_save_never_leaves_another_seats_booking_on_disk(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = FailingRepository(data_dir)
            engine = BookingEngine(repo, clock=lambda: NOW)
            engine.create_venue("hall", 3, 20)
            repo.fail_for_seat = 2
            errors: list[BookingStorageError] = []

            def book_seat_two() -> None:
                try:
                    engine.create_booking("hall", 2, "2025-06-01", "10:00", 1, "owner")
                except BookingStorageError as error:
                    errors.append(error)

            other = threading.Thread(target=book_seat_two)

            def start_other_booking_mid_save(payload: dict) -> None:
                if payload.get("seat_id") == 1 and other.ident is None:
                    other.start()
                    other.join(timeout=0.2)

            repo.before_save = start_other_booking_mid_save
            engine.create_booking("hall", 1, "2025-06-01", "10:00", 1, "owner")
            other.join()

            self.assertEqual(len(errors), 1)
            reloaded = BookingEngine(VenueYamlRepository(data_dir), clock=lambda: NOW)
            self.assertEqual(reloaded.get_venue("hall").get_seat(2).bookings, ())
            self.assertEqual(len(reloaded.get_venue("hall").get_seat(1).bookings), 1)


if __name__ == "__main__":
    unittest.main()
